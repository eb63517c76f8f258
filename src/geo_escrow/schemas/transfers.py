"""Pydantic schemas for the Transfers API.

These schemas define the request/response shapes for the REST API and
MCP tools. They are separate from the ORM models to maintain clean
boundaries between the API and database layers.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Annotated, Any, Literal

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field

from geo_escrow.domain.geo import CircleFence, GeoPoint, PolygonFence

if TYPE_CHECKING:
    from geo_escrow.domain.ports import AuditRecord
    from geo_escrow.infrastructure.database.orm_models import Transfer
    from geo_escrow.services.escrow_engine import CreatedTransfer, ReleaseOutcome

# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------


class GeoPointModel(BaseModel):
    """A WGS84 coordinate in degrees."""

    lat: float = Field(..., ge=-90, le=90, examples=[40.7128])
    lng: float = Field(..., ge=-180, le=180, examples=[-74.006])

    def to_domain(self) -> GeoPoint:
        return GeoPoint(lat=self.lat, lng=self.lng)


class CircleFenceModel(BaseModel):
    kind: Literal["circle"] = "circle"
    center: GeoPointModel
    radius_m: float = Field(..., gt=0, description="Radius in meters", examples=[50])

    def to_domain(self) -> CircleFence:
        return CircleFence(center=self.center.to_domain(), radius_m=self.radius_m)


class PolygonFenceModel(BaseModel):
    kind: Literal["polygon"] = "polygon"
    vertices: list[GeoPointModel] = Field(
        ...,
        min_length=3,
        description="Ordered vertices; the polygon closes implicitly",
    )

    def to_domain(self) -> PolygonFence:
        return PolygonFence(vertices=tuple(v.to_domain() for v in self.vertices))


GeofenceModel = Annotated[CircleFenceModel | PolygonFenceModel, Field(discriminator="kind")]

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateTransferRequest(BaseModel):
    """Request body for depositing funds for a payee."""

    payee_identifier: str = Field(
        ...,
        min_length=1,
        max_length=320,
        description="Recipient email or principal id",
        examples=["recipient@example.com"],
    )
    amount_minor_units: int = Field(
        ...,
        gt=0,
        strict=True,
        description="Amount in the smallest currency unit (cents)",
        examples=[10000],
    )
    description: str | None = Field(default=None, max_length=2000)
    release_not_before: AwareDatetime | None = Field(
        default=None,
        description="Time-lock: funds cannot be released before this instant",
    )
    geofence: GeofenceModel | None = Field(
        default=None,
        description="Circle or polygon the recipient must be inside to release",
    )


class ReleaseRequest(BaseModel):
    """Request body for releasing a held transfer."""

    location: GeoPointModel | None = Field(
        default=None,
        description="Requester's current location; required for geofenced transfers",
    )


class CancelRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class TransferResponse(BaseModel):
    """Response schema for a transfer."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    payer_id: str
    payee_identifier: str
    payee_id: str | None
    amount_minor_units: int
    currency: str
    platform_fee_minor_units: int | None
    net_minor_units: int | None
    description: str | None
    release_not_before: datetime | None
    geofence: dict[str, Any] | None
    status: str
    payment_reference: str | None
    settlement_reference: str | None
    refund_reference: str | None
    created_at: datetime
    held_at: datetime | None
    resolved_at: datetime | None

    @classmethod
    def from_transfer(cls, transfer: Transfer) -> TransferResponse:
        fence = transfer.geofence
        data = {name: getattr(transfer, name) for name in cls.model_fields if name != "geofence"}
        return cls(geofence=fence.to_dict() if fence else None, **data)


class FeePreview(BaseModel):
    """Fee at the creation-time rate. Informational; the charged fee is fixed at release."""

    fee_rate_bps: int
    platform_fee_minor_units: int
    net_minor_units: int


class CreateTransferResponse(BaseModel):
    transfer: TransferResponse
    client_secret: str | None = Field(
        default=None,
        description="Secret the payer's client uses to confirm the payment",
    )
    fee_preview: FeePreview

    @classmethod
    def from_created(cls, created: CreatedTransfer) -> CreateTransferResponse:
        return cls(
            transfer=TransferResponse.from_transfer(created.transfer),
            client_secret=created.client_secret,
            fee_preview=FeePreview(
                fee_rate_bps=created.fee_preview.fee_rate_bps,
                platform_fee_minor_units=created.fee_preview.fee_minor_units,
                net_minor_units=created.fee_preview.net_minor_units,
            ),
        )


class ReleaseResponse(BaseModel):
    transfer_id: uuid.UUID
    status: str = "released"
    settlement_reference: str
    amount_minor_units: int
    platform_fee_minor_units: int
    net_minor_units: int
    released_at: datetime

    @classmethod
    def from_outcome(cls, outcome: ReleaseOutcome) -> ReleaseResponse:
        return cls(
            transfer_id=outcome.transfer_id,
            settlement_reference=outcome.settlement_reference,
            amount_minor_units=outcome.gross_minor_units,
            platform_fee_minor_units=outcome.fee_minor_units,
            net_minor_units=outcome.net_minor_units,
            released_at=outcome.released_at,
        )


class TransferStatusResponse(BaseModel):
    """Lightweight status check response."""

    transfer_id: uuid.UUID
    status: str
    allowed_events: list[str] = Field(
        description="State machine events that can fire from the current status"
    )
    release_not_before: datetime | None = None
    time_lock_remaining_seconds: int = 0
    geofence: dict[str, Any] | None = None
    release_in_progress: bool = False


class AuditEntryResponse(BaseModel):
    """Response schema for an audit log entry."""

    event_type: str
    transfer_id: uuid.UUID | None
    actor_id: str
    timestamp: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_record(cls, record: AuditRecord) -> AuditEntryResponse:
        return cls(
            event_type=record.event_type.value,
            transfer_id=record.transfer_id,
            actor_id=record.actor_id,
            timestamp=record.timestamp,
            metadata=record.metadata,
        )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
