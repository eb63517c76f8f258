"""SQLAlchemy 2.0 ORM models for the Geo Escrow service.

Three tables:
    1. transfers          — Escrowed transfers from payer to payee.
    2. audit_entries      — Append-only log of every security-relevant decision.
    3. payee_accounts     — Payees' settlement destinations (connected accounts).

Design decisions:
    - UUIDs as primary keys (no sequential leakage).
    - BigInteger minor units for money (never floats).
    - CHECK constraints mirror the protocol invariants at the DB level:
      settlement_reference and platform fee are set iff status = 'released',
      circle and polygon geofences are mutually exclusive.
    - Generic Uuid/JSON types with a JSONB variant, so the same models run on
      PostgreSQL (production) and SQLite (tests).
    - audit_entries is append-only: no UPDATE or DELETE at the application level.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    Index,
    String,
    Text,
    Uuid,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from geo_escrow.domain.enums import TransferStatus
from geo_escrow.domain.geo import CircleFence, GeoPoint, PolygonFence

JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in TransferStatus)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# Helper: auto-set updated_at on flush
# ---------------------------------------------------------------------------
def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = datetime.now(UTC)


# ---------------------------------------------------------------------------
# 1. transfers
# ---------------------------------------------------------------------------
class Transfer(Base):
    """Funds deposited by a payer, releasable to a payee once conditions hold."""

    __tablename__ = "transfers"

    # --- Primary Key ---
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # --- Parties ---
    payer_id: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        comment="Authenticated principal who deposited the funds",
    )
    payee_identifier: Mapped[str] = mapped_column(
        String(320),
        nullable=False,
        comment="Payee email (lower-cased) or principal id",
    )
    payee_id: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
        default=None,
        comment="Resolved payee principal id (null while unresolved)",
    )

    # --- Financials ---
    amount_minor_units: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Gross amount in the smallest currency unit",
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    platform_fee_minor_units: Mapped[int | None] = mapped_column(
        BigInteger,
        nullable=True,
        default=None,
        comment="Platform fee, computed at settlement",
    )
    net_minor_units: Mapped[int | None] = mapped_column(
        BigInteger,
        nullable=True,
        default=None,
        comment="Amount settled to the payee",
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Release Conditions ---
    release_not_before: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=None,
        comment="Time-lock: release denied before this instant",
    )
    geofence_center_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    geofence_center_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    geofence_radius_m: Mapped[float | None] = mapped_column(Float, nullable=True)
    geofence_vertices: Mapped[list[Any] | None] = mapped_column(
        JSONType,
        nullable=True,
        default=None,
        comment='Polygon vertices as [{"lat": .., "lng": ..}, ...]',
    )

    # --- Status (state machine guarded) ---
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=TransferStatus.CREATED.value,
        comment="Current lifecycle state (guarded by TransferStateMachine)",
    )

    # --- External References ---
    payment_reference: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
        default=None,
        comment="Gateway payment intent id",
    )
    charge_reference: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        default=None,
        comment="Gateway charge id from the capture, source of the settlement",
    )
    settlement_reference: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        default=None,
        comment="Gateway transfer / payout id (set iff released)",
    )
    refund_reference: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        default=None,
        comment="Gateway refund id when funds went back to the payer",
    )

    # --- Release Claim ---
    release_attempt_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        default=None,
        comment="Release attempt currently allowed to call the ledger",
    )
    release_claimed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=None,
    )

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )
    held_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    # --- Table Constraints & Indexes ---
    __table_args__ = (
        CheckConstraint(
            f"status IN ({_STATUS_VALUES})",
            name="ck_transfer_valid_status",
        ),
        CheckConstraint(
            "amount_minor_units > 0",
            name="ck_transfer_positive_amount",
        ),
        CheckConstraint(
            "(status = 'released' AND settlement_reference IS NOT NULL "
            "AND platform_fee_minor_units IS NOT NULL) OR "
            "(status <> 'released' AND settlement_reference IS NULL "
            "AND platform_fee_minor_units IS NULL)",
            name="ck_transfer_settled_iff_released",
        ),
        CheckConstraint(
            "geofence_vertices IS NULL OR geofence_radius_m IS NULL",
            name="ck_transfer_single_geofence",
        ),
        Index("idx_transfer_status", "status"),
        Index("idx_transfer_payer", "payer_id"),
        Index("idx_transfer_payee", "payee_identifier"),
        Index("idx_transfer_release_not_before", "release_not_before"),
    )

    @property
    def geofence(self) -> CircleFence | PolygonFence | None:
        """The authoritative geofence for this transfer, if any."""
        if self.geofence_vertices:
            return PolygonFence(
                vertices=tuple(
                    GeoPoint(lat=float(v["lat"]), lng=float(v["lng"]))
                    for v in self.geofence_vertices
                )
            )
        if self.geofence_radius_m is not None:
            return CircleFence(
                center=GeoPoint(
                    lat=float(self.geofence_center_lat),
                    lng=float(self.geofence_center_lng),
                ),
                radius_m=float(self.geofence_radius_m),
            )
        return None

    def apply_geofence(self, fence: CircleFence | PolygonFence | None) -> None:
        """Store ``fence`` in the column layout above."""
        self.geofence_center_lat = None
        self.geofence_center_lng = None
        self.geofence_radius_m = None
        self.geofence_vertices = None
        if isinstance(fence, CircleFence):
            self.geofence_center_lat = fence.center.lat
            self.geofence_center_lng = fence.center.lng
            self.geofence_radius_m = fence.radius_m
        elif isinstance(fence, PolygonFence):
            self.geofence_vertices = [v.to_dict() for v in fence.vertices]

    def __repr__(self) -> str:
        return (
            f"<Transfer id={self.id} status={self.status} "
            f"amount={self.amount_minor_units} {self.currency}>"
        )


# ---------------------------------------------------------------------------
# 2. audit_entries (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class AuditEntry(Base):
    """Immutable record of a security-relevant decision.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level. Used for dispute resolution.
    """

    __tablename__ = "audit_entries"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    transfer_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        comment="Transfer the decision concerns (null for account-level events)",
    )
    event_type: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        comment="AuditEventType value (e.g., RELEASE_SUCCEEDED)",
    )
    actor_id: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        default="SYSTEM",
        comment="Principal that triggered the decision, or SYSTEM / GATEWAY",
    )
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
        default=None,
        comment="Coordinates, distances, remaining durations, error reasons",
    )
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        Index("idx_audit_transfer", "transfer_id"),
        Index("idx_audit_event_type", "event_type"),
        Index("idx_audit_occurred_at", "occurred_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditEntry id={self.id} type={self.event_type} transfer={self.transfer_id}>"


# ---------------------------------------------------------------------------
# 3. payee_accounts
# ---------------------------------------------------------------------------
class PayeeAccount(Base):
    """A payee's connected settlement account."""

    __tablename__ = "payee_accounts"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    principal_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(
        String(320),
        nullable=False,
        unique=True,
        comment="Lower-cased email",
    )
    destination_reference: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
        comment="Gateway connected-account id",
    )
    onboarded: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Whether the account can receive settlements",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    def __repr__(self) -> str:
        return f"<PayeeAccount principal={self.principal_id} onboarded={self.onboarded}>"


# ---------------------------------------------------------------------------
# Register the auto-update listener for updated_at
# ---------------------------------------------------------------------------
event.listen(Transfer, "before_update", _set_updated_at)
event.listen(PayeeAccount, "before_update", _set_updated_at)
