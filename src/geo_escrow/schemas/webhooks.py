"""Pydantic schemas for gateway webhooks.

The generic gateway webhook body is a tagged union on ``kind``. Validation
either yields exactly one typed domain event or fails:

    - unknown ``kind``            -> UnsupportedEventError (HTTP 422)
    - anything else malformed     -> ValidationError (HTTP 400)
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from geo_escrow.domain.events import Captured, CaptureFailed, GatewayEvent, PayeeActivated
from geo_escrow.domain.exceptions import UnsupportedEventError, ValidationError


class CapturedPayload(BaseModel):
    kind: Literal["captured"]
    event_id: str = Field(..., min_length=1, max_length=255)
    reference: str = Field(..., min_length=1, max_length=255, description="Payment reference")
    amount_minor_units: int | None = Field(default=None, gt=0)
    charge_reference: str | None = Field(default=None, max_length=255)

    def to_domain(self) -> Captured:
        return Captured(
            event_id=self.event_id,
            reference=self.reference,
            amount_minor_units=self.amount_minor_units,
            charge_reference=self.charge_reference,
        )


class CaptureFailedPayload(BaseModel):
    kind: Literal["capture_failed"]
    event_id: str = Field(..., min_length=1, max_length=255)
    reference: str = Field(..., min_length=1, max_length=255, description="Payment reference")
    reason: str | None = Field(default=None, max_length=2000)

    def to_domain(self) -> CaptureFailed:
        return CaptureFailed(event_id=self.event_id, reference=self.reference, reason=self.reason)


class PayeeActivatedPayload(BaseModel):
    kind: Literal["payee_activated"]
    event_id: str = Field(..., min_length=1, max_length=255)
    reference: str = Field(..., min_length=1, max_length=255, description="Connected account id")

    def to_domain(self) -> PayeeActivated:
        return PayeeActivated(event_id=self.event_id, reference=self.reference)


GatewayEventEnvelope = Annotated[
    CapturedPayload | CaptureFailedPayload | PayeeActivatedPayload,
    Field(discriminator="kind"),
]

_envelope_adapter: TypeAdapter[CapturedPayload | CaptureFailedPayload | PayeeActivatedPayload] = (
    TypeAdapter(GatewayEventEnvelope)
)


def parse_gateway_event(raw: bytes | str) -> GatewayEvent:
    """Validate a raw webhook body into a typed domain event."""
    try:
        payload = _envelope_adapter.validate_json(raw)
    except PydanticValidationError as exc:
        for error in exc.errors():
            if error["type"] == "union_tag_invalid":
                raise UnsupportedEventError(str(error.get("ctx", {}).get("tag", "unknown"))) from exc
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or None
        raise ValidationError(f"Invalid webhook body: {first['msg']}", field=field) from exc
    return payload.to_domain()


class WebhookAck(BaseModel):
    received: bool = True
    outcome: str
