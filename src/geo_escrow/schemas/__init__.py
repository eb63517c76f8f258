"""Pydantic API schemas."""

from geo_escrow.schemas.payees import PayeeOnboardingRequest, PayeeOnboardingResponse
from geo_escrow.schemas.transfers import (
    AuditEntryResponse,
    CancelRequest,
    CreateTransferRequest,
    CreateTransferResponse,
    GeoPointModel,
    HealthResponse,
    ReleaseRequest,
    ReleaseResponse,
    TransferResponse,
    TransferStatusResponse,
)
from geo_escrow.schemas.webhooks import GatewayEventEnvelope, WebhookAck, parse_gateway_event

__all__ = [
    "AuditEntryResponse",
    "CancelRequest",
    "CreateTransferRequest",
    "CreateTransferResponse",
    "GatewayEventEnvelope",
    "GeoPointModel",
    "HealthResponse",
    "PayeeOnboardingRequest",
    "PayeeOnboardingResponse",
    "ReleaseRequest",
    "ReleaseResponse",
    "TransferResponse",
    "TransferStatusResponse",
    "WebhookAck",
    "parse_gateway_event",
]
