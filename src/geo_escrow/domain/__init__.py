"""Domain layer — pure business logic with zero framework dependencies."""

from geo_escrow.domain.enums import (
    AuditEventType,
    GatewayEventKind,
    IngestOutcome,
    TransferStatus,
)
from geo_escrow.domain.exceptions import (
    AuthorizationError,
    ConditionNotMetError,
    EscrowError,
    StateConflictError,
    TransferNotFoundError,
    UpstreamError,
    ValidationError,
)
from geo_escrow.domain.fees import FeeSplit, split
from geo_escrow.domain.geo import CircleFence, GeoPoint, PolygonFence
from geo_escrow.domain.state_machine import (
    TransferStateMachine,
    validate_transition,
)

__all__ = [
    "AuditEventType",
    "GatewayEventKind",
    "IngestOutcome",
    "TransferStatus",
    "AuthorizationError",
    "ConditionNotMetError",
    "EscrowError",
    "StateConflictError",
    "TransferNotFoundError",
    "UpstreamError",
    "ValidationError",
    "FeeSplit",
    "split",
    "CircleFence",
    "GeoPoint",
    "PolygonFence",
    "TransferStateMachine",
    "validate_transition",
]
