"""Domain enumerations for the Geo Escrow service.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class TransferStatus(enum.StrEnum):
    """Lifecycle states of an escrowed transfer.

    State transitions are enforced by the TransferStateMachine guard.
    See domain/state_machine.py for the transition table.
    """

    CREATED = "created"
    FUNDING = "funding"
    HELD = "held"
    RELEASED = "released"
    EXPIRED = "expired"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        TransferStatus.RELEASED,
        TransferStatus.EXPIRED,
        TransferStatus.FAILED,
        TransferStatus.CANCELED,
    }
)


class AuditEventType(enum.StrEnum):
    """Types of entries recorded in the append-only audit log.

    Every terminal transition and every denial MUST produce an entry
    before the caller is told about it. This is the forensic trail for
    disputes.
    """

    # Lifecycle events
    TRANSFER_CREATED = "TRANSFER_CREATED"
    FUNDING_AUTHORIZED = "FUNDING_AUTHORIZED"
    FUNDING_AUTHORIZATION_FAILED = "FUNDING_AUTHORIZATION_FAILED"
    PAYMENT_CAPTURED = "PAYMENT_CAPTURED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PAYEE_REGISTERED = "PAYEE_REGISTERED"
    PAYEE_ACTIVATED = "PAYEE_ACTIVATED"

    # Release gate decisions
    AUTHORIZATION_DENIED = "AUTHORIZATION_DENIED"
    TIME_LOCK_DENIED = "TIME_LOCK_DENIED"
    VERIFICATION_SUCCEEDED = "VERIFICATION_SUCCEEDED"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"

    # Settlement events
    RELEASE_SUCCEEDED = "RELEASE_SUCCEEDED"
    RELEASE_FAILED = "RELEASE_FAILED"
    RELEASE_CONFLICT = "RELEASE_CONFLICT"

    # Return-to-payer events
    TRANSFER_CANCELED = "TRANSFER_CANCELED"
    TRANSFER_EXPIRED = "TRANSFER_EXPIRED"
    REFUND_ISSUED = "REFUND_ISSUED"
    REFUND_FAILED = "REFUND_FAILED"


class GatewayEventKind(enum.StrEnum):
    """Kinds of asynchronous events delivered by the payment gateway."""

    CAPTURED = "captured"
    CAPTURE_FAILED = "capture_failed"
    PAYEE_ACTIVATED = "payee_activated"


class IngestOutcome(enum.StrEnum):
    """What the webhook ingestor did with a single event."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    NOOP = "noop"
    UNMATCHED = "unmatched"


class ExpiryPolicy(enum.StrEnum):
    """What the expiry sweep does with unclaimed transfers."""

    AUTO_RETURN = "auto_return"
    FREEZE = "freeze"
