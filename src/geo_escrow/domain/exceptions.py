"""Domain exceptions for the Geo Escrow service.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.

Taxonomy:
    ValidationError        malformed request, no state change
    AuthorizationError     requester is not allowed to act on the transfer
    StateConflictError     transfer not in the expected status (refresh, don't retry)
    ConditionNotMetError   time-lock or geofence denial (try later / elsewhere)
    UpstreamError          gateway or resolver failure (transient or permanent)
    InvariantViolationError  should be unreachable; aborts the request
"""

from __future__ import annotations

from typing import Any


class EscrowError(Exception):
    """Base exception for all domain errors."""

    def __init__(
        self,
        message: str,
        code: str = "ESCROW_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


# --- Request Errors ---


class ValidationError(EscrowError):
    """Raised when a request is malformed (bad amount, missing coordinates, ...)."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            details={"field": field} if field else None,
        )
        self.field = field


class AuthorizationError(EscrowError):
    """Raised when the requester may not perform the operation."""

    def __init__(self, message: str, code: str = "NOT_PERMITTED") -> None:
        super().__init__(message=message, code=code)


class TransferNotFoundError(EscrowError):
    """Raised when a transfer ID does not exist."""

    def __init__(self, transfer_id: str) -> None:
        super().__init__(
            message=f"Transfer not found: {transfer_id}",
            code="TRANSFER_NOT_FOUND",
        )
        self.transfer_id = transfer_id


# --- State Machine Errors ---


class StateConflictError(EscrowError):
    """Raised when a transfer is not in the status an operation requires.

    Also raised to the loser of a concurrent release race. The caller should
    refresh the transfer, never replay the same request as-is.
    """

    def __init__(self, current_status: str, attempted: str, message: str | None = None) -> None:
        super().__init__(
            message=message or f"Transfer is {current_status}; cannot {attempted}",
            code="STATE_CONFLICT",
            details={"status": current_status, "attempted": attempted},
        )
        self.current_status = current_status
        self.attempted = attempted


# --- Release Condition Denials ---


class ConditionNotMetError(EscrowError):
    """Base class for temporal and spatial release denials."""


class TimeLockActiveError(ConditionNotMetError):
    """Raised when release is requested before release_not_before."""

    def __init__(self, release_not_before: str, remaining_seconds: int) -> None:
        super().__init__(
            message="Time lock has not expired yet",
            code="TIME_LOCK_ACTIVE",
            details={
                "release_not_before": release_not_before,
                "remaining_seconds": remaining_seconds,
            },
        )
        self.remaining_seconds = remaining_seconds


class OutsideGeofenceError(ConditionNotMetError):
    """Raised when the submitted location falls outside the transfer's geofence."""

    def __init__(self, measurements: dict[str, Any]) -> None:
        super().__init__(
            message="You are outside the geo-fence area",
            code="OUTSIDE_GEOFENCE",
            details=measurements,
        )


# --- Upstream Errors ---


class UpstreamError(EscrowError):
    """Raised when a gateway or resolver call fails.

    ``transient`` failures (network, timeout) are safe to retry as a whole
    release call because every gateway call is idempotent. Permanent ones
    need a human: a different destination, or an explicit cancellation.
    """

    def __init__(
        self,
        message: str,
        code: str = "UPSTREAM_ERROR",
        transient: bool = False,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message=message, code=code, details=details)
        self.transient = transient


class GatewayUnavailableError(UpstreamError):
    """Network error, rate limit or timeout talking to a gateway."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="GATEWAY_UNAVAILABLE", transient=True)


class DestinationNotConfiguredError(UpstreamError):
    """Raised when the payee has no settlement destination yet."""

    def __init__(self, payee_identifier: str) -> None:
        super().__init__(
            message="Recipient has not connected a settlement account yet",
            code="DESTINATION_NOT_CONFIGURED",
            details={"payee": payee_identifier},
        )


class InsufficientSourceFundsError(UpstreamError):
    """The platform balance cannot cover the settlement."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="INSUFFICIENT_SOURCE_FUNDS")


class UnresolvedDestinationError(UpstreamError):
    """The gateway does not recognise the destination account."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="UNRESOLVED_DESTINATION")


class SettlementRejectedError(UpstreamError):
    """The gateway rejected the request outright."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="GATEWAY_REJECTED")


# --- Webhook Errors ---


class UnsupportedEventError(EscrowError):
    """Raised when an inbound gateway event has an unknown kind or shape."""

    def __init__(self, kind: str, message: str | None = None) -> None:
        super().__init__(
            message=message or f"Unsupported gateway event: {kind}",
            code="UNSUPPORTED_EVENT",
            details={"kind": kind},
        )
        self.kind = kind


# --- Internal Errors ---


class InvariantViolationError(EscrowError):
    """Raised when a state the protocol rules out is observed anyway.

    Aborts the request; the conditional update guarantees the stored
    transfer is not corrupted.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code="INVARIANT_VIOLATION", details=details)
