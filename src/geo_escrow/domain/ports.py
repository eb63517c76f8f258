"""Boundary protocols and the value types that cross them.

Every collaborator the EscrowEngine and WebhookIngestor talk to is described
here as a Protocol (structural subtyping), so concrete adapters don't need to
inherit from a base class; matching the shape is enough. Tests plug in
in-memory doubles; production wires Stripe, PostgreSQL and Redis in
bootstrap.py.

The domain layer has ZERO imports from Stripe, SQLAlchemy or Redis.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    import uuid

    from geo_escrow.domain.enums import AuditEventType, TransferStatus
    from geo_escrow.infrastructure.database.orm_models import Transfer


class _Any:
    """Sentinel: the conditional update ignores the release claim."""

    def __repr__(self) -> str:
        return "ANY_CLAIM"


ANY_CLAIM: Any = _Any()


@dataclass(frozen=True)
class Principal:
    """An authenticated caller, as vouched for by the upstream auth layer."""

    id: str
    email: str | None = None
    is_admin: bool = False


@dataclass(frozen=True)
class PaymentAuthorization:
    """Result of asking the payment gateway to authorize funds."""

    reference: str
    client_secret: str | None = None


@dataclass(frozen=True)
class PayeeAccountInfo:
    """A payee's settlement account as the directory knows it."""

    principal_id: str
    email: str
    destination_reference: str | None
    onboarded: bool


@dataclass(frozen=True)
class AuditRecord:
    """Immutable audit entry. Appended, never updated or deleted."""

    event_type: AuditEventType
    transfer_id: uuid.UUID | None
    actor_id: str
    timestamp: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class PaymentGateway(Protocol):
    """Collects funds from the payer and returns them on expiry/cancel."""

    async def authorize(
        self,
        amount_minor_units: int,
        payer_ref: str,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> PaymentAuthorization: ...

    async def void(self, reference: str, idempotency_key: str) -> None: ...

    async def refund(
        self, reference: str, amount_minor_units: int, idempotency_key: str
    ) -> str: ...


@runtime_checkable
class LedgerGateway(Protocol):
    """Moves net funds to the payee. Idempotent by key."""

    async def settle(
        self,
        destination_ref: str,
        net_minor_units: int,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
        source_reference: str | None = None,
    ) -> str: ...

    async def find_settlement(self, idempotency_key: str) -> str | None: ...


@runtime_checkable
class DestinationResolver(Protocol):
    """Maps a payee identifier (principal id or email) to where money goes."""

    async def resolve(self, payee_identifier: str) -> str | None: ...

    async def resolve_principal(self, payee_identifier: str) -> str | None: ...

    async def activate(self, account_reference: str) -> bool: ...


@runtime_checkable
class PayeeDirectory(Protocol):
    """Registry of payee settlement accounts."""

    async def get_account(self, principal_id: str) -> PayeeAccountInfo | None: ...

    async def get_account_by_email(self, email: str) -> PayeeAccountInfo | None: ...

    async def register(
        self, principal_id: str, email: str, destination_reference: str
    ) -> PayeeAccountInfo: ...


@runtime_checkable
class OnboardingGateway(Protocol):
    """Creates connected accounts and hosted onboarding links for payees."""

    async def create_account(self, email: str, idempotency_key: str) -> str: ...

    async def onboarding_link(self, account_reference: str, return_url: str) -> str: ...


@runtime_checkable
class TransferStore(Protocol):
    """Persistence boundary for transfers.

    ``conditional_update_status`` is the compare-and-swap primitive: the write
    happens only if the stored status (and, unless ANY_CLAIM, the release
    claim) still matches at write time.
    """

    async def create(self, transfer: Transfer) -> Transfer: ...

    async def get_by_id(self, transfer_id: uuid.UUID) -> Transfer | None: ...

    async def find_by_payment_reference(self, reference: str) -> Transfer | None: ...

    async def conditional_update_status(
        self,
        transfer_id: uuid.UUID,
        expected_status: TransferStatus,
        new_status: TransferStatus,
        *,
        expected_claim: Any = ANY_CLAIM,
        **fields: Any,
    ) -> bool: ...

    async def update_fields(self, transfer_id: uuid.UUID, **fields: Any) -> None: ...

    async def claim_release(
        self,
        transfer_id: uuid.UUID,
        attempt_id: str,
        now: datetime,
        stale_before: datetime,
    ) -> bool: ...

    async def release_claim(self, transfer_id: uuid.UUID, attempt_id: str) -> bool: ...

    async def find_expirable(self, cutoff: datetime, stale_before: datetime) -> list[Transfer]: ...

    async def find_refund_pending(self) -> list[Transfer]: ...


@runtime_checkable
class AuditSink(Protocol):
    """Durable, append-only audit log."""

    async def append(self, record: AuditRecord) -> None: ...

    async def list_for_transfer(self, transfer_id: uuid.UUID) -> list[AuditRecord]: ...


@runtime_checkable
class IdempotencyStore(Protocol):
    """Remembers processed inbound event ids."""

    async def claim(self, key: str) -> bool: ...

    async def release(self, key: str) -> None: ...
