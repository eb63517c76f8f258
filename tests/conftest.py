"""Shared test fixtures for the Geo Escrow test suite.

Provides:
    - In-memory doubles for the TransferStore, AuditSink, IdempotencyStore,
      DestinationResolver and PayeeDirectory ports
    - A controllable clock
    - A fully wired EscrowEngine, WebhookIngestor and PayeeOnboarding
    - Async test support via pytest-asyncio
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from geo_escrow.domain.events import Captured
from geo_escrow.domain.ports import ANY_CLAIM, AuditRecord, PayeeAccountInfo, Principal
from geo_escrow.infrastructure.database.orm_models import Transfer
from geo_escrow.infrastructure.gateways.simulated import (
    SimulatedLedgerGateway,
    SimulatedOnboardingGateway,
    SimulatedPaymentGateway,
)
from geo_escrow.services.escrow_engine import EscrowEngine
from geo_escrow.services.payee_onboarding import PayeeOnboarding
from geo_escrow.services.webhook_ingestor import WebhookIngestor

T0 = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)

PAYER = Principal(id="payer-1", email="payer@example.com")
PAYEE = Principal(id="payee-1", email="payee@example.com")
STRANGER = Principal(id="stranger-1", email="stranger@example.com")
ADMIN = Principal(id="admin-1", email="ops@example.com", is_admin=True)

_COLUMNS = [c.key for c in Transfer.__table__.columns]


# ---------------------------------------------------------------------------
# Port doubles
# ---------------------------------------------------------------------------


class MutableClock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class InMemoryTransferStore:
    """TransferStore over plain dicts. Every read returns a fresh detached copy."""

    def __init__(self) -> None:
        self.rows: dict[uuid.UUID, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _copy(values: dict[str, Any]) -> Transfer:
        return Transfer(**values)

    async def create(self, transfer: Transfer) -> Transfer:
        values = {name: getattr(transfer, name) for name in _COLUMNS}
        self.rows[transfer.id] = values
        return self._copy(values)

    async def get_by_id(self, transfer_id: uuid.UUID) -> Transfer | None:
        values = self.rows.get(transfer_id)
        return self._copy(values) if values else None

    async def find_by_payment_reference(self, reference: str) -> Transfer | None:
        for values in self.rows.values():
            if values["payment_reference"] == reference:
                return self._copy(values)
        return None

    async def conditional_update_status(
        self,
        transfer_id: uuid.UUID,
        expected_status: Any,
        new_status: Any,
        *,
        expected_claim: Any = ANY_CLAIM,
        **fields: Any,
    ) -> bool:
        async with self._lock:
            row = self.rows.get(transfer_id)
            if row is None or row["status"] != expected_status.value:
                return False
            if expected_claim is not ANY_CLAIM and row["release_attempt_id"] != expected_claim:
                return False
            row.update(status=new_status.value, **fields)
            return True

    async def update_fields(self, transfer_id: uuid.UUID, **fields: Any) -> None:
        self.rows[transfer_id].update(fields)

    async def claim_release(
        self,
        transfer_id: uuid.UUID,
        attempt_id: str,
        now: datetime,
        stale_before: datetime,
    ) -> bool:
        async with self._lock:
            row = self.rows[transfer_id]
            if row["status"] != "held":
                return False
            live = row["release_attempt_id"] is not None and row["release_claimed_at"] >= stale_before
            if live:
                return False
            row.update(release_attempt_id=attempt_id, release_claimed_at=now)
            return True

    async def release_claim(self, transfer_id: uuid.UUID, attempt_id: str) -> bool:
        row = self.rows[transfer_id]
        if row["release_attempt_id"] != attempt_id:
            return False
        row.update(release_attempt_id=None, release_claimed_at=None)
        return True

    async def find_expirable(self, cutoff: datetime, stale_before: datetime) -> list[Transfer]:
        return [
            self._copy(values)
            for values in self.rows.values()
            if values["status"] == "held"
            and values["release_not_before"] is not None
            and values["release_not_before"] <= cutoff
            and (
                values["release_attempt_id"] is None
                or values["release_claimed_at"] < stale_before
            )
        ]

    async def find_refund_pending(self) -> list[Transfer]:
        return [
            self._copy(values)
            for values in self.rows.values()
            if values["status"] in ("expired", "canceled")
            and values["held_at"] is not None
            and values["payment_reference"] is not None
            and values["refund_reference"] is None
        ]


class InMemoryAuditSink:
    def __init__(self) -> None:
        self.records: list[AuditRecord] = []

    async def append(self, record: AuditRecord) -> None:
        self.records.append(record)

    async def list_for_transfer(self, transfer_id: uuid.UUID) -> list[AuditRecord]:
        return [r for r in self.records if r.transfer_id == transfer_id]

    def types(self, transfer_id: uuid.UUID | None = None) -> list[str]:
        return [
            r.event_type.value
            for r in self.records
            if transfer_id is None or r.transfer_id == transfer_id
        ]


class InMemoryIdempotencyStore:
    def __init__(self) -> None:
        self.keys: set[str] = set()

    async def claim(self, key: str) -> bool:
        if key in self.keys:
            return False
        self.keys.add(key)
        return True

    async def release(self, key: str) -> None:
        self.keys.discard(key)


class InMemoryResolver:
    """Payee accounts keyed by principal id and by lower-cased email."""

    def __init__(self) -> None:
        self.accounts: list[dict[str, Any]] = []

    def add(
        self, principal_id: str, email: str, destination: str, onboarded: bool = True
    ) -> None:
        self.accounts.append(
            {
                "principal_id": principal_id,
                "email": email.lower(),
                "destination": destination,
                "onboarded": onboarded,
            }
        )

    def _find(self, identifier: str) -> dict[str, Any] | None:
        for account in self.accounts:
            if identifier in (account["principal_id"], account["email"]):
                return account
        return None

    async def resolve(self, payee_identifier: str) -> str | None:
        account = self._find(payee_identifier)
        if account is None or not account["onboarded"]:
            return None
        return account["destination"]

    async def resolve_principal(self, payee_identifier: str) -> str | None:
        account = self._find(payee_identifier)
        return account["principal_id"] if account else None

    async def activate(self, account_reference: str) -> bool:
        for account in self.accounts:
            if account["destination"] == account_reference:
                account["onboarded"] = True
                return True
        return False

    @staticmethod
    def _info(account: dict[str, Any]) -> PayeeAccountInfo:
        return PayeeAccountInfo(
            principal_id=account["principal_id"],
            email=account["email"],
            destination_reference=account["destination"],
            onboarded=account["onboarded"],
        )

    async def get_account(self, principal_id: str) -> PayeeAccountInfo | None:
        for account in self.accounts:
            if account["principal_id"] == principal_id:
                return self._info(account)
        return None

    async def get_account_by_email(self, email: str) -> PayeeAccountInfo | None:
        for account in self.accounts:
            if account["email"] == email.lower():
                return self._info(account)
        return None

    async def register(
        self, principal_id: str, email: str, destination_reference: str
    ) -> PayeeAccountInfo:
        for account in self.accounts:
            if account["principal_id"] == principal_id:
                account["destination"] = account["destination"] or destination_reference
                return self._info(account)
        self.add(principal_id, email, destination_reference, onboarded=False)
        return self._info(self.accounts[-1])


class YieldingLedger(SimulatedLedgerGateway):
    """Simulated ledger that yields to the event loop mid-settlement."""

    async def settle(self, *args: Any, **kwargs: Any) -> str:
        await asyncio.sleep(0)
        return await super().settle(*args, **kwargs)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def store() -> InMemoryTransferStore:
    return InMemoryTransferStore()


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def payments() -> SimulatedPaymentGateway:
    return SimulatedPaymentGateway()


@pytest.fixture
def ledger() -> YieldingLedger:
    return YieldingLedger()


@pytest.fixture
def resolver() -> InMemoryResolver:
    resolver = InMemoryResolver()
    resolver.add(PAYEE.id, PAYEE.email, destination="acct_payee_1")
    return resolver


@pytest.fixture
def idempotency() -> InMemoryIdempotencyStore:
    return InMemoryIdempotencyStore()


@pytest.fixture
def engine_options() -> dict[str, Any]:
    """Override per test to change fee rate, expiry policy or timeouts."""
    return {}


@pytest.fixture
def engine(
    store: InMemoryTransferStore,
    audit_sink: InMemoryAuditSink,
    payments: SimulatedPaymentGateway,
    ledger: YieldingLedger,
    resolver: InMemoryResolver,
    clock: MutableClock,
    engine_options: dict[str, Any],
) -> EscrowEngine:
    options: dict[str, Any] = {
        "fee_rate_bps": 200,
        "claim_window_seconds": 3600,
        "release_claim_ttl_seconds": 300,
        "gateway_timeout_seconds": 2.0,
        "destination_lookup_timeout_seconds": 1.0,
        **engine_options,
    }
    return EscrowEngine(store, audit_sink, payments, ledger, resolver, clock=clock, **options)


@pytest.fixture
def ingestor(
    store: InMemoryTransferStore,
    engine: EscrowEngine,
    resolver: InMemoryResolver,
    idempotency: InMemoryIdempotencyStore,
    clock: MutableClock,
) -> WebhookIngestor:
    return WebhookIngestor(store, engine, resolver, idempotency, clock=clock)


@pytest.fixture
def onboarding_gateway() -> SimulatedOnboardingGateway:
    return SimulatedOnboardingGateway()


@pytest.fixture
def onboarding(
    resolver: InMemoryResolver,
    onboarding_gateway: SimulatedOnboardingGateway,
    engine: EscrowEngine,
) -> PayeeOnboarding:
    return PayeeOnboarding(
        resolver,
        onboarding_gateway,
        engine.audit,
        default_return_url="https://app.example.com/onboarded",
        gateway_timeout_seconds=1.0,
    )


@pytest.fixture
def make_held(engine: EscrowEngine, ingestor: WebhookIngestor):
    """Create a transfer and deliver its capture webhook, returning the held transfer."""

    async def _make(amount_minor_units: int = 10_000, **kwargs: Any) -> Transfer:
        created = await engine.create_transfer(
            PAYER, kwargs.pop("payee_identifier", PAYEE.email), amount_minor_units, **kwargs
        )
        await ingestor.ingest(
            Captured(
                event_id=f"evt_{uuid.uuid4().hex[:12]}",
                reference=created.transfer.payment_reference,
                amount_minor_units=amount_minor_units,
            )
        )
        return await engine.get_transfer(created.transfer.id)

    return _make
