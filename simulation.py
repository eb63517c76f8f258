#!/usr/bin/env python3
"""Geo Escrow — End-to-End Simulation.

Drives the release protocol with a PayerBot and a PayeeBot against the
simulated gateways:

    Scenario 1: Happy Path
        - Payer deposits $100 with a 1 hour time-lock and a 50 m geofence
        - Payee tries too early -> TIME_LOCK_ACTIVE
        - Payee tries from 80 m away -> OUTSIDE_GEOFENCE
        - Payee releases from inside -> RELEASED ($2.00 fee, $98.00 net)

    Scenario 2: Double Release
        - Payee fires two releases at once -> one settlement, one conflict

    Scenario 3: Late Onboarding
        - Payee has no settlement account yet -> DESTINATION_NOT_CONFIGURED
        - Gateway reports the account active -> release succeeds

    Scenario 4: Auto-Return
        - Payee never shows up -> transfer EXPIRED, payer refunded

Usage:
    # SQLite in-memory, in-process webhook idempotency (no Docker):
    uv run python simulation.py

    # PostgreSQL + Redis from the environment (DATABASE_URL / REDIS_URL):
    uv run python simulation.py --postgres

    # Run a specific scenario:
    uv run python simulation.py --scenario 1
"""

from __future__ import annotations

import argparse
import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from geo_escrow.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from geo_escrow.domain.enums import ExpiryPolicy  # noqa: E402
from geo_escrow.domain.events import Captured, PayeeActivated  # noqa: E402
from geo_escrow.domain.exceptions import EscrowError  # noqa: E402
from geo_escrow.domain.geo import CircleFence, GeoPoint  # noqa: E402
from geo_escrow.domain.ports import Principal  # noqa: E402
from geo_escrow.infrastructure.database.orm_models import PayeeAccount  # noqa: E402
from geo_escrow.infrastructure.database.repositories import PayeeAccountRepository  # noqa: E402
from geo_escrow.infrastructure.database.stores import (  # noqa: E402
    SqlAuditSink,
    SqlDestinationResolver,
    SqlTransferStore,
)
from geo_escrow.infrastructure.gateways import (  # noqa: E402
    SimulatedLedgerGateway,
    SimulatedOnboardingGateway,
    SimulatedPaymentGateway,
)
from geo_escrow.services.escrow_engine import EscrowEngine  # noqa: E402
from geo_escrow.services.payee_onboarding import PayeeOnboarding  # noqa: E402
from geo_escrow.services.webhook_ingestor import WebhookIngestor  # noqa: E402

START = datetime(2025, 6, 1, 9, 0, tzinfo=UTC)
TIMES_SQUARE = GeoPoint(lat=40.7580, lng=-73.9855)
NEARBY = GeoPoint(lat=40.7581, lng=-73.9855)  # ~11 m north
TOO_FAR = GeoPoint(lat=40.75872, lng=-73.9855)  # ~80 m north

# Module-level state
_db_engine = None
_redis = None


class SimulationClock:
    """Wall clock the scenarios move forward by hand."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)
        print(f"  ⏩ Clock: {self.now.isoformat()}")


class InProcessIdempotencyStore:
    """Webhook event ids seen by this process (SQLite mode has no Redis)."""

    def __init__(self) -> None:
        self._seen: set[str] = set()

    async def claim(self, key: str) -> bool:
        if key in self._seen:
            return False
        self._seen.add(key)
        return True

    async def release(self, key: str) -> None:
        self._seen.discard(key)


@dataclass
class World:
    """One wired engine per scenario, sharing the database."""

    engine: EscrowEngine
    ingestor: WebhookIngestor
    onboarding: PayeeOnboarding
    clock: SimulationClock
    session_factory: Any
    ledger: SimulatedLedgerGateway
    payments: SimulatedPaymentGateway


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_database(use_postgres: bool = False):
    """Create the engine and tables and return a session factory."""
    global _db_engine

    from sqlalchemy.ext.asyncio import create_async_engine

    from geo_escrow.infrastructure.database.engine import (
        build_engine,
        build_session_factory,
        create_tables,
    )

    if use_postgres:
        from geo_escrow.config import get_settings

        _db_engine = build_engine(get_settings())
    else:
        _db_engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    await create_tables(_db_engine)
    logger.info("database.initialized", backend="postgresql" if use_postgres else "sqlite")
    return build_session_factory(_db_engine)


async def init_idempotency(use_redis: bool):
    global _redis
    if not use_redis:
        return InProcessIdempotencyStore()

    from geo_escrow.config import get_settings
    from geo_escrow.infrastructure.redis_client import RedisIdempotencyStore, init_redis

    _redis = await init_redis(get_settings())
    return RedisIdempotencyStore(_redis, ttl_seconds=3600, prefix=f"simulation:{uuid.uuid4().hex}")


async def shutdown() -> None:
    """Close database and Redis connections."""
    global _db_engine, _redis
    if _db_engine is not None:
        await _db_engine.dispose()
        _db_engine = None
    if _redis is not None:
        from geo_escrow.infrastructure.redis_client import close_redis

        await close_redis()
        _redis = None


async def build_world(
    session_factory: Any,
    idempotency: Any,
    expiry_policy: ExpiryPolicy = ExpiryPolicy.FREEZE,
) -> World:
    clock = SimulationClock()
    payments = SimulatedPaymentGateway()
    ledger = SimulatedLedgerGateway()
    store = SqlTransferStore(session_factory)
    resolver = SqlDestinationResolver(session_factory)
    engine = EscrowEngine(
        store,
        SqlAuditSink(session_factory),
        payments,
        ledger,
        resolver,
        fee_rate_bps=200,
        expiry_policy=expiry_policy,
        claim_window_seconds=24 * 3600,
        clock=clock,
    )
    ingestor = WebhookIngestor(store, engine, resolver, idempotency, clock=clock)
    onboarding = PayeeOnboarding(
        resolver,
        SimulatedOnboardingGateway(),
        engine.audit,
        default_return_url="http://localhost:8000/onboarding/complete",
    )
    return World(engine, ingestor, onboarding, clock, session_factory, ledger, payments)


# ---------------------------------------------------------------------------
# Bot Agents
# ---------------------------------------------------------------------------
@dataclass
class PayerBot:
    """Simulated payer who deposits funds for someone else."""

    principal: Principal = field(
        default_factory=lambda: Principal(id=f"payer-{uuid.uuid4().hex[:6]}", email="payer@example.com")
    )

    async def deposit(self, world: World, payee_email: str, amount_minor_units: int, **conditions: Any) -> uuid.UUID:
        created = await world.engine.create_transfer(
            self.principal, payee_email, amount_minor_units, **conditions
        )
        logger.info(
            "🔵 PAYER: Transfer created",
            transfer_id=str(created.transfer.id),
            fee_preview=created.fee_preview.fee_minor_units,
        )
        # The simulated gateway never confirms by itself; deliver its capture webhook.
        outcome = await world.ingestor.ingest(
            Captured(
                event_id=f"evt_{uuid.uuid4().hex[:12]}",
                reference=created.transfer.payment_reference,
                amount_minor_units=amount_minor_units,
            )
        )
        logger.info("🔵 PAYER: Payment captured", outcome=outcome.value)
        return created.transfer.id


@dataclass
class PayeeBot:
    """Simulated payee who walks around trying to claim funds."""

    principal: Principal

    async def try_release(self, world: World, transfer_id: uuid.UUID, at: GeoPoint | None) -> bool:
        try:
            outcome = await world.engine.release(transfer_id, self.principal, location=at)
        except EscrowError as exc:
            print(f"  ❌ {exc.code}: {exc.message}")
            if exc.details:
                print(f"     details: {exc.details}")
            return False
        print(
            f"  ✅ Released {outcome.net_minor_units / 100:.2f} "
            f"(fee {outcome.fee_minor_units / 100:.2f}) -> {outcome.settlement_reference}"
        )
        return True


async def register_payee(world: World, principal: Principal, destination: str, onboarded: bool) -> None:
    async with world.session_factory() as session, session.begin():
        await PayeeAccountRepository(session).create(
            PayeeAccount(
                principal_id=principal.id,
                email=principal.email,
                destination_reference=destination,
                onboarded=onboarded,
            )
        )


def new_payee() -> Principal:
    suffix = uuid.uuid4().hex[:6]
    return Principal(id=f"payee-{suffix}", email=f"payee-{suffix}@example.com")


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


async def print_audit_trail(world: World, transfer_id: uuid.UUID) -> None:
    """Print the full audit trail for a transfer."""
    records = await world.engine.get_audit_trail(transfer_id)
    print("\n  📜 Audit Trail:")
    for i, record in enumerate(records, 1):
        print(f"    {i}. [{record.event_type.value}] by {record.actor_id} {record.metadata or ''}")
    print()


# ===========================================================================
# Scenario 1: Happy Path
# ===========================================================================
async def scenario_1_happy_path(session_factory: Any, idempotency: Any) -> None:
    """Time-lock, then geofence, then settlement."""
    banner("SCENARIO 1: Happy Path — Time-Lock and Geofence")

    world = await build_world(session_factory, idempotency)
    payer = PayerBot()
    payee = PayeeBot(new_payee())
    await register_payee(world, payee.principal, f"acct_{payee.principal.id}", onboarded=True)

    section("Step 1: Payer deposits $100, releasable in 1 hour within 50 m of Times Square")
    transfer_id = await payer.deposit(
        world,
        payee.principal.email,
        10_000,
        release_not_before=world.clock.now + timedelta(hours=1),
        geofence=CircleFence(center=TIMES_SQUARE, radius_m=50),
    )

    section("Step 2: Payee tries 30 minutes early")
    world.clock.advance(minutes=30)
    assert not await payee.try_release(world, transfer_id, NEARBY)

    section("Step 3: Time-lock elapsed, payee is 80 m away")
    world.clock.advance(minutes=31)
    assert not await payee.try_release(world, transfer_id, TOO_FAR)

    section("Step 4: Payee walks into the geofence")
    assert await payee.try_release(world, transfer_id, NEARBY)

    await print_audit_trail(world, transfer_id)


# ===========================================================================
# Scenario 2: Double Release
# ===========================================================================
async def scenario_2_double_release(session_factory: Any, idempotency: Any) -> None:
    """Two concurrent release requests settle exactly once."""
    banner("SCENARIO 2: Double Release — At-Most-Once Settlement")

    world = await build_world(session_factory, idempotency)
    payer = PayerBot()
    payee = PayeeBot(new_payee())
    await register_payee(world, payee.principal, f"acct_{payee.principal.id}", onboarded=True)

    section("Step 1: Payer deposits $25 with no conditions")
    transfer_id = await payer.deposit(world, payee.principal.email, 2_500)

    section("Step 2: Payee double-taps release")
    results = await asyncio.gather(
        payee.try_release(world, transfer_id, None),
        payee.try_release(world, transfer_id, None),
    )
    assert sorted(results) == [False, True], results
    print(f"\n  🛡️  Ledger settlements: {len(world.ledger.settlements)}")

    await print_audit_trail(world, transfer_id)


# ===========================================================================
# Scenario 3: Late Onboarding
# ===========================================================================
async def scenario_3_late_onboarding(session_factory: Any, idempotency: Any) -> None:
    """Payee finishes onboarding after the funds are held."""
    banner("SCENARIO 3: Late Onboarding — Destination Not Configured")

    world = await build_world(session_factory, idempotency)
    payer = PayerBot()
    payee = PayeeBot(new_payee())

    section("Step 1: Payer deposits $40 for someone with no account yet")
    transfer_id = await payer.deposit(world, payee.principal.email, 4_000)

    section("Step 2: Payee tries before connecting an account")
    assert not await payee.try_release(world, transfer_id, None)

    section("Step 3: Payee starts onboarding")
    result = await world.onboarding.onboard(payee.principal)
    print(f"  Onboarding link: {result.onboarding_url}")
    assert not await payee.try_release(world, transfer_id, None)

    section("Step 4: Gateway reports the payee's account active")
    outcome = await world.ingestor.ingest(
        PayeeActivated(
            event_id=f"evt_{uuid.uuid4().hex[:12]}", reference=result.destination_reference
        )
    )
    print(f"  Webhook outcome: {outcome.value}")

    section("Step 5: Payee retries")
    assert await payee.try_release(world, transfer_id, None)

    await print_audit_trail(world, transfer_id)


# ===========================================================================
# Scenario 4: Auto-Return
# ===========================================================================
async def scenario_4_auto_return(session_factory: Any, idempotency: Any) -> None:
    """Unclaimed funds go back to the payer after the claim window."""
    banner("SCENARIO 4: Auto-Return — Payee Never Shows Up")

    world = await build_world(session_factory, idempotency, expiry_policy=ExpiryPolicy.AUTO_RETURN)
    payer = PayerBot()
    payee = PayeeBot(new_payee())
    await register_payee(world, payee.principal, f"acct_{payee.principal.id}", onboarded=True)

    section("Step 1: Payer deposits $15, releasable in 1 hour")
    transfer_id = await payer.deposit(
        world, payee.principal.email, 1_500, release_not_before=world.clock.now + timedelta(hours=1)
    )

    section("Step 2: A day and an hour pass")
    world.clock.advance(hours=25)
    expired = await world.engine.expire_due()
    transfer = await world.engine.get_transfer(transfer_id)
    print(f"  Expired: {[str(t) for t in expired]}")
    print(f"  Status: {transfer.status}, refund: {transfer.refund_reference}")

    section("Step 3: Payee finally tries")
    assert not await payee.try_release(world, transfer_id, None)

    await print_audit_trail(world, transfer_id)


SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_double_release,
    3: scenario_3_late_onboarding,
    4: scenario_4_auto_return,
}


# ===========================================================================
# Main
# ===========================================================================
async def run(scenarios: list[int], use_postgres: bool = False) -> None:
    """Run the given scenarios sequentially against one database."""
    session_factory = await init_database(use_postgres=use_postgres)
    idempotency = await init_idempotency(use_redis=use_postgres)

    try:
        print("\n" + "📍" * 35)
        print("  GEO ESCROW — SIMULATION")
        print(f"  Backend: {'PostgreSQL + Redis' if use_postgres else 'SQLite (in-memory)'}")
        print("📍" * 35 + "\n")

        for num in scenarios:
            await SCENARIOS[num](session_factory, idempotency)

        print("\n" + "=" * 70)
        print("  ✅ ALL SCENARIOS COMPLETED SUCCESSFULLY")
        print("=" * 70 + "\n")
    finally:
        await shutdown()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Geo Escrow Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        choices=[0, *SCENARIOS],
        help="Run a specific scenario (1-4). Default: run all.",
    )
    parser.add_argument(
        "--postgres",
        action="store_true",
        help="Use DATABASE_URL and REDIS_URL instead of SQLite in-memory.",
    )
    args = parser.parse_args()

    selected = list(SCENARIOS) if args.scenario == 0 else [args.scenario]
    asyncio.run(run(selected, use_postgres=args.postgres))
