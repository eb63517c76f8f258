"""Tests for the SQL stores against a SQLite file database (aiosqlite).

These exercise the real UPDATE ... WHERE statements behind the
compare-and-swap and the release claim.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio

from geo_escrow.domain.enums import AuditEventType, TransferStatus
from geo_escrow.domain.geo import CircleFence, GeoPoint, PolygonFence
from geo_escrow.domain.ports import AuditRecord
from geo_escrow.infrastructure.database.engine import build_session_factory, create_tables
from geo_escrow.infrastructure.database.orm_models import PayeeAccount, Transfer
from geo_escrow.infrastructure.database.repositories import PayeeAccountRepository
from geo_escrow.infrastructure.database.stores import (
    SqlAuditSink,
    SqlDestinationResolver,
    SqlTransferStore,
)
from geo_escrow.services.escrow_engine import as_utc

pytestmark = pytest.mark.integration

T0 = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    from sqlalchemy.ext.asyncio import create_async_engine

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'escrow.db'}")
    await create_tables(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def store(session_factory) -> SqlTransferStore:
    return SqlTransferStore(session_factory)


def _transfer(**overrides) -> Transfer:
    values = {
        "id": uuid.uuid4(),
        "payer_id": "payer-1",
        "payee_identifier": "payee@example.com",
        "amount_minor_units": 10_000,
        "currency": "usd",
        "status": TransferStatus.CREATED.value,
        "created_at": T0,
    }
    values.update(overrides)
    return Transfer(**values)


async def _held(store: SqlTransferStore, **overrides) -> Transfer:
    transfer = await store.create(
        _transfer(
            status=TransferStatus.HELD.value,
            payment_reference=f"pi_{uuid.uuid4().hex[:8]}",
            held_at=T0,
            **overrides,
        )
    )
    return transfer


class TestTransferStore:
    @pytest.mark.asyncio
    async def test_create_and_fetch(self, store) -> None:
        created = await store.create(_transfer(description="deposit"))
        fetched = await store.get_by_id(created.id)
        assert fetched is not None
        assert fetched.description == "deposit"
        assert fetched.status == "created"
        assert await store.get_by_id(uuid.uuid4()) is None

    @pytest.mark.asyncio
    async def test_geofence_columns_round_trip(self, store) -> None:
        circle = _transfer()
        circle.apply_geofence(CircleFence(center=GeoPoint(lat=40.0, lng=-74.0), radius_m=50.0))
        polygon = _transfer()
        square = (
            GeoPoint(lat=0.0, lng=0.0),
            GeoPoint(lat=0.0, lng=1.0),
            GeoPoint(lat=1.0, lng=1.0),
            GeoPoint(lat=1.0, lng=0.0),
        )
        polygon.apply_geofence(PolygonFence(vertices=square))
        await store.create(circle)
        await store.create(polygon)

        assert (await store.get_by_id(circle.id)).geofence.radius_m == 50.0
        assert (await store.get_by_id(polygon.id)).geofence.vertices == square

    @pytest.mark.asyncio
    async def test_find_by_payment_reference(self, store) -> None:
        transfer = await _held(store)
        found = await store.find_by_payment_reference(transfer.payment_reference)
        assert found.id == transfer.id
        assert await store.find_by_payment_reference("pi_missing") is None

    @pytest.mark.asyncio
    async def test_conditional_update_requires_expected_status(self, store) -> None:
        transfer = await store.create(_transfer())
        assert await store.conditional_update_status(
            transfer.id, TransferStatus.CREATED, TransferStatus.FUNDING, payment_reference="pi_1"
        )
        assert not await store.conditional_update_status(
            transfer.id, TransferStatus.CREATED, TransferStatus.CANCELED
        )
        fetched = await store.get_by_id(transfer.id)
        assert (fetched.status, fetched.payment_reference) == ("funding", "pi_1")

    @pytest.mark.asyncio
    async def test_capture_stores_charge_reference(self, store) -> None:
        transfer = await store.create(
            _transfer(status=TransferStatus.FUNDING.value, payment_reference="pi_2")
        )
        assert await store.conditional_update_status(
            transfer.id,
            TransferStatus.FUNDING,
            TransferStatus.HELD,
            held_at=T0,
            charge_reference="ch_2",
        )
        assert (await store.get_by_id(transfer.id)).charge_reference == "ch_2"

    @pytest.mark.asyncio
    async def test_conditional_update_checks_claim(self, store) -> None:
        transfer = await _held(store)
        assert await store.claim_release(transfer.id, "attempt-a", T0, stale_before=T0 - timedelta(minutes=5))

        assert not await store.conditional_update_status(
            transfer.id, TransferStatus.HELD, TransferStatus.CANCELED, expected_claim=None
        )
        assert not await store.conditional_update_status(
            transfer.id,
            TransferStatus.HELD,
            TransferStatus.RELEASED,
            expected_claim="attempt-b",
            settlement_reference="tr_1",
            platform_fee_minor_units=200,
        )
        assert await store.conditional_update_status(
            transfer.id,
            TransferStatus.HELD,
            TransferStatus.RELEASED,
            expected_claim="attempt-a",
            settlement_reference="tr_1",
            platform_fee_minor_units=200,
            net_minor_units=9_800,
            release_attempt_id=None,
            release_claimed_at=None,
        )
        assert (await store.get_by_id(transfer.id)).settlement_reference == "tr_1"

    @pytest.mark.asyncio
    async def test_live_claim_blocks_second_claim(self, store) -> None:
        transfer = await _held(store)
        stale_before = T0 - timedelta(minutes=5)
        assert await store.claim_release(transfer.id, "a", T0, stale_before)
        assert not await store.claim_release(transfer.id, "b", T0, stale_before)

    @pytest.mark.asyncio
    async def test_stale_claim_can_be_taken_over(self, store) -> None:
        transfer = await _held(store)
        assert await store.claim_release(transfer.id, "a", T0, T0 - timedelta(minutes=5))

        later = T0 + timedelta(minutes=10)
        assert await store.claim_release(transfer.id, "b", later, later - timedelta(minutes=5))
        assert (await store.get_by_id(transfer.id)).release_attempt_id == "b"

    @pytest.mark.asyncio
    async def test_release_claim_only_by_holder(self, store) -> None:
        transfer = await _held(store)
        await store.claim_release(transfer.id, "a", T0, T0 - timedelta(minutes=5))
        assert not await store.release_claim(transfer.id, "b")
        assert await store.release_claim(transfer.id, "a")
        assert (await store.get_by_id(transfer.id)).release_attempt_id is None

    @pytest.mark.asyncio
    async def test_claim_requires_held(self, store) -> None:
        transfer = await store.create(_transfer())
        assert not await store.claim_release(transfer.id, "a", T0, T0)

    @pytest.mark.asyncio
    async def test_find_expirable(self, store) -> None:
        overdue = await _held(store, release_not_before=T0 - timedelta(hours=3))
        await _held(store, release_not_before=T0)
        await _held(store)
        claimed = await _held(store, release_not_before=T0 - timedelta(hours=3))
        await store.claim_release(claimed.id, "live", T0, T0 - timedelta(minutes=5))

        found = await store.find_expirable(
            cutoff=T0 - timedelta(hours=1), stale_before=T0 - timedelta(minutes=5)
        )
        assert [t.id for t in found] == [overdue.id]

    @pytest.mark.asyncio
    async def test_find_refund_pending(self, store) -> None:
        pending = await _held(store)
        await store.conditional_update_status(pending.id, TransferStatus.HELD, TransferStatus.EXPIRED)
        refunded = await _held(store)
        await store.conditional_update_status(
            refunded.id, TransferStatus.HELD, TransferStatus.CANCELED, refund_reference="re_1"
        )
        never_funded = await store.create(_transfer())
        await store.conditional_update_status(
            never_funded.id, TransferStatus.CREATED, TransferStatus.CANCELED
        )

        assert [t.id for t in await store.find_refund_pending()] == [pending.id]

    @pytest.mark.asyncio
    async def test_timestamps_come_back_as_utc(self, store) -> None:
        transfer = await _held(store, release_not_before=T0 + timedelta(hours=1))
        fetched = await store.get_by_id(transfer.id)
        assert as_utc(fetched.release_not_before) == T0 + timedelta(hours=1)


class TestAuditSink:
    @pytest.mark.asyncio
    async def test_append_and_list_in_order(self, session_factory) -> None:
        sink = SqlAuditSink(session_factory)
        transfer_id = uuid.uuid4()
        await sink.append(
            AuditRecord(AuditEventType.TRANSFER_CREATED, transfer_id, "payer-1", T0, {"amount_minor_units": 500})
        )
        await sink.append(
            AuditRecord(
                AuditEventType.TIME_LOCK_DENIED,
                transfer_id,
                "payee-1",
                T0 + timedelta(seconds=1),
                {"remaining_seconds": 59},
            )
        )
        await sink.append(AuditRecord(AuditEventType.PAYEE_ACTIVATED, None, "GATEWAY", T0))

        trail = await sink.list_for_transfer(transfer_id)
        assert [r.event_type for r in trail] == [
            AuditEventType.TRANSFER_CREATED,
            AuditEventType.TIME_LOCK_DENIED,
        ]
        assert trail[1].metadata == {"remaining_seconds": 59}


class TestDestinationResolver:
    @pytest.mark.asyncio
    async def test_resolves_only_onboarded_accounts(self, session_factory) -> None:
        async with session_factory() as session, session.begin():
            await PayeeAccountRepository(session).create(
                PayeeAccount(
                    principal_id="payee-1",
                    email="payee@example.com",
                    destination_reference="acct_1",
                )
            )
        resolver = SqlDestinationResolver(session_factory)

        assert await resolver.resolve_principal("Payee@Example.com") == "payee-1"
        assert await resolver.resolve("payee-1") is None

        assert await resolver.activate("acct_1")
        assert await resolver.resolve("payee@example.com") == "acct_1"
        assert not await resolver.activate("acct_unknown")

    @pytest.mark.asyncio
    async def test_unknown_payee(self, session_factory) -> None:
        resolver = SqlDestinationResolver(session_factory)
        assert await resolver.resolve("nobody@example.com") is None
        assert await resolver.resolve_principal("nobody@example.com") is None

    @pytest.mark.asyncio
    async def test_register_then_activate(self, session_factory) -> None:
        directory = SqlDestinationResolver(session_factory)

        account = await directory.register("payee-2", "Payee2@Example.com", "acct_2")
        assert (account.email, account.destination_reference, account.onboarded) == (
            "payee2@example.com",
            "acct_2",
            False,
        )
        assert await directory.get_account_by_email("PAYEE2@example.com") == account
        assert await directory.resolve("payee-2") is None

        again = await directory.register("payee-2", "payee2@example.com", "acct_other")
        assert again.destination_reference == "acct_2"

        assert await directory.activate("acct_2")
        assert (await directory.get_account("payee-2")).onboarded
        assert await directory.resolve("payee2@example.com") == "acct_2"

    @pytest.mark.asyncio
    async def test_register_fills_missing_destination(self, session_factory) -> None:
        async with session_factory() as session, session.begin():
            await PayeeAccountRepository(session).create(
                PayeeAccount(principal_id="payee-3", email="payee3@example.com")
            )
        directory = SqlDestinationResolver(session_factory)

        account = await directory.register("payee-3", "payee3@example.com", "acct_3")

        assert account.destination_reference == "acct_3"
        assert (await directory.get_account("payee-3")).destination_reference == "acct_3"
