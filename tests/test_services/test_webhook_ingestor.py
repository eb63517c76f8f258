"""Tests for the WebhookIngestor."""

from __future__ import annotations

import pytest

from geo_escrow.domain.enums import IngestOutcome
from geo_escrow.domain.events import Captured, CaptureFailed, PayeeActivated
from tests.conftest import PAYEE, PAYER


class TestCaptured:
    @pytest.mark.asyncio
    async def test_capture_moves_funding_to_held(self, engine, ingestor, audit_sink, clock) -> None:
        created = await engine.create_transfer(PAYER, PAYEE.email, 1_000)
        outcome = await ingestor.ingest(
            Captured(event_id="evt_1", reference=created.transfer.payment_reference)
        )

        assert outcome is IngestOutcome.APPLIED
        stored = await engine.get_transfer(created.transfer.id)
        assert stored.status == "held"
        assert stored.held_at == clock.now
        assert audit_sink.types(created.transfer.id)[-1] == "PAYMENT_CAPTURED"

    @pytest.mark.asyncio
    async def test_capture_charge_is_the_settlement_source(self, engine, ingestor, ledger) -> None:
        created = await engine.create_transfer(PAYER, PAYEE.email, 1_000)
        await ingestor.ingest(
            Captured(
                event_id="evt_charge",
                reference=created.transfer.payment_reference,
                charge_reference="ch_abc",
            )
        )
        assert (await engine.get_transfer(created.transfer.id)).charge_reference == "ch_abc"

        await engine.release(created.transfer.id, PAYEE)

        assert ledger.sources[f"release:{created.transfer.id}"] == "ch_abc"

    @pytest.mark.asyncio
    async def test_capture_goes_through_transition_guard(self, engine, ingestor, monkeypatch) -> None:
        seen = []
        monkeypatch.setattr(engine, "guard_transition", lambda status, name: seen.append((status, name)))
        created = await engine.create_transfer(PAYER, PAYEE.email, 1_000)
        seen.clear()

        await ingestor.ingest(Captured(event_id="evt_g", reference=created.transfer.payment_reference))

        assert seen == [("funding", "capture_succeeded")]

    @pytest.mark.asyncio
    async def test_duplicate_event_is_noop(self, engine, ingestor, audit_sink) -> None:
        created = await engine.create_transfer(PAYER, PAYEE.email, 1_000)
        event = Captured(event_id="evt_dup", reference=created.transfer.payment_reference)

        assert await ingestor.ingest(event) is IngestOutcome.APPLIED
        assert await ingestor.ingest(event) is IngestOutcome.DUPLICATE
        assert audit_sink.types(created.transfer.id).count("PAYMENT_CAPTURED") == 1

    @pytest.mark.asyncio
    async def test_second_capture_on_held_is_noop(self, engine, ingestor) -> None:
        created = await engine.create_transfer(PAYER, PAYEE.email, 1_000)
        reference = created.transfer.payment_reference
        await ingestor.ingest(Captured(event_id="evt_a", reference=reference))
        outcome = await ingestor.ingest(Captured(event_id="evt_b", reference=reference))
        assert outcome is IngestOutcome.NOOP

    @pytest.mark.asyncio
    async def test_unmatched_reference_is_dropped(self, ingestor) -> None:
        outcome = await ingestor.ingest(Captured(event_id="evt_x", reference="pi_unknown"))
        assert outcome is IngestOutcome.UNMATCHED

    @pytest.mark.asyncio
    async def test_capture_after_cancel_refunds(self, engine, ingestor, payments, audit_sink) -> None:
        created = await engine.create_transfer(PAYER, PAYEE.email, 1_000)
        await engine.cancel(created.transfer.id, PAYER)

        outcome = await ingestor.ingest(
            Captured(event_id="evt_late", reference=created.transfer.payment_reference)
        )

        assert outcome is IngestOutcome.APPLIED
        stored = await engine.get_transfer(created.transfer.id)
        assert stored.status == "canceled"
        assert stored.refund_reference in payments.refunds.values()
        assert audit_sink.types(created.transfer.id)[-1] == "REFUND_ISSUED"

    @pytest.mark.asyncio
    async def test_failure_releases_event_claim(self, engine, ingestor, store, idempotency) -> None:
        created = await engine.create_transfer(PAYER, PAYEE.email, 1_000)
        original = store.conditional_update_status

        async def broken(*args, **kwargs):
            raise RuntimeError("database went away")

        store.conditional_update_status = broken
        event = Captured(event_id="evt_retry", reference=created.transfer.payment_reference)
        with pytest.raises(RuntimeError):
            await ingestor.ingest(event)
        assert "evt_retry" not in idempotency.keys

        store.conditional_update_status = original
        assert await ingestor.ingest(event) is IngestOutcome.APPLIED


class TestCaptureFailed:
    @pytest.mark.asyncio
    async def test_failure_moves_funding_to_failed(self, engine, ingestor, audit_sink) -> None:
        created = await engine.create_transfer(PAYER, PAYEE.email, 1_000)
        outcome = await ingestor.ingest(
            CaptureFailed(
                event_id="evt_f",
                reference=created.transfer.payment_reference,
                reason="card_declined",
            )
        )
        assert outcome is IngestOutcome.APPLIED
        assert (await engine.get_transfer(created.transfer.id)).status == "failed"
        assert audit_sink.records[-1].metadata["reason"] == "card_declined"

    @pytest.mark.asyncio
    async def test_failure_goes_through_transition_guard(self, engine, ingestor, monkeypatch) -> None:
        created = await engine.create_transfer(PAYER, PAYEE.email, 1_000)
        seen = []
        monkeypatch.setattr(engine, "guard_transition", lambda status, name: seen.append((status, name)))

        await ingestor.ingest(CaptureFailed(event_id="evt_fg", reference=created.transfer.payment_reference))

        assert seen == [("funding", "capture_failed")]

    @pytest.mark.asyncio
    async def test_failure_on_held_is_noop(self, make_held, ingestor, engine) -> None:
        transfer = await make_held()
        outcome = await ingestor.ingest(
            CaptureFailed(event_id="evt_late_fail", reference=transfer.payment_reference)
        )
        assert outcome is IngestOutcome.NOOP
        assert (await engine.get_transfer(transfer.id)).status == "held"


class TestPayeeActivated:
    @pytest.mark.asyncio
    async def test_activation_marks_destination_onboarded(self, ingestor, resolver) -> None:
        resolver.add("payee-9", "nine@example.com", destination="acct_nine", onboarded=False)
        assert await resolver.resolve("payee-9") is None

        outcome = await ingestor.ingest(PayeeActivated(event_id="evt_acct", reference="acct_nine"))

        assert outcome is IngestOutcome.APPLIED
        assert await resolver.resolve("payee-9") == "acct_nine"

    @pytest.mark.asyncio
    async def test_unknown_account(self, ingestor) -> None:
        outcome = await ingestor.ingest(PayeeActivated(event_id="evt_nope", reference="acct_missing"))
        assert outcome is IngestOutcome.UNMATCHED
