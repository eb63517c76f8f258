"""Tests for the MCP tools, called directly against an in-memory engine."""

from __future__ import annotations

import uuid

import pytest

from geo_escrow.domain.events import Captured
from geo_escrow.mcp_server import tools
from tests.conftest import ADMIN, PAYEE, PAYER


@pytest.fixture(autouse=True)
def bound_engine(engine, onboarding):
    tools.bind_engine(engine, frozenset({ADMIN.id}), onboarding)
    yield engine
    tools.bind_engine(None)


async def _capture(engine, ingestor, transfer_id: str) -> None:
    transfer = await engine.get_transfer(uuid.UUID(transfer_id))
    await ingestor.ingest(Captured(event_id=f"evt_{transfer_id}", reference=transfer.payment_reference))


class TestMcpTools:
    @pytest.mark.asyncio
    async def test_create_and_release_with_circle(self, engine, ingestor) -> None:
        created = await tools.create_transfer(
            principal_id=PAYER.id,
            payee_identifier=PAYEE.email,
            amount_minor_units=5_000,
            center_lat=40.7128,
            center_lng=-74.0060,
            radius_m=50,
        )
        assert created["status"] == "funding"
        assert created["platform_fee_minor_units"] == 100
        await _capture(engine, ingestor, created["transfer_id"])

        denied = await tools.release_transfer(created["transfer_id"], PAYEE.id)
        assert denied["error"] == "VALIDATION_ERROR"

        released = await tools.release_transfer(
            created["transfer_id"], PAYEE.id, lat=40.7129, lng=-74.0060
        )
        assert released["status"] == "released"
        assert released["net_minor_units"] == 4_900

    @pytest.mark.asyncio
    async def test_check_status_time_lock(self) -> None:
        created = await tools.create_transfer(
            principal_id=PAYER.id,
            payee_identifier=PAYEE.email,
            amount_minor_units=1_000,
            release_not_before="2025-06-01T13:00:00+00:00",
        )
        status = await tools.check_status(created["transfer_id"])
        assert status["status"] == "funding"
        assert status["time_lock_remaining_seconds"] == 3600

    @pytest.mark.asyncio
    async def test_rejects_circle_and_polygon_together(self) -> None:
        result = await tools.create_transfer(
            principal_id=PAYER.id,
            payee_identifier=PAYEE.email,
            amount_minor_units=1_000,
            center_lat=0.0,
            center_lng=0.0,
            radius_m=10,
            polygon=[{"lat": 0, "lng": 0}, {"lat": 0, "lng": 1}, {"lat": 1, "lng": 1}],
        )
        assert result["error"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_naive_time_lock_is_rejected(self) -> None:
        result = await tools.create_transfer(
            principal_id=PAYER.id,
            payee_identifier=PAYEE.email,
            amount_minor_units=1_000,
            release_not_before="2025-06-01T13:00:00",
        )
        assert result["error"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_bad_transfer_id(self) -> None:
        result = await tools.check_status("not-a-uuid")
        assert result["error"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_admin_cancel(self, engine, ingestor) -> None:
        created = await tools.create_transfer(
            principal_id=PAYER.id, payee_identifier=PAYEE.email, amount_minor_units=1_000
        )
        await _capture(engine, ingestor, created["transfer_id"])

        result = await tools.cancel_transfer(created["transfer_id"], ADMIN.id, reason="dispute")

        assert result["status"] == "canceled"
        assert result["refund_reference"]

    @pytest.mark.asyncio
    async def test_onboard_payee(self, resolver) -> None:
        result = await tools.onboard_payee("newcomer-2", "Newcomer2@example.com")

        assert result["onboarded"] is False
        assert result["onboarding_url"]
        account = await resolver.get_account("newcomer-2")
        assert account.destination_reference == result["destination_reference"]

    @pytest.mark.asyncio
    async def test_onboard_payee_without_email(self) -> None:
        result = await tools.onboard_payee("newcomer-3", "")
        assert result["error"] == "VALIDATION_ERROR"
