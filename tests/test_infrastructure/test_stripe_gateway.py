"""Tests for the Stripe adapters: event mapping, error translation, signatures.

No network: the SDK client is replaced by a small fake exposing the same
resource methods.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from types import SimpleNamespace

import pytest
import stripe

from geo_escrow.domain.events import Captured, CaptureFailed, PayeeActivated
from geo_escrow.domain.exceptions import (
    GatewayUnavailableError,
    InsufficientSourceFundsError,
    SettlementRejectedError,
    UnresolvedDestinationError,
    UnsupportedEventError,
    ValidationError,
)
from geo_escrow.infrastructure.gateways.stripe_gateway import (
    StripeLedgerGateway,
    StripeOnboardingGateway,
    StripePaymentGateway,
    StripeWebhookParser,
    map_stripe_event,
    translate_stripe_error,
)

WEBHOOK_SECRET = "whsec_test_secret"


def _event(event_type: str, obj: dict) -> dict:
    return {"id": "evt_123", "type": event_type, "data": {"object": obj}}


def _sign(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


class _Resource:
    def __init__(self, result=None, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls: list[tuple] = []

    def _respond(self, *args, **kwargs):
        self.calls.append((args, kwargs))
        if self.error is not None:
            raise self.error
        return self.result

    create = _respond
    cancel = _respond
    list = _respond


class TestMapStripeEvent:
    def test_payment_intent_succeeded(self) -> None:
        event = map_stripe_event(
            _event("payment_intent.succeeded", {"id": "pi_1", "amount": 500, "amount_received": 500})
        )
        assert event == Captured(event_id="evt_123", reference="pi_1", amount_minor_units=500)

    def test_payment_intent_succeeded_carries_latest_charge(self) -> None:
        event = map_stripe_event(
            _event("payment_intent.succeeded", {"id": "pi_1", "amount": 500, "latest_charge": "ch_9"})
        )
        assert event.charge_reference == "ch_9"

    def test_expanded_latest_charge(self) -> None:
        event = map_stripe_event(
            _event(
                "payment_intent.succeeded",
                {"id": "pi_1", "amount": 500, "latest_charge": {"id": "ch_9", "object": "charge"}},
            )
        )
        assert event.charge_reference == "ch_9"

    def test_payment_failed_carries_reason(self) -> None:
        event = map_stripe_event(
            _event(
                "payment_intent.payment_failed",
                {"id": "pi_1", "last_payment_error": {"message": "Your card was declined."}},
            )
        )
        assert event == CaptureFailed(
            event_id="evt_123", reference="pi_1", reason="Your card was declined."
        )

    def test_account_updated_when_enabled(self) -> None:
        event = map_stripe_event(
            _event("account.updated", {"id": "acct_1", "charges_enabled": True, "payouts_enabled": True})
        )
        assert event == PayeeActivated(event_id="evt_123", reference="acct_1")

    def test_account_updated_not_yet_enabled(self) -> None:
        event = map_stripe_event(
            _event("account.updated", {"id": "acct_1", "charges_enabled": True, "payouts_enabled": False})
        )
        assert event is None

    def test_unknown_type_is_rejected(self) -> None:
        with pytest.raises(UnsupportedEventError):
            map_stripe_event(_event("charge.dispute.created", {"id": "dp_1"}))

    def test_missing_object_is_rejected(self) -> None:
        with pytest.raises(UnsupportedEventError):
            map_stripe_event({"id": "evt_1", "type": "payment_intent.succeeded", "data": {}})


class TestTranslateStripeError:
    @pytest.mark.parametrize(
        "error",
        [
            stripe.RateLimitError("slow down"),
            stripe.APIConnectionError("connection reset"),
            stripe.APIError("internal"),
        ],
    )
    def test_transient_errors(self, error) -> None:
        translated = translate_stripe_error(error, "settle")
        assert isinstance(translated, GatewayUnavailableError)
        assert translated.transient

    def test_insufficient_balance(self) -> None:
        error = stripe.InvalidRequestError("Insufficient funds", None, code="balance_insufficient")
        translated = translate_stripe_error(error, "settle")
        assert isinstance(translated, InsufficientSourceFundsError)
        assert not translated.transient

    def test_bad_destination(self) -> None:
        error = stripe.InvalidRequestError("No such destination", "destination")
        assert isinstance(translate_stripe_error(error, "settle"), UnresolvedDestinationError)

    def test_other_rejections(self) -> None:
        error = stripe.CardError("Card declined", None, code="card_declined")
        assert isinstance(translate_stripe_error(error, "authorize"), SettlementRejectedError)


class TestWebhookParser:
    def test_valid_signature(self) -> None:
        payload = json.dumps(_event("payment_intent.succeeded", {"id": "pi_9", "amount": 100})).encode()
        event = StripeWebhookParser(WEBHOOK_SECRET).parse(payload, _sign(payload))
        assert isinstance(event, Captured)
        assert event.reference == "pi_9"

    def test_missing_signature(self) -> None:
        with pytest.raises(ValidationError):
            StripeWebhookParser(WEBHOOK_SECRET).parse(b"{}", None)

    def test_wrong_secret(self) -> None:
        payload = json.dumps(_event("payment_intent.succeeded", {"id": "pi_9"})).encode()
        with pytest.raises(ValidationError):
            StripeWebhookParser(WEBHOOK_SECRET).parse(payload, _sign(payload, "whsec_other"))


class TestLedgerGateway:
    @pytest.mark.asyncio
    async def test_settle_uses_transfer_group_and_source(self) -> None:
        transfers = _Resource(result=SimpleNamespace(id="tr_1"))
        gateway = StripeLedgerGateway(SimpleNamespace(transfers=transfers), currency="usd")

        reference = await gateway.settle(
            "acct_1",
            9_800,
            idempotency_key="release:abc",
            metadata={"transfer_id": "abc", "payment_reference": "pi_1"},
            source_reference="ch_1",
        )

        assert reference == "tr_1"
        (_, kwargs), = transfers.calls
        assert kwargs["params"]["transfer_group"] == "release:abc"
        assert kwargs["params"]["source_transaction"] == "ch_1"
        assert kwargs["params"]["metadata"]["payment_reference"] == "pi_1"
        assert kwargs["options"] == {"idempotency_key": "release:abc"}

    @pytest.mark.asyncio
    async def test_settle_without_charge_omits_source(self) -> None:
        transfers = _Resource(result=SimpleNamespace(id="tr_2"))
        gateway = StripeLedgerGateway(SimpleNamespace(transfers=transfers), currency="usd")

        await gateway.settle("acct_1", 100, idempotency_key="release:def")

        (_, kwargs), = transfers.calls
        assert "source_transaction" not in kwargs["params"]

    @pytest.mark.asyncio
    async def test_find_settlement(self) -> None:
        found = _Resource(result=SimpleNamespace(data=[SimpleNamespace(id="tr_7")]))
        empty = _Resource(result=SimpleNamespace(data=[]))

        assert await StripeLedgerGateway(SimpleNamespace(transfers=found), "usd").find_settlement("k") == "tr_7"
        assert await StripeLedgerGateway(SimpleNamespace(transfers=empty), "usd").find_settlement("k") is None

    @pytest.mark.asyncio
    async def test_permanent_error_is_not_retried(self) -> None:
        error = stripe.InvalidRequestError("No such destination", "destination")
        transfers = _Resource(error=error)
        gateway = StripeLedgerGateway(SimpleNamespace(transfers=transfers), currency="usd")

        with pytest.raises(UnresolvedDestinationError):
            await gateway.settle("acct_gone", 100, idempotency_key="release:x")
        assert len(transfers.calls) == 1


class TestPaymentGateway:
    @pytest.mark.asyncio
    async def test_authorize_returns_client_secret(self) -> None:
        intents = _Resource(result=SimpleNamespace(id="pi_1", client_secret="pi_1_secret"))
        gateway = StripePaymentGateway(SimpleNamespace(payment_intents=intents), currency="usd")

        authorization = await gateway.authorize(500, "payer-1", idempotency_key="authorize:t1")

        assert (authorization.reference, authorization.client_secret) == ("pi_1", "pi_1_secret")
        (_, kwargs), = intents.calls
        assert kwargs["params"]["metadata"]["payer_id"] == "payer-1"

    @pytest.mark.asyncio
    async def test_refund(self) -> None:
        refunds = _Resource(result=SimpleNamespace(id="re_1"))
        gateway = StripePaymentGateway(SimpleNamespace(refunds=refunds), currency="usd")
        assert await gateway.refund("pi_1", 500, idempotency_key="refund:t1") == "re_1"


class TestOnboardingGateway:
    @pytest.mark.asyncio
    async def test_create_account_is_express_with_transfers(self) -> None:
        accounts = _Resource(result=SimpleNamespace(id="acct_9"))
        gateway = StripeOnboardingGateway(SimpleNamespace(accounts=accounts), currency="usd")

        assert await gateway.create_account("payee@example.com", idempotency_key="onboard:p1") == "acct_9"

        (_, kwargs), = accounts.calls
        assert kwargs["params"]["type"] == "express"
        assert kwargs["params"]["capabilities"] == {"transfers": {"requested": True}}
        assert kwargs["options"] == {"idempotency_key": "onboard:p1"}

    @pytest.mark.asyncio
    async def test_onboarding_link(self) -> None:
        links = _Resource(result=SimpleNamespace(url="https://connect.stripe.com/setup/e/acct_9"))
        gateway = StripeOnboardingGateway(SimpleNamespace(account_links=links), currency="usd")

        url = await gateway.onboarding_link("acct_9", "https://app.example.com/done")

        assert url == "https://connect.stripe.com/setup/e/acct_9"
        (_, kwargs), = links.calls
        assert kwargs["params"] == {
            "account": "acct_9",
            "refresh_url": "https://app.example.com/done",
            "return_url": "https://app.example.com/done",
            "type": "account_onboarding",
        }
