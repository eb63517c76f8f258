"""Stripe adapters for the PaymentGateway, LedgerGateway and OnboardingGateway ports.

All Stripe calls go through these classes to get consistent error
translation, idempotency and logging:

    - Each adapter owns its own ``stripe.StripeClient`` built from explicit
      configuration. Nothing touches the module-global ``stripe.api_key``.
    - The SDK is synchronous; calls run in a worker thread.
    - Every write carries an idempotency key. Transient failures (network,
      rate limit, 5xx) are retried with exponential backoff via tenacity,
      which is safe precisely because of those keys.
    - Stripe exceptions are translated into the domain's UpstreamError family.

Settlement is a Connect Transfer funded from the capture's charge
(``source_transaction``) whose ``transfer_group`` is the idempotency
key. Stripe forgets idempotency keys after 24 hours, so crash recovery looks
prior transfers up by group instead (``find_settlement``).
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import TYPE_CHECKING, Any

import stripe
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from geo_escrow.domain.events import Captured, CaptureFailed, PayeeActivated
from geo_escrow.domain.exceptions import (
    GatewayUnavailableError,
    InsufficientSourceFundsError,
    SettlementRejectedError,
    UnresolvedDestinationError,
    UnsupportedEventError,
    ValidationError,
)
from geo_escrow.domain.ports import PaymentAuthorization
from geo_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from geo_escrow.domain.events import GatewayEvent

logger = get_logger(__name__)

_DESTINATION_ERROR_CODES = frozenset({"account_invalid", "no_account", "account_closed"})
_INSUFFICIENT_FUNDS_CODES = frozenset({"balance_insufficient", "insufficient_funds"})


def build_stripe_client(
    secret_key: str, timeout_seconds: int, max_network_retries: int
) -> stripe.StripeClient:
    """Create a configured, non-global Stripe client."""
    return stripe.StripeClient(
        secret_key,
        max_network_retries=max_network_retries,
        http_client=stripe.RequestsClient(timeout=timeout_seconds),
    )


def translate_stripe_error(error: stripe.StripeError, operation: str) -> Exception:
    """Map a Stripe SDK exception onto the domain's upstream errors."""
    code = getattr(error, "code", None)
    message = str(getattr(error, "user_message", None) or error)

    if isinstance(error, (stripe.RateLimitError, stripe.APIConnectionError)):
        return GatewayUnavailableError(f"Stripe unavailable during {operation}: {message}")
    if isinstance(error, stripe.APIError):
        return GatewayUnavailableError(f"Stripe error during {operation}: {message}")
    if code in _INSUFFICIENT_FUNDS_CODES:
        return InsufficientSourceFundsError(message)
    if code in _DESTINATION_ERROR_CODES or getattr(error, "param", None) == "destination":
        return UnresolvedDestinationError(message)
    return SettlementRejectedError(message)


class _StripeAdapter:
    """Shared plumbing: threaded calls, retry, logging, error translation."""

    def __init__(self, client: stripe.StripeClient, currency: str) -> None:
        self._client = client
        self._currency = currency

    @retry(
        retry=retry_if_exception_type(GatewayUnavailableError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def _call(self, operation: str, fn: Callable[[], Any], **log_context: Any) -> Any:
        start = time.monotonic()
        try:
            result = await asyncio.to_thread(fn)
        except stripe.StripeError as exc:
            logger.warning(
                "gateway.stripe_failed",
                operation=operation,
                stripe_code=getattr(exc, "code", None),
                duration_ms=round((time.monotonic() - start) * 1000, 1),
                **log_context,
            )
            raise translate_stripe_error(exc, operation) from exc
        logger.info(
            "gateway.stripe_ok",
            operation=operation,
            duration_ms=round((time.monotonic() - start) * 1000, 1),
            **log_context,
        )
        return result


class StripePaymentGateway(_StripeAdapter):
    """Collects the payer's funds with a PaymentIntent on the platform account."""

    async def authorize(
        self,
        amount_minor_units: int,
        payer_ref: str,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> PaymentAuthorization:
        params = {
            "amount": amount_minor_units,
            "currency": self._currency,
            "payment_method_types": ["card"],
            "metadata": {"payer_id": payer_ref, **(metadata or {})},
        }
        intent = await self._call(
            "authorize",
            lambda: self._client.payment_intents.create(
                params=params, options={"idempotency_key": idempotency_key}
            ),
            amount_minor_units=amount_minor_units,
            idempotency_key=idempotency_key,
        )
        return PaymentAuthorization(reference=intent.id, client_secret=intent.client_secret)

    async def void(self, reference: str, idempotency_key: str) -> None:
        await self._call(
            "void",
            lambda: self._client.payment_intents.cancel(
                reference, options={"idempotency_key": idempotency_key}
            ),
            reference=reference,
        )

    async def refund(
        self, reference: str, amount_minor_units: int, idempotency_key: str
    ) -> str:
        refund = await self._call(
            "refund",
            lambda: self._client.refunds.create(
                params={"payment_intent": reference, "amount": amount_minor_units},
                options={"idempotency_key": idempotency_key},
            ),
            reference=reference,
            amount_minor_units=amount_minor_units,
        )
        return refund.id


class StripeLedgerGateway(_StripeAdapter):
    """Settles net funds to the payee's connected account with a Transfer."""

    async def settle(
        self,
        destination_ref: str,
        net_minor_units: int,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
        source_reference: str | None = None,
    ) -> str:
        metadata = dict(metadata or {})
        params: dict[str, Any] = {
            "amount": net_minor_units,
            "currency": self._currency,
            "destination": destination_ref,
            "transfer_group": idempotency_key,
            "metadata": metadata,
        }
        if source_reference:
            params["source_transaction"] = source_reference

        transfer = await self._call(
            "settle",
            lambda: self._client.transfers.create(
                params=params, options={"idempotency_key": idempotency_key}
            ),
            destination=destination_ref,
            net_minor_units=net_minor_units,
            idempotency_key=idempotency_key,
        )
        return transfer.id

    async def find_settlement(self, idempotency_key: str) -> str | None:
        page = await self._call(
            "find_settlement",
            lambda: self._client.transfers.list(
                params={"transfer_group": idempotency_key, "limit": 1}
            ),
            idempotency_key=idempotency_key,
        )
        return page.data[0].id if page.data else None


class StripeOnboardingGateway(_StripeAdapter):
    """Creates Express connected accounts and their hosted onboarding links."""

    async def create_account(self, email: str, idempotency_key: str) -> str:
        params = {
            "type": "express",
            "email": email,
            "capabilities": {"transfers": {"requested": True}},
        }
        account = await self._call(
            "create_account",
            lambda: self._client.accounts.create(
                params=params, options={"idempotency_key": idempotency_key}
            ),
            idempotency_key=idempotency_key,
        )
        return account.id

    async def onboarding_link(self, account_reference: str, return_url: str) -> str:
        link = await self._call(
            "onboarding_link",
            lambda: self._client.account_links.create(
                params={
                    "account": account_reference,
                    "refresh_url": return_url,
                    "return_url": return_url,
                    "type": "account_onboarding",
                }
            ),
            account=account_reference,
        )
        return link.url


class StripeWebhookParser:
    """Verifies Stripe signatures and maps events onto the typed GatewayEvent set."""

    def __init__(self, webhook_secret: str) -> None:
        self._webhook_secret = webhook_secret

    def parse(self, payload: bytes, signature: str | None) -> GatewayEvent | None:
        """Return the typed event, or None for a known type that needs no action.

        Raises:
            ValidationError: Missing or invalid signature, malformed body.
            UnsupportedEventError: Event type outside the handled set.
        """
        if not signature:
            raise ValidationError("Missing Stripe-Signature header", field="Stripe-Signature")
        try:
            stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as exc:
            raise ValidationError("Invalid webhook signature", field="Stripe-Signature") from exc
        except ValueError as exc:
            raise ValidationError("Malformed webhook body") from exc
        return map_stripe_event(json.loads(payload))


def map_stripe_event(event: dict[str, Any]) -> GatewayEvent | None:
    """Translate a verified Stripe event dict into a domain event."""
    event_type = event.get("type", "")
    event_id = event.get("id")
    obj = (event.get("data") or {}).get("object") or {}
    if not event_id or not obj.get("id"):
        raise UnsupportedEventError(event_type or "unknown", "Event is missing id or object")

    if event_type == "payment_intent.succeeded":
        charge = obj.get("latest_charge")
        if isinstance(charge, dict):
            charge = charge.get("id")
        return Captured(
            event_id=event_id,
            reference=obj["id"],
            amount_minor_units=obj.get("amount_received") or obj.get("amount"),
            charge_reference=charge,
        )
    if event_type == "payment_intent.payment_failed":
        last_error = obj.get("last_payment_error") or {}
        return CaptureFailed(
            event_id=event_id,
            reference=obj["id"],
            reason=last_error.get("message"),
        )
    if event_type == "account.updated":
        if obj.get("charges_enabled") and obj.get("payouts_enabled"):
            return PayeeActivated(event_id=event_id, reference=obj["id"])
        return None
    raise UnsupportedEventError(event_type or "unknown")
