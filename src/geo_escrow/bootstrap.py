"""Composition root — builds the engine and its collaborators from Settings.

This is the only module that reads configuration on behalf of components:
the fee rate, timeouts, expiry policy and gateway mode are passed in
explicitly, so nothing below this layer depends on get_settings().
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from geo_escrow.domain.enums import ExpiryPolicy
from geo_escrow.infrastructure.database.stores import (
    SqlAuditSink,
    SqlDestinationResolver,
    SqlTransferStore,
)
from geo_escrow.infrastructure.gateways import (
    SimulatedLedgerGateway,
    SimulatedOnboardingGateway,
    SimulatedPaymentGateway,
    StripeLedgerGateway,
    StripeOnboardingGateway,
    StripePaymentGateway,
    StripeWebhookParser,
)
from geo_escrow.infrastructure.gateways.stripe_gateway import build_stripe_client
from geo_escrow.infrastructure.redis_client import RedisIdempotencyStore
from geo_escrow.logging_config import get_logger
from geo_escrow.services.escrow_engine import EscrowEngine, utc_now
from geo_escrow.services.expiry_sweeper import ExpirySweeper
from geo_escrow.services.payee_onboarding import PayeeOnboarding
from geo_escrow.services.webhook_ingestor import WebhookIngestor

if TYPE_CHECKING:
    import redis.asyncio as aioredis
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from geo_escrow.config import Settings
    from geo_escrow.domain.ports import LedgerGateway, OnboardingGateway, PaymentGateway

logger = get_logger(__name__)


@dataclass
class Components:
    """Everything the HTTP and MCP surfaces call into."""

    engine: EscrowEngine
    ingestor: WebhookIngestor
    onboarding: PayeeOnboarding
    sweeper: ExpirySweeper
    stripe_parser: StripeWebhookParser | None
    admin_principal_ids: frozenset[str]


def build_gateways(
    settings: Settings,
) -> tuple[PaymentGateway, LedgerGateway, OnboardingGateway]:
    if settings.gateway_mode == "stripe":
        if not settings.stripe_secret_key:
            raise RuntimeError("GATEWAY_MODE=stripe requires STRIPE_SECRET_KEY")
        client = build_stripe_client(
            settings.stripe_secret_key,
            timeout_seconds=settings.stripe_api_timeout_seconds,
            max_network_retries=settings.stripe_max_network_retries,
        )
        return (
            StripePaymentGateway(client, settings.currency),
            StripeLedgerGateway(client, settings.currency),
            StripeOnboardingGateway(client, settings.currency),
        )
    return SimulatedPaymentGateway(), SimulatedLedgerGateway(), SimulatedOnboardingGateway()


def build_components(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    redis: aioredis.Redis,
) -> Components:
    """Wire stores, gateways, engine, ingestor, onboarding and sweeper together."""
    store = SqlTransferStore(session_factory)
    resolver = SqlDestinationResolver(session_factory)
    payments, ledger, onboarding_gateway = build_gateways(settings)

    engine = EscrowEngine(
        store,
        SqlAuditSink(session_factory),
        payments,
        ledger,
        resolver,
        fee_rate_bps=settings.platform_fee_bps,
        currency=settings.currency,
        expiry_policy=ExpiryPolicy(settings.expiry_policy),
        claim_window_seconds=settings.claim_window_seconds,
        destination_lookup_timeout_seconds=settings.destination_lookup_timeout_seconds,
        gateway_timeout_seconds=settings.gateway_timeout_seconds,
        release_claim_ttl_seconds=settings.release_claim_ttl_seconds,
        clock=utc_now,
    )
    ingestor = WebhookIngestor(
        store,
        engine,
        resolver,
        RedisIdempotencyStore(redis, ttl_seconds=settings.redis_idempotency_ttl_seconds),
        clock=utc_now,
    )
    onboarding = PayeeOnboarding(
        resolver,
        onboarding_gateway,
        engine.audit,
        default_return_url=settings.payee_onboarding_return_url,
        gateway_timeout_seconds=settings.gateway_timeout_seconds,
    )
    stripe_parser = (
        StripeWebhookParser(settings.stripe_webhook_secret)
        if settings.stripe_webhook_secret
        else None
    )
    logger.info(
        "bootstrap.components_built",
        gateway_mode=settings.gateway_mode,
        fee_rate_bps=settings.platform_fee_bps,
        expiry_policy=settings.expiry_policy,
    )
    return Components(
        engine=engine,
        ingestor=ingestor,
        onboarding=onboarding,
        sweeper=ExpirySweeper(engine, settings.expiry_sweep_interval_seconds),
        stripe_parser=stripe_parser,
        admin_principal_ids=settings.admin_principal_id_set,
    )
