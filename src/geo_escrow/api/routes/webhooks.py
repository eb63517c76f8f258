"""Gateway webhook routes.

Routes:
    POST /api/v1/webhooks/gateway — generic typed envelope (simulated mode, tests)
    POST /api/v1/webhooks/stripe  — Stripe events, signature verified

Both hand a typed event to the WebhookIngestor. A 2xx tells the gateway to
stop redelivering, so duplicates and unmatched references still answer 200.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Request

from geo_escrow.api.deps import get_ingestor, get_stripe_parser
from geo_escrow.domain.enums import IngestOutcome
from geo_escrow.domain.exceptions import ValidationError
from geo_escrow.infrastructure.gateways.stripe_gateway import StripeWebhookParser
from geo_escrow.logging_config import get_logger
from geo_escrow.schemas.webhooks import WebhookAck, parse_gateway_event
from geo_escrow.services.webhook_ingestor import WebhookIngestor

router = APIRouter(prefix="/api/v1/webhooks", tags=["Webhooks"])
logger = get_logger(__name__)


@router.post("/gateway", response_model=WebhookAck, summary="Receive a gateway event")
async def receive_gateway_event(
    request: Request,
    ingestor: WebhookIngestor = Depends(get_ingestor),
) -> WebhookAck:
    event = parse_gateway_event(await request.body())
    outcome = await ingestor.ingest(event)
    return WebhookAck(outcome=outcome.value)


@router.post("/stripe", response_model=WebhookAck, summary="Receive a Stripe event")
async def receive_stripe_event(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    parser: StripeWebhookParser | None = Depends(get_stripe_parser),
    ingestor: WebhookIngestor = Depends(get_ingestor),
) -> WebhookAck:
    if parser is None:
        raise ValidationError("Stripe webhooks are not configured")
    event = parser.parse(await request.body(), stripe_signature)
    if event is None:
        logger.debug("webhook.ignored")
        return WebhookAck(outcome=IngestOutcome.NOOP.value)
    outcome = await ingestor.ingest(event)
    return WebhookAck(outcome=outcome.value)
