"""FastAPI dependency injection providers.

Route handlers get the engine, the webhook ingestor, payee onboarding and
the requesting principal through Depends(). Components live on ``app.state`` (set by the
lifespan, or swapped directly by tests).
"""

from __future__ import annotations

from fastapi import Header, Request

from geo_escrow.domain.exceptions import AuthorizationError
from geo_escrow.domain.ports import Principal
from geo_escrow.infrastructure.gateways.stripe_gateway import StripeWebhookParser
from geo_escrow.services.escrow_engine import EscrowEngine
from geo_escrow.services.payee_onboarding import PayeeOnboarding
from geo_escrow.services.webhook_ingestor import WebhookIngestor


def get_engine(request: Request) -> EscrowEngine:
    """Provide the EscrowEngine built at startup."""
    return request.app.state.engine


def get_ingestor(request: Request) -> WebhookIngestor:
    """Provide the WebhookIngestor built at startup."""
    return request.app.state.ingestor


def get_onboarding(request: Request) -> PayeeOnboarding:
    """Provide the PayeeOnboarding service built at startup."""
    return request.app.state.onboarding


def get_stripe_parser(request: Request) -> StripeWebhookParser | None:
    return getattr(request.app.state, "stripe_parser", None)


def get_principal(
    request: Request,
    x_principal_id: str | None = Header(default=None),
    x_principal_email: str | None = Header(default=None),
) -> Principal:
    """Identity asserted by the upstream authentication layer.

    Raises:
        AuthorizationError: No principal header on the request.
    """
    if not x_principal_id:
        raise AuthorizationError("Authentication required", code="UNAUTHENTICATED")
    admins: frozenset[str] = getattr(request.app.state, "admin_principal_ids", frozenset())
    return Principal(
        id=x_principal_id,
        email=x_principal_email.lower() if x_principal_email else None,
        is_admin=x_principal_id in admins,
    )
