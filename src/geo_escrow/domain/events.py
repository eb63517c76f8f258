"""Typed gateway events consumed by the WebhookIngestor.

Raw webhook payloads are validated into exactly one of these at the HTTP
boundary (schemas/webhooks.py, infrastructure/gateways/stripe_gateway.py).
Anything else is rejected there; the ingestor only ever sees this closed set.
"""

from __future__ import annotations

from dataclasses import dataclass

from geo_escrow.domain.enums import GatewayEventKind


@dataclass(frozen=True)
class Captured:
    """Funds for ``reference`` (the payment reference) were captured.

    ``charge_reference`` is the gateway charge backing the capture; settlement
    draws on it as its source.
    """

    event_id: str
    reference: str
    amount_minor_units: int | None = None
    charge_reference: str | None = None

    kind = GatewayEventKind.CAPTURED


@dataclass(frozen=True)
class CaptureFailed:
    """Capture for ``reference`` failed permanently."""

    event_id: str
    reference: str
    reason: str | None = None

    kind = GatewayEventKind.CAPTURE_FAILED


@dataclass(frozen=True)
class PayeeActivated:
    """The connected account ``reference`` can now receive settlements."""

    event_id: str
    reference: str

    kind = GatewayEventKind.PAYEE_ACTIVATED


GatewayEvent = Captured | CaptureFailed | PayeeActivated
