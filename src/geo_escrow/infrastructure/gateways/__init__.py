"""Gateway adapters — payment collection, settlement and webhook parsing.

Two implementations of the PaymentGateway, LedgerGateway and
OnboardingGateway ports:
    - Simulated*Gateway: in-process, fake references, for development and
      dry runs.
    - Stripe*Gateway: Stripe PaymentIntents, Refunds, Connect Transfers,
      accounts and account links.
"""

from geo_escrow.infrastructure.gateways.simulated import (
    SimulatedLedgerGateway,
    SimulatedOnboardingGateway,
    SimulatedPaymentGateway,
)
from geo_escrow.infrastructure.gateways.stripe_gateway import (
    StripeLedgerGateway,
    StripeOnboardingGateway,
    StripePaymentGateway,
    StripeWebhookParser,
)

__all__ = [
    "SimulatedLedgerGateway",
    "SimulatedOnboardingGateway",
    "SimulatedPaymentGateway",
    "StripeLedgerGateway",
    "StripeOnboardingGateway",
    "StripePaymentGateway",
    "StripeWebhookParser",
]
