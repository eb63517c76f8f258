"""Simulated gateways — settle in-process with generated references.

Used when GATEWAY_MODE=simulated (the development default) so the whole
release protocol can be exercised without a processor account. Both honour
idempotency keys exactly like the real gateway: replaying a key returns the
reference produced the first time and moves no additional money.

Captures are not simulated here: in simulated mode the gateway's async
confirmation is posted to /api/v1/webhooks/gateway by whoever drives the
dry run.
"""

from __future__ import annotations

import uuid

from geo_escrow.domain.ports import PaymentAuthorization
from geo_escrow.logging_config import get_logger

logger = get_logger(__name__)


class SimulatedPaymentGateway:
    """PaymentGateway that records authorizations, voids and refunds in memory."""

    def __init__(self) -> None:
        self.authorizations: dict[str, PaymentAuthorization] = {}
        self.amounts: dict[str, int] = {}
        self.voided: set[str] = set()
        self.refunds: dict[str, str] = {}

    async def authorize(
        self,
        amount_minor_units: int,
        payer_ref: str,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> PaymentAuthorization:
        if idempotency_key in self.authorizations:
            return self.authorizations[idempotency_key]

        reference = f"pi_sim_{uuid.uuid4().hex[:24]}"
        authorization = PaymentAuthorization(
            reference=reference,
            client_secret=f"{reference}_secret_{uuid.uuid4().hex[:16]}",
        )
        self.authorizations[idempotency_key] = authorization
        self.amounts[reference] = amount_minor_units
        logger.info(
            "payment.authorized",
            reference=reference,
            amount_minor_units=amount_minor_units,
            payer=payer_ref,
            simulated=True,
        )
        return authorization

    async def void(self, reference: str, idempotency_key: str) -> None:
        self.voided.add(reference)
        logger.info("payment.voided", reference=reference, simulated=True)

    async def refund(
        self, reference: str, amount_minor_units: int, idempotency_key: str
    ) -> str:
        if idempotency_key not in self.refunds:
            self.refunds[idempotency_key] = f"re_sim_{uuid.uuid4().hex[:24]}"
            logger.info(
                "payment.refunded",
                reference=reference,
                refund_reference=self.refunds[idempotency_key],
                amount_minor_units=amount_minor_units,
                simulated=True,
            )
        return self.refunds[idempotency_key]


class SimulatedLedgerGateway:
    """LedgerGateway that records settlements in memory, idempotent by key."""

    def __init__(self) -> None:
        self.settlements: dict[str, str] = {}
        self.sources: dict[str, str | None] = {}
        self.settle_calls = 0

    async def settle(
        self,
        destination_ref: str,
        net_minor_units: int,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
        source_reference: str | None = None,
    ) -> str:
        self.settle_calls += 1
        if idempotency_key in self.settlements:
            return self.settlements[idempotency_key]

        reference = f"tr_sim_{uuid.uuid4().hex[:24]}"
        self.settlements[idempotency_key] = reference
        self.sources[idempotency_key] = source_reference
        logger.info(
            "ledger.settled",
            settlement_reference=reference,
            destination=destination_ref,
            net_minor_units=net_minor_units,
            source_reference=source_reference,
            simulated=True,
        )
        return reference

    async def find_settlement(self, idempotency_key: str) -> str | None:
        return self.settlements.get(idempotency_key)


class SimulatedOnboardingGateway:
    """OnboardingGateway that issues fake connected accounts and links.

    Activation is not automatic: post a ``payee_activated`` event for the
    account to /api/v1/webhooks/gateway to finish onboarding.
    """

    def __init__(self) -> None:
        self.accounts: dict[str, str] = {}

    async def create_account(self, email: str, idempotency_key: str) -> str:
        if idempotency_key not in self.accounts:
            self.accounts[idempotency_key] = f"acct_sim_{uuid.uuid4().hex[:16]}"
            logger.info(
                "onboarding.account_created",
                destination_reference=self.accounts[idempotency_key],
                simulated=True,
            )
        return self.accounts[idempotency_key]

    async def onboarding_link(self, account_reference: str, return_url: str) -> str:
        return f"{return_url}?simulated_account={account_reference}"
