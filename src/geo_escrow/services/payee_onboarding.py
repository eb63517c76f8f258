"""Payee onboarding: connects a payee to a settlement account.

A release can only settle once the payee's connected account exists and the
gateway reports it able to receive funds. Onboarding is the first half:

    1. Create the connected account (idempotent per principal) and record it
       in the payee directory, not yet onboarded.
    2. Hand back the gateway's hosted onboarding link.

The second half arrives asynchronously as a PayeeActivated webhook, which
the WebhookIngestor applies to the directory.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from geo_escrow.domain.enums import AuditEventType
from geo_escrow.domain.exceptions import AuthorizationError, ValidationError
from geo_escrow.logging_config import get_logger
from geo_escrow.services.escrow_engine import with_timeout

if TYPE_CHECKING:
    from geo_escrow.domain.ports import OnboardingGateway, PayeeDirectory, Principal
    from geo_escrow.services.audit import AuditLog

logger = get_logger(__name__)


@dataclass(frozen=True)
class OnboardingResult:
    principal_id: str
    destination_reference: str
    onboarded: bool
    onboarding_url: str | None


class PayeeOnboarding:
    """Registers payees and starts the gateway's account onboarding."""

    def __init__(
        self,
        directory: PayeeDirectory,
        gateway: OnboardingGateway,
        audit: AuditLog,
        *,
        default_return_url: str,
        gateway_timeout_seconds: float = 15.0,
    ) -> None:
        self._directory = directory
        self._gateway = gateway
        self._audit = audit
        self._default_return_url = default_return_url
        self._gateway_timeout = gateway_timeout_seconds

    async def onboard(self, payee: Principal, return_url: str | None = None) -> OnboardingResult:
        """Ensure ``payee`` has a connected account and return where to finish onboarding.

        Safe to call repeatedly: the existing account is reused and a fresh
        link is issued until the gateway reports the account active.

        Raises:
            ValidationError: The principal carries no email.
            AuthorizationError: The email belongs to another payee.
            UpstreamError: The gateway failed or timed out.
        """
        if not payee.email:
            raise ValidationError("An email is required to receive transfers", field="email")
        email = payee.email.lower()
        log = logger.bind(principal_id=payee.id)

        account = await self._directory.get_account(payee.id)
        if account is None:
            owner = await self._directory.get_account_by_email(email)
            if owner is not None and owner.principal_id != payee.id:
                raise AuthorizationError(
                    "This email is registered to another payee", code="EMAIL_TAKEN"
                )

        if account is None or account.destination_reference is None:
            destination = await with_timeout(
                self._gateway.create_account(email, idempotency_key=f"onboard:{payee.id}"),
                self._gateway_timeout,
                "account creation",
            )
            account = await self._directory.register(payee.id, email, destination)
            await self._audit.record(
                AuditEventType.PAYEE_REGISTERED,
                None,
                payee.id,
                destination_reference=account.destination_reference,
            )
            log.info("payee.onboarding_started", destination_reference=destination)

        if account.onboarded:
            return OnboardingResult(
                principal_id=payee.id,
                destination_reference=account.destination_reference,
                onboarded=True,
                onboarding_url=None,
            )

        url = await with_timeout(
            self._gateway.onboarding_link(
                account.destination_reference, return_url or self._default_return_url
            ),
            self._gateway_timeout,
            "onboarding link",
        )
        return OnboardingResult(
            principal_id=payee.id,
            destination_reference=account.destination_reference,
            onboarded=False,
            onboarding_url=url,
        )
