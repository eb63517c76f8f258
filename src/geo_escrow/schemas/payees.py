"""Pydantic schemas for payee onboarding."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from geo_escrow.services.payee_onboarding import OnboardingResult


class PayeeOnboardingRequest(BaseModel):
    return_url: str | None = Field(
        default=None,
        max_length=2048,
        pattern=r"^https?://",
        description="Where the gateway sends the payee after onboarding",
    )


class PayeeOnboardingResponse(BaseModel):
    principal_id: str
    destination_reference: str
    onboarded: bool
    onboarding_url: str | None = Field(
        default=None, description="Hosted onboarding page; null once the account is active"
    )

    @classmethod
    def from_result(cls, result: OnboardingResult) -> PayeeOnboardingResponse:
        return cls(
            principal_id=result.principal_id,
            destination_reference=result.destination_reference,
            onboarded=result.onboarded,
            onboarding_url=result.onboarding_url,
        )
