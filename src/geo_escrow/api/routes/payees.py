"""Payee REST API routes.

Routes:
    POST   /api/v1/payees/onboarding  — Register as a payee and get the onboarding link
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from geo_escrow.api.deps import get_onboarding, get_principal
from geo_escrow.domain.ports import Principal
from geo_escrow.schemas.payees import PayeeOnboardingRequest, PayeeOnboardingResponse
from geo_escrow.services.payee_onboarding import PayeeOnboarding

router = APIRouter(prefix="/api/v1/payees", tags=["Payees"])


@router.post(
    "/onboarding",
    response_model=PayeeOnboardingResponse,
    summary="Connect a settlement account",
)
async def start_onboarding(
    request: PayeeOnboardingRequest | None = None,
    payee: Principal = Depends(get_principal),
    onboarding: PayeeOnboarding = Depends(get_onboarding),
) -> PayeeOnboardingResponse:
    """Create the caller's connected account if needed and return where to finish onboarding.

    Releases to this payee settle once the gateway reports the account active.
    """
    result = await onboarding.onboard(payee, return_url=request.return_url if request else None)
    return PayeeOnboardingResponse.from_result(result)
