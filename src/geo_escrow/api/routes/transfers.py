"""Transfer REST API routes.

These endpoints provide the HTTP interface for depositing funds, releasing
them to the payee, canceling, and inspecting status and audit trail. The
MCP tools in mcp_server/tools.py call the same engine.

Routes:
    POST   /api/v1/transfers               — Create and authorize a transfer
    GET    /api/v1/transfers/{id}          — Get transfer details
    GET    /api/v1/transfers/{id}/status   — Lightweight status check
    GET    /api/v1/transfers/{id}/audit    — Audit trail
    POST   /api/v1/transfers/{id}/release  — Release to the payee
    POST   /api/v1/transfers/{id}/cancel   — Cancel and return to the payer
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from geo_escrow.api.deps import get_engine, get_principal
from geo_escrow.domain.ports import Principal
from geo_escrow.schemas.transfers import (
    AuditEntryResponse,
    CancelRequest,
    CreateTransferRequest,
    CreateTransferResponse,
    ReleaseRequest,
    ReleaseResponse,
    TransferResponse,
    TransferStatusResponse,
)
from geo_escrow.services.escrow_engine import EscrowEngine

router = APIRouter(prefix="/api/v1/transfers", tags=["Transfers"])


@router.post(
    "",
    response_model=CreateTransferResponse,
    status_code=201,
    summary="Deposit funds for a payee",
)
async def create_transfer(
    request: CreateTransferRequest,
    payer: Principal = Depends(get_principal),
    engine: EscrowEngine = Depends(get_engine),
) -> CreateTransferResponse:
    """Create a transfer and authorize the payment. The transfer is ``funding`` until captured."""
    created = await engine.create_transfer(
        payer,
        request.payee_identifier,
        request.amount_minor_units,
        description=request.description,
        release_not_before=request.release_not_before,
        geofence=request.geofence.to_domain() if request.geofence else None,
    )
    return CreateTransferResponse.from_created(created)


@router.get("/{transfer_id}", response_model=TransferResponse, summary="Get transfer details")
async def get_transfer(
    transfer_id: uuid.UUID,
    _: Principal = Depends(get_principal),
    engine: EscrowEngine = Depends(get_engine),
) -> TransferResponse:
    return TransferResponse.from_transfer(await engine.get_transfer(transfer_id))


@router.get(
    "/{transfer_id}/status",
    response_model=TransferStatusResponse,
    summary="Lightweight status check",
)
async def get_transfer_status(
    transfer_id: uuid.UUID,
    _: Principal = Depends(get_principal),
    engine: EscrowEngine = Depends(get_engine),
) -> TransferStatusResponse:
    return TransferStatusResponse(**await engine.get_status(transfer_id))


@router.get(
    "/{transfer_id}/audit",
    response_model=list[AuditEntryResponse],
    summary="Audit trail",
)
async def get_audit_trail(
    transfer_id: uuid.UUID,
    _: Principal = Depends(get_principal),
    engine: EscrowEngine = Depends(get_engine),
) -> list[AuditEntryResponse]:
    records = await engine.get_audit_trail(transfer_id)
    return [AuditEntryResponse.from_record(r) for r in records]


@router.post(
    "/{transfer_id}/release",
    response_model=ReleaseResponse,
    summary="Release held funds to the payee",
)
async def release_transfer(
    transfer_id: uuid.UUID,
    request: ReleaseRequest | None = None,
    requester: Principal = Depends(get_principal),
    engine: EscrowEngine = Depends(get_engine),
) -> ReleaseResponse:
    """Evaluate the release conditions and settle. Denials come back as 400/403/409."""
    outcome = await engine.release(
        transfer_id,
        requester,
        location=request.location.to_domain() if request and request.location else None,
    )
    return ReleaseResponse.from_outcome(outcome)


@router.post(
    "/{transfer_id}/cancel",
    response_model=TransferResponse,
    summary="Cancel a transfer",
)
async def cancel_transfer(
    transfer_id: uuid.UUID,
    request: CancelRequest | None = None,
    requester: Principal = Depends(get_principal),
    engine: EscrowEngine = Depends(get_engine),
) -> TransferResponse:
    transfer = await engine.cancel(transfer_id, requester, reason=request.reason if request else None)
    return TransferResponse.from_transfer(transfer)
