"""MCP Tool definitions for Geo Escrow.

These tools expose the escrow engine via the Model Context Protocol, so
agents can deposit, release and inspect transfers programmatically.

Tools:
    - create_transfer: Deposit funds for a payee, with optional time-lock / geofence
    - release_transfer: Release held funds as the payee
    - check_status: Current status and allowed next actions
    - cancel_transfer: Cancel and return funds to the payer
    - onboard_payee: Connect a settlement account to receive transfers

The MCP server is mounted into FastAPI at /mcp via app.mount(). Tools call
the same EscrowEngine instance as the REST routes; the lifespan registers it
with ``bind_engine``. The caller's identity is passed explicitly, as the
upstream authentication layer vouches for it.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from mcp.server.fastmcp import FastMCP

from geo_escrow.domain.exceptions import EscrowError, ValidationError
from geo_escrow.domain.geo import CircleFence, GeoPoint, PolygonFence
from geo_escrow.domain.ports import Principal
from geo_escrow.logging_config import get_logger
from geo_escrow.services.escrow_engine import EscrowEngine
from geo_escrow.services.payee_onboarding import PayeeOnboarding

logger = get_logger(__name__)

mcp = FastMCP(
    "Geo Escrow",
    json_response=True,
)

_engine: EscrowEngine | None = None
_onboarding: PayeeOnboarding | None = None
_admin_ids: frozenset[str] = frozenset()


def bind_engine(
    engine: EscrowEngine | None,
    admin_principal_ids: frozenset[str] = frozenset(),
    onboarding: PayeeOnboarding | None = None,
) -> None:
    """Register the services the tools call into (lifespan startup / shutdown)."""
    global _engine, _onboarding, _admin_ids
    _engine = engine
    _onboarding = onboarding
    _admin_ids = admin_principal_ids


def _get_engine() -> EscrowEngine:
    if _engine is None:
        raise RuntimeError("Escrow engine not initialized. Call bind_engine() first.")
    return _engine


def _get_onboarding() -> PayeeOnboarding:
    if _onboarding is None:
        raise RuntimeError("Payee onboarding not initialized. Call bind_engine() first.")
    return _onboarding


def _principal(principal_id: str, principal_email: str = "") -> Principal:
    if not principal_id:
        raise ValidationError("principal_id is required", field="principal_id")
    return Principal(
        id=principal_id,
        email=principal_email.lower() or None,
        is_admin=principal_id in _admin_ids,
    )


def _parse_id(transfer_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(transfer_id)
    except ValueError as exc:
        raise ValidationError("transfer_id must be a UUID", field="transfer_id") from exc


def _error(tool: str, exc: Exception) -> dict[str, Any]:
    if isinstance(exc, EscrowError):
        logger.warning(f"mcp.{tool}.rejected", code=exc.code)
        return exc.to_dict()
    logger.exception(f"mcp.{tool}.error")
    return {"error": "INTERNAL_ERROR", "message": str(exc), "details": {}}


@mcp.tool()
async def create_transfer(
    principal_id: str,
    payee_identifier: str,
    amount_minor_units: int,
    description: str = "",
    release_not_before: str = "",
    center_lat: float | None = None,
    center_lng: float | None = None,
    radius_m: float | None = None,
    polygon: list[dict[str, float]] | None = None,
) -> dict:
    """Deposit funds for a payee.

    Args:
        principal_id: Your principal id (the payer).
        payee_identifier: Recipient email or principal id.
        amount_minor_units: Amount in cents.
        description: Optional note for the recipient.
        release_not_before: Optional ISO-8601 instant with timezone; release is denied before it.
        center_lat: Circle geofence center latitude.
        center_lng: Circle geofence center longitude.
        radius_m: Circle geofence radius in meters.
        polygon: Polygon geofence as [{"lat": .., "lng": ..}, ...] (>= 3 vertices).

    Returns:
        The transfer id, status, client secret for confirming the payment and the fee preview.
    """
    try:
        fence = None
        if polygon and radius_m is not None:
            raise ValidationError("Use either a circle or a polygon geofence", field="geofence")
        if polygon:
            fence = PolygonFence(
                vertices=tuple(GeoPoint(lat=float(v["lat"]), lng=float(v["lng"])) for v in polygon)
            )
        elif radius_m is not None:
            if center_lat is None or center_lng is None:
                raise ValidationError("A circle geofence needs a center", field="geofence")
            fence = CircleFence(center=GeoPoint(lat=center_lat, lng=center_lng), radius_m=radius_m)

        not_before = None
        if release_not_before:
            try:
                not_before = datetime.fromisoformat(release_not_before)
            except ValueError as exc:
                raise ValidationError(
                    "release_not_before must be ISO-8601", field="release_not_before"
                ) from exc

        created = await _get_engine().create_transfer(
            _principal(principal_id),
            payee_identifier,
            amount_minor_units,
            description=description or None,
            release_not_before=not_before,
            geofence=fence,
        )
        return {
            "transfer_id": str(created.transfer.id),
            "status": created.transfer.status,
            "client_secret": created.client_secret,
            "platform_fee_minor_units": created.fee_preview.fee_minor_units,
            "net_minor_units": created.fee_preview.net_minor_units,
            "message": "Transfer created. Confirm the payment to move the funds into escrow.",
        }
    except Exception as exc:
        return _error("create_transfer", exc)


@mcp.tool()
async def release_transfer(
    transfer_id: str,
    principal_id: str,
    principal_email: str = "",
    lat: float | None = None,
    lng: float | None = None,
) -> dict:
    """Release held funds to yourself as the payee.

    Args:
        transfer_id: UUID of the transfer.
        principal_id: Your principal id.
        principal_email: Your email, matched case-insensitively against the payee.
        lat: Your current latitude (required for geofenced transfers).
        lng: Your current longitude (required for geofenced transfers).

    Returns:
        Settlement details, or the reason the release was denied.
    """
    try:
        location = GeoPoint(lat=lat, lng=lng) if lat is not None and lng is not None else None
        outcome = await _get_engine().release(
            _parse_id(transfer_id),
            _principal(principal_id, principal_email),
            location=location,
        )
        return {
            "transfer_id": str(outcome.transfer_id),
            "status": "released",
            "settlement_reference": outcome.settlement_reference,
            "platform_fee_minor_units": outcome.fee_minor_units,
            "net_minor_units": outcome.net_minor_units,
            "message": "Funds released.",
        }
    except Exception as exc:
        return _error("release_transfer", exc)


@mcp.tool()
async def check_status(transfer_id: str) -> dict:
    """Check the current status of a transfer.

    Args:
        transfer_id: UUID of the transfer.

    Returns:
        Current status, allowed next actions and remaining time-lock seconds.
    """
    try:
        return await _get_engine().get_status(_parse_id(transfer_id))
    except Exception as exc:
        return _error("check_status", exc)


@mcp.tool()
async def cancel_transfer(
    transfer_id: str,
    principal_id: str,
    reason: str = "",
) -> dict:
    """Cancel a transfer and return the funds to the payer.

    Args:
        transfer_id: UUID of the transfer.
        principal_id: Your principal id (the payer, or an administrator).
        reason: Why the transfer is canceled.

    Returns:
        Updated transfer status.
    """
    try:
        transfer = await _get_engine().cancel(
            _parse_id(transfer_id), _principal(principal_id), reason=reason or None
        )
        return {
            "transfer_id": str(transfer.id),
            "status": transfer.status,
            "refund_reference": transfer.refund_reference,
            "message": f"Transfer is now {transfer.status}.",
        }
    except Exception as exc:
        return _error("cancel_transfer", exc)


@mcp.tool()
async def onboard_payee(
    principal_id: str,
    principal_email: str,
    return_url: str = "",
) -> dict:
    """Connect a settlement account so transfers to you can be released.

    Call again until ``onboarded`` is true; each call returns a fresh link.

    Args:
        principal_id: Your principal id.
        principal_email: Your email; transfers addressed to it become yours.
        return_url: Where to send you after the hosted onboarding page.

    Returns:
        The connected account reference and the onboarding link.
    """
    try:
        result = await _get_onboarding().onboard(
            _principal(principal_id, principal_email), return_url=return_url or None
        )
        return {
            "principal_id": result.principal_id,
            "destination_reference": result.destination_reference,
            "onboarded": result.onboarded,
            "onboarding_url": result.onboarding_url,
            "message": (
                "Account active." if result.onboarded else "Finish onboarding at onboarding_url."
            ),
        }
    except Exception as exc:
        return _error("onboard_payee", exc)
