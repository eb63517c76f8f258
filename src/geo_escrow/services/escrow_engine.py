"""Escrow Engine — the conditional release protocol.

This is the application layer that coordinates between:
    - Domain state machine (transition guard)
    - TransferStore (compare-and-swap persistence)
    - Payment / Ledger gateways and the destination resolver
    - Audit log (forensic trail)

Both REST routes and MCP tools call into this engine, so every business
rule lives in exactly one place. The engine never reads global settings;
bootstrap.py hands it the fee rate, timeouts and expiry policy.

Release is evaluated in a fixed order and stops at the first failure:

    1. status is held                 -> StateConflictError
    2. requester is the payee         -> AuthorizationError       (audited)
    3. time-lock elapsed              -> TimeLockActiveError      (audited)
    4. inside the geofence            -> OutsideGeofenceError     (audited)
    5. destination resolves           -> UpstreamError            (audited)
    6. release claim taken            -> StateConflictError       (audited)
    7. fee split
    8. ledger settle (idempotent key) -> UpstreamError            (audited)
    9. held -> released CAS           -> InvariantViolationError  (audited)

Only the attempt holding the release claim ever calls the ledger, so two
concurrent releases produce one settlement and one StateConflictError.
"""

from __future__ import annotations

import asyncio
import math
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from statemachine.exceptions import TransitionNotAllowed

from geo_escrow.domain.enums import AuditEventType, ExpiryPolicy, TransferStatus
from geo_escrow.domain.exceptions import (
    AuthorizationError,
    DestinationNotConfiguredError,
    GatewayUnavailableError,
    InvariantViolationError,
    OutsideGeofenceError,
    StateConflictError,
    TimeLockActiveError,
    TransferNotFoundError,
    UpstreamError,
    ValidationError,
)
from geo_escrow.domain.fees import FeeSplit, split
from geo_escrow.domain.ports import ANY_CLAIM
from geo_escrow.domain.state_machine import TransferStateMachine, validate_transition
from geo_escrow.infrastructure.database.orm_models import Transfer
from geo_escrow.logging_config import get_logger
from geo_escrow.services.audit import SYSTEM_ACTOR, AuditLog

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from geo_escrow.domain.geo import Geofence, GeoPoint
    from geo_escrow.domain.ports import (
        AuditRecord,
        AuditSink,
        DestinationResolver,
        LedgerGateway,
        PaymentGateway,
        Principal,
        TransferStore,
    )

logger = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite hands timestamps back naive)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def settlement_key(transfer_id: uuid.UUID) -> str:
    return f"release:{transfer_id}"


async def with_timeout(awaitable: Awaitable[Any], timeout: float, operation: str) -> Any:
    """Await a gateway or resolver call, failing transient on timeout."""
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except TimeoutError as exc:
        raise GatewayUnavailableError(f"{operation} timed out after {timeout}s") from exc


@dataclass(frozen=True)
class CreatedTransfer:
    """A newly created transfer plus what the payer needs to confirm payment."""

    transfer: Transfer
    client_secret: str | None
    fee_preview: FeeSplit


@dataclass(frozen=True)
class ReleaseOutcome:
    """A successful settlement to the payee."""

    transfer_id: uuid.UUID
    settlement_reference: str
    gross_minor_units: int
    fee_minor_units: int
    net_minor_units: int
    released_at: datetime


class EscrowEngine:
    """Creates, releases, cancels and expires escrowed transfers."""

    def __init__(
        self,
        store: TransferStore,
        audit_sink: AuditSink,
        payment_gateway: PaymentGateway,
        ledger_gateway: LedgerGateway,
        resolver: DestinationResolver,
        *,
        fee_rate_bps: int,
        currency: str = "usd",
        expiry_policy: ExpiryPolicy = ExpiryPolicy.FREEZE,
        claim_window_seconds: int = 7 * 24 * 3600,
        destination_lookup_timeout_seconds: float = 5.0,
        gateway_timeout_seconds: float = 15.0,
        release_claim_ttl_seconds: int = 300,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if not 0 <= fee_rate_bps <= 10_000:
            raise ValueError("fee_rate_bps must be between 0 and 10000")
        self._store = store
        self._payments = payment_gateway
        self._ledger = ledger_gateway
        self._resolver = resolver
        self._fee_rate_bps = fee_rate_bps
        self._currency = currency
        self._expiry_policy = ExpiryPolicy(expiry_policy)
        self._claim_window = timedelta(seconds=claim_window_seconds)
        self._lookup_timeout = destination_lookup_timeout_seconds
        self._gateway_timeout = gateway_timeout_seconds
        self._claim_ttl = timedelta(seconds=release_claim_ttl_seconds)
        self._clock = clock
        self.audit = AuditLog(audit_sink, clock)

    @property
    def fee_rate_bps(self) -> int:
        return self._fee_rate_bps

    # ------------------------------------------------------------------
    # Creation & funding
    # ------------------------------------------------------------------

    async def create_transfer(
        self,
        payer: Principal,
        payee_identifier: str,
        amount_minor_units: int,
        *,
        description: str | None = None,
        release_not_before: datetime | None = None,
        geofence: Geofence | None = None,
    ) -> CreatedTransfer:
        """Persist a transfer in ``created`` and ask the gateway to authorize funding.

        On success the transfer is in ``funding`` and waits for the gateway's
        capture webhook. An authorization failure moves it to ``failed``.
        """
        if isinstance(amount_minor_units, bool) or not isinstance(amount_minor_units, int):
            raise ValidationError("Amount must be an integer", field="amount_minor_units")
        if amount_minor_units <= 0:
            raise ValidationError("Amount must be positive", field="amount_minor_units")
        payee_identifier = (payee_identifier or "").strip()
        if not payee_identifier:
            raise ValidationError("Recipient is required", field="payee_identifier")
        if "@" in payee_identifier:
            payee_identifier = payee_identifier.lower()
        if release_not_before is not None and release_not_before.tzinfo is None:
            raise ValidationError(
                "release_not_before must carry a timezone", field="release_not_before"
            )
        if geofence is not None:
            try:
                geofence.validate()
            except ValueError as exc:
                raise ValidationError(str(exc), field="geofence") from exc

        fee_preview = split(amount_minor_units, self._fee_rate_bps)
        payee_id = await self._lookup_payee_principal(payee_identifier)

        transfer = Transfer(
            id=uuid.uuid4(),
            payer_id=payer.id,
            payee_identifier=payee_identifier,
            payee_id=payee_id,
            amount_minor_units=amount_minor_units,
            currency=self._currency,
            description=description,
            release_not_before=release_not_before,
            status=TransferStatus.CREATED.value,
            created_at=self._clock(),
        )
        transfer.apply_geofence(geofence)
        transfer = await self._store.create(transfer)
        await self.audit.record(
            AuditEventType.TRANSFER_CREATED,
            transfer.id,
            payer.id,
            amount_minor_units=amount_minor_units,
            payee=payee_identifier,
            release_not_before=release_not_before.isoformat() if release_not_before else None,
            geofence=geofence.to_dict() if geofence else None,
        )
        logger.info(
            "escrow.created",
            transfer_id=str(transfer.id),
            amount_minor_units=amount_minor_units,
            has_time_lock=release_not_before is not None,
            geofence=geofence.kind if geofence else None,
        )

        self.guard_transition(transfer.status, "submit")
        try:
            authorization = await with_timeout(
                self._payments.authorize(
                    amount_minor_units,
                    payer.id,
                    idempotency_key=f"authorize:{transfer.id}",
                    metadata={
                        "transfer_id": str(transfer.id),
                        "payer_id": payer.id,
                        "platform_fee_minor_units": str(fee_preview.fee_minor_units),
                        "net_minor_units": str(fee_preview.net_minor_units),
                    },
                ),
                self._gateway_timeout,
                "payment authorization",
            )
        except UpstreamError as exc:
            await self._store.conditional_update_status(
                transfer.id,
                TransferStatus.CREATED,
                TransferStatus.FAILED,
                resolved_at=self._clock(),
            )
            await self.audit.record(
                AuditEventType.FUNDING_AUTHORIZATION_FAILED,
                transfer.id,
                payer.id,
                error=exc.code,
                reason=exc.message,
            )
            logger.warning("escrow.authorization_failed", transfer_id=str(transfer.id), error=exc.code)
            raise

        swapped = await self._store.conditional_update_status(
            transfer.id,
            TransferStatus.CREATED,
            TransferStatus.FUNDING,
            payment_reference=authorization.reference,
        )
        if not swapped:
            # Canceled while the gateway was authorizing.
            current = await self._get_or_raise(transfer.id)
            await self._void(authorization.reference, transfer.id)
            raise StateConflictError(current.status, "submit")

        await self.audit.record(
            AuditEventType.FUNDING_AUTHORIZED,
            transfer.id,
            payer.id,
            payment_reference=authorization.reference,
        )
        return CreatedTransfer(
            transfer=await self._get_or_raise(transfer.id),
            client_secret=authorization.client_secret,
            fee_preview=fee_preview,
        )

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    async def release(
        self,
        transfer_id: uuid.UUID,
        requester: Principal,
        location: GeoPoint | None = None,
    ) -> ReleaseOutcome:
        """Settle a held transfer to its payee if every release condition holds."""
        transfer = await self._get_or_raise(transfer_id)
        log = logger.bind(transfer_id=str(transfer_id), requester=requester.id)

        # 1. Status
        if transfer.status != TransferStatus.HELD.value:
            raise StateConflictError(transfer.status, "release")

        # 2. Payee authorization
        if not self._is_payee(transfer, requester):
            await self.audit.record(
                AuditEventType.AUTHORIZATION_DENIED,
                transfer.id,
                requester.id,
                operation="release",
            )
            log.info("escrow.release_denied", reason="not_payee")
            raise AuthorizationError("Only the recipient can release these funds", code="NOT_PAYEE")

        # 3. Time-lock
        now = self._clock()
        not_before = as_utc(transfer.release_not_before)
        if not_before is not None and now < not_before:
            remaining = math.ceil((not_before - now).total_seconds())
            await self.audit.record(
                AuditEventType.TIME_LOCK_DENIED,
                transfer.id,
                requester.id,
                release_not_before=not_before.isoformat(),
                remaining_seconds=remaining,
            )
            log.info("escrow.release_denied", reason="time_lock", remaining_seconds=remaining)
            raise TimeLockActiveError(not_before.isoformat(), remaining)

        # 4. Geofence
        fence = transfer.geofence
        if fence is not None:
            if location is None:
                raise ValidationError("Location is required to release this transfer", field="location")
            try:
                location.validate()
            except ValueError as exc:
                raise ValidationError(str(exc), field="location") from exc
            check = fence.check(location)
            if not check.inside:
                await self.audit.record(
                    AuditEventType.VERIFICATION_FAILED,
                    transfer.id,
                    requester.id,
                    **check.measurements,
                )
                log.info("escrow.release_denied", reason="outside_geofence", **check.measurements)
                raise OutsideGeofenceError(check.measurements)
            await self.audit.record(
                AuditEventType.VERIFICATION_SUCCEEDED,
                transfer.id,
                requester.id,
                **check.measurements,
            )

        # 5. Destination
        identifier = transfer.payee_id or transfer.payee_identifier
        try:
            destination = await with_timeout(
                self._resolver.resolve(identifier),
                self._lookup_timeout,
                "destination lookup",
            )
            if destination is None:
                raise DestinationNotConfiguredError(transfer.payee_identifier)
        except UpstreamError as exc:
            await self._audit_release_failed(transfer, requester, exc)
            log.warning("escrow.destination_unresolved", error=exc.code)
            raise

        # 6. Release claim
        attempt_id = uuid.uuid4().hex
        taking_over = transfer.release_attempt_id is not None
        claimed = await self._store.claim_release(
            transfer.id, attempt_id, now, stale_before=now - self._claim_ttl
        )
        if not claimed:
            current = await self._get_or_raise(transfer.id)
            await self.audit.record(
                AuditEventType.RELEASE_CONFLICT,
                transfer.id,
                requester.id,
                status=current.status,
            )
            log.info("escrow.release_conflict", status=current.status)
            raise StateConflictError(
                current.status,
                "release",
                message=(
                    "Another release of this transfer is in progress"
                    if current.status == TransferStatus.HELD.value
                    else None
                ),
            )

        # 7. Fee split
        fees = split(transfer.amount_minor_units, self._fee_rate_bps)

        # 8. Settlement
        key = settlement_key(transfer.id)
        try:
            reference = None
            if taking_over:
                reference = await with_timeout(
                    self._ledger.find_settlement(key),
                    self._gateway_timeout,
                    "settlement lookup",
                )
            if reference is None:
                reference = await with_timeout(
                    self._ledger.settle(
                        destination,
                        fees.net_minor_units,
                        idempotency_key=key,
                        metadata={
                            "transfer_id": str(transfer.id),
                            "payment_reference": transfer.payment_reference or "",
                        },
                        source_reference=transfer.charge_reference,
                    ),
                    self._gateway_timeout,
                    "settlement",
                )
        except UpstreamError as exc:
            await self._store.release_claim(transfer.id, attempt_id)
            await self._audit_release_failed(transfer, requester, exc)
            log.warning("gateway.settle_failed", error=exc.code, transient=exc.transient)
            raise

        # 9. Commit
        self.guard_transition(transfer.status, "release")
        released_at = self._clock()
        swapped = await self._store.conditional_update_status(
            transfer.id,
            TransferStatus.HELD,
            TransferStatus.RELEASED,
            expected_claim=attempt_id,
            settlement_reference=reference,
            platform_fee_minor_units=fees.fee_minor_units,
            net_minor_units=fees.net_minor_units,
            resolved_at=released_at,
            release_attempt_id=None,
            release_claimed_at=None,
        )
        if not swapped:
            await self.audit.record(
                AuditEventType.RELEASE_FAILED,
                transfer.id,
                requester.id,
                error="INVARIANT_VIOLATION",
                settlement_reference=reference,
            )
            log.error("escrow.release_commit_lost", settlement_reference=reference)
            raise InvariantViolationError(
                "Settlement succeeded but the transfer could not be marked released",
                details={"transfer_id": str(transfer.id), "settlement_reference": reference},
            )

        await self.audit.record(
            AuditEventType.RELEASE_SUCCEEDED,
            transfer.id,
            requester.id,
            settlement_reference=reference,
            gross_minor_units=fees.gross_minor_units,
            platform_fee_minor_units=fees.fee_minor_units,
            net_minor_units=fees.net_minor_units,
            fee_rate_bps=fees.fee_rate_bps,
        )
        log.info(
            "escrow.released",
            settlement_reference=reference,
            net_minor_units=fees.net_minor_units,
            fee_minor_units=fees.fee_minor_units,
        )
        return ReleaseOutcome(
            transfer_id=transfer.id,
            settlement_reference=reference,
            gross_minor_units=fees.gross_minor_units,
            fee_minor_units=fees.fee_minor_units,
            net_minor_units=fees.net_minor_units,
            released_at=released_at,
        )

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def cancel(
        self,
        transfer_id: uuid.UUID,
        requester: Principal,
        reason: str | None = None,
    ) -> Transfer:
        """Return a transfer to its payer.

        The payer may cancel before capture (``created`` / ``funding``); the
        pending authorization is voided. An administrator may also cancel a
        ``held`` transfer with no release in flight, which refunds the payer.
        """
        transfer = await self._get_or_raise(transfer_id)
        is_payer = requester.id == transfer.payer_id
        if not (is_payer or requester.is_admin):
            await self.audit.record(
                AuditEventType.AUTHORIZATION_DENIED,
                transfer.id,
                requester.id,
                operation="cancel",
            )
            raise AuthorizationError("Only the payer can cancel this transfer")

        self.guard_transition(transfer.status, "cancel")
        previous = TransferStatus(transfer.status)
        if previous == TransferStatus.HELD and not requester.is_admin:
            await self.audit.record(
                AuditEventType.AUTHORIZATION_DENIED,
                transfer.id,
                requester.id,
                operation="cancel",
                status=previous.value,
            )
            raise AuthorizationError("Funded transfers can only be canceled by an administrator")

        swapped = await self._store.conditional_update_status(
            transfer.id,
            previous,
            TransferStatus.CANCELED,
            expected_claim=None if previous == TransferStatus.HELD else ANY_CLAIM,
            resolved_at=self._clock(),
        )
        if not swapped:
            current = await self._get_or_raise(transfer.id)
            message = None
            if current.status == TransferStatus.HELD.value:
                message = "A release of this transfer is in progress"
            raise StateConflictError(current.status, "cancel", message=message)

        await self.audit.record(
            AuditEventType.TRANSFER_CANCELED,
            transfer.id,
            requester.id,
            previous_status=previous.value,
            reason=reason,
        )
        logger.info(
            "escrow.canceled",
            transfer_id=str(transfer.id),
            previous_status=previous.value,
            by=requester.id,
        )

        if previous == TransferStatus.FUNDING and transfer.payment_reference:
            await self._void(transfer.payment_reference, transfer.id)
        elif previous == TransferStatus.HELD:
            await self.refund_to_payer(transfer, requester.id)
        return await self._get_or_raise(transfer.id)

    # ------------------------------------------------------------------
    # Expiry & refunds
    # ------------------------------------------------------------------

    async def expire_due(self, now: datetime | None = None) -> list[uuid.UUID]:
        """Run one expiry sweep and return the ids that moved to ``expired``.

        A held transfer is overdue once its time-lock elapsed more than the
        claim window ago. Under FREEZE nothing transitions and overdue ids are
        only reported; under AUTO_RETURN they expire and are refunded.
        """
        now = now or self._clock()
        overdue = await self._store.find_expirable(
            cutoff=now - self._claim_window,
            stale_before=now - self._claim_ttl,
        )
        if not overdue:
            return []
        if self._expiry_policy == ExpiryPolicy.FREEZE:
            logger.warning(
                "escrow.expiry_frozen",
                count=len(overdue),
                transfer_ids=[str(t.id) for t in overdue],
            )
            return []

        expired: list[uuid.UUID] = []
        for transfer in overdue:
            if transfer.release_attempt_id is not None:
                # A crashed release may already have settled.
                try:
                    existing = await with_timeout(
                        self._ledger.find_settlement(settlement_key(transfer.id)),
                        self._gateway_timeout,
                        "settlement lookup",
                    )
                except UpstreamError as exc:
                    logger.warning(
                        "escrow.expiry_lookup_failed",
                        transfer_id=str(transfer.id),
                        error=exc.code,
                    )
                    continue
                if existing is not None:
                    logger.error(
                        "escrow.expiry_skipped_settled",
                        transfer_id=str(transfer.id),
                        settlement_reference=existing,
                    )
                    continue

            self.guard_transition(transfer.status, "expire")
            swapped = await self._store.conditional_update_status(
                transfer.id,
                TransferStatus.HELD,
                TransferStatus.EXPIRED,
                expected_claim=transfer.release_attempt_id,
                resolved_at=now,
                release_attempt_id=None,
                release_claimed_at=None,
            )
            if not swapped:
                logger.info("escrow.expiry_skipped", transfer_id=str(transfer.id))
                continue

            await self.audit.record(
                AuditEventType.TRANSFER_EXPIRED,
                transfer.id,
                SYSTEM_ACTOR,
                release_not_before=as_utc(transfer.release_not_before).isoformat(),
                claim_window_seconds=int(self._claim_window.total_seconds()),
            )
            logger.info("escrow.expired", transfer_id=str(transfer.id))
            await self.refund_to_payer(transfer, SYSTEM_ACTOR)
            expired.append(transfer.id)
        return expired

    async def retry_refunds(self) -> list[uuid.UUID]:
        """Re-issue refunds that failed on expiry or cancellation."""
        refunded: list[uuid.UUID] = []
        for transfer in await self._store.find_refund_pending():
            if await self.refund_to_payer(transfer, SYSTEM_ACTOR) is not None:
                refunded.append(transfer.id)
        return refunded

    async def refund_to_payer(self, transfer: Transfer, actor_id: str) -> str | None:
        """Refund a captured payment. Idempotent per transfer.

        A failed refund is audited and left for ``retry_refunds``; the
        transfer's terminal status is already committed at this point.
        """
        if not transfer.payment_reference:
            return None
        try:
            reference = await with_timeout(
                self._payments.refund(
                    transfer.payment_reference,
                    transfer.amount_minor_units,
                    idempotency_key=f"refund:{transfer.id}",
                ),
                self._gateway_timeout,
                "refund",
            )
        except UpstreamError as exc:
            await self.audit.record(
                AuditEventType.REFUND_FAILED,
                transfer.id,
                actor_id,
                error=exc.code,
                reason=exc.message,
            )
            logger.warning("gateway.refund_failed", transfer_id=str(transfer.id), error=exc.code)
            return None

        await self._store.update_fields(transfer.id, refund_reference=reference)
        await self.audit.record(
            AuditEventType.REFUND_ISSUED,
            transfer.id,
            actor_id,
            refund_reference=reference,
            amount_minor_units=transfer.amount_minor_units,
        )
        return reference

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_transfer(self, transfer_id: uuid.UUID) -> Transfer:
        return await self._get_or_raise(transfer_id)

    async def get_status(self, transfer_id: uuid.UUID) -> dict[str, Any]:
        """Current status, allowed state machine events and time-lock countdown."""
        transfer = await self._get_or_raise(transfer_id)
        sm = TransferStateMachine(current_status=transfer.status)
        not_before = as_utc(transfer.release_not_before)
        remaining = 0
        if not_before is not None:
            remaining = max(0, math.ceil((not_before - self._clock()).total_seconds()))
        fence = transfer.geofence
        return {
            "transfer_id": str(transfer.id),
            "status": transfer.status,
            "allowed_events": sm.get_allowed_events(),
            "release_not_before": not_before.isoformat() if not_before else None,
            "time_lock_remaining_seconds": remaining,
            "geofence": fence.to_dict() if fence else None,
            "release_in_progress": transfer.release_attempt_id is not None,
        }

    async def get_audit_trail(self, transfer_id: uuid.UUID) -> list[AuditRecord]:
        await self._get_or_raise(transfer_id)
        return await self.audit.trail(transfer_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_or_raise(self, transfer_id: uuid.UUID) -> Transfer:
        transfer = await self._store.get_by_id(transfer_id)
        if transfer is None:
            raise TransferNotFoundError(str(transfer_id))
        return transfer

    @staticmethod
    def guard_transition(status: str, event_name: str) -> None:
        """Raise StateConflictError if ``event_name`` is illegal from ``status``."""
        try:
            validate_transition(status, event_name)
        except TransitionNotAllowed as err:
            raise StateConflictError(status, event_name) from err

    @staticmethod
    def _is_payee(transfer: Transfer, requester: Principal) -> bool:
        if transfer.payee_id is not None and requester.id == transfer.payee_id:
            return True
        if requester.id == transfer.payee_identifier:
            return True
        return bool(requester.email) and requester.email.lower() == transfer.payee_identifier.lower()

    async def _lookup_payee_principal(self, payee_identifier: str) -> str | None:
        try:
            return await with_timeout(
                self._resolver.resolve_principal(payee_identifier),
                self._lookup_timeout,
                "payee lookup",
            )
        except UpstreamError:
            # Resolved again by email at release time.
            logger.warning("escrow.payee_lookup_failed", payee=payee_identifier)
            return None

    async def _void(self, payment_reference: str, transfer_id: uuid.UUID) -> None:
        try:
            await with_timeout(
                self._payments.void(payment_reference, idempotency_key=f"void:{transfer_id}"),
                self._gateway_timeout,
                "void",
            )
        except UpstreamError as exc:
            # A late capture of this payment is refunded by the webhook ingestor.
            logger.warning(
                "gateway.void_failed",
                transfer_id=str(transfer_id),
                payment_reference=payment_reference,
                error=exc.code,
            )

    async def _audit_release_failed(
        self, transfer: Transfer, requester: Principal, exc: UpstreamError
    ) -> None:
        await self.audit.record(
            AuditEventType.RELEASE_FAILED,
            transfer.id,
            requester.id,
            error=exc.code,
            reason=exc.message,
            transient=exc.transient,
        )
