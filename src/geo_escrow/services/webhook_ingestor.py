"""Webhook Ingestor — applies gateway events to transfers exactly once.

Gateways deliver at least once and in any order, so:
    - Each event id is claimed in the IdempotencyStore before it is applied.
      A duplicate delivery is a no-op. If applying raises, the claim is
      dropped again so the gateway's retry gets processed.
    - Every status change is a conditional update, so a late or replayed
      event can never move a transfer backwards.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from geo_escrow.domain.enums import AuditEventType, IngestOutcome, TransferStatus
from geo_escrow.domain.events import Captured, CaptureFailed, PayeeActivated
from geo_escrow.domain.exceptions import UnsupportedEventError
from geo_escrow.logging_config import get_logger
from geo_escrow.services.audit import GATEWAY_ACTOR

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from geo_escrow.domain.events import GatewayEvent
    from geo_escrow.domain.ports import DestinationResolver, IdempotencyStore, TransferStore
    from geo_escrow.infrastructure.database.orm_models import Transfer
    from geo_escrow.services.escrow_engine import EscrowEngine

logger = get_logger(__name__)


class WebhookIngestor:
    """Consumes typed gateway events one at a time."""

    def __init__(
        self,
        store: TransferStore,
        engine: EscrowEngine,
        resolver: DestinationResolver,
        idempotency: IdempotencyStore,
        clock: Callable[[], datetime],
    ) -> None:
        self._store = store
        self._engine = engine
        self._resolver = resolver
        self._idempotency = idempotency
        self._clock = clock

    async def ingest(self, event: GatewayEvent) -> IngestOutcome:
        log = logger.bind(event_id=event.event_id, kind=str(event.kind), reference=event.reference)
        if not await self._idempotency.claim(event.event_id):
            log.info("webhook.duplicate")
            return IngestOutcome.DUPLICATE

        try:
            if isinstance(event, Captured):
                outcome = await self._on_captured(event)
            elif isinstance(event, CaptureFailed):
                outcome = await self._on_capture_failed(event)
            elif isinstance(event, PayeeActivated):
                outcome = await self._on_payee_activated(event)
            else:
                raise UnsupportedEventError(type(event).__name__)
        except Exception:
            await self._idempotency.release(event.event_id)
            log.exception("webhook.processing_failed")
            raise

        log.info("webhook.processed", outcome=outcome.value)
        return outcome

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _find(self, event: Captured | CaptureFailed) -> Transfer | None:
        transfer = await self._store.find_by_payment_reference(event.reference)
        if transfer is None:
            logger.warning("webhook.unmatched", event_id=event.event_id, reference=event.reference)
        return transfer

    async def _on_captured(self, event: Captured) -> IngestOutcome:
        transfer = await self._find(event)
        if transfer is None:
            return IngestOutcome.UNMATCHED

        if event.amount_minor_units is not None and event.amount_minor_units != transfer.amount_minor_units:
            logger.warning(
                "webhook.capture_amount_mismatch",
                transfer_id=str(transfer.id),
                expected=transfer.amount_minor_units,
                captured=event.amount_minor_units,
            )

        now = self._clock()
        if transfer.status == TransferStatus.FUNDING.value:
            self._engine.guard_transition(transfer.status, "capture_succeeded")
            swapped = await self._store.conditional_update_status(
                transfer.id,
                TransferStatus.FUNDING,
                TransferStatus.HELD,
                held_at=now,
                charge_reference=event.charge_reference,
            )
            if swapped:
                await self._engine.audit.record(
                    AuditEventType.PAYMENT_CAPTURED,
                    transfer.id,
                    GATEWAY_ACTOR,
                    event_id=event.event_id,
                    payment_reference=event.reference,
                    amount_minor_units=event.amount_minor_units,
                )
                return IngestOutcome.APPLIED
            # Lost a race with cancel; handle whatever it is now.
            transfer = await self._store.get_by_id(transfer.id)

        if transfer.status == TransferStatus.CANCELED.value and transfer.held_at is None:
            await self._store.update_fields(
                transfer.id, held_at=now, charge_reference=event.charge_reference
            )
            await self._engine.audit.record(
                AuditEventType.PAYMENT_CAPTURED,
                transfer.id,
                GATEWAY_ACTOR,
                event_id=event.event_id,
                payment_reference=event.reference,
                after_cancel=True,
            )
            await self._engine.refund_to_payer(transfer, GATEWAY_ACTOR)
            return IngestOutcome.APPLIED

        return IngestOutcome.NOOP

    async def _on_capture_failed(self, event: CaptureFailed) -> IngestOutcome:
        transfer = await self._find(event)
        if transfer is None:
            return IngestOutcome.UNMATCHED
        if transfer.status != TransferStatus.FUNDING.value:
            return IngestOutcome.NOOP

        self._engine.guard_transition(transfer.status, "capture_failed")
        swapped = await self._store.conditional_update_status(
            transfer.id,
            TransferStatus.FUNDING,
            TransferStatus.FAILED,
            resolved_at=self._clock(),
        )
        if not swapped:
            return IngestOutcome.NOOP
        await self._engine.audit.record(
            AuditEventType.PAYMENT_FAILED,
            transfer.id,
            GATEWAY_ACTOR,
            event_id=event.event_id,
            reason=event.reason,
        )
        return IngestOutcome.APPLIED

    async def _on_payee_activated(self, event: PayeeActivated) -> IngestOutcome:
        if not await self._resolver.activate(event.reference):
            logger.warning("webhook.unmatched", event_id=event.event_id, reference=event.reference)
            return IngestOutcome.UNMATCHED
        await self._engine.audit.record(
            AuditEventType.PAYEE_ACTIVATED,
            None,
            GATEWAY_ACTOR,
            event_id=event.event_id,
            destination_reference=event.reference,
        )
        return IngestOutcome.APPLIED
