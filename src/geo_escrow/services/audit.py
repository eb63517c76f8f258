"""Audit Log — thin writer over the AuditSink port.

Every denial and every terminal transition goes through ``AuditLog.record``
before the caller learns about it. The sink commits each entry on its own,
so the entry survives even when the request ends in an error response.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from geo_escrow.domain.ports import AuditRecord
from geo_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import uuid
    from collections.abc import Callable
    from datetime import datetime

    from geo_escrow.domain.enums import AuditEventType
    from geo_escrow.domain.ports import AuditSink

logger = get_logger(__name__)

SYSTEM_ACTOR = "SYSTEM"
GATEWAY_ACTOR = "GATEWAY"


class AuditLog:
    """Builds immutable AuditRecords, appends them and mirrors them to the log."""

    def __init__(self, sink: AuditSink, clock: Callable[[], datetime]) -> None:
        self._sink = sink
        self._clock = clock

    async def record(
        self,
        event_type: AuditEventType,
        transfer_id: uuid.UUID | None,
        actor_id: str = SYSTEM_ACTOR,
        **metadata: Any,
    ) -> AuditRecord:
        record = AuditRecord(
            event_type=event_type,
            transfer_id=transfer_id,
            actor_id=actor_id,
            timestamp=self._clock(),
            metadata=metadata,
        )
        await self._sink.append(record)
        logger.info(
            "audit.recorded",
            event_type=event_type.value,
            transfer_id=str(transfer_id) if transfer_id else None,
            actor=actor_id,
        )
        return record

    async def trail(self, transfer_id: uuid.UUID) -> list[AuditRecord]:
        return await self._sink.list_for_transfer(transfer_id)
