"""Scheduled expiry sweep.

One APScheduler interval job drives the engine's expiry and refund-retry
passes. ``max_instances=1`` with ``coalesce=True`` keeps a slow pass from
overlapping the next one; missed runs collapse into a single catch-up.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from apscheduler.events import EVENT_JOB_ERROR
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from geo_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from apscheduler.events import JobExecutionEvent

    from geo_escrow.services.escrow_engine import EscrowEngine

logger = get_logger(__name__)

SWEEP_JOB_ID = "escrow_expiry_sweep"


class ExpirySweeper:
    """Periodically expires overdue transfers and retries failed refunds."""

    def __init__(
        self,
        engine: EscrowEngine,
        interval_seconds: float,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self._engine = engine
        self._interval = interval_seconds
        self.scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        self.scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)

    async def run_once(self) -> None:
        expired = await self._engine.expire_due()
        refunded = await self._engine.retry_refunds()
        if expired or refunded:
            logger.info("sweeper.pass_completed", expired=len(expired), refunded=len(refunded))

    def schedule(self) -> None:
        """Register the sweep job without starting the scheduler."""
        self.scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(seconds=self._interval),
            id=SWEEP_JOB_ID,
            name="Expire overdue transfers and retry refunds",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

    def start(self) -> None:
        """Schedule the job and start the scheduler. Needs a running event loop."""
        if self.scheduler.running:
            return
        self.schedule()
        self.scheduler.start()
        logger.info("sweeper.started", interval_seconds=self._interval)

    def stop(self) -> None:
        if not self.scheduler.running:
            return
        self.scheduler.shutdown(wait=False)
        logger.info("sweeper.stopped")

    @staticmethod
    def _on_job_error(event: JobExecutionEvent) -> None:
        # The next run retries the same rows.
        logger.error(
            "sweeper.pass_failed",
            job_id=event.job_id,
            error=repr(event.exception),
        )
