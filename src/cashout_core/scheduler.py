"""Background jobs for the cashout service.

Completions are found by polling channels for ``sent`` requests rather than
by in-process timers, so a restart loses nothing: the next reconciliation
pass picks up whatever the store says is still in flight.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .channels.base import HealthStatus
from .config import CashoutSettings, load_settings
from .orchestrator import CashoutOrchestrator

logger = logging.getLogger(__name__)

RECONCILE_JOB_ID = "cashout_reconcile"
HEALTH_JOB_ID = "channel_health"


class CompletionScheduler:
    """APScheduler wrapper running reconciliation and channel health checks."""

    def __init__(
        self,
        orchestrator: CashoutOrchestrator,
        settings: Optional[CashoutSettings] = None,
        timezone: str = "UTC",
    ):
        self._orchestrator = orchestrator
        self._settings = settings or load_settings()
        self._started = False
        self._scheduler = AsyncIOScheduler(
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 60,
            },
            timezone=timezone,
        )
        self.add_interval_job(
            self.reconcile,
            RECONCILE_JOB_ID,
            seconds=self._settings.reconcile_interval_seconds,
        )
        self.add_interval_job(
            self.check_health,
            HEALTH_JOB_ID,
            seconds=self._settings.health_check_interval_seconds,
        )

    def add_interval_job(self, func: Any, job_id: str, *, seconds: int, **kwargs: Any) -> None:
        self._scheduler.add_job(
            func,
            "interval",
            id=job_id,
            seconds=seconds,
            replace_existing=True,
            **kwargs,
        )
        logger.info("Registered interval job: %s (every %ss)", job_id, seconds)

    @property
    def job_ids(self) -> list[str]:
        return sorted(job.id for job in self._scheduler.get_jobs())

    async def reconcile(self) -> int:
        try:
            return await self._orchestrator.reconcile_due()
        except Exception as e:
            logger.error("Scheduler job failed: %s - %s: %s", RECONCILE_JOB_ID, type(e).__name__, e)
            return 0

    async def check_health(self) -> None:
        try:
            records = await self._orchestrator.registry.check_all_health()
        except Exception as e:
            logger.error("Scheduler job failed: %s - %s: %s", HEALTH_JOB_ID, type(e).__name__, e)
            return
        down = [r.channel_id for r in records if r.health_status == HealthStatus.DOWN]
        if down:
            logger.warning("Channels down after health check: %s", ", ".join(down))

    async def start(self) -> None:
        """Start the scheduler. Must be called from within a running event loop."""
        if self._started:
            return
        self._scheduler.start()
        self._started = True
        logger.info("Scheduler started")

    async def shutdown(self, wait: bool = True) -> None:
        if not self._started:
            return
        self._scheduler.shutdown(wait=wait)
        self._started = False
        logger.info("Scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._started and bool(self._scheduler.running)
