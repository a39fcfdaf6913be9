"""Periodic cron evaluation driven by APScheduler.

The lifecycle manager never owns a timer; something outside it has to call
``trigger_all_enabled_cron_tasks`` regularly. ``CronTicker`` is that
caller for processes that run the manager standalone.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..ingestion.contracts import TriggerContext
from .config import CronConfig
from .models import Status

if TYPE_CHECKING:
    from .manager import IngestionLifecycleManager

logger = logging.getLogger(__name__)

TICK_JOB_ID = "harvester-cron-tick"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CronTicker:
    """Calls the manager's cron evaluation every ``tick_interval_seconds``."""

    def __init__(
        self,
        manager: "IngestionLifecycleManager",
        config: Optional[CronConfig] = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._manager = manager
        self._config = config or manager.config.cron
        self._clock = clock
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self.last_result: Optional[Status] = None

    @property
    def running(self) -> bool:
        return self._running

    async def tick(self) -> Status:
        """Evaluate cron tasks once, using the current time as reference."""
        context = TriggerContext(event_time=self._clock(), trigger="cron")
        status = await self._manager.trigger_all_enabled_cron_tasks(context)
        self.last_result = status
        if status.success:
            logger.debug(f"Cron tick finished: {status.message}")
        else:
            logger.warning(f"Cron tick reported failures: {status.message}")
        return status

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        if self._running:
            logger.warning("Cron ticker is already running")
            return
        self._scheduler = AsyncIOScheduler(event_loop=loop or asyncio.get_running_loop())
        self._scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self._config.tick_interval_seconds),
            id=TICK_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        self._running = True
        logger.info(
            "Cron ticker started",
            extra={"tick_interval_seconds": self._config.tick_interval_seconds},
        )

    def shutdown(self) -> None:
        if not self._running:
            logger.warning("Cron ticker is not running")
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        self._running = False
        logger.info("Cron ticker stopped")


__all__ = ["CronTicker", "TICK_JOB_ID"]
