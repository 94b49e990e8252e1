"""
RuleKeeper Update Scheduler

Periodically triggers ruleset update checks.
"""

import asyncio
import logging
from typing import Optional

from .pipeline import RulesetUpdater

logger = logging.getLogger(__name__)


class UpdateScheduler:
    """
    Calls RulesetUpdater.fetch_update() on a fixed interval.
    """

    def __init__(
        self,
        updater: RulesetUpdater,
        interval_seconds: float = 86400,
        initial_delay_seconds: float = 60,
    ):
        """
        Initialize scheduler.

        Args:
            updater: Updater to trigger
            interval_seconds: Seconds between checks
            initial_delay_seconds: Seconds before the first check
        """
        self.updater = updater
        self.interval_seconds = interval_seconds
        self.initial_delay_seconds = initial_delay_seconds

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stats = {"checks": 0, "errors": 0}

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start the check loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._check_loop())
        logger.info(f"Ruleset update scheduler started, checking every {self.interval_seconds}s")

    async def stop(self):
        """Stop the check loop."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Ruleset update scheduler stopped")

    async def _check_loop(self):
        await asyncio.sleep(self.initial_delay_seconds)

        while self._running:
            try:
                result = await self.updater.fetch_update()
                self._stats["checks"] += 1
                logger.debug(f"Scheduled update check finished: {result.outcome.value}")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Scheduled update check error: {e}")
                self._stats["errors"] += 1

            await asyncio.sleep(self.interval_seconds)

    def get_stats(self):
        return {"running": self._running, "interval_seconds": self.interval_seconds, **self._stats}
