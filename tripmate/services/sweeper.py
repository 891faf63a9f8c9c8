"""
Periodic cache sweep.

Entries that are written but never read again are only removed by
cleanup(); this schedules it on an interval with APScheduler.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from tripmate.services.cache import TTLCache
from tripmate.utils import logged_job


class CacheSweeper:
    """Runs TTLCache.cleanup() every `interval_minutes`."""

    JOB_ID = "cache_sweep_job"

    def __init__(
        self,
        cache: TTLCache,
        interval_minutes: float = 10,
        scheduler: AsyncIOScheduler | None = None,
    ):
        self.cache = cache
        self.interval_minutes = interval_minutes
        self._owns_scheduler = scheduler is None
        self.scheduler = scheduler or AsyncIOScheduler()
        self._is_running = False

    def sweep_now(self) -> int:
        """Remove expired entries immediately."""
        removed = self.cache.cleanup()
        if removed:
            logger.info(f"Cache sweep removed {removed} expired entries")
        return removed

    @logged_job
    async def sweep_job(self) -> None:
        # Coroutine jobs run on the event loop; plain ones would go to a thread pool
        self.sweep_now()

    def start(self) -> None:
        """Start the periodic sweep. Requires a running event loop."""
        if self._is_running:
            logger.warning("Cache sweeper is already running")
            return

        self.scheduler.add_job(
            self.sweep_job,
            trigger="interval",
            minutes=self.interval_minutes,
            id=self.JOB_ID,
            name="Cache Sweeper",
            replace_existing=True,
        )
        if not self.scheduler.running:
            self.scheduler.start()
        self._is_running = True

        logger.info(f"Cache sweeper started: sweeping every {self.interval_minutes} minutes")

    def stop(self) -> None:
        """Stop the periodic sweep."""
        if not self._is_running:
            logger.warning("Cache sweeper is not running")
            return

        if self.scheduler.get_job(self.JOB_ID):
            self.scheduler.remove_job(self.JOB_ID)
        if self._owns_scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self._is_running = False
        logger.info("Cache sweeper stopped")

    def is_running(self) -> bool:
        return self._is_running
