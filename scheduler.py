import inspect
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from config import get_settings


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class Debouncer:
    """Run an action once the calls sharing its key have gone quiet.

    Each ``schedule`` call replaces the pending job for the key, which cancels
    and restarts its timer, so only the last call's arguments are used.
    Actions already running are never cancelled and may overlap with a newer
    run for the same key. Pending jobs live in memory only.
    """

    def __init__(
        self, quiet_period: Optional[float] = None, max_overlap: int = 8
    ) -> None:
        settings = get_settings()
        self.quiet_period = (
            settings.autosave_quiet_secs if quiet_period is None else quiet_period
        )
        self.max_overlap = max_overlap
        self.scheduler = AsyncIOScheduler(timezone=settings.timezone)

    def _ensure_started(self) -> None:
        # Must happen inside the running event loop.
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Debouncer started")

    def schedule(
        self,
        key: str,
        action: Callable[..., Any],
        *args: Any,
        quiet_period: Optional[float] = None,
    ) -> None:
        delay = self.quiet_period if quiet_period is None else quiet_period
        self._ensure_started()
        run_date = datetime.now(timezone.utc) + timedelta(seconds=delay)
        self.scheduler.add_job(
            action,
            DateTrigger(run_date=run_date),
            args=list(args),
            id=key,
            replace_existing=True,
            misfire_grace_time=None,
            max_instances=self.max_overlap,
        )
        logger.debug(f"debounce_scheduled: key={key} delay={delay}")

    def pending(self, key: str) -> bool:
        if not self.scheduler.running:
            return False
        return self.scheduler.get_job(key) is not None

    def cancel(self, key: str) -> bool:
        if not self.scheduler.running:
            return False
        try:
            self.scheduler.remove_job(key)
        except JobLookupError:
            return False
        logger.debug(f"debounce_cancelled: key={key}")
        return True

    async def flush(self, key: str) -> bool:
        """Run the pending job for ``key`` now instead of at its due time."""
        if not self.scheduler.running:
            return False
        job = self.scheduler.get_job(key)
        if job is None:
            return False
        func, args = job.func, job.args
        self.cancel(key)
        result = func(*args)
        if inspect.isawaitable(result):
            await result
        return True

    async def flush_prefix(self, prefix: str) -> int:
        if not self.scheduler.running:
            return 0
        keys = [job.id for job in self.scheduler.get_jobs() if job.id.startswith(prefix)]
        flushed = 0
        for key in keys:
            if await self.flush(key):
                flushed += 1
        return flushed

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Debouncer stopped")
