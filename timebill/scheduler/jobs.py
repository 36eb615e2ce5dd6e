"""
Scheduler manager for the periodic refresh tick.

Handles:
- Recurring job refresh (every REFRESH_INTERVAL_MINUTES)
- Optional automatic completion of due occurrences (AUTO_COMPLETE_DUE)

Foreground and manual refreshes go straight to the driver; this tick is
just one more caller of the same entry point.
"""

import logging
from typing import Optional
from datetime import datetime
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
import pytz

from config import settings
from .driver import SchedulerDriver, get_scheduler_driver
from ..utils.datetime_utils import get_local_today

logger = logging.getLogger(__name__)


class SchedulerManager:
    """
    Manages the periodic refresh job.
    """

    def __init__(self, driver: Optional[SchedulerDriver] = None):
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.timezone = pytz.timezone(settings.timezone)
        self.driver = driver or get_scheduler_driver()

    def start(self) -> None:
        """Start the scheduler with the refresh job."""
        self.scheduler = AsyncIOScheduler(timezone=self.timezone)

        self.scheduler.add_job(
            self._refresh_job,
            IntervalTrigger(minutes=settings.refresh_interval_minutes),
            id="recurring_refresh",
            name="Recurring Jobs Refresh",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(self.timezone),
        )

        self.scheduler.start()
        logger.info(f"Scheduler started (refresh every {settings.refresh_interval_minutes}m)")

    def stop(self) -> None:
        """Stop the scheduler."""
        if self.scheduler:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None
            logger.info("Scheduler stopped")

    async def _refresh_job(self) -> None:
        """Materialize recurring jobs and, if enabled, complete what is due."""
        logger.debug("Running recurring jobs refresh")
        today = get_local_today()

        try:
            if settings.auto_complete_due:
                result = await self.driver.process_due(today)
                if result.invoice_failures or result.failures:
                    logger.warning(
                        f"Auto-complete left {len(result.failures)} occurrence(s) pending and "
                        f"{len(result.invoice_failures)} without invoice"
                    )
            else:
                await self.driver.refresh(today)
        except Exception as e:
            logger.error(f"Error in recurring refresh job: {e}", exc_info=True)

    def trigger_job(self, job_id: str) -> bool:
        """Manually trigger a job."""
        if not self.scheduler:
            return False

        job = self.scheduler.get_job(job_id)
        if job:
            job.modify(next_run_time=datetime.now(self.timezone))
            return True

        return False

    def get_job_status(self) -> dict:
        """Get status of all scheduled jobs."""
        if not self.scheduler:
            return {}

        jobs = {}
        for job in self.scheduler.get_jobs():
            jobs[job.id] = {
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                "trigger": str(job.trigger)
            }

        return jobs


# Singleton instance
_scheduler_manager: Optional[SchedulerManager] = None


def get_scheduler_manager() -> SchedulerManager:
    """Get the scheduler manager instance."""
    global _scheduler_manager
    if _scheduler_manager is None:
        _scheduler_manager = SchedulerManager()
    return _scheduler_manager
