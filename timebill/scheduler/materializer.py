"""
Occurrence materializer.

Drives the rule engine forward in time for one job and persists each
matched date as a pending occurrence, exactly once. The horizon is
"as of" a given date: nothing is created for the future, but a job left
idle for weeks catches up on every missed date in one pass.
"""

import logging
from datetime import date, timedelta
from typing import Optional

from config import settings
from ..database.models import RecurringJobDB
from ..database.repositories.recurring import (
    RecurringJobRepository,
    OccurrenceRepository,
    get_recurring_job_repository,
    get_occurrence_repository,
)
from .rules import RecurrenceRule, generate_dates, validate_rule

logger = logging.getLogger(__name__)


class OccurrenceMaterializer:
    """Turns rule-matched dates into persisted occurrences."""

    def __init__(
        self,
        job_repo: Optional[RecurringJobRepository] = None,
        occurrence_repo: Optional[OccurrenceRepository] = None,
        max_per_pass: Optional[int] = None,
    ):
        self.jobs = job_repo or get_recurring_job_repository()
        self.occurrences = occurrence_repo or get_occurrence_repository()
        self.max_per_pass = max_per_pass or settings.max_occurrences_per_pass

    @staticmethod
    def window_for(job: RecurringJobDB, as_of: date) -> Optional[tuple]:
        """
        Inclusive date window still to scan for a job, or None if nothing is left.

        Starts the day after the watermark (or at start_date when the job was
        never generated) and ends at as_of, clamped to end_date.
        """
        if job.last_generated_date is not None:
            start = max(job.last_generated_date + timedelta(days=1), job.start_date)
        else:
            start = job.start_date

        end = as_of if job.end_date is None else min(as_of, job.end_date)
        if start > end:
            return None
        return start, end

    async def materialize(self, job: RecurringJobDB, as_of: date) -> int:
        """
        Create pending occurrences for every date the job's rule matched up to as_of.

        Args:
            job: The recurring job to materialize
            as_of: Horizon date (inclusive), normally today

        Returns:
            Number of newly inserted occurrences

        Raises:
            ValidationError: The stored rule is not schedulable
            PersistenceError: The store failed
        """
        if not job.is_active:
            logger.debug(f"Skipping inactive recurring job {job.id}")
            return 0

        rule = RecurrenceRule.from_job(job)
        validate_rule(rule)

        window = self.window_for(job, as_of)
        if window is None:
            return 0
        window_start, window_end = window

        dates = generate_dates(rule, window_start, window_end)
        generated_through = window_end

        if len(dates) > self.max_per_pass:
            dates = dates[:self.max_per_pass]
            generated_through = dates[-1]
            logger.warning(
                f"Recurring job {job.id}: capped at {self.max_per_pass} occurrences, "
                f"generated through {generated_through}"
            )

        inserted = await self.occurrences.insert_if_absent(job.id, dates)
        await self.jobs.advance_watermark(job.id, generated_through)

        if job.last_generated_date is None or job.last_generated_date < generated_through:
            job.last_generated_date = generated_through

        if inserted:
            logger.info(
                f"Materialized {inserted} occurrence(s) for recurring job {job.id} "
                f"between {window_start} and {window_end}"
            )
        return inserted

    async def materialize_by_id(self, job_id: int, as_of: date) -> int:
        """Materialize a single job by ID."""
        job = await self.jobs.require(job_id)
        return await self.materialize(job, as_of)


# Singleton instance
_materializer: Optional[OccurrenceMaterializer] = None


def get_occurrence_materializer() -> OccurrenceMaterializer:
    """Get the occurrence materializer singleton."""
    global _materializer
    if _materializer is None:
        _materializer = OccurrenceMaterializer()
    return _materializer
