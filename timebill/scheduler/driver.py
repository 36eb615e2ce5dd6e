"""
Scheduler driver.

Entry point the host calls on app foreground, manual refresh, or a
periodic tick. A refresh materializes every active job up to ``as_of``
and returns the due list (pending occurrences dated on or before
``as_of``).

Only one pass runs per driver at a time. A caller arriving while a pass
is in flight joins it instead of starting a second one, and passes run
as their own task so a cancelled caller never leaves materialization
half done.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from ..database.models import OccurrenceDB
from ..database.repositories.recurring import (
    RecurringJobRepository,
    OccurrenceRepository,
    get_recurring_job_repository,
    get_occurrence_repository,
)
from ..exceptions import InvoiceCreationError, SchedulerError, StateConflictError
from ..utils.datetime_utils import get_local_today
from .lifecycle import OccurrenceLifecycleManager, get_lifecycle_manager
from .materializer import OccurrenceMaterializer

logger = logging.getLogger(__name__)


@dataclass
class RefreshResult:
    """Outcome of one refresh pass."""
    as_of: date
    due: List[OccurrenceDB] = field(default_factory=list)
    inserted: int = 0
    jobs_processed: int = 0
    failures: Dict[int, str] = field(default_factory=dict)  # job id -> error

    @property
    def partial(self) -> bool:
        """True when at least one job failed to materialize."""
        return bool(self.failures)


@dataclass
class ProcessResult:
    """Outcome of automatically completing the due list."""
    refresh: RefreshResult
    completed: List[int] = field(default_factory=list)
    invoice_failures: Dict[int, str] = field(default_factory=dict)  # occurrence id -> error
    failures: Dict[int, str] = field(default_factory=dict)  # occurrence id -> error


class SchedulerDriver:
    """Fans materialization out across active jobs and reports what is due."""

    def __init__(
        self,
        job_repo: Optional[RecurringJobRepository] = None,
        occurrence_repo: Optional[OccurrenceRepository] = None,
        materializer: Optional[OccurrenceMaterializer] = None,
        lifecycle: Optional[OccurrenceLifecycleManager] = None,
    ):
        self.jobs = job_repo or get_recurring_job_repository()
        self.occurrences = occurrence_repo or get_occurrence_repository()
        self.materializer = materializer or OccurrenceMaterializer(self.jobs, self.occurrences)
        self.lifecycle = lifecycle or get_lifecycle_manager()
        self._in_flight: Optional[asyncio.Task] = None
        self._in_flight_key: Optional[Tuple[str, date]] = None

    @property
    def in_flight(self) -> bool:
        """Whether a pass is currently running."""
        return self._in_flight is not None and not self._in_flight.done()

    async def refresh(self, as_of: Optional[date] = None) -> RefreshResult:
        """Materialize all active jobs up to as_of and return the due list."""
        as_of = as_of or get_local_today()
        return await self._run_exclusive("refresh", as_of, self._refresh_pass)

    async def process_due(self, as_of: Optional[date] = None) -> ProcessResult:
        """
        Refresh, then complete every due occurrence with a new work session.

        This is the explicit automation command; occurrences never complete
        just because their date has passed.
        """
        as_of = as_of or get_local_today()
        return await self._run_exclusive("process", as_of, self._process_pass)

    async def _run_exclusive(
        self,
        kind: str,
        as_of: date,
        run_pass: Callable[[date], Awaitable],
    ):
        while self.in_flight:
            running = self._in_flight
            running_kind, running_as_of = self._in_flight_key
            logger.info(f"Joining in-flight {running_kind} pass (as of {running_as_of})")
            await asyncio.wait({running})
            if running_kind == kind and running_as_of >= as_of:
                return running.result()

        task = asyncio.create_task(run_pass(as_of))
        self._in_flight = task
        self._in_flight_key = (kind, as_of)
        task.add_done_callback(self._clear_in_flight)
        return await asyncio.shield(task)

    def _clear_in_flight(self, task: asyncio.Task) -> None:
        if self._in_flight is task:
            self._in_flight = None
            self._in_flight_key = None
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Scheduler pass failed: {task.exception()}")

    async def _refresh_pass(self, as_of: date) -> RefreshResult:
        result = RefreshResult(as_of=as_of)
        jobs = await self.jobs.get_active()

        for job in jobs:
            try:
                result.inserted += await self.materializer.materialize(job, as_of)
            except Exception as e:
                logger.error(f"Materialization failed for recurring job {job.id}: {e}", exc_info=True)
                result.failures[job.id] = str(e)
            result.jobs_processed += 1

        result.due = await self.occurrences.get_due(as_of)

        if result.partial:
            logger.warning(
                f"Refresh as of {as_of} partially failed: "
                f"{len(result.failures)}/{result.jobs_processed} job(s) not materialized"
            )
        logger.info(
            f"Refresh as of {as_of}: {result.jobs_processed} job(s), "
            f"{result.inserted} new occurrence(s), {len(result.due)} due"
        )
        return result

    async def _process_pass(self, as_of: date) -> ProcessResult:
        result = ProcessResult(refresh=await self._refresh_pass(as_of))

        for occurrence in result.refresh.due:
            try:
                await self.lifecycle.complete_with_new_session(occurrence.id)
                result.completed.append(occurrence.id)
            except InvoiceCreationError as e:
                result.completed.append(occurrence.id)
                result.invoice_failures[occurrence.id] = str(e)
            except StateConflictError:
                logger.debug(f"Occurrence {occurrence.id} was resolved by another caller")
            except SchedulerError as e:
                logger.error(f"Could not complete occurrence {occurrence.id}: {e}")
                result.failures[occurrence.id] = str(e)

        logger.info(
            f"Processed due occurrences as of {as_of}: {len(result.completed)} completed, "
            f"{len(result.invoice_failures)} invoice failure(s), {len(result.failures)} failure(s)"
        )
        return result


# Singleton instance
_scheduler_driver: Optional[SchedulerDriver] = None


def get_scheduler_driver() -> SchedulerDriver:
    """Get the scheduler driver singleton."""
    global _scheduler_driver
    if _scheduler_driver is None:
        _scheduler_driver = SchedulerDriver()
    return _scheduler_driver
