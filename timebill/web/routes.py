"""
HTTP routes exposed to the host application.

Recurring job CRUD, occurrence reads, and the scheduler commands
(complete, skip, retry invoice, refresh, process due, rescan, manual
tick). Domain errors are translated to HTTP responses by the handlers
registered in main.py.
"""

import logging
from datetime import date, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status

from ..database.models import RecurringJobDB
from ..database.repositories.recurring import (
    RecurringJobRepository,
    OccurrenceRepository,
    get_recurring_job_repository,
    get_occurrence_repository,
)
from ..exceptions import NotFoundError, ValidationError
from ..models.recurring import (
    RecurringJobCreate,
    RecurringJobUpdate,
    RecurringJobResponse,
    OccurrenceResponse,
    CompleteOccurrenceRequest,
    RefreshRequest,
    RefreshResponse,
    RescanResponse,
    ProcessDueResponse,
)
from ..scheduler.driver import RefreshResult, SchedulerDriver, get_scheduler_driver
from ..scheduler.jobs import SchedulerManager, get_scheduler_manager
from ..scheduler.lifecycle import OccurrenceLifecycleManager, get_lifecycle_manager
from ..scheduler.materializer import OccurrenceMaterializer, get_occurrence_materializer
from ..scheduler.rules import RecurrenceRule, next_date_after
from ..utils.datetime_utils import get_local_today

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def _job_response(job: RecurringJobDB, today: Optional[date] = None) -> RecurringJobResponse:
    response = RecurringJobResponse.model_validate(job)
    if job.is_active:
        today = today or get_local_today()
        try:
            response.next_due_date = next_date_after(
                RecurrenceRule.from_job(job), today - timedelta(days=1)
            )
        except ValidationError as e:
            logger.warning(f"Recurring job {job.id} has an unschedulable rule: {e}")
    return response


def _refresh_response(result: RefreshResult) -> RefreshResponse:
    return RefreshResponse(
        as_of=result.as_of,
        inserted=result.inserted,
        jobs_processed=result.jobs_processed,
        partial=result.partial,
        failures=result.failures,
        due=[OccurrenceResponse.model_validate(o) for o in result.due],
    )


# ============================================================================
# Recurring jobs
# ============================================================================

@router.post("/recurring-jobs", response_model=RecurringJobResponse, status_code=status.HTTP_201_CREATED)
async def create_recurring_job(
    data: RecurringJobCreate,
    jobs: RecurringJobRepository = Depends(get_recurring_job_repository),
):
    """Create a recurring job."""
    job = await jobs.create(data.model_dump())
    return _job_response(job)


@router.get("/recurring-jobs", response_model=List[RecurringJobResponse])
async def list_recurring_jobs(
    client_id: Optional[int] = None,
    active_only: bool = False,
    jobs: RecurringJobRepository = Depends(get_recurring_job_repository),
):
    """List recurring jobs, optionally for one client or only active ones."""
    if client_id is not None:
        rows = await jobs.get_by_client(client_id)
        if active_only:
            rows = [j for j in rows if j.is_active]
    elif active_only:
        rows = await jobs.get_active()
    else:
        rows = await jobs.get_all()

    today = get_local_today()
    return [_job_response(j, today) for j in rows]


@router.get("/recurring-jobs/{job_id}", response_model=RecurringJobResponse)
async def get_recurring_job(
    job_id: int,
    jobs: RecurringJobRepository = Depends(get_recurring_job_repository),
):
    """Get one recurring job."""
    return _job_response(await jobs.require(job_id))


@router.patch("/recurring-jobs/{job_id}", response_model=RecurringJobResponse)
async def update_recurring_job(
    job_id: int,
    data: RecurringJobUpdate,
    jobs: RecurringJobRepository = Depends(get_recurring_job_repository),
):
    """Update a recurring job; the merged rule is re-validated."""
    changes = data.changes()
    if not changes:
        raise HTTPException(status_code=400, detail="No fields to update")
    return _job_response(await jobs.update(job_id, changes))


@router.delete("/recurring-jobs/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_recurring_job(
    job_id: int,
    jobs: RecurringJobRepository = Depends(get_recurring_job_repository),
):
    """Delete a recurring job and its occurrences."""
    if not await jobs.delete(job_id):
        raise NotFoundError("RecurringJob", job_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/recurring-jobs/{job_id}/occurrences", response_model=List[OccurrenceResponse])
async def list_job_occurrences(
    job_id: int,
    jobs: RecurringJobRepository = Depends(get_recurring_job_repository),
    occurrences: OccurrenceRepository = Depends(get_occurrence_repository),
):
    """Occurrences of one job, newest first."""
    await jobs.require(job_id)
    return await occurrences.get_by_job(job_id)


@router.post("/recurring-jobs/{job_id}/rescan", response_model=RescanResponse)
async def rescan_recurring_job(
    job_id: int,
    data: RefreshRequest,
    jobs: RecurringJobRepository = Depends(get_recurring_job_repository),
    materializer: OccurrenceMaterializer = Depends(get_occurrence_materializer),
):
    """
    Regenerate a job's occurrences from its start date.

    Use after moving start_date back or changing the rule: dates that
    already have an occurrence are left alone, missing ones are added.
    """
    as_of = data.as_of or get_local_today()
    await jobs.reset_watermark(job_id)
    inserted = await materializer.materialize_by_id(job_id, as_of)
    job = await jobs.require(job_id)
    return RescanResponse(
        job_id=job_id,
        as_of=as_of,
        inserted=inserted,
        last_generated_date=job.last_generated_date,
    )


# ============================================================================
# Occurrences
# ============================================================================

@router.get("/occurrences/due", response_model=List[OccurrenceResponse])
async def list_due_occurrences(
    as_of: Optional[date] = None,
    occurrences: OccurrenceRepository = Depends(get_occurrence_repository),
):
    """Current due list without materializing anything new."""
    return await occurrences.get_due(as_of or get_local_today())


@router.post("/occurrences/{occurrence_id}/complete", response_model=OccurrenceResponse)
async def complete_occurrence(
    occurrence_id: int,
    data: CompleteOccurrenceRequest,
    lifecycle: OccurrenceLifecycleManager = Depends(get_lifecycle_manager),
):
    """Complete a pending occurrence with a given session, or create one."""
    if data.session_id is None:
        return await lifecycle.complete_with_new_session(occurrence_id)
    return await lifecycle.complete(occurrence_id, data.session_id)


@router.post("/occurrences/{occurrence_id}/skip", response_model=OccurrenceResponse)
async def skip_occurrence(
    occurrence_id: int,
    lifecycle: OccurrenceLifecycleManager = Depends(get_lifecycle_manager),
):
    """Skip a pending occurrence."""
    return await lifecycle.skip(occurrence_id)


@router.post("/occurrences/{occurrence_id}/retry-invoice", response_model=OccurrenceResponse)
async def retry_occurrence_invoice(
    occurrence_id: int,
    lifecycle: OccurrenceLifecycleManager = Depends(get_lifecycle_manager),
):
    """Retry a failed auto-invoice."""
    return await lifecycle.retry_invoice(occurrence_id)


# ============================================================================
# Scheduler commands
# ============================================================================

@router.post("/scheduler/refresh", response_model=RefreshResponse)
async def refresh(
    data: RefreshRequest,
    driver: SchedulerDriver = Depends(get_scheduler_driver),
):
    """Materialize all active jobs and return the due list."""
    return _refresh_response(await driver.refresh(data.as_of))


@router.post("/scheduler/process-due", response_model=ProcessDueResponse)
async def process_due(
    data: RefreshRequest,
    driver: SchedulerDriver = Depends(get_scheduler_driver),
):
    """Refresh, then complete every due occurrence with a new session."""
    result = await driver.process_due(data.as_of)
    return ProcessDueResponse(
        refresh=_refresh_response(result.refresh),
        completed=result.completed,
        invoice_failures=result.invoice_failures,
        failures=result.failures,
    )


@router.get("/scheduler/status")
async def scheduler_status(
    driver: SchedulerDriver = Depends(get_scheduler_driver),
    manager: SchedulerManager = Depends(get_scheduler_manager),
):
    """Periodic job schedule and whether a pass is running."""
    return {
        "in_flight": driver.in_flight,
        "jobs": manager.get_job_status(),
    }


@router.post("/scheduler/jobs/{scheduler_job_id}/trigger")
async def trigger_scheduler_job(
    scheduler_job_id: str,
    manager: SchedulerManager = Depends(get_scheduler_manager),
):
    """Run a periodic job now instead of waiting for its next tick."""
    if not manager.trigger_job(scheduler_job_id):
        raise HTTPException(status_code=404, detail=f"Scheduler job {scheduler_job_id} not found")
    return {"triggered": scheduler_job_id}
