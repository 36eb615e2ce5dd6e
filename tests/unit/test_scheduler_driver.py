"""
Unit tests for SchedulerDriver: refresh fan-out, partial failures,
single-flight passes, and process_due.
"""

import asyncio
import pytest
from datetime import date

from timebill.exceptions import CollaboratorError, PersistenceError
from timebill.scheduler.driver import SchedulerDriver


class GatedMaterializer:
    """Wraps a real materializer; optionally fails some jobs or waits on a gate."""

    def __init__(self, inner, fail_ids=(), gate=None):
        self.inner = inner
        self.fail_ids = set(fail_ids)
        self.gate = gate
        self.started = asyncio.Event()
        self.calls = 0

    async def materialize(self, job, as_of):
        self.calls += 1
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if job.id in self.fail_ids:
            raise PersistenceError("disk full")
        return await self.inner.materialize(job, as_of)


# ============================================================
# REFRESH
# ============================================================

@pytest.mark.asyncio
async def test_refresh_returns_due_list(driver, job_repo, weekly_job_data, monthly_job_data):
    weekly = await job_repo.create(weekly_job_data)
    monthly = await job_repo.create(monthly_job_data)

    result = await driver.refresh(date(2024, 1, 16))

    assert result.as_of == date(2024, 1, 16)
    assert result.jobs_processed == 2
    assert result.inserted == 4
    assert result.partial is False
    assert [(o.recurring_job_id, o.scheduled_date) for o in result.due] == [
        (weekly.id, date(2024, 1, 1)),
        (weekly.id, date(2024, 1, 8)),
        (weekly.id, date(2024, 1, 15)),
        (monthly.id, date(2024, 1, 15)),
    ]


@pytest.mark.asyncio
async def test_refresh_twice_inserts_nothing_new(driver, job_repo, weekly_job_data):
    await job_repo.create(weekly_job_data)

    first = await driver.refresh(date(2024, 1, 31))
    second = await driver.refresh(date(2024, 1, 31))

    assert first.inserted == 5
    assert second.inserted == 0
    assert [o.id for o in second.due] == [o.id for o in first.due]


@pytest.mark.asyncio
async def test_refresh_ignores_inactive_jobs(driver, job_repo, weekly_job_data):
    await job_repo.create({**weekly_job_data, "is_active": False})

    result = await driver.refresh(date(2024, 1, 31))

    assert result.jobs_processed == 0
    assert result.due == []


@pytest.mark.asyncio
async def test_refresh_isolates_job_failures(job_repo, occurrence_repo, materializer, lifecycle, weekly_job_data, monthly_job_data):
    broken = await job_repo.create(weekly_job_data)
    healthy = await job_repo.create(monthly_job_data)
    driver = SchedulerDriver(
        job_repo, occurrence_repo, GatedMaterializer(materializer, fail_ids={broken.id}), lifecycle
    )

    result = await driver.refresh(date(2024, 1, 31))

    assert result.partial is True
    assert list(result.failures) == [broken.id]
    assert "disk full" in result.failures[broken.id]
    assert result.jobs_processed == 2
    assert [o.recurring_job_id for o in result.due] == [healthy.id]


# ============================================================
# SINGLE FLIGHT
# ============================================================

@pytest.mark.asyncio
async def test_concurrent_refresh_joins_in_flight_pass(job_repo, occurrence_repo, materializer, lifecycle, weekly_job_data):
    await job_repo.create(weekly_job_data)
    gated = GatedMaterializer(materializer, gate=asyncio.Event())
    driver = SchedulerDriver(job_repo, occurrence_repo, gated, lifecycle)

    first = asyncio.create_task(driver.refresh(date(2024, 1, 31)))
    await gated.started.wait()
    assert driver.in_flight is True

    second = asyncio.create_task(driver.refresh(date(2024, 1, 31)))
    await asyncio.sleep(0)
    gated.gate.set()

    first_result, second_result = await asyncio.gather(first, second)

    assert gated.calls == 1
    assert first_result is second_result
    assert first_result.inserted == 5
    assert driver.in_flight is False


@pytest.mark.asyncio
async def test_later_as_of_runs_its_own_pass(job_repo, occurrence_repo, materializer, lifecycle, weekly_job_data):
    await job_repo.create(weekly_job_data)
    gated = GatedMaterializer(materializer, gate=asyncio.Event())
    driver = SchedulerDriver(job_repo, occurrence_repo, gated, lifecycle)

    first = asyncio.create_task(driver.refresh(date(2024, 1, 15)))
    await gated.started.wait()
    second = asyncio.create_task(driver.refresh(date(2024, 1, 31)))
    await asyncio.sleep(0)
    gated.gate.set()

    first_result, second_result = await asyncio.gather(first, second)

    assert gated.calls == 2
    assert first_result.inserted == 3
    assert second_result.inserted == 2
    assert len(second_result.due) == 5


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_abort_pass(job_repo, occurrence_repo, materializer, lifecycle, weekly_job_data):
    job = await job_repo.create(weekly_job_data)
    gated = GatedMaterializer(materializer, gate=asyncio.Event())
    driver = SchedulerDriver(job_repo, occurrence_repo, gated, lifecycle)

    caller = asyncio.create_task(driver.refresh(date(2024, 1, 31)))
    await gated.started.wait()
    caller.cancel()
    with pytest.raises(asyncio.CancelledError):
        await caller

    assert driver.in_flight is True
    gated.gate.set()
    result = await driver.refresh(date(2024, 1, 31))

    assert gated.calls == 1
    assert result.inserted == 5
    assert len(await occurrence_repo.get_by_job(job.id)) == 5


# ============================================================
# PROCESS DUE
# ============================================================

@pytest.mark.asyncio
async def test_process_due_completes_due_occurrences(driver, job_repo, occurrence_repo, billing, weekly_job_data):
    job = await job_repo.create(weekly_job_data)

    result = await driver.process_due(date(2024, 1, 10))

    assert len(result.completed) == 2
    assert result.failures == {}
    assert billing.create_session.await_count == 2
    assert {o.status for o in await occurrence_repo.get_by_job(job.id)} == {"completed"}
    assert await occurrence_repo.get_due(date(2024, 1, 10)) == []


@pytest.mark.asyncio
async def test_process_due_reports_invoice_failures(driver, job_repo, billing, weekly_job_data):
    await job_repo.create({**weekly_job_data, "auto_invoice": True})
    billing.create_invoice.side_effect = CollaboratorError("billing down")

    result = await driver.process_due(date(2024, 1, 3))

    assert len(result.completed) == 1
    assert list(result.invoice_failures) == result.completed
    assert result.failures == {}


@pytest.mark.asyncio
async def test_process_due_leaves_pending_on_session_failure(driver, job_repo, occurrence_repo, billing, weekly_job_data):
    job = await job_repo.create(weekly_job_data)
    billing.create_session.side_effect = CollaboratorError("timeout")

    result = await driver.process_due(date(2024, 1, 10))

    assert result.completed == []
    assert len(result.failures) == 2
    assert {o.status for o in await occurrence_repo.get_by_job(job.id)} == {"pending"}
