"""
Unit tests for OccurrenceMaterializer.
"""

import pytest
from datetime import date

from timebill.exceptions import ValidationError
from timebill.scheduler.materializer import OccurrenceMaterializer


async def dates_of(occurrence_repo, job_id):
    return sorted(o.scheduled_date for o in await occurrence_repo.get_by_job(job_id))


@pytest.mark.asyncio
async def test_materialize_creates_pending_occurrences(materializer, job_repo, occurrence_repo, weekly_job_data):
    job = await job_repo.create(weekly_job_data)

    inserted = await materializer.materialize(job, date(2024, 1, 31))

    assert inserted == 5
    assert await dates_of(occurrence_repo, job.id) == [
        date(2024, 1, 1), date(2024, 1, 8), date(2024, 1, 15), date(2024, 1, 22), date(2024, 1, 29)
    ]
    assert (await job_repo.require(job.id)).last_generated_date == date(2024, 1, 31)
    assert job.last_generated_date == date(2024, 1, 31)


@pytest.mark.asyncio
async def test_materialize_twice_same_day_is_noop(materializer, job_repo, occurrence_repo, weekly_job_data):
    job = await job_repo.create(weekly_job_data)

    await materializer.materialize(job, date(2024, 1, 31))
    assert await materializer.materialize(job, date(2024, 1, 31)) == 0

    # A fresh copy of the row behaves the same
    reloaded = await job_repo.require(job.id)
    assert await materializer.materialize(reloaded, date(2024, 1, 31)) == 0
    assert len(await occurrence_repo.get_by_job(job.id)) == 5


@pytest.mark.asyncio
async def test_materialize_catches_up_after_idle_period(materializer, job_repo, occurrence_repo, weekly_job_data):
    job = await job_repo.create(weekly_job_data)
    await materializer.materialize(job, date(2024, 1, 1))

    # Forty days later every missed Monday appears
    inserted = await materializer.materialize(job, date(2024, 2, 10))

    assert inserted == 5
    assert await dates_of(occurrence_repo, job.id) == [
        date(2024, 1, 1), date(2024, 1, 8), date(2024, 1, 15),
        date(2024, 1, 22), date(2024, 1, 29), date(2024, 2, 5),
    ]


@pytest.mark.asyncio
async def test_materialize_never_creates_future_dates(materializer, job_repo, occurrence_repo, monthly_job_data):
    job = await job_repo.create(monthly_job_data)

    await materializer.materialize(job, date(2024, 3, 14))

    assert await dates_of(occurrence_repo, job.id) == [date(2024, 1, 15), date(2024, 2, 15)]


@pytest.mark.asyncio
async def test_materialize_skips_inactive_job(materializer, job_repo, occurrence_repo, weekly_job_data):
    job = await job_repo.create({**weekly_job_data, "is_active": False})

    assert await materializer.materialize(job, date(2024, 1, 31)) == 0
    assert await occurrence_repo.get_by_job(job.id) == []
    assert (await job_repo.require(job.id)).last_generated_date is None


@pytest.mark.asyncio
async def test_materialize_future_start_date(materializer, job_repo, occurrence_repo, weekly_job_data):
    job = await job_repo.create({**weekly_job_data, "start_date": date(2024, 3, 4)})

    assert await materializer.materialize(job, date(2024, 1, 31)) == 0
    assert (await job_repo.require(job.id)).last_generated_date is None


@pytest.mark.asyncio
async def test_materialize_stops_at_end_date(materializer, job_repo, occurrence_repo, weekly_job_data):
    job = await job_repo.create({**weekly_job_data, "end_date": date(2024, 1, 15)})

    assert await materializer.materialize(job, date(2024, 3, 1)) == 3
    assert (await job_repo.require(job.id)).last_generated_date == date(2024, 1, 15)
    assert await materializer.materialize(job, date(2024, 4, 1)) == 0


@pytest.mark.asyncio
async def test_materialize_cap_advances_watermark_to_last_inserted(job_repo, occurrence_repo, weekly_job_data):
    materializer = OccurrenceMaterializer(job_repo, occurrence_repo, max_per_pass=3)
    job = await job_repo.create(weekly_job_data)

    assert await materializer.materialize(job, date(2024, 1, 31)) == 3
    assert (await job_repo.require(job.id)).last_generated_date == date(2024, 1, 15)

    # The next pass picks up where the capped one stopped
    assert await materializer.materialize(job, date(2024, 1, 31)) == 2
    assert (await job_repo.require(job.id)).last_generated_date == date(2024, 1, 31)
    assert len(await occurrence_repo.get_by_job(job.id)) == 5


@pytest.mark.asyncio
async def test_materialize_with_reset_watermark_is_idempotent(materializer, job_repo, occurrence_repo, weekly_job_data):
    job = await job_repo.create(weekly_job_data)
    await materializer.materialize(job, date(2024, 1, 31))

    await job_repo.reset_watermark(job.id)
    stale = await job_repo.require(job.id)

    assert await materializer.materialize(stale, date(2024, 1, 31)) == 0
    assert len(await occurrence_repo.get_by_job(job.id)) == 5
    assert (await job_repo.require(job.id)).last_generated_date == date(2024, 1, 31)


@pytest.mark.asyncio
async def test_materialize_rejects_unschedulable_rule(materializer, job_repo, weekly_job_data):
    job = await job_repo.create(weekly_job_data)
    job.day_of_week = None

    with pytest.raises(ValidationError):
        await materializer.materialize(job, date(2024, 1, 31))


@pytest.mark.asyncio
async def test_materialize_by_id(materializer, job_repo, monthly_job_data):
    job = await job_repo.create(monthly_job_data)

    assert await materializer.materialize_by_id(job.id, date(2024, 1, 31)) == 1


def test_window_for_uses_watermark():
    class Job:
        start_date = date(2024, 1, 1)
        end_date = date(2024, 6, 30)
        last_generated_date = date(2024, 1, 31)

    assert OccurrenceMaterializer.window_for(Job, date(2024, 2, 10)) == (date(2024, 2, 1), date(2024, 2, 10))
    assert OccurrenceMaterializer.window_for(Job, date(2024, 9, 1)) == (date(2024, 2, 1), date(2024, 6, 30))
    assert OccurrenceMaterializer.window_for(Job, date(2024, 1, 31)) is None
