"""
Pytest configuration and shared fixtures.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")

import pytest
import pytest_asyncio
from datetime import date
from unittest.mock import AsyncMock

from timebill.database.connection import Database
from timebill.database.repositories.recurring import RecurringJobRepository, OccurrenceRepository
from timebill.scheduler.lifecycle import OccurrenceLifecycleManager
from timebill.scheduler.materializer import OccurrenceMaterializer
from timebill.scheduler.driver import SchedulerDriver
from timebill.scheduler.rules import MONDAY


@pytest_asyncio.fixture
async def database(tmp_path):
    """Initialized SQLite database in a temporary directory."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'timebill.db'}")
    assert await db.initialize()
    yield db
    await db.close()


@pytest.fixture
def job_repo(database):
    return RecurringJobRepository(database)


@pytest.fixture
def occurrence_repo(database):
    return OccurrenceRepository(database)


@pytest.fixture
def billing():
    """Billing collaborator that always succeeds."""
    client = AsyncMock()
    client.create_session = AsyncMock(return_value=501)
    client.create_invoice = AsyncMock(return_value=901)
    return client


@pytest.fixture
def materializer(job_repo, occurrence_repo):
    return OccurrenceMaterializer(job_repo, occurrence_repo, max_per_pass=100)


@pytest.fixture
def lifecycle(occurrence_repo, billing):
    return OccurrenceLifecycleManager(occurrence_repo, billing)


@pytest.fixture
def driver(job_repo, occurrence_repo, materializer, lifecycle):
    return SchedulerDriver(job_repo, occurrence_repo, materializer, lifecycle)


@pytest.fixture
def weekly_job_data():
    """Weekly Monday job starting Monday 2024-01-01."""
    return {
        "client_id": 7,
        "title": "Weekly lawn care",
        "notes": "Front and back yard",
        "frequency": "weekly",
        "day_of_week": MONDAY,
        "duration_seconds": 3600,
        "start_date": date(2024, 1, 1),
    }


@pytest.fixture
def monthly_job_data():
    """Monthly job on the 15th starting 2024-01-01."""
    return {
        "client_id": 7,
        "title": "Monthly bookkeeping",
        "frequency": "monthly",
        "day_of_month": 15,
        "duration_seconds": 7200,
        "start_date": date(2024, 1, 1),
    }
