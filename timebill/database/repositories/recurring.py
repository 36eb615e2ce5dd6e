"""
Repositories for recurring jobs and their occurrences.

Jobs are plain CRUD. Occurrence writes are always conditional
("insert if absent", "update if status is still X") so that racing
triggers can never create duplicates or rewrite a terminal occurrence.
"""

import logging
from datetime import date
from typing import Optional, List, Dict, Any, Iterable

from sqlalchemy import select, update, delete, or_
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import selectinload

from ..connection import Database, get_database
from ..models import RecurringJobDB, OccurrenceDB, OccurrenceStatusEnum
from ...exceptions import NotFoundError, ValidationError
from ...scheduler.rules import validate_rule

logger = logging.getLogger(__name__)

JOB_FIELDS = (
    "client_id",
    "title",
    "notes",
    "frequency",
    "day_of_week",
    "day_of_month",
    "duration_seconds",
    "auto_invoice",
    "is_active",
    "start_date",
    "end_date",
)


def _clean_job_data(data: Dict[str, Any]) -> Dict[str, Any]:
    cleaned = {k: v for k, v in data.items() if k in JOB_FIELDS}
    if isinstance(cleaned.get("title"), str):
        cleaned["title"] = cleaned["title"].strip()
    if "notes" in cleaned and isinstance(cleaned["notes"], str):
        cleaned["notes"] = cleaned["notes"].strip() or None
    if hasattr(cleaned.get("frequency"), "value"):
        cleaned["frequency"] = cleaned["frequency"].value
    return cleaned


def validate_job(job: Any) -> None:
    """Validate a job (row or candidate) before it is persisted."""
    if job.client_id is None:
        raise ValidationError("client_id is required")
    if not job.title:
        raise ValidationError("title is required")
    if job.duration_seconds is None or job.duration_seconds <= 0:
        raise ValidationError("duration_seconds must be positive")
    for flag in ("auto_invoice", "is_active"):
        if getattr(job, flag) is None:
            raise ValidationError(f"{flag} cannot be null")
    validate_rule(job)


class RecurringJobRepository:
    """Repository for recurring job operations."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()

    async def create(self, data: Dict[str, Any]) -> RecurringJobDB:
        """Validate and create a new recurring job."""
        fields = _clean_job_data(data)
        fields.setdefault("auto_invoice", False)
        fields.setdefault("is_active", True)

        job = RecurringJobDB(**fields)
        validate_job(job)

        async with self.db.session() as session:
            session.add(job)
            await session.flush()
            await session.refresh(job)

        logger.info(f"Created recurring job {job.id} ({job.frequency}) for client {job.client_id}")
        return job

    async def get_by_id(self, job_id: int) -> Optional[RecurringJobDB]:
        """Get a recurring job by ID."""
        async with self.db.session() as session:
            result = await session.execute(
                select(RecurringJobDB).where(RecurringJobDB.id == job_id)
            )
            return result.scalar_one_or_none()

    async def require(self, job_id: int) -> RecurringJobDB:
        """Get a recurring job or raise NotFoundError."""
        job = await self.get_by_id(job_id)
        if job is None:
            raise NotFoundError("RecurringJob", job_id)
        return job

    async def get_all(self) -> List[RecurringJobDB]:
        """Get all recurring jobs, newest first."""
        async with self.db.session() as session:
            result = await session.execute(
                select(RecurringJobDB).order_by(RecurringJobDB.created_at.desc(), RecurringJobDB.id.desc())
            )
            return list(result.scalars().all())

    async def get_active(self) -> List[RecurringJobDB]:
        """Get all active recurring jobs."""
        async with self.db.session() as session:
            result = await session.execute(
                select(RecurringJobDB)
                .where(RecurringJobDB.is_active == True)
                .order_by(RecurringJobDB.id)
            )
            return list(result.scalars().all())

    async def get_by_client(self, client_id: int) -> List[RecurringJobDB]:
        """Get recurring jobs for one client, newest first."""
        async with self.db.session() as session:
            result = await session.execute(
                select(RecurringJobDB)
                .where(RecurringJobDB.client_id == client_id)
                .order_by(RecurringJobDB.created_at.desc(), RecurringJobDB.id.desc())
            )
            return list(result.scalars().all())

    async def update(self, job_id: int, data: Dict[str, Any]) -> RecurringJobDB:
        """
        Apply a partial update to a job.

        The merged job is validated as a whole before anything is written,
        so an update never leaves a half-valid rule behind.
        """
        fields = _clean_job_data(data)

        async with self.db.session() as session:
            result = await session.execute(
                select(RecurringJobDB).where(RecurringJobDB.id == job_id)
            )
            job = result.scalar_one_or_none()
            if job is None:
                raise NotFoundError("RecurringJob", job_id)

            for name, value in fields.items():
                setattr(job, name, value)
            validate_job(job)

            await session.flush()
            await session.refresh(job)

        logger.info(f"Updated recurring job {job_id}: {sorted(fields)}")
        return job

    async def delete(self, job_id: int) -> bool:
        """Delete a job and all of its occurrences."""
        async with self.db.session() as session:
            result = await session.execute(
                select(RecurringJobDB.id).where(RecurringJobDB.id == job_id)
            )
            if result.scalar_one_or_none() is None:
                return False

            await session.execute(
                delete(OccurrenceDB).where(OccurrenceDB.recurring_job_id == job_id)
            )
            await session.execute(
                delete(RecurringJobDB).where(RecurringJobDB.id == job_id)
            )

        logger.info(f"Deleted recurring job {job_id}")
        return True

    async def advance_watermark(self, job_id: int, generated_through: date) -> bool:
        """Move last_generated_date forward; never moves it backwards."""
        async with self.db.session() as session:
            result = await session.execute(
                update(RecurringJobDB)
                .where(
                    RecurringJobDB.id == job_id,
                    or_(
                        RecurringJobDB.last_generated_date.is_(None),
                        RecurringJobDB.last_generated_date < generated_through,
                    ),
                )
                .values(last_generated_date=generated_through)
            )
            return result.rowcount == 1

    async def reset_watermark(self, job_id: int) -> None:
        """Forget the watermark so the next pass rescans from start_date."""
        async with self.db.session() as session:
            result = await session.execute(
                update(RecurringJobDB)
                .where(RecurringJobDB.id == job_id)
                .values(last_generated_date=None)
            )
            if result.rowcount == 0:
                raise NotFoundError("RecurringJob", job_id)


class OccurrenceRepository:
    """Repository for occurrence operations."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()

    def _insert_ignore(self, job_id: int, scheduled_date: date):
        dialect = postgresql if self.db.dialect_name == "postgresql" else sqlite
        return (
            dialect.insert(OccurrenceDB)
            .values(
                recurring_job_id=job_id,
                scheduled_date=scheduled_date,
                status=OccurrenceStatusEnum.PENDING.value,
            )
            .on_conflict_do_nothing(index_elements=["recurring_job_id", "scheduled_date"])
        )

    async def insert_if_absent(self, job_id: int, dates: Iterable[date]) -> int:
        """Insert a pending occurrence per date unless one already exists. Returns inserted count."""
        inserted = 0
        async with self.db.session() as session:
            conn = await session.connection()
            for scheduled_date in dates:
                result = await conn.execute(self._insert_ignore(job_id, scheduled_date))
                inserted += result.rowcount
        return inserted

    async def get_by_id(self, occurrence_id: int) -> Optional[OccurrenceDB]:
        """Get an occurrence (with its job) by ID."""
        async with self.db.session() as session:
            result = await session.execute(
                select(OccurrenceDB)
                .options(selectinload(OccurrenceDB.job))
                .where(OccurrenceDB.id == occurrence_id)
            )
            return result.scalar_one_or_none()

    async def get_by_job(self, job_id: int) -> List[OccurrenceDB]:
        """Get all occurrences of a job, newest date first."""
        async with self.db.session() as session:
            result = await session.execute(
                select(OccurrenceDB)
                .where(OccurrenceDB.recurring_job_id == job_id)
                .order_by(OccurrenceDB.scheduled_date.desc())
            )
            return list(result.scalars().all())

    async def get_due(self, as_of: date) -> List[OccurrenceDB]:
        """Pending occurrences scheduled on or before ``as_of``, oldest first."""
        async with self.db.session() as session:
            result = await session.execute(
                select(OccurrenceDB)
                .options(selectinload(OccurrenceDB.job))
                .where(
                    OccurrenceDB.status == OccurrenceStatusEnum.PENDING.value,
                    OccurrenceDB.scheduled_date <= as_of,
                )
                .order_by(OccurrenceDB.scheduled_date, OccurrenceDB.id)
            )
            return list(result.scalars().all())

    async def transition(
        self,
        occurrence_id: int,
        expected: OccurrenceStatusEnum,
        target: OccurrenceStatusEnum,
        **fields: Any,
    ) -> bool:
        """
        Move an occurrence from ``expected`` to ``target`` in one guarded UPDATE.

        Returns False when the row is missing or no longer in ``expected``.
        """
        async with self.db.session() as session:
            result = await session.execute(
                update(OccurrenceDB)
                .where(
                    OccurrenceDB.id == occurrence_id,
                    OccurrenceDB.status == expected.value,
                )
                .values(status=target.value, **fields)
            )
            return result.rowcount == 1

    async def attach_invoice(self, occurrence_id: int, invoice_id: int) -> bool:
        """Record an invoice on a completed occurrence that has none yet."""
        async with self.db.session() as session:
            result = await session.execute(
                update(OccurrenceDB)
                .where(
                    OccurrenceDB.id == occurrence_id,
                    OccurrenceDB.status == OccurrenceStatusEnum.COMPLETED.value,
                    OccurrenceDB.invoice_id.is_(None),
                )
                .values(invoice_id=invoice_id)
            )
            return result.rowcount == 1


# Singletons
_job_repo: Optional[RecurringJobRepository] = None
_occurrence_repo: Optional[OccurrenceRepository] = None


def get_recurring_job_repository() -> RecurringJobRepository:
    """Get the recurring job repository singleton."""
    global _job_repo
    if _job_repo is None:
        _job_repo = RecurringJobRepository()
    return _job_repo


def get_occurrence_repository() -> OccurrenceRepository:
    """Get the occurrence repository singleton."""
    global _occurrence_repo
    if _occurrence_repo is None:
        _occurrence_repo = OccurrenceRepository()
    return _occurrence_repo
