"""
SQLAlchemy models for the recurring job store.

Schema includes:
- Recurring jobs (the repeating-work rule plus billing options)
- Occurrences (one row per materialized date, unique per job and date)
"""

from datetime import datetime, date
from typing import Optional, List
from sqlalchemy import (
    String,
    Text,
    Integer,
    Boolean,
    DateTime,
    Date,
    ForeignKey,
    Index,
    UniqueConstraint,
    CheckConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column
from sqlalchemy.sql import func
import enum


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# ==================== ENUMS ====================

class FrequencyEnum(str, enum.Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class OccurrenceStatusEnum(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    SKIPPED = "skipped"


# Allowed lifecycle transitions; completed and skipped are terminal.
OCCURRENCE_TRANSITIONS = {
    OccurrenceStatusEnum.PENDING: {OccurrenceStatusEnum.COMPLETED, OccurrenceStatusEnum.SKIPPED},
    OccurrenceStatusEnum.COMPLETED: set(),
    OccurrenceStatusEnum.SKIPPED: set(),
}


# ==================== RECURRING JOBS ====================

class RecurringJobDB(Base):
    """A repeating-work rule for a client."""
    __tablename__ = "recurring_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[int] = mapped_column(Integer, nullable=False)  # owned by the host app

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Rule
    frequency: Mapped[str] = mapped_column(String(20), nullable=False)
    day_of_week: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # 0 = Sunday
    day_of_month: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Billing
    duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    auto_invoice: Mapped[bool] = mapped_column(Boolean, default=False)

    # Control
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_generated_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)  # advisory

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    occurrences: Mapped[List["OccurrenceDB"]] = relationship(
        "OccurrenceDB",
        back_populates="job",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("frequency IN ('weekly', 'biweekly', 'monthly')", name="ck_recurring_frequency"),
        CheckConstraint("day_of_week IS NULL OR (day_of_week >= 0 AND day_of_week <= 6)", name="ck_recurring_dow"),
        CheckConstraint("day_of_month IS NULL OR (day_of_month >= 1 AND day_of_month <= 28)", name="ck_recurring_dom"),
        CheckConstraint("duration_seconds > 0", name="ck_recurring_duration"),
        Index("idx_recurring_jobs_client", "client_id"),
        Index("idx_recurring_jobs_active", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<RecurringJobDB id={self.id} {self.frequency} '{self.title}'>"


# ==================== OCCURRENCES ====================

class OccurrenceDB(Base):
    """A concrete dated instance of a recurring job."""
    __tablename__ = "recurring_job_occurrences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    recurring_job_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("recurring_jobs.id", ondelete="CASCADE"), nullable=False
    )
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=OccurrenceStatusEnum.PENDING.value)

    # External references, set by the lifecycle manager only
    session_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    invoice_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    job: Mapped["RecurringJobDB"] = relationship("RecurringJobDB", back_populates="occurrences")

    __table_args__ = (
        UniqueConstraint("recurring_job_id", "scheduled_date", name="uq_occurrence_job_date"),
        CheckConstraint("status IN ('pending', 'completed', 'skipped')", name="ck_occurrence_status"),
        Index("idx_occurrences_status", "status"),
        Index("idx_occurrences_status_date", "status", "scheduled_date"),
    )

    def __repr__(self) -> str:
        return f"<OccurrenceDB id={self.id} job={self.recurring_job_id} {self.scheduled_date} {self.status}>"
