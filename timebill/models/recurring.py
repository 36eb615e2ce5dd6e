"""
Pydantic models for recurring job API input and output.

Input models run the same rule validation as the repository so bad
rules are rejected with a 422 before reaching the store.
"""

from datetime import date, datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..database.models import FrequencyEnum, OccurrenceStatusEnum
from ..exceptions import ValidationError
from ..scheduler.rules import parse_weekday, validate_rule


# Columns a partial update may change but never clear
REQUIRED_JOB_FIELDS = frozenset({
    "client_id", "title", "frequency", "duration_seconds",
    "auto_invoice", "is_active", "start_date",
})


def _coerce_weekday(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return parse_weekday(value)
    except ValidationError as e:
        raise ValueError(str(e))


# ============================================
# RECURRING JOBS
# ============================================

class RecurringJobCreate(BaseModel):
    """Input validation for creating a recurring job."""
    client_id: int = Field(..., gt=0)
    title: str = Field(..., min_length=1, max_length=500)
    notes: Optional[str] = Field(None, max_length=5000)
    frequency: FrequencyEnum
    day_of_week: Optional[int] = Field(None, description="0 = Sunday ... 6 = Saturday, or a day name")
    day_of_month: Optional[int] = Field(None, ge=1, le=28)
    duration_seconds: int = Field(..., gt=0)
    auto_invoice: bool = False
    start_date: date
    end_date: Optional[date] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v):
        stripped = v.strip()
        if not stripped:
            raise ValueError("title cannot be empty after stripping whitespace")
        return stripped

    @field_validator("day_of_week", mode="before")
    @classmethod
    def validate_day_of_week(cls, v):
        return _coerce_weekday(v)

    @model_validator(mode="after")
    def validate_schedule(self):
        try:
            validate_rule(self)
        except ValidationError as e:
            raise ValueError(str(e))
        return self


class RecurringJobUpdate(BaseModel):
    """Partial update; only fields that were sent are applied."""
    client_id: Optional[int] = Field(None, gt=0)
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    notes: Optional[str] = Field(None, max_length=5000)
    frequency: Optional[FrequencyEnum] = None
    day_of_week: Optional[int] = None
    day_of_month: Optional[int] = Field(None, ge=1, le=28)
    duration_seconds: Optional[int] = Field(None, gt=0)
    auto_invoice: Optional[bool] = None
    is_active: Optional[bool] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @field_validator("day_of_week", mode="before")
    @classmethod
    def validate_day_of_week(cls, v):
        return _coerce_weekday(v)

    @model_validator(mode="after")
    def reject_required_nulls(self):
        nulled = sorted(
            name for name in self.model_fields_set & REQUIRED_JOB_FIELDS
            if getattr(self, name) is None
        )
        if nulled:
            raise ValueError(f"{', '.join(nulled)} cannot be null")
        return self

    def changes(self) -> Dict[str, Any]:
        """Fields explicitly set by the caller."""
        return self.model_dump(exclude_unset=True)


class RecurringJobResponse(BaseModel):
    """Recurring job as returned to the host."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    client_id: int
    title: str
    notes: Optional[str] = None
    frequency: FrequencyEnum
    day_of_week: Optional[int] = None
    day_of_month: Optional[int] = None
    duration_seconds: int
    auto_invoice: bool
    is_active: bool
    start_date: date
    end_date: Optional[date] = None
    last_generated_date: Optional[date] = None
    next_due_date: Optional[date] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ============================================
# OCCURRENCES
# ============================================

class OccurrenceResponse(BaseModel):
    """Occurrence as returned to the host."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    recurring_job_id: int
    scheduled_date: date
    status: OccurrenceStatusEnum
    session_id: Optional[int] = None
    invoice_id: Optional[int] = None


class CompleteOccurrenceRequest(BaseModel):
    """Complete with an existing session, or omit session_id to create one."""
    session_id: Optional[int] = Field(None, gt=0)


class RefreshRequest(BaseModel):
    """Refresh horizon; defaults to today."""
    as_of: Optional[date] = None


class RefreshResponse(BaseModel):
    """Outcome of a refresh pass."""
    as_of: date
    inserted: int
    jobs_processed: int
    partial: bool
    failures: Dict[int, str] = Field(default_factory=dict)
    due: List[OccurrenceResponse] = Field(default_factory=list)


class RescanResponse(BaseModel):
    """Outcome of regenerating one job from its start date."""
    job_id: int
    as_of: date
    inserted: int
    last_generated_date: Optional[date] = None


class ProcessDueResponse(BaseModel):
    """Outcome of automatically completing the due list."""
    refresh: RefreshResponse
    completed: List[int] = Field(default_factory=list)
    invoice_failures: Dict[int, str] = Field(default_factory=dict)
    failures: Dict[int, str] = Field(default_factory=dict)
