"""
Recurrence rule engine.

Turns a repeating-work rule into the calendar dates it matches inside a
window. Everything here is pure: no I/O, no clock reads, no mutable state,
so overlapping windows always agree on the dates they share.

Weekdays use 0 = Sunday ... 6 = Saturday, the numbering stored on
recurring jobs.
"""

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, List, Optional

from ..database.models import FrequencyEnum
from ..exceptions import ValidationError

SUNDAY, MONDAY, TUESDAY, WEDNESDAY, THURSDAY, FRIDAY, SATURDAY = range(7)

WEEKDAYS = {
    "sunday": SUNDAY, "monday": MONDAY, "tuesday": TUESDAY, "wednesday": WEDNESDAY,
    "thursday": THURSDAY, "friday": FRIDAY, "saturday": SATURDAY,
    "sun": SUNDAY, "mon": MONDAY, "tue": TUESDAY, "wed": WEDNESDAY,
    "thu": THURSDAY, "fri": FRIDAY, "sat": SATURDAY,
}

MAX_DAY_OF_MONTH = 28

_STEP_DAYS = {
    FrequencyEnum.WEEKLY: 7,
    FrequencyEnum.BIWEEKLY: 14,
}


@dataclass(frozen=True)
class RecurrenceRule:
    """The scheduling part of a recurring job."""
    frequency: FrequencyEnum
    start_date: date
    day_of_week: Optional[int] = None
    day_of_month: Optional[int] = None
    end_date: Optional[date] = None

    @classmethod
    def from_job(cls, job: Any) -> "RecurrenceRule":
        """Build a rule from a job row (or anything with the same attributes)."""
        try:
            frequency = FrequencyEnum(job.frequency)
        except ValueError:
            raise ValidationError(f"Unknown frequency: {job.frequency!r}")
        return cls(
            frequency=frequency,
            start_date=job.start_date,
            day_of_week=job.day_of_week,
            day_of_month=job.day_of_month,
            end_date=job.end_date,
        )


def parse_weekday(value: Any) -> int:
    """Accept 0-6 or a day name ("monday", "mon") and return 0-6."""
    if isinstance(value, str):
        key = value.strip().lower()
        if key.isdigit():
            return parse_weekday(int(key))
        if key not in WEEKDAYS:
            raise ValidationError(f"Unknown weekday: {value!r}")
        return WEEKDAYS[key]
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 6:
        raise ValidationError(f"day_of_week must be between 0 and 6, got {value!r}")
    return value


def weekday_of(day: date) -> int:
    """Weekday of a date with 0 = Sunday."""
    return day.isoweekday() % 7


def validate_rule(rule: Any) -> None:
    """
    Reject rules the engine cannot schedule.

    Raises:
        ValidationError: unknown frequency, missing or out-of-range day
            field for the frequency, missing start date, or an end date
            before the start date.
    """
    try:
        frequency = FrequencyEnum(rule.frequency)
    except ValueError:
        raise ValidationError(f"Unknown frequency: {rule.frequency!r}")

    if rule.start_date is None:
        raise ValidationError("start_date is required")

    if frequency in _STEP_DAYS:
        if rule.day_of_week is None:
            raise ValidationError(f"day_of_week is required for {frequency.value} jobs")
        parse_weekday(rule.day_of_week)
    else:
        if rule.day_of_month is None:
            raise ValidationError("day_of_month is required for monthly jobs")
        if not 1 <= rule.day_of_month <= MAX_DAY_OF_MONTH:
            raise ValidationError(
                f"day_of_month must be between 1 and {MAX_DAY_OF_MONTH}, got {rule.day_of_month}"
            )

    if rule.end_date is not None and rule.end_date < rule.start_date:
        raise ValidationError("end_date must not be before start_date")


def _clamped_month_day(year: int, month: int, day_of_month: int) -> date:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day_of_month, last_day))


def _weekly_dates(rule: RecurrenceRule, lower: date, upper: date) -> List[date]:
    step = _STEP_DAYS[rule.frequency]

    # Anchor on start_date so biweekly parity never depends on the window
    offset = (rule.day_of_week - weekday_of(rule.start_date)) % 7
    cursor = rule.start_date + timedelta(days=offset)
    if cursor < lower:
        periods = -(-(lower - cursor).days // step)
        cursor += timedelta(days=periods * step)

    dates = []
    while cursor <= upper:
        dates.append(cursor)
        cursor += timedelta(days=step)
    return dates


def _monthly_dates(rule: RecurrenceRule, lower: date, upper: date) -> List[date]:
    dates = []
    year, month = lower.year, lower.month
    while (year, month) <= (upper.year, upper.month):
        candidate = _clamped_month_day(year, month, rule.day_of_month)
        if lower <= candidate <= upper:
            dates.append(candidate)
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return dates


def generate_dates(rule: RecurrenceRule, window_start: date, window_end: date) -> List[date]:
    """
    Dates matched by a rule inside an inclusive window.

    The effective window is [max(start_date, window_start),
    min(end_date, window_end)]; an empty window yields an empty list.

    Args:
        rule: A validated recurrence rule
        window_start: First date of interest (inclusive)
        window_end: Last date of interest (inclusive)

    Returns:
        Matching dates, sorted ascending, without duplicates
    """
    lower = max(rule.start_date, window_start)
    upper = window_end if rule.end_date is None else min(rule.end_date, window_end)
    if lower > upper:
        return []

    if rule.frequency in _STEP_DAYS:
        return _weekly_dates(rule, lower, upper)
    if rule.frequency == FrequencyEnum.MONTHLY:
        return _monthly_dates(rule, lower, upper)
    raise ValidationError(f"Unknown frequency: {rule.frequency!r}")


def next_date_after(rule: RecurrenceRule, day: date) -> Optional[date]:
    """First matching date strictly after ``day``, or None once the rule has ended."""
    # Every frequency matches at least once in any 62-day span
    start = max(day + timedelta(days=1), rule.start_date)
    dates = generate_dates(rule, start, start + timedelta(days=62))
    return dates[0] if dates else None
