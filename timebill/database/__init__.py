"""
Relational store for recurring jobs.

Handles:
- Recurring job rules and their billing options
- Materialized occurrences, unique per (job, date)
"""

from .connection import (
    get_database,
    Database,
    init_database,
    close_database,
)
from .models import (
    Base,
    FrequencyEnum,
    OccurrenceStatusEnum,
    OCCURRENCE_TRANSITIONS,
    RecurringJobDB,
    OccurrenceDB,
)

__all__ = [
    "get_database",
    "Database",
    "init_database",
    "close_database",
    "Base",
    "FrequencyEnum",
    "OccurrenceStatusEnum",
    "OCCURRENCE_TRANSITIONS",
    "RecurringJobDB",
    "OccurrenceDB",
]
