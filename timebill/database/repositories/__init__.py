"""
Repository classes for database operations.

Each repository handles CRUD and guarded writes for its entity type.
"""

from .recurring import (
    RecurringJobRepository,
    OccurrenceRepository,
    get_recurring_job_repository,
    get_occurrence_repository,
    validate_job,
)

__all__ = [
    "RecurringJobRepository",
    "OccurrenceRepository",
    "get_recurring_job_repository",
    "get_occurrence_repository",
    "validate_job",
]
