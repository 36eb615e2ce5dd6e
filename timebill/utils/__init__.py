"""Utility modules for Timebill."""

from .datetime_utils import (
    get_local_tz,
    get_local_now,
    get_local_today,
)

__all__ = [
    "get_local_tz",
    "get_local_now",
    "get_local_today",
]
