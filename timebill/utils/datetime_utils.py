"""
Calendar date utilities.

Occurrences are plain local calendar dates. The configured timezone is
used for exactly one thing: deciding which date "today" is on the host.
"""

from datetime import date, datetime
import pytz

from config import settings


def get_local_tz() -> pytz.BaseTzInfo:
    """Get the configured local timezone."""
    return pytz.timezone(settings.timezone)


def get_local_now() -> datetime:
    """Get current time in local timezone (naive)."""
    local_tz = get_local_tz()
    return datetime.now(local_tz).replace(tzinfo=None)


def get_local_today() -> date:
    """Today's calendar date in the configured timezone."""
    return get_local_now().date()

