"""
Usage day resolution.

All quota counters are bucketed by a calendar day computed under a fixed
UTC offset, so every server instance agrees on when the day rolls over no
matter what timezone the host is configured with.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

DEFAULT_UTC_OFFSET_HOURS = -6


def usage_day(now: Optional[datetime] = None, utc_offset_hours: int = DEFAULT_UTC_OFFSET_HOURS) -> str:
    """Return the ISO date of the usage day containing ``now``.

    Args:
        now: Instant to resolve. Naive datetimes are taken as UTC.
            Defaults to the current time.
        utc_offset_hours: Fixed offset of the reference timezone

    Returns:
        Date string in YYYY-MM-DD format
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    reference = timezone(timedelta(hours=utc_offset_hours))
    return now.astimezone(reference).date().isoformat()


@dataclass(frozen=True)
class DayClock:
    """Callable that yields the current usage day for a fixed offset."""
    utc_offset_hours: int = DEFAULT_UTC_OFFSET_HOURS

    def __call__(self) -> str:
        return usage_day(utc_offset_hours=self.utc_offset_hours)
