"""
Quota Periods - UTC calendar windows for metering.

Windows are half-open [start, end) and computed at read time, so a
summary or quota check resets exactly at the boundary without any
scheduled job.
"""

from datetime import UTC, datetime, timedelta
from enum import Enum


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        raise ValueError("Period arithmetic requires timezone-aware datetimes")
    return moment.astimezone(UTC)


def day_start(moment: datetime) -> datetime:
    """Midnight UTC of the day containing moment."""
    utc = _as_utc(moment)
    return datetime(utc.year, utc.month, utc.day, tzinfo=UTC)


def next_day_start(moment: datetime) -> datetime:
    """Midnight UTC of the following day."""
    return day_start(moment) + timedelta(days=1)


def month_start(moment: datetime) -> datetime:
    """Midnight UTC on the first of the month containing moment."""
    utc = _as_utc(moment)
    return datetime(utc.year, utc.month, 1, tzinfo=UTC)


def next_month_start(moment: datetime) -> datetime:
    """Midnight UTC on the first of the following month."""
    utc = _as_utc(moment)
    if utc.month == 12:
        return datetime(utc.year + 1, 1, 1, tzinfo=UTC)
    return datetime(utc.year, utc.month + 1, 1, tzinfo=UTC)


class QuotaPeriod(str, Enum):
    """Length of a quota window."""

    DAY = "day"
    MONTH = "month"

    def window(self, moment: datetime) -> tuple[datetime, datetime]:
        """Return the [start, end) window containing moment."""
        if self is QuotaPeriod.DAY:
            return day_start(moment), next_day_start(moment)
        return month_start(moment), next_month_start(moment)
