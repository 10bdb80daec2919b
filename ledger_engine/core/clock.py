"""
Time source and business-calendar helpers.

Timestamps are stored as naive UTC. Calendar days ("process dates",
"unlock dates") are computed in the configured reference timezone.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Protocol
from zoneinfo import ZoneInfo


EPOCH = datetime(1970, 1, 1)


class Clock(Protocol):
    def now(self) -> datetime:
        """Current time as naive UTC."""
        ...


class SystemClock:
    """Wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


def business_date(moment: datetime, tz: ZoneInfo) -> date:
    """Calendar day of a naive UTC timestamp in the reference timezone."""
    return moment.replace(tzinfo=timezone.utc).astimezone(tz).date()


def day_start_utc(day: date, tz: ZoneInfo) -> datetime:
    """Naive UTC instant at which the given local calendar day begins."""
    local = datetime.combine(day, time.min, tzinfo=tz)
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def day_end_utc(day: date, tz: ZoneInfo) -> datetime:
    """Naive UTC instant at which the given local calendar day ends (exclusive)."""
    return day_start_utc(day + timedelta(days=1), tz)
