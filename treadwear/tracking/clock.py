"""Time sources and calendar helpers.

All timestamps inside the tracking core are timezone-aware and normalised to
UTC.  Calendar days ("today", "sessions on a date") are resolved in the
configured tracking timezone via ``day_bounds`` and ``local_day``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta, timezone, tzinfo


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Clock(ABC):
    """Supplies the current time.  Inject a ``FixedClock`` for deterministic tests."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current time as an aware UTC datetime."""


class SystemClock(Clock):
    def now(self) -> datetime:
        return utc_now()


class FixedClock(Clock):
    """Clock that only moves when told to.

    Args:
        current: Starting instant.  Must be timezone-aware.
    """

    def __init__(self, current: datetime) -> None:
        if current.tzinfo is None:
            raise ValueError("FixedClock requires a timezone-aware datetime")
        self._current = current.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._current

    def set(self, current: datetime) -> None:
        if current.tzinfo is None:
            raise ValueError("FixedClock requires a timezone-aware datetime")
        self._current = current.astimezone(timezone.utc)

    def advance(self, delta: timedelta) -> datetime:
        self._current = self._current + delta
        return self._current


# ---------------------------------------------------------------------------
# Calendar helpers
# ---------------------------------------------------------------------------


def local_day(moment: datetime, tz: tzinfo) -> date:
    """Return the calendar date of ``moment`` in ``tz``."""
    return moment.astimezone(tz).date()


def day_bounds(day: date, tz: tzinfo) -> tuple[datetime, datetime]:
    """Return the UTC instants bounding ``day`` in ``tz`` as a half-open range.

    Args:
        day: Calendar date.
        tz:  Timezone the date is expressed in.

    Returns:
        (start, end) where start is local midnight and end the next local midnight.
    """
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)
