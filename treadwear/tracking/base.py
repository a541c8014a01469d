"""Canonical data models for the treadwear tracking core.

Items are the physical things being worn (shoes).  Sessions record when an
item was worn, hour attributions pin a single hour of recorded activity to an
item, and legacy entries are imported activity records that predate the
session model.  Every component of the core reads and writes these types.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterator
from uuid import UUID, uuid4

from treadwear.tracking.clock import utc_now
from treadwear.tracking.errors import InvalidHourBucket

logger = logging.getLogger("treadwear.tracking")

DEFAULT_LIFESPAN_KM = 800.0
KM_PER_STEP = 0.0007
SECONDS_PER_HOUR = 3600


# ---------------------------------------------------------------------------
# Hour bucket
# ---------------------------------------------------------------------------


@dataclass(frozen=True, order=True)
class HourBucket:
    """An hour of wall time, keyed by the epoch second at which it starts.

    Buckets are epoch-aligned, so they never depend on locale or calendar
    settings.  The attribution ledger uses them as its upsert key.

    Attributes:
        epoch_seconds: Seconds since the Unix epoch, always a multiple of 3600.
    """

    epoch_seconds: int

    def __post_init__(self) -> None:
        if isinstance(self.epoch_seconds, bool) or not isinstance(self.epoch_seconds, int):
            raise InvalidHourBucket(
                f"Hour bucket must be an integer epoch second, got {self.epoch_seconds!r}"
            )
        if self.epoch_seconds % SECONDS_PER_HOUR:
            raise InvalidHourBucket(
                f"Hour bucket {self.epoch_seconds} is not aligned to the hour"
            )

    @classmethod
    def from_datetime(cls, value: datetime) -> HourBucket:
        """Truncate a timezone-aware datetime to the start of its hour.

        Args:
            value: Any aware datetime.  Minutes, seconds and microseconds are dropped.

        Returns:
            The bucket containing ``value``.

        Raises:
            InvalidHourBucket: If ``value`` is not a datetime or is naive.
        """
        if not isinstance(value, datetime):
            raise InvalidHourBucket(f"Expected a datetime, got {type(value).__name__}")
        if value.tzinfo is None or value.utcoffset() is None:
            raise InvalidHourBucket(f"Naive datetime {value.isoformat()} has no timezone")
        seconds = math.floor(value.timestamp())
        return cls(seconds - seconds % SECONDS_PER_HOUR)

    @classmethod
    def coerce(cls, value: HourBucket | datetime) -> HourBucket:
        if isinstance(value, HourBucket):
            return value
        return cls.from_datetime(value)

    @classmethod
    def for_local_hour(cls, day: date, hour: int, tz: tzinfo) -> HourBucket:
        """Bucket for ``hour`` o'clock on ``day`` in timezone ``tz``."""
        if not 0 <= hour <= 23:
            raise InvalidHourBucket(f"Hour of day must be 0-23, got {hour}")
        return cls.from_datetime(datetime.combine(day, time(hour=hour), tzinfo=tz))

    @property
    def start(self) -> datetime:
        return datetime.fromtimestamp(self.epoch_seconds, tz=timezone.utc)

    @property
    def end(self) -> datetime:
        return self.start + timedelta(hours=1)

    def shift(self, hours: int) -> HourBucket:
        return HourBucket(self.epoch_seconds + hours * SECONDS_PER_HOUR)

    def local_day(self, tz: tzinfo) -> date:
        return self.start.astimezone(tz).date()

    def local_hour(self, tz: tzinfo) -> int:
        return self.start.astimezone(tz).hour

    def __str__(self) -> str:
        return self.start.isoformat()


def hours_between(start: datetime, end: datetime) -> Iterator[HourBucket]:
    """Yield every bucket the half-open interval [start, end) overlaps."""
    if end <= start:
        return
    bucket = HourBucket.from_datetime(start)
    while bucket.start < end:
        yield bucket
        bucket = bucket.shift(1)


# ---------------------------------------------------------------------------
# Items, sessions, attributions
# ---------------------------------------------------------------------------


@dataclass
class Item:
    """A wearable item, typically a pair of shoes.

    Attributes:
        brand:                 Manufacturer name.
        model:                 Model name.
        item_id:               Stable identity.
        estimated_lifespan_km: Distance the item is expected to last.  Must be > 0.
        archived:              Archived items cannot be worn or attributed to.
        is_default:            The item auto-start picks.  At most one item has it.
        notes:                 Free-form user notes.
        created_at:            Creation time (UTC).
        archived_at:           When the item was archived, if it is.
    """

    brand: str
    model: str
    item_id: UUID = field(default_factory=uuid4)
    estimated_lifespan_km: float = DEFAULT_LIFESPAN_KM
    archived: bool = False
    is_default: bool = False
    notes: str = ""
    created_at: datetime = field(default_factory=utc_now)
    archived_at: datetime | None = None

    @property
    def display_name(self) -> str:
        return f"{self.brand} {self.model}".strip()

    def lifespan_progress(self, distance_km: float) -> float:
        """Fraction of the lifespan consumed by ``distance_km``, capped at 1.0."""
        if self.estimated_lifespan_km <= 0:
            return 0.0
        return min(max(distance_km / self.estimated_lifespan_km, 0.0), 1.0)


@dataclass
class Session:
    """A span of time during which one item was worn.

    A session with no ``end_time`` is active.  Closing is terminal: a closed
    session is never reopened, a new one is started instead.

    Attributes:
        item_id:      Item being worn.
        start_time:   Aware UTC start.
        end_time:     Aware UTC end, or None while active.
        auto_started: Started by auto-management rather than the user.
        auto_closed:  Closed by auto-management after inactivity.
        steps:        Steps recorded while worn (captured on close).
        distance_km:  Distance recorded while worn (captured on close).
        session_id:   Stable identity.
    """

    item_id: UUID
    start_time: datetime
    end_time: datetime | None = None
    auto_started: bool = False
    auto_closed: bool = False
    steps: int = 0
    distance_km: float = 0.0
    session_id: UUID = field(default_factory=uuid4)

    @property
    def is_active(self) -> bool:
        return self.end_time is None

    def effective_end(self, now: datetime) -> datetime:
        return self.end_time if self.end_time is not None else now

    def duration(self, now: datetime) -> timedelta:
        """Elapsed wearing time; active sessions are measured up to ``now``."""
        return max(self.effective_end(now) - self.start_time, timedelta(0))

    def overlaps(self, start: datetime, end: datetime, now: datetime) -> bool:
        """True if the session intersects the half-open range [start, end)."""
        return self.start_time < end and self.effective_end(now) > start

    def covers(self, bucket: HourBucket, now: datetime) -> bool:
        return self.overlaps(bucket.start, bucket.end, now)

    def covered_hours(self, now: datetime) -> list[HourBucket]:
        return list(hours_between(self.start_time, self.effective_end(now)))


@dataclass
class HourAttribution:
    """One hour of recorded activity pinned to an item.

    Exactly one attribution exists per hour bucket; writing again overwrites
    the item and the metrics.

    Attributes:
        bucket:         The hour being attributed.
        item_id:        Item worn during that hour.
        steps:          Steps recorded in the hour.
        distance_km:    Distance recorded in the hour.
        created_at:     When the attribution was first written.
        attribution_id: Stable identity, kept across overwrites.
    """

    bucket: HourBucket
    item_id: UUID
    steps: int = 0
    distance_km: float = 0.0
    created_at: datetime = field(default_factory=utc_now)
    attribution_id: UUID = field(default_factory=uuid4)


@dataclass
class LegacyEntry:
    """Manual or imported activity record that predates sessions.

    Only consulted by aggregation when an item has no sessions and no
    attributions.
    """

    item_id: UUID
    start_time: datetime
    end_time: datetime
    steps: int = 0
    distance_km: float = 0.0
    entry_id: UUID = field(default_factory=uuid4)


# ---------------------------------------------------------------------------
# Activity data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HourlySample:
    """Activity totals for one local hour of a day, as reported by a provider.

    Attributes:
        hour:        Local hour of day, 0-23.
        steps:       Step count in the hour.
        distance_km: Walking/running distance in the hour.
    """

    hour: int
    steps: int = 0
    distance_km: float = 0.0


@dataclass(frozen=True)
class EnrichedHour:
    """An hourly sample joined with the item it is assigned to.

    ``assignment_source`` is ``"attribution"`` for explicit hour attributions,
    ``"session"`` when the hour falls inside a session, and None when the hour
    is unassigned.
    """

    hour: int
    timestamp: datetime
    steps: int
    distance_km: float
    assigned_item_id: UUID | None = None
    assignment_source: str | None = None


def estimate_distance_km(steps: int, km_per_step: float = KM_PER_STEP) -> float:
    """Estimate distance from a step count."""
    return max(steps, 0) * km_per_step


# ---------------------------------------------------------------------------
# Activity data provider
# ---------------------------------------------------------------------------


class ActivityDataProvider(ABC):
    """Abstract source of hourly step and distance data.

    Implementations wrap a sensor API, an export file, or an in-memory
    fixture.  Calls may block on I/O, so every query is a coroutine.
    """

    #: Registry key, e.g. "apple_health" or "static".
    source: str = ""

    @abstractmethod
    async def authorized(self) -> bool:
        """Return True if the provider may be queried."""

    @abstractmethod
    async def hourly_samples(self, day: date) -> list[HourlySample]:
        """Return the samples for each local hour of ``day`` that has data.

        Args:
            day: Calendar date in the provider's timezone.

        Returns:
            Samples sorted by hour.  Hours without data may be omitted.
        """

    @abstractmethod
    async def has_activity_since(self, since: datetime) -> bool:
        """Return True if any steps were recorded at or after ``since``."""

    async def has_activity_on(self, day: date) -> bool:
        """Return True if any hour of ``day`` recorded steps."""
        if not await self.authorized():
            return False
        return any(sample.steps > 0 for sample in await self.hourly_samples(day))
