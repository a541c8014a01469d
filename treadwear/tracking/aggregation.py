"""Per-item usage metrics with a strict modern/legacy fallback.

An item's distance and steps come either from its sessions plus hour
attributions (the modern source) or, when it has neither, from its legacy
entries.  The two are never added together.  The choice is made once per
query by ``AggregationPolicy.select`` and every metric of that query is
computed from the same policy.

The engine only reads.  Nothing here writes to the store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone, tzinfo
from enum import Enum

from treadwear.tracking.attribution_ledger import AttributionLedger
from treadwear.tracking.base import HourAttribution, Item, LegacyEntry, Session
from treadwear.tracking.clock import Clock
from treadwear.tracking.errors import ValidationFailed, repository_errors
from treadwear.tracking.session_store import SessionStore
from treadwear.tracking.store.base import PersistentStore

logger = logging.getLogger("treadwear.tracking.aggregation")


class AggregationSource(str, Enum):
    MODERN = "modern"
    LEGACY = "legacy"


@dataclass(frozen=True)
class AggregationPolicy:
    """The data an item's metrics are computed from, tagged by source.

    A ``MODERN`` policy carries sessions and attributions and no legacy
    entries.  A ``LEGACY`` policy carries only legacy entries.
    """

    source: AggregationSource
    sessions: tuple[Session, ...] = ()
    attributions: tuple[HourAttribution, ...] = ()
    legacy_entries: tuple[LegacyEntry, ...] = ()

    @classmethod
    def select(
        cls,
        sessions: list[Session],
        attributions: list[HourAttribution],
        legacy_entries: list[LegacyEntry],
    ) -> AggregationPolicy:
        """Pick the modern source whenever any session or attribution exists."""
        if sessions or attributions:
            return cls(
                source=AggregationSource.MODERN,
                sessions=tuple(sessions),
                attributions=tuple(attributions),
            )
        return cls(source=AggregationSource.LEGACY, legacy_entries=tuple(legacy_entries))

    @property
    def total_distance(self) -> float:
        if self.source is AggregationSource.MODERN:
            return sum(s.distance_km for s in self.sessions) + sum(
                a.distance_km for a in self.attributions
            )
        return sum(e.distance_km for e in self.legacy_entries)

    @property
    def total_steps(self) -> int:
        if self.source is AggregationSource.MODERN:
            return sum(s.steps for s in self.sessions) + sum(a.steps for a in self.attributions)
        return sum(e.steps for e in self.legacy_entries)

    def usage_days(self, tz: tzinfo) -> set[date]:
        if self.source is AggregationSource.MODERN:
            days = {s.start_time.astimezone(tz).date() for s in self.sessions}
            days.update(a.bucket.local_day(tz) for a in self.attributions)
            return days
        return {e.start_time.astimezone(tz).date() for e in self.legacy_entries}

    def last_used(self, now: datetime) -> datetime | None:
        if self.source is AggregationSource.MODERN:
            moments = [s.effective_end(now) for s in self.sessions]
            moments.extend(a.bucket.end for a in self.attributions)
        else:
            moments = [e.end_time for e in self.legacy_entries]
        return max(moments) if moments else None


@dataclass
class SessionStatistics:
    """Summary of an item's sessions.

    Attributes:
        session_count:            All sessions, active included.
        total_wearing_time:       Sum over closed sessions only.
        has_active_session:       True while the item is being worn.
        average_session_duration: Mean over closed sessions, zero if none.
    """

    session_count: int
    total_wearing_time: timedelta
    has_active_session: bool
    average_session_duration: timedelta


@dataclass
class ItemUsage:
    """Every usage metric for one item, computed from a single policy."""

    item_id: object
    source: AggregationSource
    total_distance_km: float
    total_steps: int
    wear_percentage: float
    remaining_distance_km: float
    is_active: bool
    total_wearing_time: timedelta
    usage_days: list[date] = field(default_factory=list)
    last_used: datetime | None = None


class AggregationEngine:
    """Computes per-item metrics from sessions, attributions and legacy entries.

    Args:
        sessions: Session store for session queries.
        ledger:   Attribution ledger for attribution queries.
        store:    Persistent store for legacy entries.
        clock:    Time source used for active sessions.
        tz:       Timezone for day-based metrics.
    """

    def __init__(
        self,
        sessions: SessionStore,
        ledger: AttributionLedger,
        store: PersistentStore,
        clock: Clock,
        tz: tzinfo = timezone.utc,
    ) -> None:
        self._sessions = sessions
        self._ledger = ledger
        self._store = store
        self._clock = clock
        self._tz = tz

    async def policy_for(self, item: Item) -> AggregationPolicy:
        sessions = await self._sessions.sessions_for(item)
        attributions = await self._ledger.attributions_for(item)
        legacy: list[LegacyEntry] = []
        if not sessions and not attributions:
            with repository_errors("list legacy entries"):
                legacy = await self._store.list_legacy_entries(item.item_id)
        return AggregationPolicy.select(sessions, attributions, legacy)

    async def total_distance(self, item: Item) -> float:
        return (await self.policy_for(item)).total_distance

    async def total_steps(self, item: Item) -> int:
        return (await self.policy_for(item)).total_steps

    async def wear_percentage(self, item: Item) -> float:
        """Fraction of the estimated lifespan consumed, clamped to [0, 1].

        Raises:
            ValidationFailed: If the item's lifespan is not positive.
        """
        return _wear(item, await self.total_distance(item))

    async def remaining_distance(self, item: Item) -> float:
        _check_lifespan(item)
        return max(item.estimated_lifespan_km - await self.total_distance(item), 0.0)

    async def is_active(self, item: Item) -> bool:
        return await self._sessions.active_session_for(item) is not None

    async def total_wearing_time(self, item: Item) -> timedelta:
        return await self._sessions.total_closed_duration(item)

    async def usage_days(self, item: Item) -> set[date]:
        return (await self.policy_for(item)).usage_days(self._tz)

    async def last_used(self, item: Item) -> datetime | None:
        return (await self.policy_for(item)).last_used(self._clock.now())

    async def session_statistics(self, item: Item) -> SessionStatistics:
        sessions = await self._sessions.sessions_for(item)
        closed = [s for s in sessions if s.end_time is not None]
        wearing = sum((s.end_time - s.start_time for s in closed), timedelta(0))
        return SessionStatistics(
            session_count=len(sessions),
            total_wearing_time=wearing,
            has_active_session=any(s.is_active for s in sessions),
            average_session_duration=wearing / len(closed) if closed else timedelta(0),
        )

    async def usage_summary(self, item: Item) -> ItemUsage:
        """All metrics for ``item`` from one policy evaluation."""
        policy = await self.policy_for(item)
        distance = policy.total_distance
        wearing = sum(
            (s.end_time - s.start_time for s in policy.sessions if s.end_time is not None),
            timedelta(0),
        )
        return ItemUsage(
            item_id=item.item_id,
            source=policy.source,
            total_distance_km=distance,
            total_steps=policy.total_steps,
            wear_percentage=_wear(item, distance),
            remaining_distance_km=max(item.estimated_lifespan_km - distance, 0.0),
            is_active=any(s.is_active for s in policy.sessions),
            total_wearing_time=wearing,
            usage_days=sorted(policy.usage_days(self._tz)),
            last_used=policy.last_used(self._clock.now()),
        )


def _check_lifespan(item: Item) -> None:
    if item.estimated_lifespan_km <= 0:
        raise ValidationFailed(
            f"Item {item.item_id} has a non-positive lifespan ({item.estimated_lifespan_km})"
        )


def _wear(item: Item, distance_km: float) -> float:
    _check_lifespan(item)
    return item.lifespan_progress(distance_km)
