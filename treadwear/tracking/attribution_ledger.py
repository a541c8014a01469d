"""Hour-level attribution of recorded activity to items.

The ledger keeps at most one ``HourAttribution`` per hour bucket.  Writing
an hour that is already attributed overwrites it (last write wins), so every
write is an idempotent upsert.  The read side joins raw hourly samples from
the activity provider with the ledger to produce ``EnrichedHour`` records.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone, tzinfo

from treadwear.tracking.base import (
    ActivityDataProvider,
    EnrichedHour,
    HourAttribution,
    HourBucket,
    HourlySample,
    Item,
    Session,
)
from treadwear.tracking.clock import Clock, day_bounds
from treadwear.tracking.errors import ItemArchived, repository_errors
from treadwear.tracking.store.base import PersistentStore

logger = logging.getLogger("treadwear.tracking.attribution_ledger")

SOURCE_ATTRIBUTION = "attribution"
SOURCE_SESSION = "session"


@dataclass
class AttributionBatchResult:
    """Outcome of ``attribute_many``.

    Attributes:
        attributed: Buckets written.
        failed:     Buckets that could not be written, with the error message.
                    Only populated when the store cannot apply a batch atomically.
    """

    attributed: list[HourBucket] = field(default_factory=list)
    failed: dict[HourBucket, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


def join_hourly_samples(
    samples: Sequence[HourlySample],
    day: date,
    attributions: Iterable[HourAttribution],
    tz: tzinfo,
    sessions: Sequence[Session] | None = None,
    now: datetime | None = None,
) -> list[EnrichedHour]:
    """Attach the assigned item to each hourly sample of ``day``.

    An explicit attribution for the hour wins.  When ``sessions`` is given,
    an unattributed hour falls back to the session covering it.

    Args:
        samples:      Raw samples from the activity provider.
        day:          Calendar day the samples belong to, in ``tz``.
        attributions: Attributions that may cover the day.
        tz:           Timezone the sample hours are expressed in.
        sessions:     Optional sessions for the fallback lookup.
        now:          End used for active sessions.  Defaults to the current time.

    Returns:
        One EnrichedHour per input sample, in input order, with the sample's
        hour, steps and distance unchanged.
    """
    by_bucket = {a.bucket: a for a in attributions}
    now = now or datetime.now(timezone.utc)
    enriched: list[EnrichedHour] = []

    for sample in samples:
        bucket = HourBucket.for_local_hour(day, sample.hour, tz)
        assigned = None
        source = None

        attribution = by_bucket.get(bucket)
        if attribution is not None:
            assigned, source = attribution.item_id, SOURCE_ATTRIBUTION
        elif sessions:
            covering = next((s for s in sessions if s.covers(bucket, now)), None)
            if covering is not None:
                assigned, source = covering.item_id, SOURCE_SESSION

        enriched.append(
            EnrichedHour(
                hour=sample.hour,
                timestamp=bucket.start,
                steps=sample.steps,
                distance_km=sample.distance_km,
                assigned_item_id=assigned,
                assignment_source=source,
            )
        )
    return enriched


class AttributionLedger:
    """Owns the hour-to-item assignment map.

    Args:
        store:    Persistent store holding attributions.
        provider: Activity source supplying each hour's steps and distance.
        clock:    Time source for ``created_at`` stamps.
        tz:       Timezone for day-based queries and provider lookups.
    """

    def __init__(
        self,
        store: PersistentStore,
        provider: ActivityDataProvider,
        clock: Clock,
        tz: tzinfo = timezone.utc,
    ) -> None:
        self._store = store
        self._provider = provider
        self._clock = clock
        self._tz = tz

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def attribute(self, hour: HourBucket | datetime, item: Item) -> HourAttribution:
        """Assign the hour containing ``hour`` to ``item``.

        Stores the provider's steps and distance for that hour (zero when the
        provider has no sample).  An existing attribution for the bucket is
        overwritten but keeps its identity and creation time.

        Raises:
            ItemArchived:      If the item is archived.
            InvalidHourBucket: If ``hour`` is naive or not a datetime.
            RepositoryFailure: If the store fails.
        """
        if item.archived:
            raise ItemArchived(item.item_id)
        bucket = HourBucket.coerce(hour)
        samples = await self._samples_for([bucket])

        with repository_errors("read attribution"):
            existing = await self._store.get_attribution(bucket)
        attribution = self._build(bucket, item, samples.get(bucket), existing)
        with repository_errors("write attribution"):
            await self._store.upsert_attributions([attribution])

        logger.debug("Hour %s attributed to item %s", bucket, item.item_id)
        return attribution

    async def attribute_many(
        self, hours: Iterable[HourBucket | datetime], item: Item
    ) -> AttributionBatchResult:
        """Attribute several hours to ``item``.

        Every timestamp is validated before anything is written.  Stores that
        support transactions get the whole batch in one atomic write; other
        stores are written hour by hour and failures are reported per bucket.

        Raises:
            ItemArchived:      If the item is archived.
            InvalidHourBucket: If any timestamp is invalid.  Nothing is written.
            RepositoryFailure: If an atomic batch write fails.  Nothing is written.
        """
        if item.archived:
            raise ItemArchived(item.item_id)
        buckets = list(dict.fromkeys(HourBucket.coerce(h) for h in hours))
        result = AttributionBatchResult()
        if not buckets:
            return result

        samples = await self._samples_for(buckets)
        with repository_errors("read attributions"):
            existing = {
                a.bucket: a
                for a in await self._store.list_attributions(
                    start=min(buckets).start, end=max(buckets).end
                )
            }
        attributions = [
            self._build(b, item, samples.get(b), existing.get(b)) for b in buckets
        ]

        if self._store.supports_transactions:
            with repository_errors("write attributions"):
                await self._store.upsert_attributions(attributions)
            result.attributed = buckets
        else:
            for attribution in attributions:
                try:
                    await self._store.upsert_attributions([attribution])
                except Exception as exc:
                    logger.warning("Failed to attribute hour %s: %s", attribution.bucket, exc)
                    result.failed[attribution.bucket] = str(exc)
                else:
                    result.attributed.append(attribution.bucket)

        logger.info(
            "Attributed %d hour(s) to item %s (%d failed)",
            len(result.attributed),
            item.item_id,
            len(result.failed),
        )
        return result

    async def remove(self, hour: HourBucket | datetime) -> bool:
        """Delete the attribution for the hour.  Absent hours are a no-op.

        Returns:
            True if an attribution was removed.
        """
        bucket = HourBucket.coerce(hour)
        with repository_errors("delete attribution"):
            removed = await self._store.delete_attributions([bucket])
        return removed > 0

    async def remove_many(self, hours: Iterable[HourBucket | datetime]) -> int:
        buckets = [HourBucket.coerce(h) for h in hours]
        if not buckets:
            return 0
        with repository_errors("delete attributions"):
            return await self._store.delete_attributions(buckets)

    def _build(
        self,
        bucket: HourBucket,
        item: Item,
        sample: HourlySample | None,
        existing: HourAttribution | None,
    ) -> HourAttribution:
        steps = sample.steps if sample else 0
        distance = sample.distance_km if sample else 0.0
        if existing is not None:
            return replace(existing, item_id=item.item_id, steps=steps, distance_km=distance)
        return HourAttribution(
            bucket=bucket,
            item_id=item.item_id,
            steps=steps,
            distance_km=distance,
            created_at=self._clock.now(),
        )

    async def _samples_for(self, buckets: list[HourBucket]) -> dict[HourBucket, HourlySample]:
        if not await self._provider.authorized():
            return {}
        found: dict[HourBucket, HourlySample] = {}
        for day in sorted({b.local_day(self._tz) for b in buckets}):
            for sample in await self._provider.hourly_samples(day):
                found[HourBucket.for_local_hour(day, sample.hour, self._tz)] = sample
        return {b: found[b] for b in buckets if b in found}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def attribution_for(self, hour: HourBucket | datetime) -> HourAttribution | None:
        bucket = HourBucket.coerce(hour)
        with repository_errors("read attribution"):
            return await self._store.get_attribution(bucket)

    async def is_attributed(self, hour: HourBucket | datetime) -> bool:
        return await self.attribution_for(hour) is not None

    async def attributions_for(self, item: Item) -> list[HourAttribution]:
        with repository_errors("list attributions"):
            return await self._store.list_attributions(item_id=item.item_id)

    async def attributions_on(self, day: date) -> list[HourAttribution]:
        start, end = day_bounds(day, self._tz)
        with repository_errors("list attributions"):
            return await self._store.list_attributions(start=start, end=end)

    async def attribution_days(self, item: Item) -> set[date]:
        """Local calendar days on which the item has at least one attributed hour."""
        return {a.bucket.local_day(self._tz) for a in await self.attributions_for(item)}

    async def total_attributed_steps(self, item: Item) -> int:
        return sum(a.steps for a in await self.attributions_for(item))

    async def total_attributed_distance(self, item: Item) -> float:
        return sum(a.distance_km for a in await self.attributions_for(item))

    async def apply_to(
        self,
        samples: Sequence[HourlySample],
        day: date,
        sessions: Sequence[Session] | None = None,
    ) -> list[EnrichedHour]:
        """Join raw samples for ``day`` with the ledger.  Never writes.

        See ``join_hourly_samples`` for the assignment rules.
        """
        attributions = await self.attributions_on(day)
        return join_hourly_samples(
            samples,
            day,
            attributions,
            self._tz,
            sessions=sessions,
            now=self._clock.now(),
        )
