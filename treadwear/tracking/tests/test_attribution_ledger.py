"""Tests for hour attribution upserts and the enriched hourly join."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from treadwear.tracking.attribution_ledger import (
    SOURCE_ATTRIBUTION,
    SOURCE_SESSION,
    AttributionLedger,
    join_hourly_samples,
)
from treadwear.tracking.base import HourAttribution, HourBucket, HourlySample, Session
from treadwear.tracking.errors import InvalidHourBucket, ItemArchived, RepositoryFailure
from treadwear.tracking.store.memory import InMemoryStore
from treadwear.tracking.tests.conftest import (
    ITEM_A_ID,
    ITEM_B_ID,
    TEST_DATE,
    TEST_NOW,
    at,
    make_item,
)


class FlakyStore(InMemoryStore):
    """Store without transactions that rejects one specific hour."""

    supports_transactions = False

    def __init__(self, bad_bucket: HourBucket) -> None:
        super().__init__()
        self.bad_bucket = bad_bucket

    async def upsert_attributions(self, attributions: list[HourAttribution]) -> None:
        if any(a.bucket == self.bad_bucket for a in attributions):
            raise OSError("write rejected")
        await super().upsert_attributions(attributions)


class TestAttribute:
    @pytest.mark.asyncio
    async def test_attribute_stores_provider_metrics(self, ledger, item_a, clock) -> None:
        attribution = await ledger.attribute(at(14, 25), item_a)

        assert attribution.bucket == HourBucket.from_datetime(at(14))
        assert attribution.item_id == item_a.item_id
        assert attribution.steps == 1000
        assert attribution.distance_km == pytest.approx(0.8)
        assert attribution.created_at == clock.now()

    @pytest.mark.asyncio
    async def test_hour_without_sample_gets_zero_metrics(self, ledger, item_a) -> None:
        attribution = await ledger.attribute(at(3), item_a)
        assert (attribution.steps, attribution.distance_km) == (0, 0.0)

    @pytest.mark.asyncio
    async def test_second_attribution_overwrites_first(
        self, ledger, store, item_a, item_b
    ) -> None:
        first = await ledger.attribute(at(14), item_a)
        second = await ledger.attribute(at(14, 40), item_b)

        stored = await store.list_attributions()
        assert len(stored) == 1
        assert stored[0].item_id == item_b.item_id
        assert second.attribution_id == first.attribution_id
        assert second.created_at == first.created_at

    @pytest.mark.asyncio
    async def test_repeated_attribution_is_idempotent(self, ledger, store, item_a) -> None:
        await ledger.attribute(at(9), item_a)
        snapshot = await store.list_attributions()
        await ledger.attribute(at(9), item_a)
        assert await store.list_attributions() == snapshot

    @pytest.mark.asyncio
    async def test_archived_item_rejected(self, ledger, store) -> None:
        archived = make_item(archived=True)
        await store.save_item(archived)
        with pytest.raises(ItemArchived):
            await ledger.attribute(at(9), archived)

    @pytest.mark.asyncio
    async def test_naive_timestamp_rejected(self, ledger, item_a) -> None:
        with pytest.raises(InvalidHourBucket):
            await ledger.attribute(datetime(2026, 2, 23, 9, 0), item_a)

    @pytest.mark.asyncio
    async def test_store_failure_wrapped(self, provider, clock, item_a) -> None:
        broken = InMemoryStore()
        broken.upsert_attributions = AsyncMock(side_effect=OSError("locked"))
        ledger = AttributionLedger(broken, provider, clock)

        with pytest.raises(RepositoryFailure) as excinfo:
            await ledger.attribute(at(9), item_a)
        assert isinstance(excinfo.value.__cause__, OSError)


class TestAttributeMany:
    @pytest.mark.asyncio
    async def test_batch_attributes_every_hour(self, ledger, item_a) -> None:
        result = await ledger.attribute_many([at(9), at(10, 15), at(9, 30)], item_a)

        assert result.ok
        assert [b.start for b in result.attributed] == [at(9), at(10)]
        assert await ledger.total_attributed_steps(item_a) == 6000

    @pytest.mark.asyncio
    async def test_invalid_hour_writes_nothing(self, ledger, store, item_a) -> None:
        with pytest.raises(InvalidHourBucket):
            await ledger.attribute_many([at(9), datetime(2026, 2, 23, 10)], item_a)
        assert await store.list_attributions() == []

    @pytest.mark.asyncio
    async def test_transactional_failure_writes_nothing(self, provider, clock, item_a) -> None:
        bad = HourBucket.from_datetime(at(10))
        store = FlakyStore(bad)
        store.supports_transactions = True
        ledger = AttributionLedger(store, provider, clock)

        with pytest.raises(RepositoryFailure):
            await ledger.attribute_many([at(9), at(10)], item_a)
        assert await store.list_attributions() == []

    @pytest.mark.asyncio
    async def test_best_effort_reports_failed_buckets(self, provider, clock, item_a) -> None:
        bad = HourBucket.from_datetime(at(10))
        store = FlakyStore(bad)
        ledger = AttributionLedger(store, provider, clock)

        result = await ledger.attribute_many([at(9), at(10), at(14)], item_a)

        assert not result.ok
        assert list(result.failed) == [bad]
        assert [b.start for b in result.attributed] == [at(9), at(14)]
        assert len(await store.list_attributions()) == 2

    @pytest.mark.asyncio
    async def test_empty_batch(self, ledger, item_a) -> None:
        result = await ledger.attribute_many([], item_a)
        assert result.ok and result.attributed == []


class TestRemove:
    @pytest.mark.asyncio
    async def test_remove_absent_hour_is_noop(self, ledger) -> None:
        assert await ledger.remove(at(9)) is False

    @pytest.mark.asyncio
    async def test_remove_existing_hour(self, ledger, item_a) -> None:
        await ledger.attribute(at(9), item_a)
        assert await ledger.remove(at(9, 59)) is True
        assert not await ledger.is_attributed(at(9))

    @pytest.mark.asyncio
    async def test_remove_many_ignores_missing(self, ledger, item_a) -> None:
        await ledger.attribute_many([at(9), at(10)], item_a)
        assert await ledger.remove_many([at(9), at(10), at(11)]) == 2


class TestQueries:
    @pytest.mark.asyncio
    async def test_totals_and_days(self, ledger, item_a, item_b) -> None:
        await ledger.attribute_many([at(9), at(14)], item_a)
        await ledger.attribute(at(10), item_b)

        assert await ledger.total_attributed_steps(item_a) == 5000
        assert await ledger.total_attributed_distance(item_a) == pytest.approx(3.8)
        assert await ledger.attribution_days(item_a) == {TEST_DATE}
        assert [a.bucket.start for a in await ledger.attributions_for(item_b)] == [at(10)]

    @pytest.mark.asyncio
    async def test_is_attributed_normalises_timestamp(self, ledger, item_a) -> None:
        await ledger.attribute(at(14), item_a)
        assert await ledger.is_attributed(at(14, 59))
        assert not await ledger.is_attributed(at(15))


class TestApplyTo:
    @pytest.mark.asyncio
    async def test_join_preserves_samples(self, ledger, provider, item_a) -> None:
        await ledger.attribute(at(14), item_a)
        samples = await provider.hourly_samples(TEST_DATE)

        enriched = await ledger.apply_to(samples, TEST_DATE)

        assert [(e.hour, e.steps, e.distance_km) for e in enriched] == [
            (s.hour, s.steps, s.distance_km) for s in samples
        ]
        by_hour = {e.hour: e for e in enriched}
        assert by_hour[14].assigned_item_id == item_a.item_id
        assert by_hour[14].assignment_source == SOURCE_ATTRIBUTION
        assert by_hour[14].timestamp == at(14)
        assert by_hour[9].assigned_item_id is None

    @pytest.mark.asyncio
    async def test_apply_to_does_not_write(self, ledger, store, provider) -> None:
        await ledger.apply_to(await provider.hourly_samples(TEST_DATE), TEST_DATE)
        assert await store.list_attributions() == []

    def test_session_fallback_and_attribution_priority(self) -> None:
        samples = [HourlySample(9, 4000, 3.0), HourlySample(10, 2000, 2.0), HourlySample(12, 10, 0.01)]
        attributions = [
            HourAttribution(bucket=HourBucket.from_datetime(at(10)), item_id=ITEM_B_ID)
        ]
        sessions = [Session(item_id=ITEM_A_ID, start_time=at(8, 30), end_time=at(11))]

        enriched = join_hourly_samples(
            samples, TEST_DATE, attributions, timezone.utc, sessions=sessions, now=TEST_NOW
        )

        assert [(e.assigned_item_id, e.assignment_source) for e in enriched] == [
            (ITEM_A_ID, SOURCE_SESSION),
            (ITEM_B_ID, SOURCE_ATTRIBUTION),
            (None, None),
        ]
