"""Tests for HourBucket normalisation and session hour coverage."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from treadwear.tracking.base import HourBucket, Session, hours_between
from treadwear.tracking.errors import InvalidHourBucket
from treadwear.tracking.tests.conftest import ITEM_A_ID, TEST_DATE, at


class TestFromDatetime:
    """Truncation to the top of the hour."""

    def test_drops_minutes_seconds_and_microseconds(self) -> None:
        bucket = HourBucket.from_datetime(
            datetime(2026, 2, 23, 14, 59, 59, 999999, tzinfo=timezone.utc)
        )
        assert bucket.start == at(14)
        assert bucket.epoch_seconds % 3600 == 0

    def test_same_hour_gives_equal_buckets(self) -> None:
        assert HourBucket.from_datetime(at(14, 5)) == HourBucket.from_datetime(at(14, 55))

    def test_offset_timezone_maps_to_same_instant(self) -> None:
        plus_two = timezone(timedelta(hours=2))
        local = datetime(2026, 2, 23, 16, 20, tzinfo=plus_two)
        assert HourBucket.from_datetime(local) == HourBucket.from_datetime(at(14))

    def test_naive_datetime_rejected(self) -> None:
        with pytest.raises(InvalidHourBucket):
            HourBucket.from_datetime(datetime(2026, 2, 23, 14, 0))

    def test_non_datetime_rejected(self) -> None:
        with pytest.raises(InvalidHourBucket):
            HourBucket.from_datetime(date(2026, 2, 23))  # type: ignore[arg-type]
        with pytest.raises(InvalidHourBucket):
            HourBucket.from_datetime("2026-02-23T14:00:00Z")  # type: ignore[arg-type]

    def test_coerce_passes_buckets_through(self) -> None:
        bucket = HourBucket.from_datetime(at(9))
        assert HourBucket.coerce(bucket) is bucket
        assert HourBucket.coerce(at(9, 30)) == bucket


class TestBucketValue:
    def test_misaligned_epoch_rejected(self) -> None:
        with pytest.raises(InvalidHourBucket):
            HourBucket(1_000)

    def test_non_integer_epoch_rejected(self) -> None:
        with pytest.raises(InvalidHourBucket):
            HourBucket(3600.0)  # type: ignore[arg-type]

    def test_ordering_and_shift(self) -> None:
        nine = HourBucket.from_datetime(at(9))
        ten = nine.shift(1)
        assert nine < ten
        assert ten.start == at(10)
        assert nine.end == ten.start

    def test_local_hour_helpers(self) -> None:
        bucket = HourBucket.for_local_hour(TEST_DATE, 23, timezone.utc)
        assert bucket.local_day(timezone.utc) == TEST_DATE
        assert bucket.local_hour(timezone.utc) == 23

    def test_for_local_hour_rejects_out_of_range(self) -> None:
        with pytest.raises(InvalidHourBucket):
            HourBucket.for_local_hour(TEST_DATE, 24, timezone.utc)


class TestHourCoverage:
    def test_hours_between_is_half_open(self) -> None:
        buckets = list(hours_between(at(9), at(11)))
        assert [b.start for b in buckets] == [at(9), at(10)]

    def test_partial_hours_are_included(self) -> None:
        buckets = list(hours_between(at(9, 45), at(11, 15)))
        assert [b.start for b in buckets] == [at(9), at(10), at(11)]

    def test_empty_interval(self) -> None:
        assert list(hours_between(at(9), at(9))) == []

    def test_active_session_covers_hours_up_to_now(self) -> None:
        session = Session(item_id=ITEM_A_ID, start_time=at(13, 10))
        covered = session.covered_hours(now=at(15, 30))
        assert [b.start for b in covered] == [at(13), at(14), at(15)]
        assert session.covers(HourBucket.from_datetime(at(15)), now=at(15, 30))
        assert not session.covers(HourBucket.from_datetime(at(16)), now=at(15, 30))
