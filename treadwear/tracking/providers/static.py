"""In-memory activity provider for development, demos and tests."""

from __future__ import annotations

from datetime import date, datetime, timezone, tzinfo

from treadwear.tracking.base import ActivityDataProvider, HourBucket, HourlySample


class StaticActivityProvider(ActivityDataProvider):
    """Serves hourly samples held in memory.

    Args:
        samples:    Initial samples keyed by local calendar day.
        authorized: Value returned by ``authorized()``.
        tz:         Timezone the sample hours are expressed in.
    """

    source = "static"

    def __init__(
        self,
        samples: dict[date, list[HourlySample]] | None = None,
        authorized: bool = True,
        tz: tzinfo = timezone.utc,
    ) -> None:
        self._samples: dict[date, dict[int, HourlySample]] = {}
        self.is_authorized = authorized
        self._tz = tz
        for day, day_samples in (samples or {}).items():
            self.set_samples(day, day_samples)

    def set_samples(self, day: date, samples: list[HourlySample]) -> None:
        self._samples[day] = {s.hour: s for s in samples}

    def add_sample(self, day: date, sample: HourlySample) -> None:
        self._samples.setdefault(day, {})[sample.hour] = sample

    def clear(self) -> None:
        self._samples.clear()

    async def authorized(self) -> bool:
        return self.is_authorized

    async def hourly_samples(self, day: date) -> list[HourlySample]:
        if not self.is_authorized:
            return []
        return sorted(self._samples.get(day, {}).values(), key=lambda s: s.hour)

    async def has_activity_since(self, since: datetime) -> bool:
        if not self.is_authorized:
            return False
        for day, by_hour in self._samples.items():
            for sample in by_hour.values():
                if sample.steps <= 0:
                    continue
                if HourBucket.for_local_hour(day, sample.hour, self._tz).end > since:
                    return True
        return False
