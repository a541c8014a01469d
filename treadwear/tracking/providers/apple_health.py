"""Apple Health export provider.

Apple does not expose HealthKit to servers, so activity comes from the
``export.xml`` file produced by the Health app.  Step count and
walking/running distance records are binned into the local hour in which
each record starts.  Distances are converted to kilometres.

Usage::

    provider = AppleHealthExportProvider.from_file("export.xml", tz=config.calendar.tz)
    samples = await provider.hourly_samples(date(2026, 2, 23))
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, timezone, tzinfo
from pathlib import Path
from xml.etree import ElementTree as ET

from treadwear.tracking.base import ActivityDataProvider, HourlySample

logger = logging.getLogger("treadwear.tracking.providers.apple_health")

_HK_STEP_COUNT = "HKQuantityTypeIdentifierStepCount"
_HK_DISTANCE = "HKQuantityTypeIdentifierDistanceWalkingRunning"

# HealthKit unit string → kilometres per unit
_DISTANCE_UNITS_KM: dict[str, float] = {
    "km": 1.0,
    "m": 0.001,
    "mi": 1.609344,
    "ft": 0.0003048,
}

_HK_DATE_FORMAT = "%Y-%m-%d %H:%M:%S %z"


class AppleHealthExportProvider(ActivityDataProvider):
    """Activity provider backed by a parsed Apple Health XML export.

    The provider reports itself unauthorized until an export has been loaded.

    Args:
        tz: Timezone used to bin records into local hours.
    """

    source = "apple_health"

    def __init__(self, tz: tzinfo = timezone.utc) -> None:
        self._tz = tz
        self._hours: dict[date, dict[int, list[float]]] = defaultdict(
            lambda: defaultdict(lambda: [0, 0.0])
        )
        self._latest_step_at: datetime | None = None
        self._loaded = False

    @classmethod
    def from_file(cls, path: str | Path, tz: tzinfo = timezone.utc) -> AppleHealthExportProvider:
        provider = cls(tz=tz)
        provider.load_xml(Path(path).read_bytes())
        return provider

    def load_xml(self, xml_bytes: bytes) -> int:
        """Parse an export and merge its step and distance records.

        Args:
            xml_bytes: Contents of export.xml.

        Returns:
            Number of records used.

        Raises:
            ValueError: If the XML cannot be parsed.
        """
        try:
            root = ET.fromstring(xml_bytes)
        except ET.ParseError as exc:
            logger.error("Apple Health XML parse error: %s", exc)
            raise ValueError(f"Invalid Apple Health XML: {exc}") from exc

        used = 0
        for record in root.iter("Record"):
            rec_type = record.get("type", "")
            if rec_type not in (_HK_STEP_COUNT, _HK_DISTANCE):
                continue
            start = self._parse_date(record.get("startDate"))
            end = self._parse_date(record.get("endDate")) or start
            try:
                value = float(record.get("value", ""))
            except ValueError:
                continue
            if start is None or value < 0:
                continue

            local = start.astimezone(self._tz)
            bucket = self._hours[local.date()][local.hour]
            if rec_type == _HK_STEP_COUNT:
                bucket[0] += int(round(value))
                if value > 0 and (self._latest_step_at is None or end > self._latest_step_at):
                    self._latest_step_at = end
            else:
                factor = _DISTANCE_UNITS_KM.get(record.get("unit", "km"))
                if factor is None:
                    logger.debug("Skipping distance record with unit %r", record.get("unit"))
                    continue
                bucket[1] += value * factor
            used += 1

        self._loaded = True
        logger.info("Apple Health XML: loaded %d step/distance records", used)
        return used

    def _parse_date(self, value: str | None) -> datetime | None:
        if not value:
            return None
        try:
            parsed = datetime.strptime(value, _HK_DATE_FORMAT)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(value)
            except ValueError:
                return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=self._tz)
        return parsed.astimezone(timezone.utc)

    async def authorized(self) -> bool:
        return self._loaded

    async def hourly_samples(self, day: date) -> list[HourlySample]:
        by_hour = self._hours.get(day, {})
        return [
            HourlySample(hour=hour, steps=int(totals[0]), distance_km=totals[1])
            for hour, totals in sorted(by_hour.items())
        ]

    async def has_activity_since(self, since: datetime) -> bool:
        return self._latest_step_at is not None and self._latest_step_at >= since
