"""Session lifecycle and hour attribution engine for treadwear.

Tracks which item (shoe) was worn during each hour of recorded activity and
derives per-item usage metrics.  Components, leaves first:

    clock / providers / store   time, activity data and persistence boundaries
    SessionStore                single-active-session lifecycle
    AttributionLedger           hour bucket to item assignments
    AggregationEngine           per-item metrics with legacy fallback
    AutoManagementController    auto-close and auto-start policy runner
"""

from treadwear.tracking.aggregation import AggregationEngine, AggregationPolicy, AggregationSource
from treadwear.tracking.attribution_ledger import AttributionLedger
from treadwear.tracking.auto_manager import AutoManagementController
from treadwear.tracking.base import (
    ActivityDataProvider,
    EnrichedHour,
    HourAttribution,
    HourBucket,
    HourlySample,
    Item,
    LegacyEntry,
    Session,
)
from treadwear.tracking.clock import Clock, FixedClock, SystemClock
from treadwear.tracking.item_catalog import ItemCatalog
from treadwear.tracking.session_store import SessionStore

__all__ = [
    "ActivityDataProvider",
    "AggregationEngine",
    "AggregationPolicy",
    "AggregationSource",
    "AttributionLedger",
    "AutoManagementController",
    "Clock",
    "EnrichedHour",
    "FixedClock",
    "HourAttribution",
    "HourBucket",
    "HourlySample",
    "Item",
    "ItemCatalog",
    "LegacyEntry",
    "Session",
    "SessionStore",
    "SystemClock",
]
