"""Shared fixtures and builders for tracking core tests."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from uuid import UUID

import pytest
import pytest_asyncio

from treadwear.tracking.aggregation import AggregationEngine
from treadwear.tracking.attribution_ledger import AttributionLedger
from treadwear.tracking.auto_manager import AutoManagementController
from treadwear.tracking.base import HourlySample, Item, Session
from treadwear.tracking.clock import FixedClock
from treadwear.tracking.config_loader import TrackingConfig, load_tracking_config
from treadwear.tracking.item_catalog import ItemCatalog
from treadwear.tracking.providers.static import StaticActivityProvider
from treadwear.tracking.session_store import SessionStore
from treadwear.tracking.store.memory import InMemoryStore

# Fixtures directory
FIXTURES_DIR = Path(__file__).parent / "fixtures"

TEST_DATE = date(2026, 2, 23)
TEST_NOW = datetime(2026, 2, 23, 15, 30, tzinfo=timezone.utc)
ITEM_A_ID = UUID("aaaaaaaa-0000-4000-8000-000000000001")
ITEM_B_ID = UUID("bbbbbbbb-0000-4000-8000-000000000002")


def at(hour: int, minute: int = 0, day: date = TEST_DATE) -> datetime:
    """Aware UTC datetime on ``day``."""
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


def make_item(item_id: UUID | None = None, **overrides) -> Item:
    fields = {
        "brand": "Hoka",
        "model": "Clifton 9",
        "estimated_lifespan_km": 500.0,
        "created_at": TEST_NOW - timedelta(days=30),
    }
    fields.update(overrides)
    if item_id is not None:
        fields["item_id"] = item_id
    return Item(**fields)


def closed_session(item: Item, start: datetime, end: datetime, **overrides) -> Session:
    return Session(item_id=item.item_id, start_time=start, end_time=end, **overrides)


# ---------------------------------------------------------------------------
# Core components
# ---------------------------------------------------------------------------


@pytest.fixture
def tracking_config() -> TrackingConfig:
    """Load the bundled tracking config."""
    return load_tracking_config()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(TEST_NOW)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def provider() -> StaticActivityProvider:
    """Provider with a morning walk (09:00-10:59) and an afternoon walk (14:00)."""
    return StaticActivityProvider(
        {
            TEST_DATE: [
                HourlySample(hour=9, steps=4000, distance_km=3.0),
                HourlySample(hour=10, steps=2000, distance_km=2.0),
                HourlySample(hour=14, steps=1000, distance_km=0.8),
            ]
        }
    )


@pytest.fixture
def session_store(store, provider, clock) -> SessionStore:
    return SessionStore(store, provider, clock)


@pytest.fixture
def ledger(store, provider, clock) -> AttributionLedger:
    return AttributionLedger(store, provider, clock)


@pytest.fixture
def engine(session_store, ledger, store, clock) -> AggregationEngine:
    return AggregationEngine(session_store, ledger, store, clock)


@pytest.fixture
def catalog(store, session_store, clock) -> ItemCatalog:
    return ItemCatalog(store, session_store, clock)


@pytest.fixture
def controller(session_store, store, provider, clock) -> AutoManagementController:
    return AutoManagementController(session_store, store, provider, clock)


# ---------------------------------------------------------------------------
# Persisted items
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def item_a(store) -> Item:
    item = make_item(ITEM_A_ID, brand="Hoka", model="Clifton 9")
    await store.save_item(item)
    return item


@pytest_asyncio.fixture
async def item_b(store) -> Item:
    item = make_item(ITEM_B_ID, brand="Saucony", model="Ride 17")
    await store.save_item(item)
    return item
