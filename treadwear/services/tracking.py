"""Wiring for the tracking core: store, provider, clock and services.

Everything is built explicitly and passed by constructor.  The FastAPI
lifespan keeps the resulting ``TrackingServices`` on ``app.state``; nothing
here is a module-level singleton.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from treadwear.config import Settings
from treadwear.tracking.aggregation import AggregationEngine
from treadwear.tracking.attribution_ledger import AttributionLedger
from treadwear.tracking.auto_manager import (
    AutoManagementController,
    fixed_window_recency,
    provider_recency,
)
from treadwear.tracking.base import ActivityDataProvider
from treadwear.tracking.clock import Clock, SystemClock
from treadwear.tracking.config_loader import (
    TrackingConfig,
    get_tracking_config,
    load_tracking_config,
)
from treadwear.tracking.integrity import IntegrityValidator
from treadwear.tracking.item_catalog import ItemCatalog
from treadwear.tracking.providers import AppleHealthExportProvider, get_provider
from treadwear.tracking.scheduler import AutoManagementScheduler
from treadwear.tracking.session_store import SessionStore
from treadwear.tracking.store.base import PersistentStore
from treadwear.tracking.store.memory import InMemoryStore
from treadwear.tracking.store.sqlite import SqliteStore

logger = logging.getLogger("treadwear.services.tracking")


@dataclass
class TrackingServices:
    """Every tracking component of one running application."""

    config: TrackingConfig
    store: PersistentStore
    provider: ActivityDataProvider
    clock: Clock
    sessions: SessionStore
    ledger: AttributionLedger
    aggregation: AggregationEngine
    catalog: ItemCatalog
    controller: AutoManagementController
    scheduler: AutoManagementScheduler
    integrity: IntegrityValidator


async def open_store(settings: Settings) -> PersistentStore:
    """Create and connect the store selected by ``settings.storage_backend``.

    Raises:
        ValueError: For an unknown backend.
    """
    if settings.storage_backend == "memory":
        return InMemoryStore()
    if settings.storage_backend == "sqlite":
        store = SqliteStore(settings.database_path)
        await store.connect()
        return store
    raise ValueError(f"Unknown storage backend '{settings.storage_backend}'")


def build_provider(settings: Settings, config: TrackingConfig) -> ActivityDataProvider:
    """Instantiate the activity provider selected by ``settings.activity_source``.

    Raises:
        KeyError: If the source is not registered.
    """
    provider_cls = get_provider(settings.activity_source)
    if provider_cls is AppleHealthExportProvider and settings.apple_health_export_path:
        return AppleHealthExportProvider.from_file(
            settings.apple_health_export_path, tz=config.calendar.tz
        )
    return provider_cls(tz=config.calendar.tz)


def build_tracking_services(
    config: TrackingConfig,
    store: PersistentStore,
    provider: ActivityDataProvider,
    clock: Clock | None = None,
) -> TrackingServices:
    """Assemble the tracking components around an open store and provider."""
    clock = clock or SystemClock()
    tz = config.calendar.tz

    sessions = SessionStore(store, provider, clock, tz)
    ledger = AttributionLedger(store, provider, clock, tz)
    if config.sessions.recency_policy == "fixed_window":
        recency = fixed_window_recency(config.sessions.recency_window)
    else:
        recency = provider_recency(provider)
    controller = AutoManagementController(
        sessions,
        store,
        provider,
        clock,
        tz,
        recency=recency,
        inactivity_threshold=config.sessions.inactivity_threshold,
        auto_close_enabled=config.auto_management.auto_close_inactive_sessions,
        auto_start_enabled=config.auto_management.auto_start_default_item,
    )
    return TrackingServices(
        config=config,
        store=store,
        provider=provider,
        clock=clock,
        sessions=sessions,
        ledger=ledger,
        aggregation=AggregationEngine(sessions, ledger, store, clock, tz),
        catalog=ItemCatalog(
            store,
            sessions,
            clock,
            default_lifespan_km=config.items.default_lifespan_km,
            km_per_step=config.items.km_per_step,
        ),
        controller=controller,
        scheduler=AutoManagementScheduler(
            controller,
            interval_seconds=config.auto_management.tick_interval_seconds,
            clock=clock,
        ),
        integrity=IntegrityValidator(store, clock),
    )


async def open_tracking_services(settings: Settings) -> TrackingServices:
    """Resolve the tracking config, open the store and build every component.

    The bundled policy comes from the process-wide cache, so a
    ``reload_tracking_config()`` is picked up by the next service build.  An
    explicit ``tracking_config_path`` is always read from disk.
    """
    if settings.tracking_config_path:
        config = load_tracking_config(Path(settings.tracking_config_path))
    else:
        config = get_tracking_config()
    store = await open_store(settings)
    try:
        provider = build_provider(settings, config)
    except Exception:
        await store.close()
        raise
    logger.info(
        "Tracking services ready (store=%s, provider=%s, tz=%s)",
        settings.storage_backend,
        provider.source,
        config.calendar.timezone,
    )
    return build_tracking_services(config, store, provider)


async def close_tracking_services(services: TrackingServices) -> None:
    await services.scheduler.stop()
    await services.store.close()
    logger.info("Tracking services closed")
