"""Item endpoints: catalog management, usage metrics and legacy imports."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, Response

from treadwear.dependencies import PathItem, Tracking
from treadwear.models.tracking import (
    ItemCreate,
    ItemRead,
    ItemUsageRead,
    LegacyEntryCreate,
    LegacyEntryRead,
    SessionRead,
)

router = APIRouter(prefix="/items", tags=["items"])


# ---------- Catalog ----------

@router.get("", response_model=list[ItemRead])
async def list_items(
    tracking: Tracking, include_archived: bool = Query(default=False)
) -> Any:
    return await tracking.catalog.list_items(include_archived=include_archived)


@router.post("", response_model=ItemRead, status_code=201)
async def create_item(tracking: Tracking, body: ItemCreate) -> Any:
    return await tracking.catalog.create_item(
        brand=body.brand,
        model=body.model,
        estimated_lifespan_km=body.estimated_lifespan_km,
        is_default=body.is_default,
        notes=body.notes,
    )


@router.get("/{item_id}", response_model=ItemRead)
async def get_item(item: PathItem) -> Any:
    return item


@router.post("/{item_id}/archive", response_model=ItemRead)
async def archive_item(item: PathItem, tracking: Tracking) -> Any:
    return await tracking.catalog.archive_item(item)


@router.post("/{item_id}/unarchive", response_model=ItemRead)
async def unarchive_item(item: PathItem, tracking: Tracking) -> Any:
    return await tracking.catalog.unarchive_item(item)


@router.post("/{item_id}/default", response_model=ItemRead)
async def set_default_item(item: PathItem, tracking: Tracking) -> Any:
    return await tracking.catalog.set_default(item)


@router.delete("/{item_id}", status_code=204)
async def delete_item(item: PathItem, tracking: Tracking) -> Response:
    await tracking.catalog.delete_item(item)
    return Response(status_code=204)


# ---------- Usage ----------

@router.get("/{item_id}/usage", response_model=ItemUsageRead)
async def item_usage(item: PathItem, tracking: Tracking) -> Any:
    usage = await tracking.aggregation.usage_summary(item)
    return ItemUsageRead(
        item_id=usage.item_id,
        source=usage.source.value,
        total_distance_km=usage.total_distance_km,
        total_steps=usage.total_steps,
        wear_percentage=usage.wear_percentage,
        remaining_distance_km=usage.remaining_distance_km,
        is_active=usage.is_active,
        total_wearing_seconds=usage.total_wearing_time.total_seconds(),
        usage_days=usage.usage_days,
        last_used=usage.last_used,
    )


@router.get("/{item_id}/sessions", response_model=list[SessionRead])
async def item_sessions(item: PathItem, tracking: Tracking) -> Any:
    return await tracking.sessions.sessions_for(item)


# ---------- Legacy entries ----------

@router.post("/{item_id}/legacy-entries", response_model=LegacyEntryRead, status_code=201)
async def add_legacy_entry(item: PathItem, tracking: Tracking, body: LegacyEntryCreate) -> Any:
    return await tracking.catalog.add_legacy_entry(
        item,
        start_time=body.start_time,
        end_time=body.end_time,
        steps=body.steps,
        distance_km=body.distance_km,
    )
