"""Hour attribution endpoints and the enriched hourly journal."""

from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import APIRouter, Query, Response
from pydantic import AwareDatetime

from treadwear.dependencies import Tracking
from treadwear.models.tracking import (
    AttributionBatchRead,
    AttributionBatchRequest,
    AttributionRead,
    AttributionRemoveRequest,
    AttributionRequest,
    EnrichedHourRead,
)
from treadwear.tracking.base import HourAttribution

router = APIRouter(prefix="/attributions", tags=["attributions"])


def _to_read(attribution: HourAttribution) -> AttributionRead:
    return AttributionRead(
        attribution_id=attribution.attribution_id,
        hour=attribution.bucket.start,
        item_id=attribution.item_id,
        steps=attribution.steps,
        distance_km=attribution.distance_km,
        created_at=attribution.created_at,
    )


@router.get("", response_model=list[AttributionRead])
async def attributions_on(tracking: Tracking, day: date = Query(...)) -> Any:
    return [_to_read(a) for a in await tracking.ledger.attributions_on(day)]


@router.put("", response_model=AttributionRead)
async def attribute_hour(tracking: Tracking, body: AttributionRequest) -> Any:
    item = await tracking.catalog.get_item(body.item_id)
    return _to_read(await tracking.ledger.attribute(body.hour, item))


@router.put("/batch", response_model=AttributionBatchRead)
async def attribute_hours(tracking: Tracking, body: AttributionBatchRequest) -> Any:
    item = await tracking.catalog.get_item(body.item_id)
    result = await tracking.ledger.attribute_many(body.hours, item)
    return AttributionBatchRead(
        attributed=[bucket.start for bucket in result.attributed],
        failed={str(bucket): message for bucket, message in result.failed.items()},
    )


@router.delete("", status_code=204)
async def remove_attribution(tracking: Tracking, hour: AwareDatetime = Query(...)) -> Response:
    await tracking.ledger.remove(hour)
    return Response(status_code=204)


@router.post("/remove")
async def remove_attributions(tracking: Tracking, body: AttributionRemoveRequest) -> dict:
    removed = await tracking.ledger.remove_many(body.hours)
    return {"removed": removed}


@router.get("/journal", response_model=list[EnrichedHourRead])
async def hourly_journal(
    tracking: Tracking,
    day: date = Query(...),
    include_sessions: bool = Query(default=True),
) -> Any:
    """Provider samples for ``day`` with the item each hour is assigned to."""
    samples = await tracking.provider.hourly_samples(day)
    sessions = await tracking.sessions.sessions_on(day) if include_sessions else None
    return await tracking.ledger.apply_to(samples, day, sessions=sessions)
