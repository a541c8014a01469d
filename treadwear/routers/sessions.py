"""Session endpoints: start, end, toggle and query wearing sessions."""

from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import APIRouter, Query

from treadwear.dependencies import Tracking
from treadwear.models.tracking import SessionAction, SessionRead, TickRead

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.get("/active", response_model=list[SessionRead])
async def active_sessions(tracking: Tracking) -> Any:
    return await tracking.sessions.active_sessions()


@router.get("", response_model=list[SessionRead])
async def sessions_on(tracking: Tracking, day: date = Query(...)) -> Any:
    return await tracking.sessions.sessions_on(day)


@router.post("/start", response_model=SessionRead, status_code=201)
async def start_session(tracking: Tracking, body: SessionAction) -> Any:
    item = await tracking.catalog.get_item(body.item_id)
    return await tracking.sessions.start(item)


@router.post("/end", response_model=SessionRead)
async def end_session(tracking: Tracking, body: SessionAction) -> Any:
    item = await tracking.catalog.get_item(body.item_id)
    return await tracking.sessions.end(item)


@router.post("/toggle", response_model=SessionRead)
async def toggle_session(tracking: Tracking, body: SessionAction) -> Any:
    item = await tracking.catalog.get_item(body.item_id)
    return await tracking.sessions.toggle(item)


@router.post("/auto-manage", response_model=TickRead)
async def run_auto_management(tracking: Tracking) -> Any:
    """Run one auto-management tick now instead of waiting for the scheduler."""
    return await tracking.controller.run_tick()
