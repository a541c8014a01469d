"""Health check endpoint."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request


router = APIRouter(tags=["system"])
logger = logging.getLogger("treadwear.health")


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also performs a lightweight store read and reports the scheduler state.
    """
    settings = request.app.state.settings
    tracking = getattr(request.app.state, "tracking", None)
    store_ok = False
    scheduler_running = False
    if tracking is not None:
        scheduler_running = tracking.scheduler.running
        try:
            await tracking.store.list_active_sessions()
            store_ok = True
        except Exception as exc:
            logger.warning("Health check store probe failed: %s", exc)

    return {
        "status": "healthy" if store_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "store": "connected" if store_ok else "unreachable",
        "auto_management": "running" if scheduler_running else "stopped",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
