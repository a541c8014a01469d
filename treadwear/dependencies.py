"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import Depends, HTTPException, Request

from treadwear.services.tracking import TrackingServices
from treadwear.tracking.base import Item


def get_tracking(request: Request) -> TrackingServices:
    """Return the tracking services the lifespan stored on ``app.state``."""
    services: TrackingServices | None = getattr(request.app.state, "tracking", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Tracking services are not ready")
    return services


# Annotated shortcut for route signatures
Tracking = Annotated[TrackingServices, Depends(get_tracking)]


async def resolve_item(item_id: uuid.UUID, tracking: Tracking) -> Item:
    """Path/body helper: load an item or raise ItemNotFound (mapped to 404)."""
    return await tracking.catalog.get_item(item_id)


PathItem = Annotated[Item, Depends(resolve_item)]
