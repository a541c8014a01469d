"""Treadwear API: FastAPI application entry point.

Run locally:
    uvicorn treadwear.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from treadwear.config import Settings, get_settings
from treadwear.routers import attributions, health, integrity, items, sessions
from treadwear.services.tracking import close_tracking_services, open_tracking_services
from treadwear.tracking.errors import (
    InvalidHourBucket,
    ItemArchived,
    ItemNotFound,
    RepositoryFailure,
    SessionAlreadyActive,
    SessionNotFound,
    TrackingError,
    ValidationFailed,
)

logger = logging.getLogger("treadwear")

# Domain error → HTTP status
_ERROR_STATUS: dict[type[TrackingError], int] = {
    ItemNotFound: 404,
    SessionNotFound: 404,
    ItemArchived: 409,
    SessionAlreadyActive: 409,
    InvalidHourBucket: 422,
    ValidationFailed: 422,
    RepositoryFailure: 503,
}


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings: Settings = app.state.settings
    logger.info(
        "Starting Treadwear API v%s [%s]",
        settings.app_version,
        settings.environment,
    )
    tracking = await open_tracking_services(settings)
    app.state.tracking = tracking
    if settings.auto_management_enabled and tracking.config.auto_management.enabled:
        tracking.scheduler.start()
    try:
        yield
    finally:
        await close_tracking_services(tracking)
        app.state.tracking = None
        logger.info("Treadwear API shut down")


async def tracking_error_handler(request: Request, exc: TrackingError) -> JSONResponse:
    status = next(
        (code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)),
        400,
    )
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    content: dict = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, ValidationFailed):
        content["errors"] = exc.errors
    return JSONResponse(status_code=status, content=content)


# ---------- App factory ----------

def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Treadwear API",
        description=(
            "Tracks which pair of shoes was worn during each hour of activity "
            "and reports per-item distance, steps and wear."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.tracking = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(TrackingError, tracking_error_handler)

    # ---------- Health check (outside v1 prefix, always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(items.router, prefix=v1_prefix)
    app.include_router(sessions.router, prefix=v1_prefix)
    app.include_router(attributions.router, prefix=v1_prefix)
    app.include_router(integrity.router, prefix=v1_prefix)

    return app


app = create_app()
