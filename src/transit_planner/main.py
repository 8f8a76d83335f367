"""FastAPI application entry point."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from transit_planner.config import get_settings
from transit_planner.errors import ScheduleIntegrityError
from transit_planner.logging import (
    bind_request_context,
    clear_request_context,
    get_logger,
    setup_logging,
)
from transit_planner.routers.admin import router as admin_router
from transit_planner.routers.plan import router as plan_router
from transit_planner.routers.routes import router as routes_router
from transit_planner.routers.stops import router as stops_router
from transit_planner.services.gtfs_static.fetcher import FetchError, InvalidZipError
from transit_planner.services.gtfs_static.loader import FeedLoadError
from transit_planner.services.gtfs_static.parser import MissingColumnError
from transit_planner.services.gtfs_static.reader import MissingRequiredFileError
from transit_planner.services.publisher import publish_reliability, publish_schedule
from transit_planner.services.realtime.source import get_live_source, reset_live_source
from transit_planner.services.reliability.migrations import SnapshotFormatError
from transit_planner.services.reliability.model import ReliabilityModel
from transit_planner.services.snapshots import get_reliability_store, get_schedule_store

logger = get_logger(__name__)

_STARTUP_SCHEDULE_ERRORS = (
    OSError,
    FetchError,
    InvalidZipError,
    MissingRequiredFileError,
    MissingColumnError,
    FeedLoadError,
    ScheduleIntegrityError,
)


async def load_initial_snapshots() -> None:
    """Publish the configured local schedule and reliability snapshot, if any.

    Failures are logged; the service starts without that snapshot and can be
    loaded later through the admin routes.
    """
    settings = get_settings()
    if settings.gtfs_static_path:
        try:
            await publish_schedule("local", settings.gtfs_static_path)
        except _STARTUP_SCHEDULE_ERRORS as exc:
            logger.error(
                "Initial schedule load failed",
                path=settings.gtfs_static_path,
                error=str(exc),
            )
    if settings.reliability_snapshot_path:
        try:
            publish_reliability(settings.reliability_snapshot_path)
        except (OSError, SnapshotFormatError) as exc:
            logger.error(
                "Initial reliability load failed",
                path=settings.reliability_snapshot_path,
                error=str(exc),
            )


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    setup_logging()
    logger.info("Starting Transit Planner API")

    await load_initial_snapshots()

    yield

    reset_live_source()
    logger.info("Shutting down Transit Planner API")


def snapshot_status() -> dict[str, Any]:
    """Describe the published schedule and reliability snapshots."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    today = now.astimezone(ZoneInfo(settings.service_timezone)).date()

    schedule = get_schedule_store().current_published()
    reliability = get_reliability_store().current_published()

    schedule_info: dict[str, Any] = {"loaded": schedule is not None}
    if schedule is not None:
        index = schedule.value
        schedule_info.update(
            {
                "version": schedule.version,
                "publishedAt": schedule.published_at.isoformat(),
                "expiryDate": index.expiry_date.isoformat() if index.expiry_date else None,
                "expired": index.is_expired(today),
                **index.stats(),
            }
        )

    reliability_info: dict[str, Any] = {"loaded": reliability is not None}
    if reliability is not None:
        model = ReliabilityModel.from_settings(reliability.value, settings)
        reliability_info.update(
            {
                "version": reliability.version,
                "publishedAt": reliability.published_at.isoformat(),
                "computedAt": reliability.value.computed_at.isoformat(),
                "source": reliability.value.source,
                "routes": len(reliability.value),
                "stale": model.is_stale(now),
            }
        )

    return {"schedule": schedule_info, "reliability": reliability_info}


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description=(
            "Multi-modal transit trip planner that ranks itineraries by "
            "duration, route reliability and transfer risk"
        ),
        lifespan=lifespan,
        docs_url="/docs" if settings.environment != "production" else None,
        redoc_url="/redoc" if settings.environment != "production" else None,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.environment == "development" else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request ID middleware
    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next: Any) -> Any:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        bind_request_context(request_id=request_id, path=request.url.path)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        clear_request_context()
        return response

    # Include routers
    app.include_router(plan_router)
    app.include_router(stops_router)
    app.include_router(routes_router)
    app.include_router(admin_router)

    # Health endpoint
    @app.get("/health", tags=["meta"])
    async def health_check() -> dict[str, Any]:
        """Health check endpoint returning application status."""
        settings = get_settings()
        missing_env = settings.missing_required_env()
        snapshots = snapshot_status()
        schedule = snapshots["schedule"]
        reliability = snapshots["reliability"]

        issues: list[str] = []
        if missing_env:
            issues.append("Missing required environment variables: " + ", ".join(missing_env))
        if not schedule["loaded"]:
            issues.append("Schedule not loaded")
        elif schedule["expired"]:
            issues.append(f"Schedule {schedule['version']} expired on {schedule['expiryDate']}")
        if reliability.get("stale"):
            issues.append("Reliability aggregates are stale")

        status = "unhealthy" if missing_env else "degraded" if issues else "healthy"

        return {
            "service": settings.app_name,
            "status": status,
            "version": settings.app_version,
            "environment": settings.environment,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": {
                "schedule": schedule["loaded"],
                "reliability": reliability["loaded"],
                "realtime": {"enabled": get_live_source().enabled},
            },
            "issues": issues,
        }

    @app.get("/meta/snapshots", tags=["meta"])
    async def get_snapshots() -> dict[str, Any]:
        """Describe the published snapshots."""
        return snapshot_status()

    # Attribution endpoint
    @app.get("/meta/attribution", tags=["meta"])
    async def get_attribution() -> dict[str, str]:
        """Get data attribution information required by the agencies."""
        return {"attribution": get_settings().data_attribution}

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled exception", exc_info=exc, path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            },
        )

    return app


app = create_app()
