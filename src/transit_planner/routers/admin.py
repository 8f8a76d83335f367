"""Admin routes for schedule and reliability snapshot reloads."""

from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from transit_planner.config import get_settings
from transit_planner.errors import ScheduleIntegrityError
from transit_planner.logging import get_logger
from transit_planner.services.gtfs_static.fetcher import FetchError, InvalidZipError
from transit_planner.services.gtfs_static.loader import FeedLoadError
from transit_planner.services.gtfs_static.parser import MissingColumnError
from transit_planner.services.gtfs_static.reader import MissingRequiredFileError
from transit_planner.services.publisher import publish_reliability, publish_schedule
from transit_planner.services.reliability.migrations import SnapshotFormatError

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


class ScheduleReloadRequest(BaseModel):
    """Request body for a schedule reload."""

    source_type: Literal["remote", "local"] = Field(
        default="remote",
        description="Source type: 'remote' for URL download, 'local' for filesystem path",
    )
    source: str = Field(
        default="",
        description="URL or local file path. Empty uses the configured default.",
    )
    strict: Optional[bool] = Field(
        default=None,
        description="Reject the feed on the first bad row. Defaults to GTFS_LOAD_STRICT.",
    )


class ScheduleReloadResponse(BaseModel):
    """Response body for a schedule reload."""

    status: Literal["success", "failed"]
    load_id: str
    version: Optional[str] = None
    expiry_date: Optional[str] = None
    published_at: str
    started_at: str
    ended_at: Optional[str] = None
    duration_ms: Optional[int] = None
    source: str
    feed_hash: str
    counts: Dict[str, Dict[str, int]]
    stats: Dict[str, int]
    warnings: List[str]
    errors: List[str]


class ReliabilityReloadRequest(BaseModel):
    path: str = Field(
        default="",
        description="Snapshot document path. Empty uses env RELIABILITY_SNAPSHOT_PATH.",
    )


class ReliabilityReloadResponse(BaseModel):
    version: str
    published_at: str
    computed_at: str
    source: str
    routes: int


# TODO: Add auth before exposing the admin routes outside a private network.
@router.post(
    "/schedule/reload",
    response_model=ScheduleReloadResponse,
    summary="Reload the static schedule",
    description=(
        "Load a GTFS feed from a remote URL or local path, build a new "
        "schedule index and publish it. On any failure the schedule already "
        "in service stays in place."
    ),
)
async def reload_schedule(body: ScheduleReloadRequest) -> Dict[str, Any]:
    """Load, index and publish a static GTFS feed."""
    settings = get_settings()
    # Resolve source: use configured default if empty
    source = body.source
    if not source:
        if body.source_type == "remote":
            source = settings.gtfs_static_url
        elif settings.gtfs_static_path:
            source = settings.gtfs_static_path
        else:
            raise HTTPException(
                status_code=400,
                detail="source is required when source_type is 'local'",
            )

    try:
        published, report = await publish_schedule(body.source_type, source, strict=body.strict)
    except FileNotFoundError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (FetchError, InvalidZipError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except MissingRequiredFileError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except MissingColumnError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except FeedLoadError as exc:
        raise HTTPException(status_code=400, detail=exc.report.to_dict()) from exc
    except ScheduleIntegrityError as exc:
        raise HTTPException(
            status_code=400, detail={"message": str(exc), "problems": exc.problems[:100]}
        ) from exc
    except Exception as exc:
        logger.error("Unexpected schedule reload error", exc_info=exc)
        raise HTTPException(
            status_code=500,
            detail=f"Reload failed unexpectedly: {type(exc).__name__}: {exc}",
        ) from exc

    data = report.to_dict()
    data["published_at"] = published.published_at.isoformat()
    data["stats"] = published.value.stats()
    return data


@router.post(
    "/reliability/reload",
    response_model=ReliabilityReloadResponse,
    summary="Reload reliability aggregates",
    description=(
        "Read a versioned reliability snapshot document, upgrade it to the "
        "current version and publish it. On failure the snapshot already in "
        "service stays in place."
    ),
)
async def reload_reliability(body: ReliabilityReloadRequest) -> Dict[str, Any]:
    """Load and publish a reliability snapshot."""
    path = body.path or get_settings().reliability_snapshot_path
    if not path:
        raise HTTPException(status_code=400, detail="path is required")

    try:
        published = publish_reliability(path)
    except FileNotFoundError as exc:
        raise HTTPException(status_code=400, detail=f"File not found: {path}") from exc
    except SnapshotFormatError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    snapshot = published.value
    return {
        "version": published.version,
        "published_at": published.published_at.isoformat(),
        "computed_at": snapshot.computed_at.isoformat(),
        "source": snapshot.source,
        "routes": len(snapshot),
    }
