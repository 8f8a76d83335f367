"""Versioned reliability snapshot documents and their migrations.

Snapshots are persisted as JSON with a ``version`` field. Every version has
a typed pydantic model, and ``MIGRATIONS`` maps a version to the pure
function upgrading it to the next one. Documents are validated against
their own version's model first and upgraded one step at a time, so a
transform only ever sees a fully typed record.

Version 1 is the per-route summary record (camelCase keys, optionally a
bare JSON list). Version 2 adds day-type and time-band buckets, sample
counts and delay quantiles.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from transit_planner.logging import get_logger
from transit_planner.models.reliability import (
    DayType,
    DelayStats,
    ReliabilitySnapshot,
    RouteAggregates,
    TimeBand,
)

logger = get_logger(__name__)

CURRENT_VERSION = 2

# Weekend delays ran at roughly 90% of the weekday average in v1 data.
WEEKEND_DELAY_FACTOR = 0.9

_UNKNOWN_COMPUTED_AT = datetime(1970, 1, 1, tzinfo=timezone.utc)


class SnapshotFormatError(Exception):
    """Raised when a reliability document cannot be read or upgraded."""


# ---------------------------------------------------------------------------
# Version 1
# ---------------------------------------------------------------------------


class ReliabilityRecordV1(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    route_id: str = Field(alias="routeId", min_length=1)
    route_short_name: str = Field(default="", alias="routeShortName")
    on_time_performance: float = Field(alias="onTimePerformance", ge=0.0, le=1.0)
    average_delay_minutes: float = Field(alias="averageDelayMinutes")
    reliability: Optional[str] = None
    rush_hour_delay: Optional[float] = Field(default=None, alias="rushHourDelay")
    weekend_performance: Optional[float] = Field(
        default=None, alias="weekendPerformance", ge=0.0, le=1.0
    )
    data_source: str = Field(default="historical", alias="dataSource")
    last_updated: Optional[datetime] = Field(default=None, alias="lastUpdated")


class ReliabilityDocumentV1(BaseModel):
    version: Literal[1] = 1
    computed_at: Optional[datetime] = Field(default=None, alias="computedAt")
    routes: list[ReliabilityRecordV1]

    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Version 2
# ---------------------------------------------------------------------------


class DelayStatsV2(BaseModel):
    on_time_performance: float = Field(ge=0.0, le=1.0)
    average_delay_minutes: float
    sample_count: Optional[int] = Field(default=None, ge=0)
    quantiles: list[tuple[float, float]] = Field(default_factory=list)


class BucketStatsV2(DelayStatsV2):
    """Day-type aggregate when ``time_band`` is None, else a bucket."""

    day_type: DayType
    time_band: Optional[TimeBand] = None


class RouteRecordV2(BaseModel):
    route_id: str = Field(min_length=1)
    route_short_name: str = ""
    overall: DelayStatsV2
    buckets: list[BucketStatsV2] = Field(default_factory=list)


class ReliabilityDocumentV2(BaseModel):
    version: Literal[2] = 2
    computed_at: datetime
    source: str = "historical"
    routes: list[RouteRecordV2] = Field(default_factory=list)


ReliabilityDocument = Union[ReliabilityDocumentV1, ReliabilityDocumentV2]


# ---------------------------------------------------------------------------
# Migrations
# ---------------------------------------------------------------------------


def migrate_v1_to_v2(document: ReliabilityDocumentV1) -> ReliabilityDocumentV2:
    """Upgrade per-route summaries to bucketed aggregates.

    ``rushHourDelay`` becomes the weekday peak bucket and
    ``weekendPerformance`` the Saturday and Sunday aggregates. Sample counts
    are unknown, so every level is trusted as published. A document without
    any timestamp gets the epoch and is therefore reported stale.
    """
    timestamps = [r.last_updated for r in document.routes if r.last_updated is not None]
    computed_at = document.computed_at or (max(timestamps) if timestamps else None)

    routes: list[RouteRecordV2] = []
    for record in document.routes:
        buckets: list[BucketStatsV2] = []
        if record.rush_hour_delay is not None:
            buckets.append(
                BucketStatsV2(
                    day_type=DayType.WEEKDAY,
                    time_band=TimeBand.PEAK,
                    on_time_performance=record.on_time_performance,
                    average_delay_minutes=record.rush_hour_delay,
                )
            )
        if record.weekend_performance is not None:
            for day_type in (DayType.SATURDAY, DayType.SUNDAY):
                buckets.append(
                    BucketStatsV2(
                        day_type=day_type,
                        on_time_performance=record.weekend_performance,
                        average_delay_minutes=record.average_delay_minutes * WEEKEND_DELAY_FACTOR,
                    )
                )
        routes.append(
            RouteRecordV2(
                route_id=record.route_id,
                route_short_name=record.route_short_name,
                overall=DelayStatsV2(
                    on_time_performance=record.on_time_performance,
                    average_delay_minutes=record.average_delay_minutes,
                ),
                buckets=buckets,
            )
        )

    sources = {record.data_source for record in document.routes}
    return ReliabilityDocumentV2(
        computed_at=_aware(computed_at) if computed_at else _UNKNOWN_COMPUTED_AT,
        source=sources.pop() if len(sources) == 1 else "mixed",
        routes=routes,
    )


DOCUMENT_MODELS: dict[int, type[BaseModel]] = {
    1: ReliabilityDocumentV1,
    2: ReliabilityDocumentV2,
}

MIGRATIONS: dict[int, Callable[[Any], BaseModel]] = {
    1: migrate_v1_to_v2,
}


def upgrade_document(raw: Any) -> ReliabilityDocumentV2:
    """Validate ``raw`` against its version and migrate it to the current one.

    Raises:
        SnapshotFormatError: On an unknown version or a validation failure.
    """
    if isinstance(raw, list):
        raw = {"version": 1, "routes": raw}
    if not isinstance(raw, dict):
        msg = f"Reliability document must be an object, got {type(raw).__name__}"
        raise SnapshotFormatError(msg)

    version = raw.get("version", 1)
    model = DOCUMENT_MODELS.get(version)
    if model is None:
        msg = f"Unsupported reliability document version: {version!r}"
        raise SnapshotFormatError(msg)

    try:
        document: BaseModel = model.model_validate(raw)
        while version < CURRENT_VERSION:
            document = MIGRATIONS[version](document)
            version += 1
            logger.info("Reliability document migrated", to_version=version)
    except ValidationError as exc:
        msg = f"Invalid reliability document (version {version}): {exc.error_count()} errors"
        raise SnapshotFormatError(msg) from exc

    if not isinstance(document, ReliabilityDocumentV2):
        msg = f"Migration chain ended at {type(document).__name__}, not version {CURRENT_VERSION}"
        raise SnapshotFormatError(msg)
    return document


def to_snapshot(document: ReliabilityDocumentV2) -> ReliabilitySnapshot:
    routes: dict[str, RouteAggregates] = {}
    for record in document.routes:
        by_day_type: dict[DayType, DelayStats] = {}
        by_bucket: dict[tuple[DayType, TimeBand], DelayStats] = {}
        for bucket in record.buckets:
            stats = _stats(bucket)
            if bucket.time_band is None:
                by_day_type[bucket.day_type] = stats
            else:
                by_bucket[(bucket.day_type, bucket.time_band)] = stats
        routes[record.route_id] = RouteAggregates(
            route_id=record.route_id,
            route_short_name=record.route_short_name,
            overall=_stats(record.overall),
            by_day_type=by_day_type,
            by_bucket=by_bucket,
        )
    return ReliabilitySnapshot(
        computed_at=_aware(document.computed_at),
        routes=routes,
        source=document.source,
    )


def from_snapshot(snapshot: ReliabilitySnapshot) -> ReliabilityDocumentV2:
    """Serialize a snapshot as a current-version document."""
    routes = []
    for aggregates in snapshot.routes.values():
        buckets = [
            BucketStatsV2(day_type=day_type, **_stats_fields(stats))
            for day_type, stats in aggregates.by_day_type.items()
        ] + [
            BucketStatsV2(day_type=day_type, time_band=band, **_stats_fields(stats))
            for (day_type, band), stats in aggregates.by_bucket.items()
        ]
        routes.append(
            RouteRecordV2(
                route_id=aggregates.route_id,
                route_short_name=aggregates.route_short_name,
                overall=DelayStatsV2(**_stats_fields(aggregates.overall)),
                buckets=buckets,
            )
        )
    return ReliabilityDocumentV2(
        computed_at=snapshot.computed_at, source=snapshot.source, routes=routes
    )


def load_snapshot(raw: Any) -> ReliabilitySnapshot:
    return to_snapshot(upgrade_document(raw))


def load_snapshot_file(path: Union[str, Path]) -> ReliabilitySnapshot:
    """Read, upgrade and convert a snapshot document from disk.

    Raises:
        FileNotFoundError: If the file does not exist.
        SnapshotFormatError: If it is not a valid document.
    """
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        msg = f"Reliability document is not valid JSON: {path}"
        raise SnapshotFormatError(msg) from exc
    snapshot = load_snapshot(raw)
    logger.info(
        "Reliability snapshot loaded",
        path=str(path),
        routes=len(snapshot),
        computed_at=snapshot.computed_at.isoformat(),
    )
    return snapshot


def _stats(model: DelayStatsV2) -> DelayStats:
    return DelayStats(
        on_time_performance=model.on_time_performance,
        average_delay_minutes=model.average_delay_minutes,
        sample_count=model.sample_count,
        quantiles=tuple(sorted((float(p), float(d)) for p, d in model.quantiles)),
    )


def _stats_fields(stats: DelayStats) -> dict[str, Any]:
    return {
        "on_time_performance": stats.on_time_performance,
        "average_delay_minutes": stats.average_delay_minutes,
        "sample_count": stats.sample_count,
        "quantiles": [list(pair) for pair in stats.quantiles],
    }


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
