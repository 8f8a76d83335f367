"""Build reliability aggregates from historical delay samples.

This is the pure core of the periodic refresh job: it groups samples by
route, day type and time band and reduces each group to on-time rate, mean
delay and a quantile grid. Running it twice over the same samples yields
an identical snapshot.
"""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from transit_planner.logging import get_logger
from transit_planner.models.reliability import (
    DayType,
    DelayStats,
    ReliabilitySnapshot,
    RouteAggregates,
    TimeBand,
)
from transit_planner.services.reliability.scorer import (
    assign_day_type,
    assign_time_band,
    is_on_time,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

logger = get_logger(__name__)

QUANTILE_GRID: tuple[float, ...] = (0.05, 0.10, 0.25, 0.50, 0.75, 0.90, 0.95, 0.99)


@dataclass(frozen=True)
class DelaySample:
    """One observed arrival: minutes late (negative = early)."""

    route_id: str
    observed_at: datetime
    delay_minutes: float


def percentile(sorted_values: Sequence[float], fraction: float) -> float:
    """Continuous percentile with linear interpolation between ranks.

    Matches PostgreSQL's PERCENTILE_CONT.
    """
    if not sorted_values:
        msg = "percentile of empty sequence"
        raise ValueError(msg)
    position = (len(sorted_values) - 1) * fraction
    lower = math.floor(position)
    upper = math.ceil(position)
    if lower == upper:
        return float(sorted_values[lower])
    weight = position - lower
    return float(sorted_values[lower] * (1 - weight) + sorted_values[upper] * weight)


def summarize(delays: Iterable[float]) -> DelayStats:
    """Reduce delays (minutes) to :class:`DelayStats`.

    Raises:
        ValueError: If there are no delays.
    """
    ordered = sorted(delays)
    if not ordered:
        msg = "cannot summarize an empty sample"
        raise ValueError(msg)
    on_time = sum(1 for delay in ordered if is_on_time(delay))
    return DelayStats(
        on_time_performance=on_time / len(ordered),
        average_delay_minutes=sum(ordered) / len(ordered),
        sample_count=len(ordered),
        quantiles=tuple((q, round(percentile(ordered, q), 3)) for q in QUANTILE_GRID),
    )


def build_aggregates(
    samples: Iterable[DelaySample],
    computed_at: datetime | None = None,
    service_timezone: str = "America/Los_Angeles",
) -> ReliabilitySnapshot:
    """Group samples and compute per-route aggregates at three levels.

    Day type and time band are taken from the sample time in the service
    timezone; naive datetimes are assumed to be UTC.
    """
    tz = ZoneInfo(service_timezone)
    overall: dict[str, list[float]] = defaultdict(list)
    by_day_type: dict[tuple[str, DayType], list[float]] = defaultdict(list)
    by_bucket: dict[tuple[str, DayType, TimeBand], list[float]] = defaultdict(list)

    count = 0
    for sample in samples:
        observed = sample.observed_at
        if observed.tzinfo is None:
            observed = observed.replace(tzinfo=timezone.utc)
        local = observed.astimezone(tz)
        day_type = assign_day_type(local.weekday())
        band = assign_time_band(local.hour)

        overall[sample.route_id].append(sample.delay_minutes)
        by_day_type[(sample.route_id, day_type)].append(sample.delay_minutes)
        by_bucket[(sample.route_id, day_type, band)].append(sample.delay_minutes)
        count += 1

    routes: dict[str, RouteAggregates] = {}
    for route_id in sorted(overall):
        routes[route_id] = RouteAggregates(
            route_id=route_id,
            overall=summarize(overall[route_id]),
            by_day_type={
                day_type: summarize(delays)
                for (rid, day_type), delays in by_day_type.items()
                if rid == route_id
            },
            by_bucket={
                (day_type, band): summarize(delays)
                for (rid, day_type, band), delays in by_bucket.items()
                if rid == route_id
            },
        )

    logger.info("Reliability aggregates built", samples=count, routes=len(routes))
    return ReliabilitySnapshot(
        computed_at=computed_at or datetime.now(timezone.utc),
        routes=routes,
    )
