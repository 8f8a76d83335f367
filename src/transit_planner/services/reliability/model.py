"""Route reliability scores from an immutable aggregates snapshot."""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional, Union
from zoneinfo import ZoneInfo

from transit_planner.config import get_settings
from transit_planner.constants import (
    DEFAULT_AVERAGE_DELAY_MINUTES,
    DEFAULT_ON_TIME_PERFORMANCE,
    ON_TIME_MAX_DELAY,
)
from transit_planner.models.reliability import (
    DayType,
    DelayStats,
    ReliabilityScore,
    ReliabilitySnapshot,
    ScoreSource,
    TimeBand,
)
from transit_planner.services.reliability.scorer import (
    assign_day_type,
    assign_time_band,
    classify_reliability,
    compute_score,
)

if TYPE_CHECKING:
    from transit_planner.config import Settings

NEUTRAL_STATS = DelayStats(
    on_time_performance=DEFAULT_ON_TIME_PERFORMANCE,
    average_delay_minutes=DEFAULT_AVERAGE_DELAY_MINUTES,
    sample_count=None,
)

# Lower bound on the exponential tail scale, minutes.
_MIN_TAIL_SCALE = 0.5


class ReliabilityModel:
    """Scores routes against one snapshot.

    Lookup escalates from the (day type, time band) bucket to the day-type
    aggregate, then the route aggregate, then the neutral default. A level
    is used only when it has at least ``min_samples`` samples or is a
    published aggregate without a sample count.
    """

    def __init__(
        self,
        snapshot: Optional[ReliabilitySnapshot],
        *,
        min_samples: int = 30,
        freshness_days: int = 30,
        service_timezone: str = "America/Los_Angeles",
        settings: Optional[Settings] = None,
    ) -> None:
        self.snapshot = snapshot
        self.min_samples = min_samples
        self.freshness = timedelta(days=freshness_days)
        self._tz = ZoneInfo(service_timezone)
        self._settings = settings

    @classmethod
    def from_settings(
        cls, snapshot: Optional[ReliabilitySnapshot], settings: Optional[Settings] = None
    ) -> ReliabilityModel:
        settings = settings or get_settings()
        return cls(
            snapshot,
            min_samples=settings.reliability_min_samples,
            freshness_days=settings.reliability_freshness_days,
            service_timezone=settings.service_timezone,
            settings=settings,
        )

    def is_stale(self, at_time: datetime) -> bool:
        if self.snapshot is None:
            return False
        return _as_utc(at_time) > _as_utc(self.snapshot.computed_at) + self.freshness

    def score(self, route_id: str, at_time: datetime) -> ReliabilityScore:
        """Score ``route_id`` for travel at ``at_time``.

        Naive ``at_time`` values are taken as service-local time.
        """
        local = at_time.replace(tzinfo=self._tz) if at_time.tzinfo is None else at_time
        local = local.astimezone(self._tz)
        day_type = assign_day_type(local.weekday())
        band = assign_time_band(local.hour)

        stats, source = self._resolve(route_id, day_type, band)
        on_time = min(1.0, max(0.0, stats.on_time_performance))
        p50 = delay_quantile(stats, 0.50)
        p95 = delay_quantile(stats, 0.95)

        kwargs = {}
        if self._settings is not None:
            kwargs = {
                "weight_on_time": self._settings.weight_on_time_rate,
                "weight_p95": self._settings.weight_p95_component,
                "weight_p50": self._settings.weight_p50_component,
                "p95_cap": self._settings.p95_max_delay_sec,
                "p50_cap": self._settings.p50_max_delay_sec,
            }

        return ReliabilityScore(
            route_id=route_id,
            on_time_performance=on_time,
            average_delay_minutes=stats.average_delay_minutes,
            reliability=classify_reliability(on_time),
            score=compute_score(on_time, p95 * 60, p50 * 60, **kwargs),
            source=source,
            day_type=day_type,
            time_band=band,
            sample_count=stats.sample_count,
            stale=source is not ScoreSource.DEFAULT and self.is_stale(local),
            quantiles=stats.quantiles,
            computed_at=self.snapshot.computed_at if self.snapshot else None,
        )

    def _resolve(
        self, route_id: str, day_type: DayType, band: TimeBand
    ) -> tuple[DelayStats, ScoreSource]:
        aggregates = self.snapshot.routes.get(route_id) if self.snapshot else None
        if aggregates is not None:
            candidates = (
                (aggregates.by_bucket.get((day_type, band)), ScoreSource.BUCKET),
                (aggregates.by_day_type.get(day_type), ScoreSource.DAY_TYPE),
                (aggregates.overall, ScoreSource.ROUTE),
            )
            for stats, source in candidates:
                if stats is not None and self._sufficient(stats):
                    return stats, source
        return NEUTRAL_STATS, ScoreSource.DEFAULT

    def _sufficient(self, stats: DelayStats) -> bool:
        return stats.sample_count is None or stats.sample_count >= self.min_samples


def _tail_scale(on_time_performance: float, average_delay_minutes: float) -> float:
    """Scale of the exponential delay tail, minutes.

    Calibrated so that P(delay > on-time band) roughly equals the late share
    implied by on-time performance, and never below the average delay.
    """
    calibrated = 0.0
    late_share = 1.0 - on_time_performance
    if 0.0 < late_share < 1.0:
        calibrated = -ON_TIME_MAX_DELAY / math.log(late_share)
    return max(_MIN_TAIL_SCALE, average_delay_minutes, calibrated)


def delay_exceedance_probability(
    stats: Union[DelayStats, ReliabilityScore], minutes: float
) -> float:
    """P(delay > ``minutes``) for the given statistics.

    Uses the empirical quantile grid when present (piecewise-linear CDF with
    an exponential tail past the last quantile), otherwise an exponential
    tail. Non-increasing in ``minutes`` and always in [0, 1].
    """
    quantiles = _monotone(stats.quantiles)
    scale = _tail_scale(stats.on_time_performance, stats.average_delay_minutes)

    if len(quantiles) >= 2:
        first_p, first_d = quantiles[0]
        if minutes <= first_d:
            return 1.0 - first_p
        for (p_lo, d_lo), (p_hi, d_hi) in zip(quantiles, quantiles[1:]):
            if minutes <= d_hi:
                if d_hi == d_lo:
                    return 1.0 - p_hi
                cdf = p_lo + (p_hi - p_lo) * (minutes - d_lo) / (d_hi - d_lo)
                return min(1.0, max(0.0, 1.0 - cdf))
        last_p, last_d = quantiles[-1]
        return (1.0 - last_p) * math.exp(-(minutes - last_d) / scale)

    if minutes < 0:
        return 1.0
    return math.exp(-minutes / scale)


def delay_quantile(stats: DelayStats, probability: float) -> float:
    """Delay (minutes) at ``probability``, from the grid or the exponential tail."""
    exact = stats.quantile(probability)
    if exact is not None:
        return exact
    scale = _tail_scale(stats.on_time_performance, stats.average_delay_minutes)
    return -scale * math.log(max(1e-9, 1.0 - probability))


def _monotone(quantiles: tuple[tuple[float, float], ...]) -> list[tuple[float, float]]:
    """Sort by probability and force delays to be non-decreasing."""
    result: list[tuple[float, float]] = []
    highest = -math.inf
    for prob, delay in sorted(quantiles):
        highest = max(highest, delay)
        result.append((prob, highest))
    return result


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
