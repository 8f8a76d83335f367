"""Reliability records: classifications, delay statistics and scores."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class ReliabilityLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def order(self) -> int:
        """Higher is more reliable."""
        return _LEVEL_ORDER[self]

    @classmethod
    def worst(cls, levels: list[ReliabilityLevel]) -> ReliabilityLevel:
        return min(levels, key=lambda level: level.order)


_LEVEL_ORDER = {
    ReliabilityLevel.LOW: 0,
    ReliabilityLevel.MEDIUM: 1,
    ReliabilityLevel.HIGH: 2,
}


class DelayCategory(str, Enum):
    ON_TIME = "on_time"
    MINOR = "minor_delay"
    MAJOR = "major_delay"
    SEVERE = "severe"


class DayType(str, Enum):
    WEEKDAY = "weekday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"


class TimeBand(str, Enum):
    PEAK = "peak"
    OFF_PEAK = "off_peak"


class ScoreSource(str, Enum):
    """Which aggregate level produced a score."""

    BUCKET = "bucket"
    DAY_TYPE = "day_type"
    ROUTE = "route"
    DEFAULT = "default"


@dataclass(frozen=True)
class DelayStats:
    """Delay statistics for one aggregate level.

    ``sample_count`` is None for published aggregates whose sample size is
    unknown; those are trusted regardless of the minimum sample policy.
    ``quantiles`` holds ``(probability, delay_minutes)`` pairs sorted by
    probability.
    """

    on_time_performance: float
    average_delay_minutes: float
    sample_count: Optional[int] = None
    quantiles: tuple[tuple[float, float], ...] = ()

    def quantile(self, probability: float) -> Optional[float]:
        for prob, delay in self.quantiles:
            if abs(prob - probability) < 1e-9:
                return delay
        return None


@dataclass(frozen=True)
class RouteAggregates:
    route_id: str
    overall: DelayStats
    by_day_type: dict[DayType, DelayStats] = field(default_factory=dict)
    by_bucket: dict[tuple[DayType, TimeBand], DelayStats] = field(default_factory=dict)
    route_short_name: str = ""


@dataclass(frozen=True)
class ReliabilitySnapshot:
    """Immutable set of per-route aggregates produced by one refresh."""

    computed_at: datetime
    routes: dict[str, RouteAggregates] = field(default_factory=dict)
    source: str = "historical"

    def __len__(self) -> int:
        return len(self.routes)


@dataclass(frozen=True)
class ReliabilityScore:
    route_id: str
    on_time_performance: float
    average_delay_minutes: float
    reliability: ReliabilityLevel
    score: int
    source: ScoreSource
    day_type: DayType
    time_band: TimeBand
    sample_count: Optional[int] = None
    stale: bool = False
    quantiles: tuple[tuple[float, float], ...] = ()
    computed_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "route_id": self.route_id,
            "on_time_performance": round(self.on_time_performance, 4),
            "average_delay_minutes": round(self.average_delay_minutes, 2),
            "reliability": self.reliability.value,
            "score": self.score,
            "source": self.source.value,
            "day_type": self.day_type.value,
            "time_band": self.time_band.value,
            "sample_count": self.sample_count,
            "stale": self.stale,
            "computed_at": self.computed_at.isoformat() if self.computed_at else None,
        }
