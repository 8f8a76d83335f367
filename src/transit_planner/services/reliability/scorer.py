"""Pure scoring, classification and bucketing helpers.

All functions here are stateless and free of I/O so they can be unit-tested
without settings or snapshots.
"""

from __future__ import annotations

from typing import Optional

from transit_planner.constants import (
    MAJOR_DELAY_MAX,
    MINOR_DELAY_MAX,
    ON_TIME_MAX_DELAY,
    ON_TIME_MIN_DELAY,
    PEAK_HOUR_RANGES,
    RELIABILITY_HIGH_THRESHOLD,
    RELIABILITY_MEDIUM_THRESHOLD,
)
from transit_planner.models.reliability import (
    DayType,
    DelayCategory,
    ReliabilityLevel,
    TimeBand,
)

# ---------------------------------------------------------------------------
# Score formula
# ---------------------------------------------------------------------------

# Default weight / cap values match the config defaults.  Pass explicit values
# in tests to avoid depending on the settings singleton.
_DEFAULT_WEIGHT_ON_TIME = 0.6
_DEFAULT_WEIGHT_P95 = 0.25
_DEFAULT_WEIGHT_P50 = 0.15
_DEFAULT_P95_CAP = 900  # seconds (15 min)
_DEFAULT_P50_CAP = 300  # seconds (5 min)


def compute_score(
    on_time_rate: float,
    p95_delay_sec: float,
    p50_delay_sec: float,
    *,
    weight_on_time: float = _DEFAULT_WEIGHT_ON_TIME,
    weight_p95: float = _DEFAULT_WEIGHT_P95,
    weight_p50: float = _DEFAULT_WEIGHT_P50,
    p95_cap: float = _DEFAULT_P95_CAP,
    p50_cap: float = _DEFAULT_P50_CAP,
) -> int:
    """Compute a display score in [0, 100].

    Formula
    -------
    c1 = on_time_rate                                 (0–1)
    c2 = clamp(1 - p95_delay_sec / p95_cap, 0, 1)
    c3 = clamp(1 - |p50_delay_sec| / p50_cap, 0, 1)
    raw = weight_on_time * c1 + weight_p95 * c2 + weight_p50 * c3
    score = round(100 * raw), clamped to [0, 100]

    The score is for display only; classification uses on-time rate alone.
    """
    c1 = float(on_time_rate)
    c2 = max(0.0, min(1.0, 1.0 - float(p95_delay_sec) / p95_cap))
    c3 = max(0.0, min(1.0, 1.0 - abs(float(p50_delay_sec)) / p50_cap))
    raw = weight_on_time * c1 + weight_p95 * c2 + weight_p50 * c3
    return max(0, min(100, round(100.0 * raw)))


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def classify_reliability(on_time_performance: float) -> ReliabilityLevel:
    """Half-open thresholds: [0.80, 1] high, [0.60, 0.80) medium, else low."""
    if on_time_performance >= RELIABILITY_HIGH_THRESHOLD:
        return ReliabilityLevel.HIGH
    if on_time_performance >= RELIABILITY_MEDIUM_THRESHOLD:
        return ReliabilityLevel.MEDIUM
    return ReliabilityLevel.LOW


def is_on_time(delay_minutes: float) -> bool:
    return ON_TIME_MIN_DELAY <= delay_minutes <= ON_TIME_MAX_DELAY


def categorize_delay(delay_minutes: float) -> Optional[DelayCategory]:
    """Map a delay onto its category.

    Running more than five minutes early falls outside every category and
    yields None.
    """
    if delay_minutes < ON_TIME_MIN_DELAY:
        return None
    if delay_minutes <= ON_TIME_MAX_DELAY:
        return DelayCategory.ON_TIME
    if delay_minutes <= MINOR_DELAY_MAX:
        return DelayCategory.MINOR
    if delay_minutes <= MAJOR_DELAY_MAX:
        return DelayCategory.MAJOR
    return DelayCategory.SEVERE


# ---------------------------------------------------------------------------
# Day-type / time-band bucketing
# ---------------------------------------------------------------------------

_DOW_TO_DAY_TYPE: dict[int, DayType] = {
    0: DayType.WEEKDAY,  # Monday
    1: DayType.WEEKDAY,
    2: DayType.WEEKDAY,
    3: DayType.WEEKDAY,
    4: DayType.WEEKDAY,  # Friday
    5: DayType.SATURDAY,
    6: DayType.SUNDAY,
}


def assign_day_type(weekday: int) -> DayType:
    """Map Python weekday integer (0=Mon … 6=Sun) to a day type."""
    return _DOW_TO_DAY_TYPE[weekday]


def assign_time_band(hour: int) -> TimeBand:
    """Peak covers 07:00-09:59 and 16:00-19:59 local time."""
    for lo, hi in PEAK_HOUR_RANGES:
        if lo <= hour <= hi:
            return TimeBand.PEAK
    return TimeBand.OFF_PEAK
