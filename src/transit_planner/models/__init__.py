"""Domain records shared across the planner."""

from transit_planner.models.itinerary import (
    ROUTE_TYPE_MODES,
    Itinerary,
    Leg,
    LegMode,
    NoPathReason,
    PlanOptions,
    PlanRequest,
    PlanResponse,
    RiskLevel,
    TransferRisk,
    TripMode,
    leg_mode_for,
)
from transit_planner.models.realtime import (
    AlertEffect,
    Arrival,
    ArrivalConfidence,
    ArrivalStatus,
    LiveArrivals,
    Prediction,
    ServiceAlert,
)
from transit_planner.models.reliability import (
    DayType,
    DelayCategory,
    DelayStats,
    ReliabilityLevel,
    ReliabilityScore,
    ReliabilitySnapshot,
    RouteAggregates,
    ScoreSource,
    TimeBand,
)
from transit_planner.models.schedule import (
    CalendarDate,
    Location,
    Route,
    RouteType,
    ScheduleFeed,
    ServiceCalendar,
    Stop,
    StopTime,
    Trip,
)

__all__ = [
    "ROUTE_TYPE_MODES",
    "AlertEffect",
    "Arrival",
    "ArrivalConfidence",
    "ArrivalStatus",
    "CalendarDate",
    "DayType",
    "DelayCategory",
    "DelayStats",
    "Itinerary",
    "Leg",
    "LegMode",
    "LiveArrivals",
    "Location",
    "NoPathReason",
    "PlanOptions",
    "PlanRequest",
    "PlanResponse",
    "Prediction",
    "ReliabilityLevel",
    "ReliabilityScore",
    "ReliabilitySnapshot",
    "RiskLevel",
    "Route",
    "RouteAggregates",
    "RouteType",
    "ScheduleFeed",
    "ScoreSource",
    "ServiceAlert",
    "ServiceCalendar",
    "Stop",
    "StopTime",
    "TimeBand",
    "TransferRisk",
    "Trip",
    "TripMode",
    "leg_mode_for",
]
