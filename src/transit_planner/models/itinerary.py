"""Request-scoped planning records: legs, itineraries, risks, requests."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from transit_planner.models.realtime import Arrival, ServiceAlert
from transit_planner.models.reliability import ReliabilityLevel
from transit_planner.models.schedule import Location, RouteType


class LegMode(str, Enum):
    WALK = "walk"
    BUS = "bus"
    TRAM = "tram"
    SUBWAY = "subway"
    RAIL = "rail"
    FERRY = "ferry"
    CABLE_TRAM = "cable_tram"
    AERIAL_LIFT = "aerial_lift"
    FUNICULAR = "funicular"
    TROLLEYBUS = "trolleybus"
    MONORAIL = "monorail"

    @property
    def is_transit(self) -> bool:
        return self is not LegMode.WALK


# Every RouteType must appear here.
ROUTE_TYPE_MODES: dict[RouteType, LegMode] = {
    RouteType.TRAM: LegMode.TRAM,
    RouteType.SUBWAY: LegMode.SUBWAY,
    RouteType.RAIL: LegMode.RAIL,
    RouteType.BUS: LegMode.BUS,
    RouteType.FERRY: LegMode.FERRY,
    RouteType.CABLE_TRAM: LegMode.CABLE_TRAM,
    RouteType.AERIAL_LIFT: LegMode.AERIAL_LIFT,
    RouteType.FUNICULAR: LegMode.FUNICULAR,
    RouteType.TROLLEYBUS: LegMode.TROLLEYBUS,
    RouteType.MONORAIL: LegMode.MONORAIL,
}


def leg_mode_for(route_type: RouteType) -> LegMode:
    return ROUTE_TYPE_MODES[route_type]


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TripMode(str, Enum):
    """Ranking preset chosen by the rider."""

    FASTEST = "fastest"
    BALANCED = "balanced"
    SAFEST = "safest"


class NoPathReason(str, Enum):
    NO_PATH_FOUND = "NoPathFound"
    DESTINATION_UNREACHABLE_ON_FOOT = "DestinationUnreachableOnFoot"
    SCHEDULE_UNAVAILABLE = "ScheduleUnavailable"


@dataclass
class Leg:
    mode: LegMode
    from_place: Location
    to_place: Location
    start_time: datetime
    end_time: datetime
    distance_m: float = 0.0
    route_id: Optional[str] = None
    trip_id: Optional[str] = None
    route_short_name: Optional[str] = None
    headsign: Optional[str] = None
    agency_id: Optional[str] = None
    intermediate_stops: list[str] = field(default_factory=list)
    scheduled_start_time: Optional[datetime] = None
    scheduled_end_time: Optional[datetime] = None
    departure: Optional[Arrival] = None
    arrival: Optional[Arrival] = None
    reliability: Optional[ReliabilityLevel] = None
    on_time_performance: Optional[float] = None
    expected_delay_minutes: Optional[float] = None
    alerts: list[ServiceAlert] = field(default_factory=list)

    @property
    def is_transit(self) -> bool:
        return self.mode.is_transit

    @property
    def duration_sec(self) -> int:
        return int((self.end_time - self.start_time).total_seconds())

    @property
    def predicted(self) -> bool:
        return any(a is not None and a.predicted for a in (self.departure, self.arrival))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "mode": self.mode.value,
            "from": self.from_place.to_dict(),
            "to": self.to_place.to_dict(),
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration_sec": self.duration_sec,
            "distance_m": round(self.distance_m, 1),
        }
        if self.is_transit:
            data.update(
                {
                    "route_id": self.route_id,
                    "trip_id": self.trip_id,
                    "route_short_name": self.route_short_name,
                    "headsign": self.headsign,
                    "agency_id": self.agency_id,
                    "intermediate_stops": list(self.intermediate_stops),
                    "scheduled_start_time": _iso(self.scheduled_start_time),
                    "scheduled_end_time": _iso(self.scheduled_end_time),
                    "departure": self.departure.to_dict() if self.departure else None,
                    "arrival": self.arrival.to_dict() if self.arrival else None,
                    "reliability": self.reliability.value if self.reliability else None,
                    "on_time_performance": self.on_time_performance,
                    "expected_delay_minutes": self.expected_delay_minutes,
                    "alerts": [alert.to_dict() for alert in self.alerts],
                }
            )
        return data


@dataclass
class TransferRisk:
    from_leg_index: int
    to_leg_index: int
    transfer_stop_id: Optional[str]
    transfer_stop_name: Optional[str]
    scheduled_transfer_minutes: float
    walking_minutes: float
    buffer_minutes: float
    risk: RiskLevel
    missed_connection_probability: float
    expected_delay_minutes: float
    recommendation: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "from_leg_index": self.from_leg_index,
            "to_leg_index": self.to_leg_index,
            "transfer_stop_id": self.transfer_stop_id,
            "transfer_stop_name": self.transfer_stop_name,
            "scheduled_transfer_minutes": round(self.scheduled_transfer_minutes, 1),
            "walking_minutes": round(self.walking_minutes, 1),
            "buffer_minutes": round(self.buffer_minutes, 1),
            "risk": self.risk.value,
            "missed_connection_probability": round(self.missed_connection_probability, 3),
            "expected_delay_minutes": round(self.expected_delay_minutes, 1),
            "recommendation": self.recommendation,
        }


@dataclass
class Itinerary:
    """Ordered legs plus ranking annotations.

    Timing aggregates are derived from the legs.
    """

    legs: list[Leg]
    transfer_risks: list[TransferRisk] = field(default_factory=list)
    rank: Optional[int] = None
    recommended: bool = False
    score: Optional[float] = None

    @property
    def start_time(self) -> datetime:
        return self.legs[0].start_time

    @property
    def end_time(self) -> datetime:
        return self.legs[-1].end_time

    @property
    def duration_sec(self) -> int:
        return int((self.end_time - self.start_time).total_seconds())

    @property
    def transit_legs(self) -> list[Leg]:
        return [leg for leg in self.legs if leg.is_transit]

    @property
    def is_walk_only(self) -> bool:
        return not self.transit_legs

    @property
    def walk_time_sec(self) -> int:
        return sum(leg.duration_sec for leg in self.legs if not leg.is_transit)

    @property
    def transit_time_sec(self) -> int:
        return sum(leg.duration_sec for leg in self.transit_legs)

    @property
    def wait_time_sec(self) -> int:
        return self.duration_sec - self.walk_time_sec - self.transit_time_sec

    @property
    def walk_distance_m(self) -> float:
        return sum(leg.distance_m for leg in self.legs if not leg.is_transit)

    @property
    def transfers(self) -> int:
        return max(0, len(self.transit_legs) - 1)

    @property
    def realtime(self) -> bool:
        return any(leg.predicted for leg in self.transit_legs)

    @property
    def overall_reliability(self) -> Optional[ReliabilityLevel]:
        """Worst classification among transit legs; walking is always high."""
        if self.is_walk_only:
            return ReliabilityLevel.HIGH
        levels = [leg.reliability for leg in self.transit_legs if leg.reliability is not None]
        if len(levels) != len(self.transit_legs):
            return None
        return ReliabilityLevel.worst(levels)

    @property
    def signature(self) -> tuple[tuple[str, str, str, str, float], ...]:
        """Deterministic identity used as the final ranking tie-breaker."""
        return tuple(
            (
                leg.mode.value,
                leg.trip_id or "",
                leg.from_place.stop_id or "",
                leg.to_place.stop_id or "",
                leg.start_time.timestamp(),
            )
            for leg in self.legs
        )

    def to_dict(self) -> dict[str, Any]:
        overall = self.overall_reliability
        return {
            "rank": self.rank,
            "recommended": self.recommended,
            "score": self.score,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration_sec": self.duration_sec,
            "walk_time_sec": self.walk_time_sec,
            "transit_time_sec": self.transit_time_sec,
            "wait_time_sec": self.wait_time_sec,
            "walk_distance_m": round(self.walk_distance_m, 1),
            "transfers": self.transfers,
            "realtime": self.realtime,
            "overall_reliability": overall.value if overall else None,
            "legs": [leg.to_dict() for leg in self.legs],
            "transfer_risks": [risk.to_dict() for risk in self.transfer_risks],
        }


@dataclass(frozen=True)
class PlanOptions:
    max_walking_distance_m: float = 800.0
    max_transfers: int = 4
    wheelchair_accessible_only: bool = False
    preferred_agencies: tuple[str, ...] = ()
    trip_mode: TripMode = TripMode.BALANCED


@dataclass(frozen=True)
class PlanRequest:
    origin: Location
    destination: Location
    requested_time: datetime
    arrive_by: bool = False
    options: PlanOptions = field(default_factory=PlanOptions)


@dataclass
class PlanResponse:
    itineraries: list[Itinerary]
    reason: Optional[NoPathReason] = None
    realtime_degraded: bool = False
    reliability_stale: bool = False
    schedule_version: Optional[str] = None
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "itineraries": [itinerary.to_dict() for itinerary in self.itineraries],
            "reason": self.reason.value if self.reason else None,
            "realtime_degraded": self.realtime_degraded,
            "reliability_stale": self.reliability_stale,
            "schedule_version": self.schedule_version,
            "generated_at": self.generated_at.isoformat(),
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
