"""Live data records: GTFS-RT predictions, merged arrivals and alerts."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from transit_planner.models.reliability import DelayCategory


class ArrivalConfidence(str, Enum):
    """Confidence tiers, best first."""

    REALTIME = "realtime"
    AGING = "aging"
    SCHEDULED = "scheduled"


class ArrivalStatus(str, Enum):
    SCHEDULED = "scheduled"
    ARRIVING = "arriving"
    DEPARTED = "departed"


class AlertEffect(str, Enum):
    NO_SERVICE = "NO_SERVICE"
    REDUCED_SERVICE = "REDUCED_SERVICE"
    SIGNIFICANT_DELAYS = "SIGNIFICANT_DELAYS"
    DETOUR = "DETOUR"
    ADDITIONAL_SERVICE = "ADDITIONAL_SERVICE"
    MODIFIED_SERVICE = "MODIFIED_SERVICE"
    OTHER_EFFECT = "OTHER_EFFECT"
    UNKNOWN_EFFECT = "UNKNOWN_EFFECT"
    STOP_MOVED = "STOP_MOVED"
    NO_EFFECT = "NO_EFFECT"
    ACCESSIBILITY_ISSUE = "ACCESSIBILITY_ISSUE"

    @property
    def disrupts_service(self) -> bool:
        return self in _DISRUPTIVE_EFFECTS


_DISRUPTIVE_EFFECTS = frozenset(
    {
        AlertEffect.NO_SERVICE,
        AlertEffect.REDUCED_SERVICE,
        AlertEffect.SIGNIFICANT_DELAYS,
        AlertEffect.DETOUR,
        AlertEffect.STOP_MOVED,
    }
)


@dataclass(frozen=True)
class Prediction:
    """One StopTimeUpdate for a (trip, stop) pair.

    Absolute times win over delays when the feed supplies both.
    """

    trip_id: str
    stop_id: str
    route_id: str
    captured_at: datetime
    ttl_sec: int
    stop_sequence: int = 0
    arrival_time: Optional[datetime] = None
    arrival_delay_sec: Optional[int] = None
    departure_time: Optional[datetime] = None
    departure_delay_sec: Optional[int] = None
    skipped: bool = False

    def is_fresh(self, now: datetime) -> bool:
        return now <= self.captured_at + timedelta(seconds=self.ttl_sec)

    def age_sec(self, now: datetime) -> float:
        return max(0.0, (now - self.captured_at).total_seconds())

    def predicted_time(self, scheduled: datetime, *, departure: bool = False) -> Optional[datetime]:
        """Resolve the predicted time for a scheduled event, if the update has one."""
        if departure:
            pairs = [
                (self.departure_time, self.departure_delay_sec),
                (self.arrival_time, self.arrival_delay_sec),
            ]
        else:
            pairs = [
                (self.arrival_time, self.arrival_delay_sec),
                (self.departure_time, self.departure_delay_sec),
            ]
        for absolute, delay in pairs:
            if absolute is not None:
                return absolute
            if delay is not None:
                return scheduled + timedelta(seconds=delay)
        return None


@dataclass(frozen=True)
class ServiceAlert:
    alert_id: str
    cause: str
    effect: AlertEffect
    header: str
    description: str = ""
    route_ids: frozenset[str] = field(default_factory=frozenset)
    stop_ids: frozenset[str] = field(default_factory=frozenset)
    trip_ids: frozenset[str] = field(default_factory=frozenset)
    active_start: Optional[datetime] = None
    active_end: Optional[datetime] = None

    def is_active(self, at: datetime) -> bool:
        if self.active_start is not None and at < self.active_start:
            return False
        if self.active_end is not None and at > self.active_end:
            return False
        return True

    def affects(
        self,
        route_id: Optional[str] = None,
        stop_id: Optional[str] = None,
        trip_id: Optional[str] = None,
    ) -> bool:
        return (
            (route_id is not None and route_id in self.route_ids)
            or (stop_id is not None and stop_id in self.stop_ids)
            or (trip_id is not None and trip_id in self.trip_ids)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "cause": self.cause,
            "effect": self.effect.value,
            "header": self.header,
            "description": self.description,
            "route_ids": sorted(self.route_ids),
            "stop_ids": sorted(self.stop_ids),
            "active_start": self.active_start.isoformat() if self.active_start else None,
            "active_end": self.active_end.isoformat() if self.active_end else None,
        }


@dataclass(frozen=True)
class LiveArrivals:
    """Live data captured for one planning request.

    ``degraded`` is set when the upstream source could not be reached and the
    snapshot is empty for that reason rather than because nothing is running.
    """

    predictions: Mapping[tuple[str, str], Prediction] = field(default_factory=dict)
    alerts: tuple[ServiceAlert, ...] = ()
    captured_at: Optional[datetime] = None
    degraded: bool = False

    @classmethod
    def empty(cls, degraded: bool = False) -> LiveArrivals:
        return cls(degraded=degraded)

    def get(self, trip_id: str, stop_id: str) -> Optional[Prediction]:
        return self.predictions.get((trip_id, stop_id))

    def alerts_for(
        self,
        at: datetime,
        route_id: Optional[str] = None,
        stop_ids: tuple[str, ...] = (),
        trip_id: Optional[str] = None,
    ) -> list[ServiceAlert]:
        matched = []
        for alert in self.alerts:
            if not alert.is_active(at):
                continue
            if alert.affects(route_id=route_id, trip_id=trip_id) or any(
                alert.affects(stop_id=stop_id) for stop_id in stop_ids
            ):
                matched.append(alert)
        return matched


@dataclass(frozen=True)
class Arrival:
    """Effective arrival for one (trip, stop), scheduled or predicted."""

    trip_id: str
    stop_id: str
    route_id: str
    scheduled_arrival_time: datetime
    predicted_arrival_time: datetime
    predicted: bool
    delay_minutes: float
    minutes_until_arrival: int
    confidence: ArrivalConfidence
    status: ArrivalStatus
    delay_category: Optional[DelayCategory] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "trip_id": self.trip_id,
            "stop_id": self.stop_id,
            "route_id": self.route_id,
            "scheduled_arrival_time": self.scheduled_arrival_time.isoformat(),
            "predicted_arrival_time": self.predicted_arrival_time.isoformat(),
            "predicted": self.predicted,
            "delay_minutes": self.delay_minutes,
            "minutes_until_arrival": self.minutes_until_arrival,
            "confidence": self.confidence.value,
            "status": self.status.value,
            "delay_category": self.delay_category.value if self.delay_category else None,
        }
