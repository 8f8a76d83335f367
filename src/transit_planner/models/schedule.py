"""Static schedule records: stops, routes, trips, stop times and calendars."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional


class RouteType(int, Enum):
    """Basic GTFS ``route_type`` values."""

    TRAM = 0
    SUBWAY = 1
    RAIL = 2
    BUS = 3
    FERRY = 4
    CABLE_TRAM = 5
    AERIAL_LIFT = 6
    FUNICULAR = 7
    TROLLEYBUS = 11
    MONORAIL = 12

    @classmethod
    def from_gtfs(cls, value: int) -> RouteType:
        """Map a basic or extended (Google) route type onto a basic type.

        Raises:
            ValueError: If the value is neither.
        """
        try:
            return cls(value)
        except ValueError:
            pass
        for lo, hi, route_type in _EXTENDED_ROUTE_TYPES:
            if lo <= value <= hi:
                return route_type
        msg = f"Unknown route_type: {value}"
        raise ValueError(msg)


_EXTENDED_ROUTE_TYPES: list[tuple[int, int, RouteType]] = [
    (100, 199, RouteType.RAIL),
    (200, 299, RouteType.BUS),
    (400, 499, RouteType.SUBWAY),
    (700, 799, RouteType.BUS),
    (800, 899, RouteType.TROLLEYBUS),
    (900, 999, RouteType.TRAM),
    (1000, 1099, RouteType.FERRY),
    (1200, 1299, RouteType.FERRY),
    (1300, 1399, RouteType.AERIAL_LIFT),
    (1400, 1499, RouteType.FUNICULAR),
]


@dataclass(frozen=True)
class Stop:
    stop_id: str
    name: str
    lat: float
    lon: float
    code: str = ""
    parent_station: Optional[str] = None
    wheelchair_boarding: int = 0
    route_ids: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_inaccessible(self) -> bool:
        return self.wheelchair_boarding == 2

    def to_dict(self) -> dict[str, Any]:
        return {
            "stop_id": self.stop_id,
            "name": self.name,
            "lat": self.lat,
            "lon": self.lon,
            "code": self.code,
            "parent_station": self.parent_station,
            "wheelchair_boarding": self.wheelchair_boarding,
            "route_ids": sorted(self.route_ids),
        }


@dataclass(frozen=True)
class Route:
    route_id: str
    short_name: str
    long_name: str
    route_type: RouteType
    agency_id: str = ""

    @property
    def display_name(self) -> str:
        return self.short_name or self.long_name

    def to_dict(self) -> dict[str, Any]:
        return {
            "route_id": self.route_id,
            "short_name": self.short_name,
            "long_name": self.long_name,
            "route_type": self.route_type.name.lower(),
            "agency_id": self.agency_id,
        }


@dataclass(frozen=True)
class StopTime:
    """One scheduled call; times are seconds after service-day midnight."""

    trip_id: str
    stop_id: str
    stop_sequence: int
    arrival_sec: int
    departure_sec: int


@dataclass(frozen=True)
class Trip:
    trip_id: str
    route_id: str
    service_id: str
    direction_id: int = 0
    headsign: str = ""
    wheelchair_accessible: int = 0
    stop_times: tuple[StopTime, ...] = ()

    @property
    def is_accessible(self) -> bool:
        return self.wheelchair_accessible == 1


@dataclass(frozen=True)
class ServiceCalendar:
    """Weekly service pattern from calendar.txt (Monday first)."""

    service_id: str
    days: tuple[bool, bool, bool, bool, bool, bool, bool]
    start_date: date
    end_date: date

    def runs_on(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date and self.days[day.weekday()]


@dataclass(frozen=True)
class CalendarDate:
    """Single-day exception from calendar_dates.txt."""

    service_id: str
    date: date
    added: bool


@dataclass(frozen=True)
class Location:
    """A coordinate pair, optionally resolved to a stop and a time."""

    lat: float
    lon: float
    stop_id: Optional[str] = None
    name: Optional[str] = None
    time: Optional[datetime] = None

    def at(self, when: datetime) -> Location:
        return Location(self.lat, self.lon, self.stop_id, self.name, when)

    def to_dict(self) -> dict[str, Any]:
        return {
            "lat": self.lat,
            "lon": self.lon,
            "stop_id": self.stop_id,
            "name": self.name,
            "time": self.time.isoformat() if self.time else None,
        }


@dataclass
class ScheduleFeed:
    """A full replacement record set for one schedule version."""

    version: str
    feed_hash: str
    expiry_date: Optional[date]
    stops: list[Stop] = field(default_factory=list)
    routes: list[Route] = field(default_factory=list)
    trips: list[Trip] = field(default_factory=list)
    stop_times: list[StopTime] = field(default_factory=list)
    calendars: list[ServiceCalendar] = field(default_factory=list)
    calendar_dates: list[CalendarDate] = field(default_factory=list)
