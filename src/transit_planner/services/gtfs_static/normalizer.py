"""GTFS data normalizer - cleans raw CSV rows into schedule records."""

from __future__ import annotations

from datetime import date
from typing import Any, Optional

from transit_planner.logging import get_logger
from transit_planner.models.schedule import (
    CalendarDate,
    Route,
    RouteType,
    ServiceCalendar,
    Stop,
    StopTime,
    Trip,
)

logger = get_logger(__name__)

# location_type values that are not boardable places (entrances, generic
# nodes, boarding areas)
_NON_STOP_LOCATION_TYPES = {"2", "3", "4"}

_WEEKDAY_COLUMNS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class TimeParseError(Exception):
    """Raised when a GTFS time string cannot be parsed."""


class NormalizationError(Exception):
    """Raised when a row cannot be normalized."""


class GtfsNormalizer:
    """Normalizes raw GTFS CSV rows into typed schedule records."""

    @staticmethod
    def normalize_stop(row: dict[str, Any]) -> Optional[Stop]:
        """Normalize a stops.txt row.

        Returns None for station entrances and other non-boardable nodes.

        Raises:
            NormalizationError: If required fields are missing/invalid.
        """
        stop_id = _clean_str(row.get("stop_id"))
        name = _clean_str(row.get("stop_name"))
        lat_str = _clean_str(row.get("stop_lat"))
        lon_str = _clean_str(row.get("stop_lon"))

        if not stop_id:
            raise NormalizationError("Missing stop_id")
        if _clean_str(row.get("location_type")) in _NON_STOP_LOCATION_TYPES:
            return None
        if not name:
            raise NormalizationError(f"Missing stop_name for stop_id={stop_id}")

        try:
            lat = float(lat_str)
            lon = float(lon_str)
        except (ValueError, TypeError) as exc:
            raise NormalizationError(
                f"Invalid lat/lon for stop_id={stop_id}: lat={lat_str!r}, lon={lon_str!r}"
            ) from exc

        return Stop(
            stop_id=stop_id,
            name=name,
            lat=lat,
            lon=lon,
            code=_clean_str(row.get("stop_code")),
            parent_station=_clean_str(row.get("parent_station")) or None,
            wheelchair_boarding=_optional_int(row.get("wheelchair_boarding"), default=0),
        )

    @staticmethod
    def normalize_route(row: dict[str, Any]) -> Route:
        """Normalize a routes.txt row.

        Raises:
            NormalizationError: If required fields are missing or the route
                type is not recognised.
        """
        route_id = _clean_str(row.get("route_id"))
        short_name = _clean_str(row.get("route_short_name"))
        long_name = _clean_str(row.get("route_long_name"))
        type_str = _clean_str(row.get("route_type"))

        if not route_id:
            raise NormalizationError("Missing route_id")
        # GTFS allows either name to be empty, but not both
        if not short_name and not long_name:
            raise NormalizationError(f"Both short_name and long_name empty for route_id={route_id}")

        try:
            route_type = RouteType.from_gtfs(int(type_str))
        except ValueError as exc:
            raise NormalizationError(
                f"Invalid route_type={type_str!r} for route_id={route_id}"
            ) from exc

        return Route(
            route_id=route_id,
            short_name=short_name,
            long_name=long_name,
            route_type=route_type,
            agency_id=_clean_str(row.get("agency_id")),
        )

    @staticmethod
    def normalize_trip(row: dict[str, Any]) -> Trip:
        """Normalize a trips.txt row.

        Raises:
            NormalizationError: If required fields are missing.
        """
        trip_id = _clean_str(row.get("trip_id"))
        route_id = _clean_str(row.get("route_id"))
        service_id = _clean_str(row.get("service_id"))
        direction_id_str = _clean_str(row.get("direction_id"))

        if not trip_id:
            raise NormalizationError("Missing trip_id")
        if not route_id:
            raise NormalizationError(f"Missing route_id for trip_id={trip_id}")
        if not service_id:
            raise NormalizationError(f"Missing service_id for trip_id={trip_id}")

        # direction_id is optional in GTFS, default to 0
        direction_id = _optional_int(direction_id_str, default=0)
        if direction_id not in (0, 1):
            logger.warning(
                "Invalid direction_id, defaulting to 0",
                trip_id=trip_id,
                direction_id=direction_id_str,
            )
            direction_id = 0

        return Trip(
            trip_id=trip_id,
            route_id=route_id,
            service_id=service_id,
            direction_id=direction_id,
            headsign=_clean_str(row.get("trip_headsign")),
            wheelchair_accessible=_optional_int(row.get("wheelchair_accessible"), default=0),
        )

    @staticmethod
    def normalize_stop_time(row: dict[str, Any]) -> StopTime:
        """Normalize a stop_times.txt row.

        A missing arrival or departure time is copied from the other one.
        Rows with neither (untimed stops) are rejected.

        Raises:
            NormalizationError: If required fields are missing/invalid.
            TimeParseError: If a time is malformed.
        """
        trip_id = _clean_str(row.get("trip_id"))
        stop_id = _clean_str(row.get("stop_id"))
        seq_str = _clean_str(row.get("stop_sequence"))
        arrival_str = _clean_str(row.get("arrival_time"))
        departure_str = _clean_str(row.get("departure_time"))

        if not trip_id:
            raise NormalizationError("Missing trip_id in stop_times")
        if not stop_id:
            raise NormalizationError(f"Missing stop_id in stop_times for trip_id={trip_id}")

        try:
            stop_sequence = int(seq_str)
        except ValueError as exc:
            raise NormalizationError(
                f"Invalid stop_sequence={seq_str!r} for trip_id={trip_id}"
            ) from exc

        if not arrival_str and not departure_str:
            raise NormalizationError(
                f"Untimed stop for trip_id={trip_id}, stop_sequence={stop_sequence}"
            )

        arrival_sec = parse_gtfs_time(arrival_str or departure_str)
        departure_sec = parse_gtfs_time(departure_str or arrival_str)

        return StopTime(
            trip_id=trip_id,
            stop_id=stop_id,
            stop_sequence=stop_sequence,
            arrival_sec=arrival_sec,
            departure_sec=departure_sec,
        )

    @staticmethod
    def normalize_calendar(row: dict[str, Any]) -> ServiceCalendar:
        """Normalize a calendar.txt row.

        Raises:
            NormalizationError: If the service id or dates are invalid.
        """
        service_id = _clean_str(row.get("service_id"))
        if not service_id:
            raise NormalizationError("Missing service_id in calendar")

        days = tuple(_clean_str(row.get(column)) == "1" for column in _WEEKDAY_COLUMNS)
        return ServiceCalendar(
            service_id=service_id,
            days=days,  # type: ignore[arg-type]
            start_date=parse_gtfs_date(_clean_str(row.get("start_date"))),
            end_date=parse_gtfs_date(_clean_str(row.get("end_date"))),
        )

    @staticmethod
    def normalize_calendar_date(row: dict[str, Any]) -> CalendarDate:
        """Normalize a calendar_dates.txt row.

        Raises:
            NormalizationError: If the exception type is not 1 or 2.
        """
        service_id = _clean_str(row.get("service_id"))
        exception_type = _clean_str(row.get("exception_type"))
        if not service_id:
            raise NormalizationError("Missing service_id in calendar_dates")
        if exception_type not in ("1", "2"):
            raise NormalizationError(
                f"Invalid exception_type={exception_type!r} for service_id={service_id}"
            )
        return CalendarDate(
            service_id=service_id,
            date=parse_gtfs_date(_clean_str(row.get("date"))),
            added=exception_type == "1",
        )


def parse_gtfs_time(time_str: str) -> int:
    """Parse a GTFS time string (HH:MM:SS) to seconds from midnight.

    Supports times >= 24:00:00 for trips spanning past midnight.

    Examples:
        "08:30:00" -> 30600
        "25:01:30" -> 90090

    Raises:
        TimeParseError: If the format is invalid.
    """
    time_str = time_str.strip()
    parts = time_str.split(":")
    if len(parts) != 3:
        msg = f"Invalid GTFS time format: {time_str!r} (expected HH:MM:SS)"
        raise TimeParseError(msg)

    try:
        hours = int(parts[0])
        minutes = int(parts[1])
        seconds = int(parts[2])
    except ValueError as exc:
        msg = f"Non-numeric components in GTFS time: {time_str!r}"
        raise TimeParseError(msg) from exc

    if minutes < 0 or minutes > 59 or seconds < 0 or seconds > 59:
        msg = f"Invalid minutes/seconds in GTFS time: {time_str!r}"
        raise TimeParseError(msg)

    if hours < 0:
        msg = f"Negative hours in GTFS time: {time_str!r}"
        raise TimeParseError(msg)

    return hours * 3600 + minutes * 60 + seconds


def parse_gtfs_date(date_str: str) -> date:
    """Parse a GTFS date (YYYYMMDD).

    Raises:
        NormalizationError: If the date is malformed.
    """
    if len(date_str) != 8 or not date_str.isdigit():
        raise NormalizationError(f"Invalid GTFS date: {date_str!r} (expected YYYYMMDD)")
    try:
        return date(int(date_str[:4]), int(date_str[4:6]), int(date_str[6:]))
    except ValueError as exc:
        raise NormalizationError(f"Invalid GTFS date: {date_str!r}") from exc


def _clean_str(value: Any) -> str:
    """Trim whitespace from a value, return empty string for None."""
    if value is None:
        return ""
    return str(value).strip()


def _optional_int(value: Any, default: int) -> int:
    text = _clean_str(value)
    if not text:
        return default
    try:
        return int(text)
    except ValueError:
        return default
