"""GTFS CSV parser with strict column validation and streaming."""

from __future__ import annotations

import csv
from typing import TYPE_CHECKING, Any

from transit_planner.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterator

    from transit_planner.services.gtfs_static.reader import GtfsZipReader

logger = get_logger(__name__)

# Required columns per GTFS file (subset we need)
REQUIRED_COLUMNS: dict[str, set[str]] = {
    "stops.txt": {"stop_id", "stop_name", "stop_lat", "stop_lon"},
    "routes.txt": {"route_id", "route_type"},
    "trips.txt": {"route_id", "service_id", "trip_id"},
    "stop_times.txt": {"trip_id", "arrival_time", "departure_time", "stop_id", "stop_sequence"},
    "calendar.txt": {
        "service_id",
        "monday",
        "tuesday",
        "wednesday",
        "thursday",
        "friday",
        "saturday",
        "sunday",
        "start_date",
        "end_date",
    },
    "calendar_dates.txt": {"service_id", "date", "exception_type"},
    "feed_info.txt": set(),
}


class MissingColumnError(Exception):
    """Raised when a required CSV column is missing."""


class GtfsParser:
    """Parses GTFS CSV files with column validation and streaming iteration."""

    def __init__(self, reader: GtfsZipReader) -> None:
        self._reader = reader

    def parse_file(self, filename: str) -> Iterator[dict[str, Any]]:
        """Parse a GTFS CSV file, yielding one dict per row.

        Raises:
            MissingColumnError: If required columns are missing.
        """
        with self._reader.open_file(filename) as text_io:
            csv_reader = csv.DictReader(text_io)

            if csv_reader.fieldnames is None:
                msg = f"Empty CSV file: {filename}"
                raise MissingColumnError(msg)

            actual_columns = {name.strip() for name in csv_reader.fieldnames}
            required = REQUIRED_COLUMNS.get(filename, set())
            missing = required - actual_columns
            if missing:
                msg = f"Missing required columns in {filename}: {sorted(missing)}"
                raise MissingColumnError(msg)

            logger.debug("Parsing GTFS file", filename=filename, columns=len(actual_columns))
            csv_reader.fieldnames = [name.strip() for name in csv_reader.fieldnames]
            yield from csv_reader

    def parse_optional(self, filename: str) -> Iterator[dict[str, Any]]:
        """Like :meth:`parse_file`, but yields nothing when the file is absent."""
        if not self._reader.has_file(filename):
            return iter(())
        return self.parse_file(filename)

    def parse_stops(self) -> Iterator[dict[str, Any]]:
        return self.parse_file("stops.txt")

    def parse_routes(self) -> Iterator[dict[str, Any]]:
        return self.parse_file("routes.txt")

    def parse_trips(self) -> Iterator[dict[str, Any]]:
        return self.parse_file("trips.txt")

    def parse_stop_times(self) -> Iterator[dict[str, Any]]:
        return self.parse_file("stop_times.txt")

    def parse_calendar(self) -> Iterator[dict[str, Any]]:
        return self.parse_optional("calendar.txt")

    def parse_calendar_dates(self) -> Iterator[dict[str, Any]]:
        return self.parse_optional("calendar_dates.txt")

    def parse_feed_info(self) -> Iterator[dict[str, Any]]:
        return self.parse_optional("feed_info.txt")
