"""Immutable in-memory index over one schedule version.

Built once per GTFS version and never mutated afterwards; a new version
gets a new index which is then published through the snapshot store.
"""

from __future__ import annotations

import math
from bisect import bisect_left, bisect_right
from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Optional

from transit_planner.constants import WALKING_SPEED_M_PER_MIN
from transit_planner.errors import ScheduleIntegrityError
from transit_planner.logging import get_logger, log_timing
from transit_planner.services.schedule.spatial import StopGrid, haversine_m

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from transit_planner.models.schedule import (
        CalendarDate,
        Location,
        Route,
        ScheduleFeed,
        ServiceCalendar,
        Stop,
        StopTime,
        Trip,
    )

logger = get_logger(__name__)

DEFAULT_TRANSFER_RADIUS_M = 250.0


@dataclass(frozen=True)
class Footpath:
    """Walking link between two nearby stops."""

    to_stop_id: str
    distance_m: float
    walk_sec: int


class RoutePattern:
    """Trips of one route sharing a stop sequence, none overtaking another.

    Because trips never overtake, every per-stop column of departure and
    arrival times is sorted, so boarding lookups are binary searches.
    """

    def __init__(self, pattern_id: str, route_id: str, trips: Sequence[Trip]) -> None:
        self.pattern_id = pattern_id
        self.route_id = route_id
        self.trips: tuple[Trip, ...] = tuple(trips)
        self.stop_ids: tuple[str, ...] = tuple(st.stop_id for st in self.trips[0].stop_times)
        self.departures: list[list[int]] = [
            [trip.stop_times[idx].departure_sec for trip in self.trips]
            for idx in range(len(self.stop_ids))
        ]
        self.arrivals: list[list[int]] = [
            [trip.stop_times[idx].arrival_sec for trip in self.trips]
            for idx in range(len(self.stop_ids))
        ]

    def __repr__(self) -> str:
        stops, trips = len(self.stop_ids), len(self.trips)
        return f"RoutePattern({self.pattern_id!r}, stops={stops}, trips={trips})"

    def earliest_trip(
        self, stop_idx: int, after_sec: int, usable: Callable[[Trip], bool]
    ) -> Optional[int]:
        """Index of the first usable trip departing ``stop_idx`` at or after ``after_sec``."""
        column = self.departures[stop_idx]
        idx = bisect_left(column, after_sec)
        while idx < len(self.trips):
            if usable(self.trips[idx]):
                return idx
            idx += 1
        return None

    def latest_trip(
        self, stop_idx: int, before_sec: int, usable: Callable[[Trip], bool]
    ) -> Optional[int]:
        """Index of the last usable trip arriving at ``stop_idx`` at or before ``before_sec``."""
        column = self.arrivals[stop_idx]
        idx = bisect_right(column, before_sec) - 1
        while idx >= 0:
            if usable(self.trips[idx]):
                return idx
            idx -= 1
        return None


class ScheduleIndex:
    """Lookup structures for stops, routes, trips and departures."""

    def __init__(self) -> None:
        # Populated by build(); direct construction yields an empty index.
        self.version = ""
        self.feed_hash = ""
        self.expiry_date: Optional[date] = None
        self.built_at = datetime.now(timezone.utc)
        self.walking_speed_m_per_min = WALKING_SPEED_M_PER_MIN
        # Latest scheduled arrival, in seconds of its service day
        self.latest_time_sec = 0
        self._stops: dict[str, Stop] = {}
        self._routes: dict[str, Route] = {}
        self._trips: dict[str, Trip] = {}
        self._grid = StopGrid(())
        self._departures: dict[str, list[tuple[int, str, int]]] = {}
        self._departure_secs: dict[str, list[int]] = {}
        self._patterns: dict[str, RoutePattern] = {}
        self._patterns_at: dict[str, list[tuple[RoutePattern, int]]] = {}
        self._footpaths: dict[str, tuple[Footpath, ...]] = {}
        self._calendars: dict[str, ServiceCalendar] = {}
        self._calendar_exceptions: dict[tuple[str, date], bool] = {}
        self._service_ids: frozenset[str] = frozenset()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_feed(cls, feed: ScheduleFeed, **kwargs: Any) -> ScheduleIndex:
        return cls.build(
            feed.stops,
            feed.routes,
            feed.trips,
            feed.stop_times,
            version=feed.version,
            expiry_date=feed.expiry_date,
            calendars=feed.calendars,
            calendar_dates=feed.calendar_dates,
            feed_hash=feed.feed_hash,
            **kwargs,
        )

    @classmethod
    def build(
        cls,
        stops: Iterable[Stop],
        routes: Iterable[Route],
        trips: Iterable[Trip],
        stop_times: Iterable[StopTime],
        *,
        version: str,
        expiry_date: Optional[date] = None,
        calendars: Iterable[ServiceCalendar] = (),
        calendar_dates: Iterable[CalendarDate] = (),
        feed_hash: str = "",
        transfer_radius_m: float = DEFAULT_TRANSFER_RADIUS_M,
        walking_speed_m_per_min: float = WALKING_SPEED_M_PER_MIN,
    ) -> ScheduleIndex:
        """Validate the record set and build an index.

        Raises:
            ScheduleIntegrityError: On duplicate ids, out-of-range
                coordinates, dangling references, or stop times that are
                not strictly ordered by sequence and time.
        """
        with log_timing(logger, "Schedule index built", version=version) as timing:
            index = cls()
            index.version = version
            index.feed_hash = feed_hash
            index.expiry_date = expiry_date
            index.walking_speed_m_per_min = walking_speed_m_per_min

            problems: list[str] = []
            stops_by_id = _unique(stops, "stop_id", problems)
            routes_by_id = _unique(routes, "route_id", problems)
            trips_by_id = _unique(trips, "trip_id", problems)

            for stop in stops_by_id.values():
                if not (-90.0 <= stop.lat <= 90.0 and -180.0 <= stop.lon <= 180.0):
                    problems.append(
                        f"Stop {stop.stop_id} has out-of-range coordinates ({stop.lat}, {stop.lon})"
                    )
            for trip in trips_by_id.values():
                if trip.route_id not in routes_by_id:
                    problems.append(f"Trip {trip.trip_id} references unknown route {trip.route_id}")

            grouped = _group_stop_times(stop_times, stops_by_id, trips_by_id, problems)
            if problems:
                logger.error(
                    "Schedule integrity check failed",
                    version=version,
                    problem_count=len(problems),
                    first_problem=problems[0],
                )
                raise ScheduleIntegrityError(problems)

            usable_trips: dict[str, Trip] = {}
            for trip_id, trip in trips_by_id.items():
                trip_stop_times = grouped.get(trip_id, [])
                if len(trip_stop_times) < 2:
                    continue
                usable_trips[trip_id] = replace(trip, stop_times=tuple(trip_stop_times))
            dropped = len(trips_by_id) - len(usable_trips)
            if dropped:
                logger.warning("Trips with fewer than two stop times ignored", count=dropped)

            route_ids_by_stop: dict[str, set[str]] = defaultdict(set)
            for trip in usable_trips.values():
                for st in trip.stop_times:
                    route_ids_by_stop[st.stop_id].add(trip.route_id)
            index._stops = {
                stop_id: replace(stop, route_ids=frozenset(route_ids_by_stop.get(stop_id, ())))
                for stop_id, stop in stops_by_id.items()
            }
            index._routes = routes_by_id
            index._trips = usable_trips
            index._grid = StopGrid(index._stops.values())

            index._index_departures()
            index._index_patterns()
            index._index_footpaths(transfer_radius_m)
            index._index_calendars(calendars, calendar_dates)

            timing.update(index.stats())
        return index

    def _index_departures(self) -> None:
        departures: dict[str, list[tuple[int, str, int]]] = defaultdict(list)
        for trip in self._trips.values():
            # A trip cannot be boarded at its last stop
            for position, st in enumerate(trip.stop_times[:-1]):
                departures[st.stop_id].append((st.departure_sec, trip.trip_id, position))
        for entries in departures.values():
            entries.sort()
        self._departures = dict(departures)
        self._departure_secs = {
            stop_id: [entry[0] for entry in entries] for stop_id, entries in departures.items()
        }
        self.latest_time_sec = max(
            (trip.stop_times[-1].arrival_sec for trip in self._trips.values() if trip.stop_times),
            default=0,
        )

    def _index_patterns(self) -> None:
        by_sequence: dict[tuple[str, tuple[str, ...]], list[Trip]] = defaultdict(list)
        for trip in self._trips.values():
            key = (trip.route_id, tuple(st.stop_id for st in trip.stop_times))
            by_sequence[key].append(trip)

        counters: dict[str, int] = defaultdict(int)
        patterns: dict[str, RoutePattern] = {}
        for (route_id, _sequence), trips in sorted(by_sequence.items()):
            for group in _split_overtaking(trips):
                pattern_id = f"{route_id}:{counters[route_id]}"
                counters[route_id] += 1
                patterns[pattern_id] = RoutePattern(pattern_id, route_id, group)

        patterns_at: dict[str, list[tuple[RoutePattern, int]]] = defaultdict(list)
        for pattern in patterns.values():
            for stop_idx, stop_id in enumerate(pattern.stop_ids):
                patterns_at[stop_id].append((pattern, stop_idx))
        self._patterns = patterns
        self._patterns_at = dict(patterns_at)

    def _index_footpaths(self, radius_m: float) -> None:
        children: dict[str, list[str]] = defaultdict(list)
        for stop in self._stops.values():
            if stop.parent_station and stop.parent_station in self._stops:
                children[stop.parent_station].append(stop.stop_id)

        speed_m_per_sec = self.walking_speed_m_per_min / 60.0
        footpaths: dict[str, tuple[Footpath, ...]] = {}
        for stop in self._stops.values():
            best: dict[str, float] = {}
            for other, distance in self._grid.within(stop.lat, stop.lon, radius_m):
                if other.stop_id != stop.stop_id:
                    best[other.stop_id] = distance

            # Platforms of the same station are always connected
            related: set[str] = set(children.get(stop.stop_id, ()))
            if stop.parent_station and stop.parent_station in self._stops:
                related.add(stop.parent_station)
                related.update(children.get(stop.parent_station, ()))
            related.discard(stop.stop_id)
            for other_id in related:
                if other_id not in best:
                    other = self._stops[other_id]
                    best[other_id] = _distance(stop, other)

            footpaths[stop.stop_id] = tuple(
                Footpath(other_id, distance, math.ceil(distance / speed_m_per_sec))
                for other_id, distance in sorted(best.items(), key=lambda item: (item[1], item[0]))
            )
        self._footpaths = footpaths

    def _index_calendars(
        self, calendars: Iterable[ServiceCalendar], calendar_dates: Iterable[CalendarDate]
    ) -> None:
        self._calendars = {calendar.service_id: calendar for calendar in calendars}
        self._calendar_exceptions = {(cd.service_id, cd.date): cd.added for cd in calendar_dates}
        self._service_ids = frozenset(trip.service_id for trip in self._trips.values())

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @property
    def stops(self) -> list[Stop]:
        return list(self._stops.values())

    @property
    def routes(self) -> list[Route]:
        return list(self._routes.values())

    @property
    def patterns(self) -> dict[str, RoutePattern]:
        return self._patterns

    def has_stop(self, stop_id: str) -> bool:
        return stop_id in self._stops

    def stop(self, stop_id: str) -> Stop:
        """Raises KeyError for unknown ids."""
        return self._stops[stop_id]

    def route_info(self, route_id: str) -> Route:
        """Raises KeyError for unknown ids."""
        return self._routes[route_id]

    def trip(self, trip_id: str) -> Trip:
        """Raises KeyError for unknown ids."""
        return self._trips[trip_id]

    def stop_time(self, trip_id: str, stop_id: str) -> Optional[StopTime]:
        for st in self._trips[trip_id].stop_times:
            if st.stop_id == stop_id:
                return st
        return None

    def routes_serving(self, stop_id: str) -> list[Route]:
        stop = self.stop(stop_id)
        return sorted(
            (self._routes[route_id] for route_id in stop.route_ids),
            key=lambda route: (route.short_name, route.route_id),
        )

    def stops_near(
        self, location: Location, radius_m: float, limit: Optional[int] = None
    ) -> list[Stop]:
        """Stops within ``radius_m`` of ``location``, nearest first."""
        return [stop for stop, _ in self.stops_near_with_distance(location, radius_m, limit)]

    def stops_near_with_distance(
        self, location: Location, radius_m: float, limit: Optional[int] = None
    ) -> list[tuple[Stop, float]]:
        found = self._grid.within(location.lat, location.lon, radius_m)
        return found[:limit] if limit is not None else found

    def trips_serving(
        self,
        stop_id: str,
        after_sec: int,
        *,
        limit: Optional[int] = None,
        service_date: Optional[date] = None,
    ) -> list[tuple[Trip, StopTime]]:
        """Departures from ``stop_id`` at or after ``after_sec``, in time order.

        With ``service_date`` only trips running that day are returned.

        Raises:
            KeyError: If the stop is unknown.
        """
        if stop_id not in self._stops:
            raise KeyError(stop_id)
        entries = self._departures.get(stop_id, [])
        start = bisect_left(self._departure_secs.get(stop_id, []), after_sec)

        result: list[tuple[Trip, StopTime]] = []
        for _, trip_id, position in entries[start:]:
            trip = self._trips[trip_id]
            if service_date is not None and not self.is_service_active(
                trip.service_id, service_date
            ):
                continue
            result.append((trip, trip.stop_times[position]))
            if limit is not None and len(result) >= limit:
                break
        return result

    def patterns_at(self, stop_id: str) -> list[tuple[RoutePattern, int]]:
        return self._patterns_at.get(stop_id, [])

    def transfers_from(self, stop_id: str) -> tuple[Footpath, ...]:
        return self._footpaths.get(stop_id, ())

    def is_service_active(self, service_id: str, day: date) -> bool:
        """Calendar check; feeds without any calendar data run every day."""
        if not self._calendars and not self._calendar_exceptions:
            return True
        exception = self._calendar_exceptions.get((service_id, day))
        if exception is not None:
            return exception
        calendar = self._calendars.get(service_id)
        return calendar is not None and calendar.runs_on(day)

    def active_service_ids(self, day: date) -> frozenset[str]:
        return frozenset(sid for sid in self._service_ids if self.is_service_active(sid, day))

    def is_expired(self, today: date) -> bool:
        return self.expiry_date is not None and today > self.expiry_date

    def stats(self) -> dict[str, int]:
        return {
            "stops": len(self._stops),
            "routes": len(self._routes),
            "trips": len(self._trips),
            "patterns": len(self._patterns),
        }


def _unique(records: Iterable[Any], key: str, problems: list[str]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for record in records:
        record_id = getattr(record, key)
        if record_id in result:
            problems.append(f"Duplicate {key} {record_id}")
            continue
        result[record_id] = record
    return result


def _group_stop_times(
    stop_times: Iterable[StopTime],
    stops_by_id: dict[str, Stop],
    trips_by_id: dict[str, Trip],
    problems: list[str],
) -> dict[str, list[StopTime]]:
    grouped: dict[str, list[StopTime]] = defaultdict(list)
    for st in stop_times:
        if st.trip_id not in trips_by_id:
            problems.append(f"Stop time references unknown trip {st.trip_id}")
            continue
        if st.stop_id not in stops_by_id:
            problems.append(f"Stop time for trip {st.trip_id} references unknown stop {st.stop_id}")
            continue
        if st.departure_sec < st.arrival_sec:
            problems.append(
                f"Trip {st.trip_id} departs stop {st.stop_id} before arriving "
                f"(sequence {st.stop_sequence})"
            )
        grouped[st.trip_id].append(st)

    for trip_id, entries in grouped.items():
        entries.sort(key=lambda st: st.stop_sequence)
        for prev, curr in zip(entries, entries[1:]):
            if curr.stop_sequence == prev.stop_sequence:
                problems.append(f"Trip {trip_id} repeats stop_sequence {curr.stop_sequence}")
            elif curr.arrival_sec < prev.departure_sec:
                problems.append(
                    f"Trip {trip_id} goes back in time at stop_sequence {curr.stop_sequence}"
                )
    return grouped


def _split_overtaking(trips: list[Trip]) -> list[list[Trip]]:
    """Partition trips so that within each group no trip overtakes another."""
    ordered = sorted(
        trips,
        key=lambda trip: (
            tuple(st.departure_sec for st in trip.stop_times),
            trip.trip_id,
        ),
    )
    groups: list[list[Trip]] = []
    for trip in ordered:
        for group in groups:
            if _follows(group[-1], trip):
                group.append(trip)
                break
        else:
            groups.append([trip])
    return groups


def _follows(earlier: Trip, later: Trip) -> bool:
    return all(
        b.arrival_sec >= a.arrival_sec and b.departure_sec >= a.departure_sec
        for a, b in zip(earlier.stop_times, later.stop_times)
    )


def _distance(a: Stop, b: Stop) -> float:
    return haversine_m(a.lat, a.lon, b.lat, b.lon)
