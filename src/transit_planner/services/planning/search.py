"""Round-based itinerary search (RAPTOR) over one schedule snapshot.

Each round k finds the best way to reach every stop using exactly k
vehicles: route patterns touched by stops improved in round k-1 are scanned
once, in stop order, hopping onto the earliest catchable trip, and walking
footpaths are relaxed from the stops reached by a ride. Labels keep a
pointer to the label they were reached from, so a journey is rebuilt by
following that chain.

Arrive-by requests run the same rounds backwards from the destination,
tracking the latest departure from each stop that still reaches the
destination by the deadline.

Reference: Delling, Pajor, Werneck, "Round-Based Public Transit Routing"
(2012).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import TYPE_CHECKING, Optional
from zoneinfo import ZoneInfo

from transit_planner.config import get_settings
from transit_planner.logging import get_logger
from transit_planner.models.itinerary import Itinerary, Leg, LegMode, PlanOptions, leg_mode_for
from transit_planner.models.schedule import Location
from transit_planner.services.schedule.spatial import haversine_m

if TYPE_CHECKING:
    from transit_planner.config import Settings
    from transit_planner.models.schedule import Stop, Trip
    from transit_planner.services.planning.cancellation import CancellationToken
    from transit_planner.services.schedule.index import RoutePattern, ScheduleIndex

logger = get_logger(__name__)

ACCESS = "access"
EGRESS = "egress"
RIDE = "ride"
WALK = "walk"


@dataclass(frozen=True, eq=False)
class Label:
    """Best known time at a stop in one round.

    ``time_sec`` is the arrival time for forward searches and the latest
    departure time for backward ones.
    """

    time_sec: int
    kind: str
    stop_id: str
    previous: Optional[Label] = None
    pattern: Optional[RoutePattern] = None
    trip_idx: int = -1
    board_idx: int = -1
    alight_idx: int = -1
    distance_m: float = 0.0
    walk_sec: int = 0

    def chain(self) -> list[Label]:
        labels: list[Label] = []
        label: Optional[Label] = self
        while label is not None:
            labels.append(label)
            label = label.previous
        return labels


@dataclass(frozen=True)
class ServiceDay:
    """Maps GTFS times (seconds from noon minus 12 h) onto datetimes."""

    date: date
    start: datetime
    tz: ZoneInfo

    @classmethod
    def on(cls, local_date: date, tz: ZoneInfo) -> ServiceDay:
        noon = datetime.combine(local_date, time(12), tzinfo=tz).astimezone(timezone.utc)
        return cls(date=local_date, start=noon - timedelta(hours=12), tz=tz)

    @classmethod
    def containing(cls, when: datetime, tz: ZoneInfo) -> ServiceDay:
        return cls.on(when.astimezone(tz).date(), tz)

    def shifted(self, days: int) -> ServiceDay:
        return ServiceDay.on(self.date + timedelta(days=days), self.tz)

    def to_datetime(self, seconds: int) -> datetime:
        return (self.start + timedelta(seconds=seconds)).astimezone(self.tz)

    def to_seconds(self, when: datetime) -> float:
        return (when - self.start).total_seconds()


@dataclass(frozen=True)
class _Step:
    kind: str
    from_stop_id: str
    to_stop_id: str
    pattern: Optional[RoutePattern] = None
    trip_idx: int = -1
    board_idx: int = -1
    alight_idx: int = -1
    distance_m: float = 0.0
    walk_sec: int = 0


@dataclass
class _Context:
    """Everything fixed while searching one service day of a request."""

    origin: Location
    destination: Location
    day: ServiceDay
    options: PlanOptions
    active_service_ids: frozenset[str]
    inaccessible_stop_ids: frozenset[str]
    access: dict[str, tuple[float, int]] = field(default_factory=dict)
    egress: dict[str, tuple[float, int]] = field(default_factory=dict)
    cancel: Optional[CancellationToken] = None

    @property
    def max_rounds(self) -> int:
        return self.options.max_transfers + 1

    def usable(self, trip: Trip) -> bool:
        if trip.service_id not in self.active_service_ids:
            return False
        return not self.options.wheelchair_accessible_only or trip.is_accessible

    def can_use_stop(self, stop_id: str) -> bool:
        return stop_id not in self.inaccessible_stop_ids

    def check_cancelled(self) -> None:
        if self.cancel is not None:
            self.cancel.raise_if_cancelled()


class ItinerarySearch:
    """Finds candidate itineraries between two points on one schedule index."""

    def __init__(
        self,
        index: ScheduleIndex,
        *,
        service_timezone: str = "America/Los_Angeles",
        search_window_minutes: int = 240,
        departure_iterations: int = 3,
    ) -> None:
        self.index = index
        self.tz = ZoneInfo(service_timezone)
        self.window_sec = search_window_minutes * 60
        self.departure_iterations = max(1, departure_iterations)
        self._walk_m_per_sec = index.walking_speed_m_per_min / 60.0

    @classmethod
    def from_settings(
        cls, index: ScheduleIndex, settings: Optional[Settings] = None
    ) -> ItinerarySearch:
        settings = settings or get_settings()
        return cls(
            index,
            service_timezone=settings.service_timezone,
            search_window_minutes=settings.search_window_minutes,
            departure_iterations=settings.search_departure_iterations,
        )

    def walk_seconds(self, distance_m: float) -> int:
        return math.ceil(distance_m / self._walk_m_per_sec)

    def nearby_stops(
        self, location: Location, options: PlanOptions
    ) -> dict[str, tuple[float, int]]:
        """Stops usable as access or egress: stop id to (distance, walk seconds)."""
        found: dict[str, tuple[float, int]] = {}
        for stop, distance in self.index.stops_near_with_distance(
            location, options.max_walking_distance_m
        ):
            if options.wheelchair_accessible_only and stop.is_inaccessible:
                continue
            found[stop.stop_id] = (distance, self.walk_seconds(distance))
        return found

    def plan(
        self,
        origin: Location,
        destination: Location,
        requested_time: datetime,
        arrive_by: bool,
        options: PlanOptions,
        cancel: Optional[CancellationToken] = None,
    ) -> list[Itinerary]:
        """Candidate itineraries, Pareto-filtered; empty when none exist.

        ``requested_time`` must be timezone-aware. It is the earliest
        departure, or the latest arrival when ``arrive_by`` is set.

        Trips of the previous and next service days are searched too when
        the search window reaches their times, so a request at 00:30 can
        board a trip scheduled at 24:40 the day before.

        Raises:
            Cancelled: If ``cancel`` fires during the search.
        """
        day = ServiceDay.containing(requested_time, self.tz)
        access = self.nearby_stops(origin, options)
        egress = self.nearby_stops(destination, options)
        inaccessible = (
            frozenset(stop.stop_id for stop in self.index.stops if stop.is_inaccessible)
            if options.wheelchair_accessible_only
            else frozenset()
        )

        transit: list[Itinerary] = []
        searched: list[str] = []
        for service_day in (day.shifted(-1), day, day.shifted(1)):
            if not (access and egress):
                break
            request_sec = service_day.to_seconds(requested_time)
            if not self._window_reaches_schedule(request_sec, arrive_by):
                continue
            ctx = _Context(
                origin=origin,
                destination=destination,
                day=service_day,
                options=options,
                active_service_ids=self.index.active_service_ids(service_day.date),
                inaccessible_stop_ids=inaccessible,
                access=access,
                egress=egress,
                cancel=cancel,
            )
            searched.append(service_day.date.isoformat())
            if arrive_by:
                transit.extend(self._backward_range(ctx, math.floor(request_sec)))
            else:
                transit.extend(self._forward_range(ctx, math.ceil(request_sec)))
        if cancel is not None:
            cancel.raise_if_cancelled()

        candidates = pareto_filter(transit)
        walk = self._walk_only(origin, destination, requested_time, arrive_by, options)
        if walk is not None:
            candidates.append(walk)

        candidates.sort(key=lambda it: (it.end_time, it.transfers, it.signature))
        logger.debug(
            "Itinerary search finished",
            arrive_by=arrive_by,
            service_date=day.date.isoformat(),
            searched_dates=searched,
            access_stops=len(access),
            egress_stops=len(egress),
            candidates=len(candidates),
        )
        return candidates

    def _window_reaches_schedule(self, request_sec: float, arrive_by: bool) -> bool:
        """Whether the search window overlaps the feed's scheduled times on a day."""
        if arrive_by:
            low, high = request_sec - self.window_sec, request_sec
        else:
            low, high = request_sec, request_sec + self.window_sec
        return high >= 0 and low <= self.index.latest_time_sec

    # ------------------------------------------------------------------
    # Range iterations
    # ------------------------------------------------------------------

    def _forward_range(self, ctx: _Context, departure_sec: int) -> list[Itinerary]:
        found: list[Itinerary] = []
        for _ in range(self.departure_iterations):
            finals = self._forward(ctx, departure_sec)
            if not finals:
                break
            batch = [self._assemble(ctx, _forward_steps(label)) for label in finals]
            found.extend(batch)
            earliest = min(ctx.day.to_seconds(it.start_time) for it in batch)
            departure_sec = int(earliest) + 1
        return found

    def _backward_range(self, ctx: _Context, deadline_sec: int) -> list[Itinerary]:
        found: list[Itinerary] = []
        for _ in range(self.departure_iterations):
            firsts = self._backward(ctx, deadline_sec)
            if not firsts:
                break
            batch = [self._assemble(ctx, _backward_steps(label)) for label in firsts]
            found.extend(batch)
            latest = max(ctx.day.to_seconds(it.end_time) for it in batch)
            deadline_sec = int(latest) - 1
        return found

    # ------------------------------------------------------------------
    # Forward rounds
    # ------------------------------------------------------------------

    def _forward(self, ctx: _Context, departure_sec: int) -> list[Label]:
        """Final ride labels, one per round that improved the destination."""
        horizon = departure_sec + self.window_sec
        best: dict[str, float] = {}
        previous: dict[str, Label] = {}
        for stop_id, (distance, walk_sec) in ctx.access.items():
            label = Label(
                departure_sec + walk_sec, ACCESS, stop_id, distance_m=distance, walk_sec=walk_sec
            )
            previous[stop_id] = label
            best[stop_id] = label.time_sec

        best_target = math.inf
        finals: list[Label] = []
        for _round in range(ctx.max_rounds):
            if not previous:
                break
            ctx.check_cancelled()
            rides: dict[str, Label] = {}
            for pattern, start_idx in self._patterns_to_scan(previous, backward=False):
                ctx.check_cancelled()
                self._scan_forward(
                    ctx, pattern, start_idx, previous, rides, best, horizon, best_target
                )

            # A footpath never replaces the ride label at its end stop
            walked: dict[str, Label] = {}
            for ride in rides.values():
                for footpath in self.index.transfers_from(ride.stop_id):
                    if footpath.distance_m > ctx.options.max_walking_distance_m:
                        continue
                    if not ctx.can_use_stop(footpath.to_stop_id):
                        continue
                    arrival = ride.time_sec + footpath.walk_sec
                    if arrival <= horizon and arrival < best.get(footpath.to_stop_id, math.inf):
                        walked[footpath.to_stop_id] = Label(
                            arrival,
                            WALK,
                            footpath.to_stop_id,
                            previous=ride,
                            distance_m=footpath.distance_m,
                            walk_sec=footpath.walk_sec,
                        )
                        best[footpath.to_stop_id] = arrival

            arrived: Optional[tuple[int, str, Label]] = None
            for stop_id, label in rides.items():
                if stop_id not in ctx.egress:
                    continue
                arrival = label.time_sec + ctx.egress[stop_id][1]
                if arrival <= horizon and (arrived is None or (arrival, stop_id) < arrived[:2]):
                    arrived = (arrival, stop_id, label)
            if arrived is not None and arrived[0] < best_target:
                best_target = arrived[0]
                finals.append(arrived[2])
            previous = {**rides, **walked}
        return finals

    def _scan_forward(
        self,
        ctx: _Context,
        pattern: RoutePattern,
        start_idx: int,
        previous: dict[str, Label],
        rides: dict[str, Label],
        best: dict[str, float],
        horizon: int,
        best_target: float,
    ) -> None:
        trip_idx: Optional[int] = None
        board_idx = -1
        boarded_from: Optional[Label] = None
        last_idx = len(pattern.stop_ids) - 1

        for idx in range(start_idx, last_idx + 1):
            stop_id = pattern.stop_ids[idx]
            if trip_idx is not None and ctx.can_use_stop(stop_id):
                arrival = pattern.arrivals[idx][trip_idx]
                if arrival <= horizon and arrival < min(best.get(stop_id, math.inf), best_target):
                    rides[stop_id] = Label(
                        arrival,
                        RIDE,
                        stop_id,
                        previous=boarded_from,
                        pattern=pattern,
                        trip_idx=trip_idx,
                        board_idx=board_idx,
                        alight_idx=idx,
                    )
                    best[stop_id] = arrival

            label = previous.get(stop_id)
            if label is None or idx == last_idx or not ctx.can_use_stop(stop_id):
                continue
            if trip_idx is not None and label.time_sec > pattern.departures[idx][trip_idx]:
                continue
            candidate = pattern.earliest_trip(idx, label.time_sec, ctx.usable)
            if candidate is not None and (trip_idx is None or candidate < trip_idx):
                trip_idx, board_idx, boarded_from = candidate, idx, label

    # ------------------------------------------------------------------
    # Backward rounds
    # ------------------------------------------------------------------

    def _backward(self, ctx: _Context, deadline_sec: int) -> list[Label]:
        """First ride labels, one per round that improved the origin."""
        horizon = deadline_sec - self.window_sec
        best: dict[str, float] = {}
        previous: dict[str, Label] = {}
        for stop_id, (distance, walk_sec) in ctx.egress.items():
            label = Label(
                deadline_sec - walk_sec, EGRESS, stop_id, distance_m=distance, walk_sec=walk_sec
            )
            previous[stop_id] = label
            best[stop_id] = label.time_sec

        best_target = -math.inf
        firsts: list[Label] = []
        for _round in range(ctx.max_rounds):
            if not previous:
                break
            ctx.check_cancelled()
            rides: dict[str, Label] = {}
            for pattern, end_idx in self._patterns_to_scan(previous, backward=True):
                ctx.check_cancelled()
                self._scan_backward(
                    ctx, pattern, end_idx, previous, rides, best, horizon, best_target
                )

            walked: dict[str, Label] = {}
            for ride in rides.values():
                for footpath in self.index.transfers_from(ride.stop_id):
                    if footpath.distance_m > ctx.options.max_walking_distance_m:
                        continue
                    if not ctx.can_use_stop(footpath.to_stop_id):
                        continue
                    departure = ride.time_sec - footpath.walk_sec
                    known = best.get(footpath.to_stop_id, -math.inf)
                    if departure >= horizon and departure > known:
                        walked[footpath.to_stop_id] = Label(
                            departure,
                            WALK,
                            footpath.to_stop_id,
                            previous=ride,
                            distance_m=footpath.distance_m,
                            walk_sec=footpath.walk_sec,
                        )
                        best[footpath.to_stop_id] = departure

            left: Optional[tuple[int, str, Label]] = None
            for stop_id, label in rides.items():
                if stop_id not in ctx.access:
                    continue
                departure = label.time_sec - ctx.access[stop_id][1]
                if departure >= horizon and (
                    left is None or (-departure, stop_id) < (-left[0], left[1])
                ):
                    left = (departure, stop_id, label)
            if left is not None and left[0] > best_target:
                best_target = left[0]
                firsts.append(left[2])
            previous = {**rides, **walked}
        return firsts

    def _scan_backward(
        self,
        ctx: _Context,
        pattern: RoutePattern,
        end_idx: int,
        previous: dict[str, Label],
        rides: dict[str, Label],
        best: dict[str, float],
        horizon: int,
        best_target: float,
    ) -> None:
        trip_idx: Optional[int] = None
        alight_idx = -1
        alighted_to: Optional[Label] = None

        for idx in range(end_idx, -1, -1):
            stop_id = pattern.stop_ids[idx]
            if trip_idx is not None and ctx.can_use_stop(stop_id):
                departure = pattern.departures[idx][trip_idx]
                if departure >= horizon and departure > max(
                    best.get(stop_id, -math.inf), best_target
                ):
                    rides[stop_id] = Label(
                        departure,
                        RIDE,
                        stop_id,
                        previous=alighted_to,
                        pattern=pattern,
                        trip_idx=trip_idx,
                        board_idx=idx,
                        alight_idx=alight_idx,
                    )
                    best[stop_id] = departure

            label = previous.get(stop_id)
            if label is None or idx == 0 or not ctx.can_use_stop(stop_id):
                continue
            if trip_idx is not None and label.time_sec < pattern.arrivals[idx][trip_idx]:
                continue
            candidate = pattern.latest_trip(idx, label.time_sec, ctx.usable)
            if candidate is not None and (trip_idx is None or candidate > trip_idx):
                trip_idx, alight_idx, alighted_to = candidate, idx, label

    def _patterns_to_scan(
        self, marked: dict[str, Label], *, backward: bool
    ) -> list[tuple[RoutePattern, int]]:
        """Each pattern serving a marked stop, with the stop index to start from."""
        starts: dict[str, tuple[RoutePattern, int]] = {}
        for stop_id in marked:
            for pattern, idx in self.index.patterns_at(stop_id):
                known = starts.get(pattern.pattern_id)
                if known is None or (idx > known[1] if backward else idx < known[1]):
                    starts[pattern.pattern_id] = (pattern, idx)
        return [starts[pattern_id] for pattern_id in sorted(starts)]

    # ------------------------------------------------------------------
    # Itinerary assembly
    # ------------------------------------------------------------------

    def _assemble(self, ctx: _Context, steps: list[_Step]) -> Itinerary:
        day = ctx.day
        first = steps[0]
        last = steps[-1]
        legs: list[Leg] = []

        access_distance, access_walk = ctx.access[first.from_stop_id]
        board_time = day.to_datetime(_departure_sec(first))
        if access_walk > 0:
            legs.append(
                self._walk_leg(
                    ctx.origin,
                    self._place(first.from_stop_id),
                    board_time - timedelta(seconds=access_walk),
                    access_walk,
                    access_distance,
                )
            )

        cursor = board_time
        for step in steps:
            if step.kind == RIDE:
                leg = self._ride_leg(step, day)
                legs.append(leg)
                cursor = leg.end_time
            elif step.walk_sec > 0:
                legs.append(
                    self._walk_leg(
                        self._place(step.from_stop_id),
                        self._place(step.to_stop_id),
                        cursor,
                        step.walk_sec,
                        step.distance_m,
                    )
                )
                cursor = legs[-1].end_time

        egress_distance, egress_walk = ctx.egress[last.to_stop_id]
        if egress_walk > 0:
            legs.append(
                self._walk_leg(
                    self._place(last.to_stop_id),
                    ctx.destination,
                    cursor,
                    egress_walk,
                    egress_distance,
                )
            )
        return Itinerary(legs=legs)

    def _ride_leg(self, step: _Step, day: ServiceDay) -> Leg:
        trip = _pattern_of(step).trips[step.trip_idx]
        route = self.index.route_info(trip.route_id)
        board = trip.stop_times[step.board_idx]
        alight = trip.stop_times[step.alight_idx]
        start = day.to_datetime(board.departure_sec)
        end = day.to_datetime(alight.arrival_sec)

        ridden = [
            self.index.stop(st.stop_id)
            for st in trip.stop_times[step.board_idx : step.alight_idx + 1]
        ]
        distance = sum(haversine_m(a.lat, a.lon, b.lat, b.lon) for a, b in zip(ridden, ridden[1:]))

        return Leg(
            mode=leg_mode_for(route.route_type),
            from_place=self._place(board.stop_id, start),
            to_place=self._place(alight.stop_id, end),
            start_time=start,
            end_time=end,
            distance_m=distance,
            route_id=route.route_id,
            trip_id=trip.trip_id,
            route_short_name=route.display_name,
            headsign=trip.headsign or None,
            agency_id=route.agency_id or None,
            intermediate_stops=[stop.stop_id for stop in ridden[1:-1]],
            scheduled_start_time=start,
            scheduled_end_time=end,
        )

    @staticmethod
    def _walk_leg(
        from_place: Location, to_place: Location, start: datetime, walk_sec: int, distance_m: float
    ) -> Leg:
        end = start + timedelta(seconds=walk_sec)
        return Leg(
            mode=LegMode.WALK,
            from_place=from_place.at(start),
            to_place=to_place.at(end),
            start_time=start,
            end_time=end,
            distance_m=distance_m,
        )

    def _place(self, stop_id: str, when: Optional[datetime] = None) -> Location:
        stop: Stop = self.index.stop(stop_id)
        return Location(stop.lat, stop.lon, stop_id=stop.stop_id, name=stop.name, time=when)

    def _walk_only(
        self,
        origin: Location,
        destination: Location,
        requested_time: datetime,
        arrive_by: bool,
        options: PlanOptions,
    ) -> Optional[Itinerary]:
        distance = haversine_m(origin.lat, origin.lon, destination.lat, destination.lon)
        if distance > options.max_walking_distance_m:
            return None
        walk_sec = self.walk_seconds(distance)
        start = requested_time - timedelta(seconds=walk_sec) if arrive_by else requested_time
        start = start.astimezone(self.tz)
        return Itinerary(legs=[self._walk_leg(origin, destination, start, walk_sec, distance)])


def _pattern_of(item: _Step | Label) -> RoutePattern:
    if item.pattern is None:
        msg = f"{item.kind} step has no route pattern"
        raise ValueError(msg)
    return item.pattern


def _walked_from(label: Label) -> Label:
    if label.previous is None:
        msg = f"Footpath to {label.stop_id} has no starting label"
        raise ValueError(msg)
    return label.previous


def _departure_sec(step: _Step) -> int:
    return _pattern_of(step).departures[step.board_idx][step.trip_idx]


def _ride_step(label: Label) -> _Step:
    pattern = _pattern_of(label)
    return _Step(
        kind=RIDE,
        from_stop_id=pattern.stop_ids[label.board_idx],
        to_stop_id=pattern.stop_ids[label.alight_idx],
        pattern=pattern,
        trip_idx=label.trip_idx,
        board_idx=label.board_idx,
        alight_idx=label.alight_idx,
    )


def _forward_steps(final: Label) -> list[_Step]:
    """Steps from a forward chain, which runs destination to origin."""
    steps: list[_Step] = []
    for label in reversed(final.chain()):
        if label.kind == RIDE:
            steps.append(_ride_step(label))
        elif label.kind == WALK:
            steps.append(
                _Step(
                    kind=WALK,
                    from_stop_id=_walked_from(label).stop_id,
                    to_stop_id=label.stop_id,
                    distance_m=label.distance_m,
                    walk_sec=label.walk_sec,
                )
            )
    return steps


def _backward_steps(first: Label) -> list[_Step]:
    """Steps from a backward chain, which already runs origin to destination."""
    steps: list[_Step] = []
    for label in first.chain():
        if label.kind == RIDE:
            steps.append(_ride_step(label))
        elif label.kind == WALK:
            steps.append(
                _Step(
                    kind=WALK,
                    from_stop_id=label.stop_id,
                    to_stop_id=_walked_from(label).stop_id,
                    distance_m=label.distance_m,
                    walk_sec=label.walk_sec,
                )
            )
    return steps


def pareto_filter(itineraries: list[Itinerary]) -> list[Itinerary]:
    """Drop duplicates and itineraries dominated on departure, arrival and transfers.

    One dominates another when it leaves no earlier, arrives no later and
    transfers no more, and is strictly better in at least one of the three.
    """
    unique: dict[tuple, Itinerary] = {}
    for itinerary in itineraries:
        unique.setdefault(itinerary.signature, itinerary)

    ordered = sorted(
        unique.values(),
        key=lambda it: (it.end_time, -it.start_time.timestamp(), it.transfers, it.signature),
    )
    kept: list[Itinerary] = []
    for candidate in ordered:
        if not any(_dominates(other, candidate) for other in kept):
            kept = [other for other in kept if not _dominates(candidate, other)]
            kept.append(candidate)
    return kept


def _dominates(a: Itinerary, b: Itinerary) -> bool:
    no_worse = (
        a.start_time >= b.start_time and a.end_time <= b.end_time and a.transfers <= b.transfers
    )
    better = a.start_time > b.start_time or a.end_time < b.end_time or a.transfers < b.transfers
    return no_worse and better
