"""Trip planning pipeline: search, live merge, reliability, risk and ranking."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional
from zoneinfo import ZoneInfo

from transit_planner.config import get_settings
from transit_planner.errors import InvalidRequest
from transit_planner.logging import get_logger, log_timing
from transit_planner.models.itinerary import (
    Itinerary,
    Leg,
    NoPathReason,
    PlanRequest,
    PlanResponse,
)
from transit_planner.services.planning.ranker import ItineraryRanker
from transit_planner.services.planning.risk import TransferRiskAssessor
from transit_planner.services.planning.search import ItinerarySearch
from transit_planner.services.realtime.merger import RealtimeMerger
from transit_planner.services.realtime.source import get_live_source
from transit_planner.services.reliability.model import ReliabilityModel
from transit_planner.services.schedule.index import ScheduleIndex
from transit_planner.services.snapshots import get_reliability_store, get_schedule_store

if TYPE_CHECKING:
    from transit_planner.config import Settings
    from transit_planner.models.realtime import LiveArrivals
    from transit_planner.models.reliability import ReliabilitySnapshot
    from transit_planner.models.schedule import Location
    from transit_planner.services.planning.cancellation import CancellationToken
    from transit_planner.services.realtime.source import LiveArrivalSource
    from transit_planner.services.snapshots import SnapshotStore

logger = get_logger(__name__)


class TripPlanner:
    """Answers planning requests against the currently published snapshots.

    The schedule and reliability snapshots are read once at the start of a
    request; a snapshot published while the request runs is not seen by it.
    """

    def __init__(
        self,
        *,
        schedule_store: Optional[SnapshotStore[ScheduleIndex]] = None,
        reliability_store: Optional[SnapshotStore[ReliabilitySnapshot]] = None,
        live_source: Optional[LiveArrivalSource] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.schedule_store = schedule_store or get_schedule_store()
        self.reliability_store = reliability_store or get_reliability_store()
        self.live_source = live_source or get_live_source()
        self.ranker = ItineraryRanker(duration_tolerance=self.settings.duration_tolerance)
        self._tz = ZoneInfo(self.settings.service_timezone)

    def validate(self, request: PlanRequest) -> PlanRequest:
        """Check a request and resolve naive times to the service timezone.

        Raises:
            InvalidRequest: On out-of-range coordinates or options.
        """
        for name, location in (("origin", request.origin), ("destination", request.destination)):
            if not -90.0 <= location.lat <= 90.0:
                msg = f"{name} latitude must be between -90 and 90"
                raise InvalidRequest(msg, field=name)
            if not -180.0 <= location.lon <= 180.0:
                msg = f"{name} longitude must be between -180 and 180"
                raise InvalidRequest(msg, field=name)

        options = request.options
        if options.max_walking_distance_m <= 0:
            msg = "max_walking_distance must be positive"
            raise InvalidRequest(msg, field="max_walking_distance")
        limit = self.settings.max_transfers_limit
        if not 0 <= options.max_transfers <= limit:
            msg = f"max_transfers must be between 0 and {limit}"
            raise InvalidRequest(msg, field="max_transfers")

        requested_time = request.requested_time
        if requested_time.tzinfo is None:
            requested_time = requested_time.replace(tzinfo=self._tz)
            request = replace(request, requested_time=requested_time)
        return request

    async def plan(
        self, request: PlanRequest, cancel: Optional[CancellationToken] = None
    ) -> PlanResponse:
        """Plan a trip.

        Raises:
            InvalidRequest: If the request is rejected before search.
            Cancelled: If ``cancel`` fires before the plan is complete.
        """
        request = self.validate(request)
        index = self.schedule_store.current()
        model = ReliabilityModel.from_settings(self.reliability_store.current(), self.settings)
        now = datetime.now(timezone.utc)

        with log_timing(
            logger,
            "Plan computed",
            arrive_by=request.arrive_by,
            mode=request.options.trip_mode.value,
        ) as timing:
            live = await self.live_source.snapshot(now=now, cancel=cancel)

            search = ItinerarySearch.from_settings(index or ScheduleIndex(), self.settings)
            candidates = await asyncio.to_thread(
                search.plan,
                request.origin,
                request.destination,
                request.requested_time,
                request.arrive_by,
                request.options,
                cancel,
            )
            if cancel is not None:
                cancel.raise_if_cancelled()

            itineraries: list[Itinerary] = []
            stale = False
            for candidate in candidates:
                merged = self.apply_live(candidate, index, live, now, request)
                if merged is None:
                    continue
                stale = self.annotate(merged, model, live) or stale
                itineraries.append(TransferRiskAssessor(model).assess(merged))

            ranked = self.ranker.rank(
                itineraries, request.options.trip_mode, request.options.preferred_agencies
            )[: self.settings.top_k]

            reason = None
            if not ranked:
                reason = self._reason(index, search, request)
            timing.update(
                candidates=len(candidates),
                returned=len(ranked),
                reason=reason.value if reason else None,
                realtime_degraded=live.degraded,
            )

        return PlanResponse(
            itineraries=ranked,
            reason=reason,
            realtime_degraded=live.degraded,
            reliability_stale=stale,
            schedule_version=index.version if index else None,
        )

    def apply_live(
        self,
        itinerary: Itinerary,
        index: Optional[ScheduleIndex],
        live: LiveArrivals,
        now: datetime,
        request: PlanRequest,
    ) -> Optional[Itinerary]:
        """Re-time an itinerary with live predictions.

        Walking legs are re-laid around the adjusted transit legs. Returns
        None when a live update makes the itinerary impossible: a skipped
        stop, a missed connection, a departure before the requested time or
        an arrival after an arrive-by deadline.
        """
        if itinerary.is_walk_only or index is None:
            return itinerary

        legs: list[Leg] = []
        for leg in itinerary.legs:
            if not leg.is_transit:
                legs.append(leg)
                continue
            if (
                leg.trip_id is None
                or leg.scheduled_start_time is None
                or leg.scheduled_end_time is None
            ):
                msg = f"Transit leg on route {leg.route_id} has no scheduled trip"
                raise ValueError(msg)
            trip = index.trip(leg.trip_id)
            from_stop = leg.from_place.stop_id or ""
            to_stop = leg.to_place.stop_id or ""
            if RealtimeMerger.is_skipped(trip.trip_id, from_stop, live, now) or (
                RealtimeMerger.is_skipped(trip.trip_id, to_stop, live, now)
            ):
                return None

            departure = RealtimeMerger.effective_arrival(
                trip, from_stop, leg.scheduled_start_time, live, now=now, departure=True
            )
            arrival = RealtimeMerger.effective_arrival(
                trip, to_stop, leg.scheduled_end_time, live, now=now
            )
            start = departure.predicted_arrival_time
            end = max(start, arrival.predicted_arrival_time)
            legs.append(
                replace(
                    leg,
                    start_time=start,
                    end_time=end,
                    from_place=leg.from_place.at(start),
                    to_place=leg.to_place.at(end),
                    departure=departure,
                    arrival=arrival,
                )
            )

        legs = _relay_walks(legs)
        for previous, following in zip(legs, legs[1:]):
            if following.start_time < previous.end_time:
                return None
        if not request.arrive_by and legs[0].start_time < request.requested_time:
            return None
        if request.arrive_by and legs[-1].end_time > request.requested_time:
            return None
        return Itinerary(legs=legs)

    @staticmethod
    def annotate(itinerary: Itinerary, model: ReliabilityModel, live: LiveArrivals) -> bool:
        """Attach reliability and alerts to transit legs; True if any score was stale."""
        stale = False
        for leg in itinerary.transit_legs:
            score = model.score(leg.route_id or "", leg.start_time)
            leg.reliability = score.reliability
            leg.on_time_performance = score.on_time_performance
            leg.expected_delay_minutes = score.average_delay_minutes
            stale = stale or score.stale
            served = (leg.from_place.stop_id, *leg.intermediate_stops, leg.to_place.stop_id)
            stop_ids = tuple(stop_id for stop_id in served if stop_id)
            leg.alerts = live.alerts_for(
                leg.start_time, route_id=leg.route_id, stop_ids=stop_ids, trip_id=leg.trip_id
            )
        return stale

    def _reason(
        self, index: Optional[ScheduleIndex], search: ItinerarySearch, request: PlanRequest
    ) -> NoPathReason:
        if index is None:
            return NoPathReason.SCHEDULE_UNAVAILABLE
        if not _has_stops(search, request.origin, request) or not _has_stops(
            search, request.destination, request
        ):
            return NoPathReason.DESTINATION_UNREACHABLE_ON_FOOT
        return NoPathReason.NO_PATH_FOUND


def _has_stops(search: ItinerarySearch, location: Location, request: PlanRequest) -> bool:
    return bool(search.nearby_stops(location, request.options))


def _relay_walks(legs: list[Leg]) -> list[Leg]:
    """Shift walking legs to hug the transit legs around them.

    Walks before the first transit leg end when it departs; every other walk
    starts when the leg before it ends.
    """
    first_transit = next(i for i, leg in enumerate(legs) if leg.is_transit)
    result = list(legs)

    anchor = result[first_transit].start_time
    for i in range(first_transit - 1, -1, -1):
        leg = result[i]
        start = anchor - timedelta(seconds=leg.duration_sec)
        result[i] = _walk_at(leg, start)
        anchor = start

    for i in range(first_transit + 1, len(result)):
        leg = result[i]
        if not leg.is_transit:
            result[i] = _walk_at(leg, result[i - 1].end_time)
    return result


def _walk_at(leg: Leg, start: datetime) -> Leg:
    end = start + timedelta(seconds=leg.duration_sec)
    return replace(
        leg,
        start_time=start,
        end_time=end,
        from_place=leg.from_place.at(start),
        to_place=leg.to_place.at(end),
    )
