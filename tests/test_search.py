"""Tests for the round-based itinerary search."""

from datetime import date, timedelta

import pytest

from transit_planner.errors import Cancelled
from transit_planner.models.itinerary import Itinerary, Leg, LegMode, PlanOptions
from transit_planner.models.schedule import Location
from transit_planner.services.planning.cancellation import CancellationToken
from transit_planner.services.planning.search import ItinerarySearch, ServiceDay, pareto_filter
from transit_planner.services.schedule.index import ScheduleIndex

from .fixtures.network import DESTINATION, ORIGIN, SEATTLE, SLU_DESTINATION, at, build_index

NEAR_S3 = Location(47.6207, -122.3497)
NEAR_S1 = Location(47.6064, -122.3323)

# One shuttle trip P -> Q -> F -> E. P and E are 700 m from the valley
# origin and destination; Q and F are 900 m away, past the walking limit,
# and each 200 m from P and E.
VALLEY_STOPS = """\
stop_id,stop_name,stop_lat,stop_lon
P,Valley South,47.6063,-122.3600
Q,Valley South Annex,47.6081,-122.3600
F,Valley North Annex,47.6219,-122.3600
E,Valley North,47.6237,-122.3600
"""
VALLEY_ROUTES = """\
route_id,route_short_name,route_long_name,route_type
V,V,Valley Shuttle,3
"""
VALLEY_TRIPS = """\
route_id,service_id,trip_id
V,WKDY,tv_1
"""
VALLEY_STOP_TIMES = """\
trip_id,arrival_time,departure_time,stop_id,stop_sequence
tv_1,10:00:00,10:00:00,P,1
tv_1,10:05:00,10:05:00,Q,2
tv_1,10:15:00,10:15:00,F,3
tv_1,10:25:00,10:25:00,E,4
"""
VALLEY_ORIGIN = Location(47.6000, -122.3600)
VALLEY_DESTINATION = Location(47.6300, -122.3600)


@pytest.fixture
def search(schedule_index: ScheduleIndex) -> ItinerarySearch:
    return ItinerarySearch(schedule_index)


def _transit_trips(itinerary: Itinerary) -> list[str]:
    return [leg.trip_id or "" for leg in itinerary.transit_legs]


def _assert_continuous(itinerary: Itinerary) -> None:
    for previous, following in zip(itinerary.legs, itinerary.legs[1:]):
        assert following.start_time >= previous.end_time
        assert (following.from_place.stop_id, following.from_place.lat) == (
            previous.to_place.stop_id,
            previous.to_place.lat,
        )


class TestServiceDay:
    def test_service_day_starts_at_noon_minus_twelve_hours(self) -> None:
        day = ServiceDay.containing(at(8, 0), SEATTLE)
        assert day.date == date(2026, 3, 11)
        assert day.to_datetime(8 * 3600) == at(8, 0)

    def test_times_past_midnight(self) -> None:
        day = ServiceDay.containing(at(8, 0), SEATTLE)
        assert day.to_datetime(25 * 3600 + 5 * 60) == at(1, 5, day=date(2026, 3, 12))

    def test_dst_change_day(self) -> None:
        # Clocks spring forward at 02:00 on 2026-03-08
        day = ServiceDay.containing(at(8, 0, day=date(2026, 3, 8)), SEATTLE)
        assert day.to_datetime(12 * 3600) == at(12, 0, day=date(2026, 3, 8))
        assert day.to_datetime(8 * 3600) == at(8, 0, day=date(2026, 3, 8))


class TestDepartAt:
    """Depart-at searches over the fixture network."""

    def test_direct_trip(self, search: ItinerarySearch) -> None:
        candidates = search.plan(ORIGIN, DESTINATION, at(7, 55), False, PlanOptions())

        assert [_transit_trips(it) for it in candidates] == [["t10_a"], ["t10_b"], ["t10_c"]]
        first = candidates[0]
        assert [leg.mode for leg in first.legs] == [LegMode.WALK, LegMode.BUS, LegMode.WALK]
        bus = first.legs[1]
        assert bus.start_time == at(8, 0)
        assert bus.end_time == at(8, 12)
        assert bus.from_place.stop_id == "S1"
        assert bus.to_place.stop_id == "S3"
        assert bus.intermediate_stops == ["S2"]
        assert bus.route_short_name == "10"
        assert bus.agency_id == "KCM"

    def test_legs_are_continuous(self, search: ItinerarySearch) -> None:
        for itinerary in search.plan(ORIGIN, DESTINATION, at(7, 55), False, PlanOptions()):
            _assert_continuous(itinerary)
            assert itinerary.start_time >= at(7, 55)
            assert itinerary.wait_time_sec == 0
            assert itinerary.duration_sec == sum(leg.duration_sec for leg in itinerary.legs)

    def test_access_walk_ends_at_boarding(self, search: ItinerarySearch) -> None:
        first = search.plan(ORIGIN, DESTINATION, at(7, 55), False, PlanOptions())[0]
        access = first.legs[0]
        assert access.end_time == at(8, 0)
        assert access.from_place.stop_id is None
        assert access.to_place.stop_id == "S1"
        assert 0 < access.distance_m < 100

    def test_later_request_skips_departed_trips(self, search: ItinerarySearch) -> None:
        candidates = search.plan(ORIGIN, DESTINATION, at(8, 10), False, PlanOptions())
        assert [_transit_trips(it) for it in candidates] == [["t10_b"], ["t10_c"]]

    def test_transfer_via_footpath(self, search: ItinerarySearch) -> None:
        candidates = search.plan(ORIGIN, SLU_DESTINATION, at(7, 55), False, PlanOptions())

        assert [_transit_trips(it) for it in candidates] == [
            ["t10_a", "tslu_a"],
            ["t10_b", "tslu_b"],
        ]
        first = candidates[0]
        assert first.transfers == 1
        modes = [leg.mode for leg in first.legs]
        assert modes == [LegMode.WALK, LegMode.BUS, LegMode.WALK, LegMode.TRAM, LegMode.WALK]
        transfer_walk = first.legs[2]
        assert (transfer_walk.from_place.stop_id, transfer_walk.to_place.stop_id) == ("S2", "S4")
        assert transfer_walk.start_time == at(8, 6)
        assert first.wait_time_sec > 0
        _assert_continuous(first)

    def test_max_transfers_zero_excludes_transfer_paths(self, search: ItinerarySearch) -> None:
        options = PlanOptions(max_transfers=0)
        assert search.plan(ORIGIN, SLU_DESTINATION, at(7, 55), False, options) == []

    def test_wrong_direction_has_no_path(self, search: ItinerarySearch) -> None:
        assert search.plan(NEAR_S3, NEAR_S1, at(7, 55), False, PlanOptions()) == []

    def test_no_service_on_removed_date(self, search: ItinerarySearch) -> None:
        holiday = date(2026, 5, 25)
        assert search.plan(ORIGIN, DESTINATION, at(7, 55, day=holiday), False, PlanOptions()) == []

    def test_no_service_on_saturday(self, search: ItinerarySearch) -> None:
        saturday = date(2026, 3, 14)
        assert search.plan(ORIGIN, DESTINATION, at(7, 55, day=saturday), False, PlanOptions()) == []

    def test_trip_after_midnight(self, search: ItinerarySearch) -> None:
        candidates = search.plan(ORIGIN, DESTINATION, at(23, 50), False, PlanOptions())

        assert [_transit_trips(it) for it in candidates] == [["t10_late"]]
        bus = candidates[0].transit_legs[0]
        assert bus.start_time == at(1, 5, day=date(2026, 3, 12))

    def test_search_window_bounds_results(self, schedule_index: ScheduleIndex) -> None:
        search = ItinerarySearch(schedule_index, search_window_minutes=10)
        assert search.plan(ORIGIN, DESTINATION, at(6, 0), False, PlanOptions()) == []

    def test_wheelchair_accessible_only(self, search: ItinerarySearch) -> None:
        options = PlanOptions(wheelchair_accessible_only=True)
        candidates = search.plan(ORIGIN, DESTINATION, at(7, 55), False, options)
        assert [_transit_trips(it) for it in candidates] == [["t10_b"]]

    def test_wheelchair_excludes_inaccessible_stops(self, search: ItinerarySearch) -> None:
        options = PlanOptions(wheelchair_accessible_only=True)
        assert search.plan(ORIGIN, SLU_DESTINATION, at(7, 55), False, options) == []

    def test_cancelled_search_raises(self, search: ItinerarySearch) -> None:
        token = CancellationToken()
        token.cancel()
        with pytest.raises(Cancelled):
            search.plan(ORIGIN, DESTINATION, at(7, 55), False, PlanOptions(), token)

    def test_empty_index(self) -> None:
        search = ItinerarySearch(ScheduleIndex())
        assert search.plan(ORIGIN, DESTINATION, at(7, 55), False, PlanOptions()) == []


class TestArriveBy:
    """Arrive-by searches run the rounds backwards from the deadline."""

    def test_latest_trip_meeting_deadline(self, search: ItinerarySearch) -> None:
        candidates = search.plan(ORIGIN, DESTINATION, at(8, 30), True, PlanOptions())

        assert [_transit_trips(it) for it in candidates] == [["t10_a"], ["t10_b"]]
        for itinerary in candidates:
            assert itinerary.end_time <= at(8, 30)
            _assert_continuous(itinerary)
        assert candidates[-1].transit_legs[0].end_time == at(8, 27)

    def test_arrive_by_with_transfer(self, search: ItinerarySearch) -> None:
        candidates = search.plan(ORIGIN, SLU_DESTINATION, at(8, 40), True, PlanOptions())

        assert _transit_trips(candidates[-1]) == ["t10_b", "tslu_b"]
        assert all(it.end_time <= at(8, 40) for it in candidates)

    def test_deadline_before_first_trip(self, search: ItinerarySearch) -> None:
        assert search.plan(ORIGIN, DESTINATION, at(8, 10), True, PlanOptions()) == []


class TestOvernightService:
    """Trips scheduled past 24:00 belong to the previous service day."""

    def test_early_morning_boards_previous_days_late_trip(self, search: ItinerarySearch) -> None:
        thursday = date(2026, 3, 12)
        candidates = search.plan(ORIGIN, DESTINATION, at(0, 30, day=thursday), False, PlanOptions())

        assert [_transit_trips(it) for it in candidates] == [["t10_late"]]
        bus = candidates[0].transit_legs[0]
        assert bus.start_time == at(1, 5, day=thursday)
        assert bus.end_time == at(1, 17, day=thursday)
        _assert_continuous(candidates[0])

    def test_saturday_morning_uses_friday_service(self, search: ItinerarySearch) -> None:
        saturday = date(2026, 3, 14)
        candidates = search.plan(ORIGIN, DESTINATION, at(0, 30, day=saturday), False, PlanOptions())

        assert [_transit_trips(it) for it in candidates] == [["t10_late"]]
        assert candidates[0].transit_legs[0].start_time == at(1, 5, day=saturday)

    def test_monday_morning_has_no_sunday_service(self, search: ItinerarySearch) -> None:
        monday = date(2026, 3, 16)
        assert search.plan(ORIGIN, DESTINATION, at(0, 30, day=monday), False, PlanOptions()) == []

    def test_arrive_by_after_midnight(self, search: ItinerarySearch) -> None:
        thursday = date(2026, 3, 12)
        candidates = search.plan(ORIGIN, DESTINATION, at(1, 30, day=thursday), True, PlanOptions())

        assert [_transit_trips(it) for it in candidates] == [["t10_late"]]
        assert candidates[0].transit_legs[0].end_time == at(1, 17, day=thursday)
        assert candidates[0].end_time <= at(1, 30, day=thursday)


class TestFootpathLabels:
    """A faster footpath to a stop must not hide the ride that reaches it."""

    @pytest.fixture
    def valley(self) -> ItinerarySearch:
        return ItinerarySearch(
            build_index(
                stops=VALLEY_STOPS,
                routes=VALLEY_ROUTES,
                trips=VALLEY_TRIPS,
                stop_times=VALLEY_STOP_TIMES,
            )
        )

    def test_depart_at_alights_where_footpath_arrives_first(self, valley: ItinerarySearch) -> None:
        candidates = valley.plan(VALLEY_ORIGIN, VALLEY_DESTINATION, at(9, 45), False, PlanOptions())

        assert [_transit_trips(it) for it in candidates] == [["tv_1"]]
        itinerary = candidates[0]
        bus = itinerary.transit_legs[0]
        assert (bus.from_place.stop_id, bus.to_place.stop_id) == ("P", "E")
        assert bus.end_time == at(10, 25)
        assert itinerary.legs[-1].mode is LegMode.WALK
        assert itinerary.end_time > at(10, 25)
        _assert_continuous(itinerary)

    def test_arrive_by_boards_where_footpath_leaves_last(self, valley: ItinerarySearch) -> None:
        candidates = valley.plan(VALLEY_ORIGIN, VALLEY_DESTINATION, at(10, 45), True, PlanOptions())

        assert [_transit_trips(it) for it in candidates] == [["tv_1"]]
        itinerary = candidates[0]
        bus = itinerary.transit_legs[0]
        assert (bus.from_place.stop_id, bus.to_place.stop_id) == ("P", "E")
        assert bus.start_time == at(10, 0)
        assert itinerary.end_time <= at(10, 45)
        _assert_continuous(itinerary)


class TestWalkOnly:
    def test_walk_only_within_limit(self, search: ItinerarySearch) -> None:
        destination = Location(47.6100, -122.3360)
        candidates = search.plan(ORIGIN, destination, at(7, 55), False, PlanOptions())

        walks = [it for it in candidates if it.is_walk_only]
        assert len(walks) == 1
        walk = walks[0]
        assert walk.start_time == at(7, 55)
        assert walk.duration_sec == search.walk_seconds(walk.walk_distance_m)

    def test_walk_only_arrive_by_ends_at_deadline(self, search: ItinerarySearch) -> None:
        destination = Location(47.6100, -122.3360)
        candidates = search.plan(ORIGIN, destination, at(9, 0), True, PlanOptions())
        walk = next(it for it in candidates if it.is_walk_only)
        assert walk.end_time == at(9, 0)

    def test_walk_only_kept_when_slower(self, search: ItinerarySearch) -> None:
        options = PlanOptions(max_walking_distance_m=2500)
        candidates = search.plan(ORIGIN, DESTINATION, at(7, 55), False, options)

        walks = [it for it in candidates if it.is_walk_only]
        assert len(walks) == 1
        assert any(not it.is_walk_only for it in candidates)
        assert walks[0].duration_sec > min(it.duration_sec for it in candidates)

    def test_no_walk_only_beyond_limit(self, search: ItinerarySearch) -> None:
        candidates = search.plan(ORIGIN, DESTINATION, at(7, 55), False, PlanOptions())
        assert not any(it.is_walk_only for it in candidates)


def _ride(trip_id: str, start_minute: int, end_minute: int) -> Leg:
    return Leg(
        mode=LegMode.BUS,
        from_place=Location(47.6065, -122.3325, stop_id="S1"),
        to_place=Location(47.6205, -122.3495, stop_id="S3"),
        start_time=at(8, start_minute),
        end_time=at(8, end_minute),
        route_id="R10",
        trip_id=trip_id,
    )


class TestParetoFilter:
    def test_dominated_itinerary_dropped(self) -> None:
        fast = Itinerary(legs=[_ride("a", 5, 20)])
        slow = Itinerary(legs=[_ride("b", 0, 25)])
        assert pareto_filter([slow, fast]) == [fast]

    def test_later_departure_later_arrival_kept(self) -> None:
        early = Itinerary(legs=[_ride("a", 0, 12)])
        late = Itinerary(legs=[_ride("b", 15, 27)])
        assert pareto_filter([late, early]) == [early, late]

    def test_fewer_transfers_kept(self) -> None:
        direct = Itinerary(legs=[_ride("a", 0, 30)])
        second = _ride("c", 16, 28)
        with_transfer = Itinerary(legs=[_ride("b", 0, 12), second])
        assert pareto_filter([direct, with_transfer]) == [with_transfer, direct]

    def test_duplicates_removed(self) -> None:
        one = Itinerary(legs=[_ride("a", 0, 12)])
        same = Itinerary(legs=[_ride("a", 0, 12)])
        assert pareto_filter([one, same]) == [one]

    def test_equal_itineraries_with_more_transfers_dropped(self) -> None:
        direct = Itinerary(legs=[_ride("a", 0, 30)])
        with_transfer = Itinerary(legs=[_ride("b", 0, 10), _ride("c", 15, 30)])
        assert pareto_filter([with_transfer, direct]) == [direct]

    def test_walk_legs_do_not_count_as_transfers(self) -> None:
        walk = Leg(
            mode=LegMode.WALK,
            from_place=Location(47.6062, -122.3321),
            to_place=Location(47.6065, -122.3325, stop_id="S1"),
            start_time=at(8, 0) - timedelta(minutes=1),
            end_time=at(8, 0),
        )
        itinerary = Itinerary(legs=[walk, _ride("a", 0, 12)])
        assert itinerary.transfers == 0
        assert pareto_filter([itinerary]) == [itinerary]
