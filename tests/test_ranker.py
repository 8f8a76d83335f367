"""Tests for itinerary ranking."""

import random
from datetime import timedelta
from typing import Optional

from transit_planner.models.itinerary import (
    Itinerary,
    Leg,
    LegMode,
    RiskLevel,
    TransferRisk,
    TripMode,
)
from transit_planner.models.reliability import ReliabilityLevel
from transit_planner.models.schedule import Location
from transit_planner.services.planning.ranker import ItineraryRanker

from .fixtures.network import at

ORIGIN = Location(47.6062, -122.3321)
DESTINATION = Location(47.6210, -122.3500)


def _itinerary(
    trip_id: str,
    minutes: float,
    reliability: Optional[ReliabilityLevel] = ReliabilityLevel.HIGH,
    *,
    agency_id: str = "KCM",
    start_minute: int = 0,
    missed_probability: Optional[float] = None,
) -> Itinerary:
    start = at(8, start_minute)
    end = start + timedelta(minutes=minutes)
    leg = Leg(
        mode=LegMode.BUS,
        from_place=ORIGIN.at(start),
        to_place=DESTINATION.at(end),
        start_time=start,
        end_time=end,
        route_id="R10",
        trip_id=trip_id,
        agency_id=agency_id,
        reliability=reliability,
    )
    itinerary = Itinerary(legs=[leg])
    if missed_probability is not None:
        itinerary.transfer_risks = [
            TransferRisk(
                from_leg_index=0,
                to_leg_index=1,
                transfer_stop_id="S2",
                transfer_stop_name=None,
                scheduled_transfer_minutes=2.0,
                walking_minutes=0.5,
                buffer_minutes=1.5,
                risk=RiskLevel.HIGH,
                missed_connection_probability=missed_probability,
                expected_delay_minutes=7.5,
            )
        ]
    return itinerary


def _walk_only(minutes: float) -> Itinerary:
    start = at(8, 0)
    leg = Leg(
        mode=LegMode.WALK,
        from_place=ORIGIN.at(start),
        to_place=DESTINATION.at(start + timedelta(minutes=minutes)),
        start_time=start,
        end_time=start + timedelta(minutes=minutes),
        distance_m=minutes * 83.4,
    )
    return Itinerary(legs=[leg])


def _trips(ranked: list[Itinerary]) -> list[str]:
    return [it.legs[0].trip_id or "walk" for it in ranked]


class TestItineraryRanker:
    def test_empty(self) -> None:
        assert ItineraryRanker().rank([]) == []

    def test_faster_first_when_equally_reliable(self) -> None:
        ranked = ItineraryRanker().rank([_itinerary("slow", 30), _itinerary("fast", 20)])
        assert _trips(ranked) == ["fast", "slow"]

    def test_exactly_one_recommended(self) -> None:
        ranked = ItineraryRanker().rank(
            [_itinerary("a", 20), _itinerary("b", 25), _itinerary("c", 30)]
        )
        assert [it.rank for it in ranked] == [1, 2, 3]
        assert [it.recommended for it in ranked] == [True, False, False]
        assert all(it.score is not None for it in ranked)

    def test_deterministic_regardless_of_input_order(self) -> None:
        candidates = [
            _itinerary("a", 20, ReliabilityLevel.LOW),
            _itinerary("b", 20, ReliabilityLevel.LOW),
            _itinerary("c", 24, ReliabilityLevel.MEDIUM),
            _itinerary("d", 35, ReliabilityLevel.HIGH),
            _walk_only(40),
        ]
        expected = _trips(ItineraryRanker().rank(list(candidates)))

        shuffled = list(candidates)
        random.Random(7).shuffle(shuffled)
        assert _trips(ItineraryRanker().rank(shuffled)) == expected

    def test_ranking_is_idempotent(self) -> None:
        ranker = ItineraryRanker()
        once = ranker.rank(
            [
                _itinerary("a", 20, ReliabilityLevel.LOW),
                _itinerary("b", 21, ReliabilityLevel.MEDIUM),
                _itinerary("c", 30),
            ],
            TripMode.FASTEST,
        )
        twice = ranker.rank(once, TripMode.FASTEST)
        assert _trips(twice) == _trips(once)
        assert [it.rank for it in twice] == [1, 2, 3]

    def test_low_reliability_leader_replaced_within_tolerance(self) -> None:
        ranked = ItineraryRanker(duration_tolerance=0.10).rank(
            [
                _itinerary("low", 20, ReliabilityLevel.LOW),
                _itinerary("medium", 21.5, ReliabilityLevel.MEDIUM),
            ],
            TripMode.FASTEST,
        )
        assert _trips(ranked) == ["medium", "low"]
        assert ranked[0].recommended is True

    def test_low_reliability_leader_kept_outside_tolerance(self) -> None:
        ranked = ItineraryRanker(duration_tolerance=0.10).rank(
            [
                _itinerary("low", 20, ReliabilityLevel.LOW),
                _itinerary("medium", 25, ReliabilityLevel.MEDIUM),
            ],
            TripMode.FASTEST,
        )
        assert _trips(ranked) == ["low", "medium"]

    def test_unannotated_alternative_not_promoted(self) -> None:
        ranked = ItineraryRanker().rank(
            [_itinerary("low", 20, ReliabilityLevel.LOW), _itinerary("unknown", 21.5, None)],
            TripMode.FASTEST,
        )
        assert ranked[0].legs[0].trip_id == "low"

    def test_safest_prefers_reliable(self) -> None:
        candidates = [_itinerary("low", 20, ReliabilityLevel.LOW), _itinerary("high", 28)]
        assert _trips(ItineraryRanker().rank(candidates, TripMode.SAFEST))[0] == "high"
        fastest = ItineraryRanker(duration_tolerance=0.0).rank(candidates, TripMode.FASTEST)
        assert _trips(fastest)[0] == "low"

    def test_transfer_risk_penalized(self) -> None:
        risky = _itinerary("risky", 20, missed_probability=0.8)
        safe = _itinerary("safe", 22)
        ranked = ItineraryRanker().rank([risky, safe], TripMode.SAFEST)
        assert _trips(ranked) == ["safe", "risky"]

    def test_walk_only_counts_as_reliable(self) -> None:
        ranked = ItineraryRanker().rank(
            [_itinerary("low", 20, ReliabilityLevel.LOW), _walk_only(21)],
            TripMode.FASTEST,
        )
        assert _trips(ranked) == ["walk", "low"]

    def test_preferred_agency_breaks_ties(self) -> None:
        kcm = _itinerary("kcm", 20, agency_id="KCM")
        sdot = _itinerary("sdot", 20, agency_id="SDOT")
        ranker = ItineraryRanker()

        assert _trips(ranker.rank([kcm, sdot], preferred_agencies=("SDOT",)))[0] == "sdot"
        assert _trips(ranker.rank([kcm, sdot], preferred_agencies=("KCM",)))[0] == "kcm"

    def test_preferred_agency_is_soft(self) -> None:
        kcm = _itinerary("kcm", 20, agency_id="KCM")
        sdot = _itinerary("sdot", 40, agency_id="SDOT")
        ranked = ItineraryRanker().rank([kcm, sdot], preferred_agencies=("SDOT",))
        assert _trips(ranked) == ["kcm", "sdot"]

    def test_equal_scores_order_by_arrival(self) -> None:
        early = _itinerary("early", 20, start_minute=0)
        late = _itinerary("late", 20, start_minute=15)
        ranked = ItineraryRanker().rank([late, early])
        assert _trips(ranked) == ["early", "late"]
