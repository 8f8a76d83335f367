"""Tests for merging live predictions into scheduled events."""

from datetime import timedelta

from transit_planner.models.realtime import (
    AlertEffect,
    ArrivalConfidence,
    ArrivalStatus,
    LiveArrivals,
    Prediction,
    ServiceAlert,
)
from transit_planner.models.reliability import DelayCategory
from transit_planner.models.schedule import Trip
from transit_planner.services.realtime.merger import RealtimeMerger

from .fixtures.network import at

TRIP = Trip(trip_id="t10_a", route_id="R10", service_id="WKDY")
SCHEDULED = at(8, 6)
NOW = at(7, 55)


def _live(**fields) -> LiveArrivals:
    prediction = Prediction(
        trip_id="t10_a",
        stop_id="S2",
        route_id="R10",
        captured_at=fields.pop("captured_at", NOW),
        ttl_sec=30,
        **fields,
    )
    return LiveArrivals(predictions={("t10_a", "S2"): prediction}, captured_at=NOW)


class TestEffectiveArrival:
    """Unit tests for RealtimeMerger.effective_arrival."""

    def test_no_prediction_uses_schedule(self) -> None:
        arrival = RealtimeMerger.effective_arrival(
            TRIP, "S2", SCHEDULED, LiveArrivals.empty(), now=NOW
        )

        assert arrival.predicted is False
        assert arrival.predicted_arrival_time == arrival.scheduled_arrival_time == SCHEDULED
        assert arrival.delay_minutes == 0.0
        assert arrival.confidence is ArrivalConfidence.SCHEDULED
        assert arrival.delay_category is None
        assert arrival.minutes_until_arrival == 11

    def test_delay_prediction(self) -> None:
        arrival = RealtimeMerger.effective_arrival(
            TRIP, "S2", SCHEDULED, _live(arrival_delay_sec=420), now=NOW
        )

        assert arrival.predicted is True
        assert arrival.predicted_arrival_time == SCHEDULED + timedelta(minutes=7)
        assert arrival.delay_minutes == 7.0
        assert arrival.confidence is ArrivalConfidence.REALTIME
        assert arrival.delay_category is DelayCategory.MINOR
        assert arrival.status is ArrivalStatus.SCHEDULED

    def test_absolute_time_wins_over_delay(self) -> None:
        live = _live(arrival_time=SCHEDULED + timedelta(minutes=1), arrival_delay_sec=600)
        arrival = RealtimeMerger.effective_arrival(TRIP, "S2", SCHEDULED, live, now=NOW)
        assert arrival.delay_minutes == 1.0
        assert arrival.delay_category is DelayCategory.ON_TIME

    def test_departure_prefers_departure_event(self) -> None:
        live = _live(arrival_delay_sec=60, departure_delay_sec=180)
        arrival = RealtimeMerger.effective_arrival(
            TRIP, "S2", SCHEDULED, live, now=NOW, departure=True
        )
        assert arrival.delay_minutes == 3.0

    def test_aging_confidence_past_half_ttl(self) -> None:
        live = _live(arrival_delay_sec=60, captured_at=NOW - timedelta(seconds=20))
        arrival = RealtimeMerger.effective_arrival(TRIP, "S2", SCHEDULED, live, now=NOW)
        assert arrival.predicted is True
        assert arrival.confidence is ArrivalConfidence.AGING

    def test_expired_prediction_ignored(self) -> None:
        live = _live(arrival_delay_sec=600, captured_at=NOW - timedelta(seconds=31))
        arrival = RealtimeMerger.effective_arrival(TRIP, "S2", SCHEDULED, live, now=NOW)
        assert arrival.predicted is False
        assert arrival.predicted_arrival_time == SCHEDULED

    def test_other_stop_not_affected(self) -> None:
        live = _live(arrival_delay_sec=600)
        arrival = RealtimeMerger.effective_arrival(TRIP, "S3", at(8, 12), live, now=NOW)
        assert arrival.predicted is False
        assert arrival.delay_minutes == 0.0

    def test_early_running_has_no_category(self) -> None:
        arrival = RealtimeMerger.effective_arrival(
            TRIP, "S2", SCHEDULED, _live(arrival_delay_sec=-420), now=NOW
        )
        assert arrival.delay_minutes == -7.0
        assert arrival.delay_category is None

    def test_arriving_status(self) -> None:
        arrival = RealtimeMerger.effective_arrival(
            TRIP, "S2", SCHEDULED, LiveArrivals.empty(), now=at(8, 5)
        )
        assert arrival.status is ArrivalStatus.ARRIVING

    def test_departed_status(self) -> None:
        arrival = RealtimeMerger.effective_arrival(
            TRIP, "S2", SCHEDULED, LiveArrivals.empty(), now=at(8, 7)
        )
        assert arrival.status is ArrivalStatus.DEPARTED
        assert arrival.minutes_until_arrival == 0


class TestIsSkipped:
    def test_skipped_prediction(self) -> None:
        assert RealtimeMerger.is_skipped("t10_a", "S2", _live(skipped=True), NOW)

    def test_expired_skip_ignored(self) -> None:
        live = _live(skipped=True, captured_at=NOW - timedelta(minutes=5))
        assert not RealtimeMerger.is_skipped("t10_a", "S2", live, NOW)

    def test_skipped_stop_keeps_schedule(self) -> None:
        arrival = RealtimeMerger.effective_arrival(
            TRIP, "S2", SCHEDULED, _live(skipped=True, arrival_delay_sec=120), now=NOW
        )
        assert arrival.predicted is False


class TestAlertsFor:
    def test_alerts_match_route_or_stop(self) -> None:
        route_alert = ServiceAlert(
            "a1", "OTHER_CAUSE", AlertEffect.DETOUR, "Detour", route_ids=frozenset({"R10"})
        )
        stop_alert = ServiceAlert(
            "a2", "OTHER_CAUSE", AlertEffect.STOP_MOVED, "Moved", stop_ids=frozenset({"S4"})
        )
        expired = ServiceAlert(
            "a3",
            "OTHER_CAUSE",
            AlertEffect.DETOUR,
            "Old",
            route_ids=frozenset({"R10"}),
            active_end=NOW - timedelta(hours=1),
        )
        live = LiveArrivals(alerts=(route_alert, stop_alert, expired))

        assert live.alerts_for(NOW, route_id="R10") == [route_alert]
        assert live.alerts_for(NOW, route_id="SLU", stop_ids=("S4", "S5")) == [stop_alert]
        assert live.alerts_for(NOW, route_id="SLU", stop_ids=("S5",)) == []
