"""Merge live predictions into scheduled stop events."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from transit_planner.models.realtime import (
    Arrival,
    ArrivalConfidence,
    ArrivalStatus,
    LiveArrivals,
    Prediction,
)
from transit_planner.services.reliability.scorer import categorize_delay

if TYPE_CHECKING:
    from transit_planner.models.schedule import Trip

# Minutes before the predicted time at which a vehicle counts as arriving.
ARRIVING_WINDOW_MINUTES = 2


class RealtimeMerger:
    """Resolves the effective time of a scheduled event.

    Only a fresh update for the exact (trip, stop) pair is used; delays are
    never carried forward to later stops of the same trip.
    """

    @staticmethod
    def fresh_prediction(
        trip_id: str, stop_id: str, live: LiveArrivals, now: datetime
    ) -> Optional[Prediction]:
        prediction = live.get(trip_id, stop_id)
        if prediction is None or not prediction.is_fresh(now):
            return None
        return prediction

    @classmethod
    def is_skipped(cls, trip_id: str, stop_id: str, live: LiveArrivals, now: datetime) -> bool:
        prediction = cls.fresh_prediction(trip_id, stop_id, live, now)
        return prediction is not None and prediction.skipped

    @classmethod
    def effective_arrival(
        cls,
        trip: Trip,
        stop_id: str,
        scheduled_time: datetime,
        live: LiveArrivals,
        *,
        now: datetime,
        departure: bool = False,
    ) -> Arrival:
        predicted_time: Optional[datetime] = None
        confidence = ArrivalConfidence.SCHEDULED

        prediction = cls.fresh_prediction(trip.trip_id, stop_id, live, now)
        if prediction is not None and not prediction.skipped:
            predicted_time = prediction.predicted_time(scheduled_time, departure=departure)
            if predicted_time is not None:
                half_life = prediction.ttl_sec / 2
                confidence = (
                    ArrivalConfidence.REALTIME
                    if prediction.age_sec(now) <= half_life
                    else ArrivalConfidence.AGING
                )

        predicted = predicted_time is not None
        effective = predicted_time if predicted_time is not None else scheduled_time
        delay_minutes = round((effective - scheduled_time).total_seconds() / 60, 1)
        until = (effective - now).total_seconds() / 60

        if until <= 0:
            status = ArrivalStatus.DEPARTED
        elif until <= ARRIVING_WINDOW_MINUTES:
            status = ArrivalStatus.ARRIVING
        else:
            status = ArrivalStatus.SCHEDULED

        return Arrival(
            trip_id=trip.trip_id,
            stop_id=stop_id,
            route_id=trip.route_id,
            scheduled_arrival_time=scheduled_time,
            predicted_arrival_time=effective,
            predicted=predicted,
            delay_minutes=delay_minutes,
            minutes_until_arrival=max(0, round(until)),
            confidence=confidence,
            status=status,
            delay_category=categorize_delay(delay_minutes) if predicted else None,
        )
