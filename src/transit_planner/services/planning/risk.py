"""Missed-connection risk for each transfer in an itinerary."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from transit_planner.constants import TRANSFER_RISKY_MINUTES, TRANSFER_SAFE_MINUTES
from transit_planner.models.itinerary import Itinerary, RiskLevel, TransferRisk
from transit_planner.services.reliability.model import delay_exceedance_probability

if TYPE_CHECKING:
    from transit_planner.models.itinerary import Leg
    from transit_planner.services.reliability.model import ReliabilityModel


def classify_buffer(buffer_minutes: float) -> RiskLevel:
    """At least 5 min is low risk, [3, 5) medium, anything tighter high."""
    if buffer_minutes >= TRANSFER_SAFE_MINUTES:
        return RiskLevel.LOW
    if buffer_minutes >= TRANSFER_RISKY_MINUTES:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


def recommendation_for(risk: RiskLevel, buffer_minutes: float) -> Optional[str]:
    minutes = f"{round(buffer_minutes, 1):g}"
    if risk is RiskLevel.HIGH:
        return (
            f"High risk: Only {minutes} min buffer. "
            "Consider leaving earlier or alternative route."
        )
    if risk is RiskLevel.MEDIUM:
        return f"Medium risk: {minutes} min buffer. Monitor first leg for delays."
    return None


class TransferRiskAssessor:
    def __init__(self, model: ReliabilityModel) -> None:
        self.model = model

    def assess(self, itinerary: Itinerary) -> Itinerary:
        """Populate ``itinerary.transfer_risks`` and return the itinerary.

        Each pair of consecutive transit legs is one transfer; walking legs
        between them eat into the buffer. Times are the legs' effective
        (live-adjusted) times.
        """
        risks: list[TransferRisk] = []
        incoming: Optional[tuple[int, Leg]] = None
        walking_sec = 0

        for position, leg in enumerate(itinerary.legs):
            if not leg.is_transit:
                if incoming is not None:
                    walking_sec += leg.duration_sec
                continue
            if incoming is not None:
                from_index, arriving = incoming
                risks.append(
                    self._assess_transfer(from_index, arriving, position, leg, walking_sec)
                )
            incoming = (position, leg)
            walking_sec = 0

        itinerary.transfer_risks = risks
        return itinerary

    def _assess_transfer(
        self, from_index: int, arriving: Leg, to_index: int, departing: Leg, walking_sec: int
    ) -> TransferRisk:
        transfer_minutes = (departing.start_time - arriving.end_time).total_seconds() / 60
        walking_minutes = walking_sec / 60
        buffer_minutes = transfer_minutes - walking_minutes
        risk = classify_buffer(buffer_minutes)

        score = self.model.score(arriving.route_id or "", arriving.end_time)
        return TransferRisk(
            from_leg_index=from_index,
            to_leg_index=to_index,
            transfer_stop_id=arriving.to_place.stop_id,
            transfer_stop_name=arriving.to_place.name,
            scheduled_transfer_minutes=transfer_minutes,
            walking_minutes=walking_minutes,
            buffer_minutes=buffer_minutes,
            risk=risk,
            missed_connection_probability=delay_exceedance_probability(score, buffer_minutes),
            expected_delay_minutes=score.average_delay_minutes,
            recommendation=recommendation_for(risk, buffer_minutes),
        )
