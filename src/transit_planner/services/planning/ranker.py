"""Order candidate itineraries and pick the recommended one."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from transit_planner.models.itinerary import TripMode
from transit_planner.models.reliability import ReliabilityLevel

if TYPE_CHECKING:
    from collections.abc import Sequence

    from transit_planner.models.itinerary import Itinerary


@dataclass(frozen=True)
class RankingWeights:
    duration: float
    reliability: float
    risk: float


MODE_WEIGHTS: dict[TripMode, RankingWeights] = {
    TripMode.FASTEST: RankingWeights(duration=1.0, reliability=0.1, risk=0.2),
    TripMode.BALANCED: RankingWeights(duration=1.0, reliability=0.5, risk=0.5),
    TripMode.SAFEST: RankingWeights(duration=0.5, reliability=1.0, risk=1.0),
}

RELIABILITY_PENALTY: dict[Optional[ReliabilityLevel], float] = {
    ReliabilityLevel.HIGH: 0.0,
    ReliabilityLevel.MEDIUM: 0.5,
    ReliabilityLevel.LOW: 1.0,
    # Legs without a classification are scored as average
    None: 0.5,
}

DEFAULT_AGENCY_PENALTY = 0.05


class ItineraryRanker:
    """Weighted-score ranking with a guard against unreliable winners.

    Lower scores rank first. Given the same candidates the order is always
    the same, including when an already-ranked list is ranked again.
    """

    def __init__(
        self,
        duration_tolerance: float = 0.10,
        weights: Optional[dict[TripMode, RankingWeights]] = None,
        agency_penalty: float = DEFAULT_AGENCY_PENALTY,
    ) -> None:
        self.duration_tolerance = duration_tolerance
        self.weights = weights or MODE_WEIGHTS
        self.agency_penalty = agency_penalty

    def score(
        self,
        itinerary: Itinerary,
        shortest_sec: int,
        mode: TripMode = TripMode.BALANCED,
        preferred_agencies: Sequence[str] = (),
    ) -> float:
        weights = self.weights[mode]
        duration_term = itinerary.duration_sec / max(1, shortest_sec) - 1.0
        reliability_term = RELIABILITY_PENALTY[itinerary.overall_reliability]
        risk_term = sum(risk.missed_connection_probability for risk in itinerary.transfer_risks)
        agency_term = 0.0
        if preferred_agencies:
            outside = sum(
                1 for leg in itinerary.transit_legs if leg.agency_id not in preferred_agencies
            )
            agency_term = self.agency_penalty * outside
        total = (
            weights.duration * duration_term
            + weights.reliability * reliability_term
            + weights.risk * risk_term
            + agency_term
        )
        return round(total, 6)

    def rank(
        self,
        candidates: Sequence[Itinerary],
        mode: TripMode = TripMode.BALANCED,
        preferred_agencies: Sequence[str] = (),
    ) -> list[Itinerary]:
        if not candidates:
            return []

        shortest = min(itinerary.duration_sec for itinerary in candidates)
        scored = [
            (self.score(itinerary, shortest, mode, preferred_agencies), itinerary)
            for itinerary in candidates
        ]
        scored.sort(
            key=lambda item: (item[0], item[1].transfers, item[1].end_time, item[1].signature)
        )
        ordered = self._guard_low_reliability([itinerary for _, itinerary in scored])

        scores = {id(itinerary): value for value, itinerary in scored}
        for position, itinerary in enumerate(ordered):
            itinerary.rank = position + 1
            itinerary.recommended = position == 0
            itinerary.score = scores[id(itinerary)]
        return ordered

    def _guard_low_reliability(self, ordered: list[Itinerary]) -> list[Itinerary]:
        """Promote the best medium-or-better option over a low-reliability leader.

        Applies only when that option's duration is within the tolerance of
        the leader's.
        """
        leader = ordered[0]
        if leader.overall_reliability is not ReliabilityLevel.LOW:
            return ordered
        limit = leader.duration_sec * (1.0 + self.duration_tolerance)
        for position, candidate in enumerate(ordered[1:], start=1):
            level = candidate.overall_reliability
            if level is None or level is ReliabilityLevel.LOW:
                continue
            if candidate.duration_sec <= limit:
                return [candidate, *ordered[:position], *ordered[position + 1 :]]
        return ordered
