"""Itinerary search, transfer risk, ranking and the planning pipeline."""

from transit_planner.services.planning.cancellation import CancellationToken
from transit_planner.services.planning.planner import TripPlanner
from transit_planner.services.planning.ranker import ItineraryRanker
from transit_planner.services.planning.risk import TransferRiskAssessor
from transit_planner.services.planning.search import ItinerarySearch

__all__ = [
    "CancellationToken",
    "ItineraryRanker",
    "ItinerarySearch",
    "TransferRiskAssessor",
    "TripPlanner",
]
