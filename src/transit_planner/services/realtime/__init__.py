"""GTFS-Realtime feeds: fetch, decode, normalize, cache and merge."""

from transit_planner.services.realtime.decoder import GtfsRtDecoder
from transit_planner.services.realtime.fetcher import GtfsRtFetcher
from transit_planner.services.realtime.merger import RealtimeMerger
from transit_planner.services.realtime.normalizer import GtfsRtNormalizer
from transit_planner.services.realtime.source import LiveArrivalSource, get_live_source

__all__ = [
    "GtfsRtDecoder",
    "GtfsRtFetcher",
    "GtfsRtNormalizer",
    "LiveArrivalSource",
    "RealtimeMerger",
    "get_live_source",
]
