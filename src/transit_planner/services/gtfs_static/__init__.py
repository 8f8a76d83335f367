"""Static GTFS loading pipeline."""

from transit_planner.services.gtfs_static.fetcher import GtfsStaticFetcher
from transit_planner.services.gtfs_static.loader import GtfsFeedLoader, LoadReport
from transit_planner.services.gtfs_static.normalizer import GtfsNormalizer
from transit_planner.services.gtfs_static.parser import GtfsParser
from transit_planner.services.gtfs_static.reader import GtfsZipReader

__all__ = [
    "GtfsFeedLoader",
    "GtfsNormalizer",
    "GtfsParser",
    "GtfsStaticFetcher",
    "GtfsZipReader",
    "LoadReport",
]
