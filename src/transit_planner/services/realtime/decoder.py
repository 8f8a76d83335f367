"""GTFS-RT protobuf decode layer."""

from __future__ import annotations

from google.protobuf.message import DecodeError
from google.transit import gtfs_realtime_pb2

from transit_planner.logging import get_logger

logger = get_logger(__name__)


class FeedDecodeError(Exception):
    """Raised when protobuf decoding fails."""


class GtfsRtDecoder:
    """Decodes raw protobuf bytes into GTFS-RT FeedMessage objects."""

    @staticmethod
    def decode(data: bytes, feed_type: str) -> gtfs_realtime_pb2.FeedMessage:
        """Decode protobuf bytes into a FeedMessage.

        Raises:
            FeedDecodeError: If protobuf parsing fails.
        """
        try:
            feed = gtfs_realtime_pb2.FeedMessage()
            feed.ParseFromString(data)
        except DecodeError as exc:
            msg = f"Failed to decode {feed_type} protobuf"
            logger.error(msg, feed_type=feed_type, error=str(exc))
            raise FeedDecodeError(msg) from exc

        logger.debug(
            "GTFS-RT feed decoded",
            feed_type=feed_type,
            entity_count=len(feed.entity),
            feed_timestamp=feed.header.timestamp or 0,
            gtfs_rt_version=feed.header.gtfs_realtime_version,
        )
        return feed
