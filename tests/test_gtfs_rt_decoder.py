"""Tests for GTFS-RT protobuf decoder."""

import pytest

from transit_planner.services.realtime.decoder import FeedDecodeError, GtfsRtDecoder

from .fixtures.gtfs_rt_fixture import (
    build_alert_feed,
    build_empty_feed,
    build_multi_entity_trip_update_feed,
    build_trip_update_feed,
)


class TestGtfsRtDecoder:
    """Unit tests for GtfsRtDecoder."""

    def test_decode_trip_update_feed(self) -> None:
        data = build_trip_update_feed(feed_timestamp=1700000000)
        feed = GtfsRtDecoder.decode(data, "trip_updates")
        assert feed.header.timestamp == 1700000000
        assert len(feed.entity) == 1
        assert feed.entity[0].trip_update.trip.trip_id == "t10_a"

    def test_decode_alert_feed(self) -> None:
        data = build_alert_feed(feed_timestamp=1700000000)
        feed = GtfsRtDecoder.decode(data, "service_alerts")
        assert len(feed.entity) == 1
        assert feed.entity[0].alert.cause == 3
        assert feed.entity[0].alert.informed_entity[0].route_id == "R10"

    def test_decode_empty_feed(self) -> None:
        data = build_empty_feed(feed_timestamp=1700000000)
        feed = GtfsRtDecoder.decode(data, "trip_updates")
        assert len(feed.entity) == 0

    def test_decode_multi_entity(self) -> None:
        data = build_multi_entity_trip_update_feed(count=10, feed_timestamp=1700000000)
        feed = GtfsRtDecoder.decode(data, "trip_updates")
        assert len(feed.entity) == 10

    def test_decode_invalid_protobuf_raises(self) -> None:
        with pytest.raises(FeedDecodeError, match="trip_updates"):
            GtfsRtDecoder.decode(b"not a protobuf", "trip_updates")

    def test_decode_empty_bytes_succeeds(self) -> None:
        # Empty bytes is a valid, empty message
        feed = GtfsRtDecoder.decode(b"", "trip_updates")
        assert len(feed.entity) == 0
