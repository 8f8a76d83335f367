"""GTFS-RT normalizer: protobuf entities to live prediction and alert records."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from transit_planner.logging import get_logger
from transit_planner.models.realtime import AlertEffect, Prediction, ServiceAlert

if TYPE_CHECKING:
    from google.transit import gtfs_realtime_pb2  # type: ignore[import-untyped]

logger = get_logger(__name__)

# Enum lookup maps
SCHEDULE_RELATIONSHIP = {
    0: "SCHEDULED",
    1: "ADDED",
    2: "UNSCHEDULED",
    3: "CANCELED",
    5: "REPLACEMENT",
}

STOP_SCHEDULE_RELATIONSHIP = {
    0: "SCHEDULED",
    1: "SKIPPED",
    2: "NO_DATA",
    3: "UNSCHEDULED",
}

CAUSE_MAP = {
    1: "UNKNOWN_CAUSE",
    2: "OTHER_CAUSE",
    3: "TECHNICAL_PROBLEM",
    4: "STRIKE",
    5: "DEMONSTRATION",
    6: "ACCIDENT",
    7: "HOLIDAY",
    8: "WEATHER",
    9: "MAINTENANCE",
    10: "CONSTRUCTION",
    11: "POLICE_ACTIVITY",
    12: "MEDICAL_EMERGENCY",
}

EFFECT_MAP = {
    1: AlertEffect.NO_SERVICE,
    2: AlertEffect.REDUCED_SERVICE,
    3: AlertEffect.SIGNIFICANT_DELAYS,
    4: AlertEffect.DETOUR,
    5: AlertEffect.ADDITIONAL_SERVICE,
    6: AlertEffect.MODIFIED_SERVICE,
    7: AlertEffect.OTHER_EFFECT,
    8: AlertEffect.UNKNOWN_EFFECT,
    9: AlertEffect.STOP_MOVED,
    10: AlertEffect.NO_EFFECT,
    11: AlertEffect.ACCESSIBILITY_ISSUE,
}


def _ts_to_dt(unix_ts: int) -> datetime:
    """Convert unix timestamp to timezone-aware datetime."""
    return datetime.fromtimestamp(unix_ts, tz=timezone.utc)


def _optional_ts(unix_ts: int) -> Optional[datetime]:
    return _ts_to_dt(unix_ts) if unix_ts else None


def _get_translation(translated_string: Any) -> str:
    """Extract first translation text from a TranslatedString, or empty string."""
    if translated_string and translated_string.translation:
        return str(translated_string.translation[0].text)
    return ""


def _event_fields(stu: Any, name: str) -> tuple[Optional[datetime], Optional[int]]:
    """(absolute time, delay) of a StopTimeEvent; delay only counts when set."""
    if not stu.HasField(name):
        return None, None
    event = getattr(stu, name)
    absolute = _optional_ts(event.time)
    delay = event.delay if event.HasField("delay") else None
    return absolute, delay


class GtfsRtNormalizer:
    """Normalizes decoded GTFS-RT entities into live records."""

    @staticmethod
    def normalize_trip_updates(
        feed: gtfs_realtime_pb2.FeedMessage,
        *,
        captured_at: datetime,
        ttl_sec: int,
    ) -> dict[tuple[str, str], Prediction]:
        """Normalize TripUpdate entities into per-(trip, stop) predictions.

        Stop updates without a stop_id are dropped; the feed's stop_sequence
        alone cannot be matched without the trip's schedule. Updates for a
        skipped stop or a canceled trip are kept and flagged ``skipped``.
        """
        predictions: dict[tuple[str, str], Prediction] = {}
        dropped = 0

        for entity in feed.entity:
            if not entity.HasField("trip_update"):
                continue

            tu = entity.trip_update
            trip_id = tu.trip.trip_id if tu.trip.trip_id else ""
            route_id = tu.trip.route_id if tu.trip.route_id else ""
            sched_rel = SCHEDULE_RELATIONSHIP.get(tu.trip.schedule_relationship, "SCHEDULED")

            if not trip_id:
                dropped += 1
                continue

            for stu in tu.stop_time_update:
                stop_id = stu.stop_id if stu.stop_id else ""
                if not stop_id:
                    dropped += 1
                    continue

                stop_rel = STOP_SCHEDULE_RELATIONSHIP.get(stu.schedule_relationship, "SCHEDULED")
                if stop_rel == "NO_DATA":
                    continue

                arrival_time, arrival_delay = _event_fields(stu, "arrival")
                departure_time, departure_delay = _event_fields(stu, "departure")
                predictions[(trip_id, stop_id)] = Prediction(
                    trip_id=trip_id,
                    stop_id=stop_id,
                    route_id=route_id,
                    captured_at=captured_at,
                    ttl_sec=ttl_sec,
                    stop_sequence=stu.stop_sequence if stu.stop_sequence else 0,
                    arrival_time=arrival_time,
                    arrival_delay_sec=arrival_delay,
                    departure_time=departure_time,
                    departure_delay_sec=departure_delay,
                    skipped=stop_rel == "SKIPPED" or sched_rel == "CANCELED",
                )

        logger.debug(
            "Trip updates normalized",
            predictions=len(predictions),
            dropped=dropped,
            feed_timestamp=feed.header.timestamp or 0,
        )
        return predictions

    @staticmethod
    def normalize_alerts(feed: gtfs_realtime_pb2.FeedMessage) -> list[ServiceAlert]:
        """Normalize Alert entities, one record per alert.

        Informed entities are folded into route, stop and trip id sets. Only
        the first active period is kept.
        """
        alerts: list[ServiceAlert] = []

        for entity in feed.entity:
            if not entity.HasField("alert"):
                continue

            alert = entity.alert
            route_ids: set[str] = set()
            stop_ids: set[str] = set()
            trip_ids: set[str] = set()
            for ie in alert.informed_entity:
                if ie.route_id:
                    route_ids.add(ie.route_id)
                if ie.stop_id:
                    stop_ids.add(ie.stop_id)
                if ie.HasField("trip") and ie.trip.trip_id:
                    trip_ids.add(ie.trip.trip_id)

            active_start = None
            active_end = None
            if alert.active_period:
                active_start = _optional_ts(alert.active_period[0].start)
                active_end = _optional_ts(alert.active_period[0].end)

            alerts.append(
                ServiceAlert(
                    alert_id=entity.id if entity.id else "",
                    cause=CAUSE_MAP.get(alert.cause, "UNKNOWN_CAUSE"),
                    effect=EFFECT_MAP.get(alert.effect, AlertEffect.UNKNOWN_EFFECT),
                    header=_get_translation(alert.header_text),
                    description=_get_translation(alert.description_text),
                    route_ids=frozenset(route_ids),
                    stop_ids=frozenset(stop_ids),
                    trip_ids=frozenset(trip_ids),
                    active_start=active_start,
                    active_end=active_end,
                )
            )

        return alerts
