"""Public stops endpoints.

Endpoints
---------
GET /stops/nearby                 – stops within a radius, nearest first
GET /stops/{stop_id}/departures   – upcoming departures, live where available
GET /stops/{stop_id}/routes       – distinct routes serving a stop
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Annotated, Any, Optional
from zoneinfo import ZoneInfo

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from transit_planner.config import get_settings
from transit_planner.logging import get_logger
from transit_planner.models.schedule import Location
from transit_planner.services.planning.search import ServiceDay
from transit_planner.services.realtime.merger import RealtimeMerger
from transit_planner.services.realtime.source import get_live_source
from transit_planner.services.schedule.index import ScheduleIndex
from transit_planner.services.snapshots import get_schedule_store

logger = get_logger(__name__)

router = APIRouter(tags=["stops"])


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class StopNearby(BaseModel):
    stop_id: str
    name: str
    lat: float
    lon: float
    distance_m: float
    route_ids: list[str]


class NearbyStopsResponse(BaseModel):
    items: list[StopNearby]
    limit: int
    offset: int
    count: int


class RouteInfo(BaseModel):
    route_id: str
    short_name: str
    long_name: str
    route_type: str
    agency_id: str


class StopRoutesResponse(BaseModel):
    stop_id: str
    routes: list[RouteInfo]


class Departure(BaseModel):
    trip_id: str
    route_id: str
    route_short_name: str
    headsign: str
    scheduled_time: str
    predicted_time: str
    predicted: bool
    delay_minutes: float
    minutes_until: int
    confidence: str
    status: str
    delay_category: Optional[str] = None


class DeparturesResponse(BaseModel):
    stop_id: str
    stop_name: str
    realtime_degraded: bool
    departures: list[Departure]


def require_schedule() -> ScheduleIndex:
    """Current schedule index, or 503 when none has been published."""
    index = get_schedule_store().current()
    if index is None:
        raise HTTPException(status_code=503, detail="Schedule not loaded")
    return index


def _require_stop(index: ScheduleIndex, stop_id: str) -> None:
    if not index.has_stop(stop_id):
        raise HTTPException(status_code=404, detail=f"Stop '{stop_id}' not found")


# ---------------------------------------------------------------------------
# GET /stops/nearby
# ---------------------------------------------------------------------------


@router.get(
    "/stops/nearby",
    response_model=NearbyStopsResponse,
    summary="Find stops near a location",
    description=(
        "Return transit stops within `radius_m` of the given coordinates, "
        "ordered by distance ascending (ties by stop id)."
    ),
)
async def get_nearby_stops(
    lat: Annotated[
        float,
        Query(ge=-90, le=90, description="Latitude of the search centre"),
    ],
    lon: Annotated[
        float,
        Query(ge=-180, le=180, description="Longitude of the search centre"),
    ],
    radius_m: Annotated[
        Optional[float],
        Query(gt=0, description="Search radius in metres. Defaults to DEFAULT_NEARBY_RADIUS_M."),
    ] = None,
    limit: Annotated[
        int,
        Query(ge=1, le=200, description="Maximum number of stops to return"),
    ] = 50,
    offset: Annotated[
        int,
        Query(ge=0, description="Pagination offset"),
    ] = 0,
) -> dict[str, Any]:
    """Return stops within radius ordered by distance (nearest first)."""
    settings = get_settings()
    radius = radius_m if radius_m is not None else settings.default_nearby_radius_m
    if radius > settings.max_nearby_radius_m:
        raise HTTPException(
            status_code=422,
            detail=f"radius_m must not exceed {settings.max_nearby_radius_m:g}",
        )

    index = require_schedule()
    found = index.stops_near_with_distance(Location(lat, lon), radius)
    items = [
        {
            "stop_id": stop.stop_id,
            "name": stop.name,
            "lat": stop.lat,
            "lon": stop.lon,
            "distance_m": round(distance, 1),
            "route_ids": sorted(stop.route_ids),
        }
        for stop, distance in found[offset : offset + limit]
    ]
    return {
        "items": items,
        "limit": limit,
        "offset": offset,
        "count": len(items),
    }


# ---------------------------------------------------------------------------
# GET /stops/{stop_id}/departures
# ---------------------------------------------------------------------------


@router.get(
    "/stops/{stop_id}/departures",
    response_model=DeparturesResponse,
    summary="Get upcoming departures from a stop",
    description=(
        "Return scheduled departures from the stop in time order, with live "
        "predictions merged in where a fresh update exists."
    ),
)
async def get_stop_departures(
    stop_id: str,
    after: Annotated[
        Optional[datetime],
        Query(description="List departures at or after this time. Defaults to now."),
    ] = None,
    limit: Annotated[
        Optional[int],
        Query(ge=1, le=100, description="Maximum number of departures"),
    ] = None,
) -> dict[str, Any]:
    """Return departures, or 404 if the stop is unknown."""
    settings = get_settings()
    index = require_schedule()
    _require_stop(index, stop_id)

    tz = ZoneInfo(settings.service_timezone)
    now = datetime.now(timezone.utc)
    when = after or now
    if when.tzinfo is None:
        when = when.replace(tzinfo=tz)
    day = ServiceDay.containing(when, tz)

    scheduled = index.trips_serving(
        stop_id,
        math.ceil(day.to_seconds(when)),
        limit=limit or settings.default_departures_limit,
        service_date=day.date,
    )
    live = await get_live_source().snapshot(now=now)

    departures = []
    for trip, stop_time in scheduled:
        route = index.route_info(trip.route_id)
        arrival = RealtimeMerger.effective_arrival(
            trip,
            stop_id,
            day.to_datetime(stop_time.departure_sec),
            live,
            now=now,
            departure=True,
        )
        departures.append(
            {
                "trip_id": trip.trip_id,
                "route_id": trip.route_id,
                "route_short_name": route.display_name,
                "headsign": trip.headsign,
                "scheduled_time": arrival.scheduled_arrival_time.isoformat(),
                "predicted_time": arrival.predicted_arrival_time.isoformat(),
                "predicted": arrival.predicted,
                "delay_minutes": arrival.delay_minutes,
                "minutes_until": arrival.minutes_until_arrival,
                "confidence": arrival.confidence.value,
                "status": arrival.status.value,
                "delay_category": arrival.delay_category.value if arrival.delay_category else None,
            }
        )

    return {
        "stop_id": stop_id,
        "stop_name": index.stop(stop_id).name,
        "realtime_degraded": live.degraded,
        "departures": departures,
    }


# ---------------------------------------------------------------------------
# GET /stops/{stop_id}/routes
# ---------------------------------------------------------------------------


@router.get(
    "/stops/{stop_id}/routes",
    response_model=StopRoutesResponse,
    summary="Get routes serving a stop",
    description=(
        "Return the distinct transit routes that serve the given stop, "
        "derived from its scheduled trips.  Ordered by short_name."
    ),
)
async def get_stop_routes(stop_id: str) -> dict[str, Any]:
    """Return distinct routes serving a stop, or 404 if stop not found."""
    index = require_schedule()
    _require_stop(index, stop_id)
    return {
        "stop_id": stop_id,
        "routes": [route.to_dict() for route in index.routes_serving(stop_id)],
    }
