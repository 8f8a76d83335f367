"""Trip planning endpoint.

Endpoints
---------
POST /plan   – ranked itineraries between two points
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from transit_planner.config import get_settings
from transit_planner.errors import Cancelled, InvalidRequest
from transit_planner.logging import get_logger
from transit_planner.models.itinerary import PlanOptions, PlanRequest, TripMode
from transit_planner.models.schedule import Location
from transit_planner.services.planning.cancellation import CancellationToken
from transit_planner.services.planning.planner import TripPlanner

logger = get_logger(__name__)

router = APIRouter(tags=["plan"])

# Non-standard status used by nginx for requests the client abandoned.
CLIENT_CLOSED_REQUEST = 499

DISCONNECT_POLL_SEC = 0.25


# ---------------------------------------------------------------------------
# Request schema
# ---------------------------------------------------------------------------


class PlaceIn(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)
    name: Optional[str] = None
    stop_id: Optional[str] = Field(default=None, alias="stopId")

    model_config = ConfigDict(populate_by_name=True)

    def to_location(self) -> Location:
        return Location(self.lat, self.lon, stop_id=self.stop_id, name=self.name)


class PlanRequestBody(BaseModel):
    """Request body for trip planning. Keys may be snake_case or camelCase."""

    origin: PlaceIn
    destination: PlaceIn
    requested_time: Optional[datetime] = Field(
        default=None,
        alias="requestedTime",
        description="Departure time, or arrival deadline with arrive_by. Defaults to now.",
    )
    arrive_by: bool = Field(default=False, alias="arriveBy")
    max_walking_distance: Optional[float] = Field(
        default=None,
        gt=0,
        alias="maxWalkingDistance",
        description="Metres. Defaults to MAX_WALKING_DISTANCE_M.",
    )
    max_transfers: Optional[int] = Field(
        default=None,
        ge=0,
        alias="maxTransfers",
        description="Defaults to MAX_TRANSFERS; capped at MAX_TRANSFERS_LIMIT.",
    )
    wheelchair_accessible_only: bool = Field(default=False, alias="wheelchairAccessibleOnly")
    preferred_agencies: list[str] = Field(default_factory=list, alias="preferredAgencies")
    trip_mode: TripMode = Field(default=TripMode.BALANCED, alias="tripMode")

    model_config = ConfigDict(populate_by_name=True)

    def to_request(self) -> PlanRequest:
        settings = get_settings()
        options = PlanOptions(
            max_walking_distance_m=(
                self.max_walking_distance
                if self.max_walking_distance is not None
                else settings.max_walking_distance_m
            ),
            max_transfers=(
                self.max_transfers if self.max_transfers is not None else settings.max_transfers
            ),
            wheelchair_accessible_only=self.wheelchair_accessible_only,
            preferred_agencies=tuple(self.preferred_agencies),
            trip_mode=self.trip_mode,
        )
        return PlanRequest(
            origin=self.origin.to_location(),
            destination=self.destination.to_location(),
            requested_time=self.requested_time or datetime.now(timezone.utc),
            arrive_by=self.arrive_by,
            options=options,
        )


# ---------------------------------------------------------------------------
# POST /plan
# ---------------------------------------------------------------------------


async def _cancel_on_disconnect(request: Request, token: CancellationToken) -> None:
    while not await request.is_disconnected():
        await asyncio.sleep(DISCONNECT_POLL_SEC)
    logger.info("Client disconnected, cancelling plan")
    token.cancel()


@router.post(
    "/plan",
    summary="Plan a trip",
    description=(
        "Search scheduled service between two points, merge live arrivals, "
        "score reliability and transfer risk, and return the top itineraries "
        "with exactly one marked recommended. An empty list carries a reason."
    ),
)
async def plan_trip(body: PlanRequestBody, request: Request) -> dict[str, Any]:
    """Return ranked itineraries, or 422 for invalid requests."""
    token = CancellationToken()
    watcher = asyncio.create_task(_cancel_on_disconnect(request, token))
    try:
        response = await TripPlanner().plan(body.to_request(), cancel=token)
    except InvalidRequest as exc:
        raise HTTPException(
            status_code=422, detail={"message": str(exc), "field": exc.field}
        ) from exc
    except Cancelled as exc:
        raise HTTPException(status_code=CLIENT_CLOSED_REQUEST, detail=str(exc)) from exc
    finally:
        watcher.cancel()

    return response.to_dict()
