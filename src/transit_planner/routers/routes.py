"""Route reliability endpoints.

Endpoints
---------
GET /routes/reliability              – every known route, optionally by level
GET /routes/{route_id}/reliability   – reliability score for a travel time
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Optional

from fastapi import APIRouter, HTTPException, Query

from transit_planner.config import get_settings
from transit_planner.models.reliability import DelayStats, ReliabilityLevel
from transit_planner.models.schedule import Route
from transit_planner.services.reliability.model import ReliabilityModel, delay_quantile
from transit_planner.services.snapshots import get_reliability_store, get_schedule_store

router = APIRouter(tags=["routes"])

AtQuery = Annotated[
    Optional[datetime],
    Query(description="Travel time; naive values are service-local. Defaults to now."),
]


def _describe(
    model: ReliabilityModel, route_id: str, when: datetime, route_info: Optional[Route]
) -> dict[str, Any]:
    score = model.score(route_id, when)
    stats = DelayStats(
        on_time_performance=score.on_time_performance,
        average_delay_minutes=score.average_delay_minutes,
        sample_count=score.sample_count,
        quantiles=score.quantiles,
    )
    data = score.to_dict()
    data["route"] = route_info.to_dict() if route_info else None
    data["p50_delay_minutes"] = round(delay_quantile(stats, 0.50), 2)
    data["p95_delay_minutes"] = round(delay_quantile(stats, 0.95), 2)
    return data


@router.get(
    "/routes/reliability",
    summary="List route reliability",
    description=(
        "Score every route known to the reliability history or the schedule "
        "for travel at `at` (default now). Filter with `level` to find, for "
        "example, all low reliability routes."
    ),
)
async def list_route_reliability(
    level: Annotated[
        Optional[ReliabilityLevel], Query(description="Keep only routes at this level.")
    ] = None,
    at: AtQuery = None,
) -> dict[str, Any]:
    """Return scored routes ordered by route id; empty when nothing is loaded."""
    settings = get_settings()
    snapshot = get_reliability_store().current()
    index = get_schedule_store().current()
    when = at or datetime.now(timezone.utc)

    schedule_routes = {route.route_id: route for route in index.routes} if index else {}
    route_ids = set(schedule_routes)
    if snapshot is not None:
        route_ids.update(snapshot.routes)

    model = ReliabilityModel.from_settings(snapshot, settings)
    routes = [
        _describe(model, route_id, when, schedule_routes.get(route_id))
        for route_id in sorted(route_ids)
    ]
    if level is not None:
        routes = [data for data in routes if data["reliability"] == level.value]
    return {
        "at": when.isoformat(),
        "level": level.value if level else None,
        "count": len(routes),
        "routes": routes,
    }


@router.get(
    "/routes/{route_id}/reliability",
    summary="Get route reliability",
    description=(
        "Score a route for travel at `at` (default now). The most specific "
        "aggregate with enough samples is used: day type and time band, then "
        "day type, then the route overall, then a neutral default."
    ),
)
async def get_route_reliability(route_id: str, at: AtQuery = None) -> dict[str, Any]:
    """Return the score, or 404 if neither snapshot knows the route."""
    settings = get_settings()
    snapshot = get_reliability_store().current()
    index = get_schedule_store().current()

    known_to_schedule = False
    route_info = None
    if index is not None:
        try:
            route_info = index.route_info(route_id)
            known_to_schedule = True
        except KeyError:
            pass
    known_to_history = snapshot is not None and route_id in snapshot.routes
    if not known_to_schedule and not known_to_history:
        raise HTTPException(status_code=404, detail=f"Route '{route_id}' not found")

    model = ReliabilityModel.from_settings(snapshot, settings)
    return _describe(model, route_id, at or datetime.now(timezone.utc), route_info)
