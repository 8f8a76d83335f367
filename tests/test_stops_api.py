"""Tests for the public stops endpoints.

GET /stops/nearby                 – nearby stop discovery (paginated)
GET /stops/{stop_id}/departures   – upcoming departures
GET /stops/{stop_id}/routes       – routes serving a stop
"""

from __future__ import annotations

import pytest
from httpx import AsyncClient

from transit_planner.services.schedule.index import ScheduleIndex

# ~220 m from S1, ~800 m from S2 and S4
CENTRE = {"lat": 47.6080, "lon": -122.3345}


class TestNearbyStops:
    @pytest.mark.asyncio
    async def test_returns_stops_ordered_by_distance(
        self, client: AsyncClient, published: ScheduleIndex
    ) -> None:
        response = await client.get("/stops/nearby", params={**CENTRE, "radius_m": 1500})

        assert response.status_code == 200
        data = response.json()
        assert data["limit"] == 50
        assert data["offset"] == 0
        assert data["count"] == len(data["items"])

        ids = [item["stop_id"] for item in data["items"]]
        assert ids[0] == "S1"
        assert set(ids) >= {"S1", "S2", "S4"}
        distances = [item["distance_m"] for item in data["items"]]
        assert distances == sorted(distances)

    @pytest.mark.asyncio
    async def test_response_schema(self, client: AsyncClient, published: ScheduleIndex) -> None:
        response = await client.get(
            "/stops/nearby", params={"lat": 47.6062, "lon": -122.3321}
        )

        item = response.json()["items"][0]
        assert set(item) == {"stop_id", "name", "lat", "lon", "distance_m", "route_ids"}
        assert item["stop_id"] == "S1"
        assert item["name"] == "3rd Ave & Pike St"
        assert item["route_ids"] == ["R10"]
        assert 0 < item["distance_m"] < 100

    @pytest.mark.asyncio
    async def test_entrances_are_not_stops(
        self, client: AsyncClient, published: ScheduleIndex
    ) -> None:
        response = await client.get("/stops/nearby", params={**CENTRE, "radius_m": 5000})

        ids = [item["stop_id"] for item in response.json()["items"]]
        assert "S1E" not in ids

    @pytest.mark.asyncio
    async def test_pagination(self, client: AsyncClient, published: ScheduleIndex) -> None:
        params = {**CENTRE, "radius_m": 5000}
        full = (await client.get("/stops/nearby", params=params)).json()["items"]

        response = await client.get("/stops/nearby", params={**params, "limit": 2, "offset": 1})

        data = response.json()
        assert data["limit"] == 2
        assert data["offset"] == 1
        assert data["count"] == 2
        assert data["items"] == full[1:3]

    @pytest.mark.asyncio
    async def test_offset_past_end_returns_empty(
        self, client: AsyncClient, published: ScheduleIndex
    ) -> None:
        response = await client.get("/stops/nearby", params={**CENTRE, "offset": 100})

        data = response.json()
        assert data["items"] == []
        assert data["count"] == 0

    @pytest.mark.asyncio
    async def test_nothing_in_range(self, client: AsyncClient, published: ScheduleIndex) -> None:
        response = await client.get(
            "/stops/nearby", params={"lat": 47.7, "lon": -122.4, "radius_m": 100}
        )

        assert response.status_code == 200
        assert response.json()["items"] == []

    @pytest.mark.asyncio
    async def test_radius_too_large(self, client: AsyncClient, published: ScheduleIndex) -> None:
        response = await client.get("/stops/nearby", params={**CENTRE, "radius_m": 5001})
        assert response.status_code == 422

    @pytest.mark.parametrize(
        "params",
        [
            {"lat": 91, "lon": 0},
            {"lat": 0, "lon": -181},
            {"lat": 47.6, "lon": -122.3, "radius_m": 0},
            {"lat": 47.6, "lon": -122.3, "limit": 0},
            {"lat": 47.6, "lon": -122.3, "offset": -1},
            {"lon": -122.3},
        ],
    )
    @pytest.mark.asyncio
    async def test_invalid_params(self, client: AsyncClient, params: dict) -> None:
        response = await client.get("/stops/nearby", params=params)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_schedule_not_loaded(self, client: AsyncClient) -> None:
        response = await client.get("/stops/nearby", params=CENTRE)

        assert response.status_code == 503
        assert response.json()["detail"] == "Schedule not loaded"


class TestStopDepartures:
    @pytest.mark.asyncio
    async def test_departures_after_time(
        self, client: AsyncClient, published: ScheduleIndex
    ) -> None:
        response = await client.get(
            "/stops/S1/departures", params={"after": "2026-03-11T08:10:00-07:00"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["stop_id"] == "S1"
        assert data["stop_name"] == "3rd Ave & Pike St"
        assert data["realtime_degraded"] is False

        trips = [d["trip_id"] for d in data["departures"]]
        assert trips == ["t10_b", "t10_c", "t10_late"]

        first = data["departures"][0]
        assert first["route_short_name"] == "10"
        assert first["headsign"] == "Lower Queen Anne"
        assert first["scheduled_time"] == "2026-03-11T08:15:00-07:00"
        assert first["predicted_time"] == first["scheduled_time"]
        assert first["predicted"] is False
        assert first["delay_minutes"] == 0

    @pytest.mark.asyncio
    async def test_limit(self, client: AsyncClient, published: ScheduleIndex) -> None:
        response = await client.get(
            "/stops/S1/departures",
            params={"after": "2026-03-11T07:00:00-07:00", "limit": 2},
        )

        trips = [d["trip_id"] for d in response.json()["departures"]]
        assert trips == ["t10_a", "t10_b"]

    @pytest.mark.asyncio
    async def test_no_service_on_saturday(
        self, client: AsyncClient, published: ScheduleIndex
    ) -> None:
        response = await client.get(
            "/stops/S1/departures", params={"after": "2026-03-14T07:00:00-07:00"}
        )

        assert response.status_code == 200
        assert response.json()["departures"] == []

    @pytest.mark.asyncio
    async def test_unknown_stop(self, client: AsyncClient, published: ScheduleIndex) -> None:
        response = await client.get("/stops/NOPE/departures")

        assert response.status_code == 404
        assert "NOPE" in response.json()["detail"]


class TestStopRoutes:
    @pytest.mark.asyncio
    async def test_routes_serving_stop(
        self, client: AsyncClient, published: ScheduleIndex
    ) -> None:
        response = await client.get("/stops/S4/routes")

        assert response.status_code == 200
        data = response.json()
        assert data["stop_id"] == "S4"
        assert data["routes"] == [
            {
                "route_id": "SLU",
                "short_name": "SLU",
                "long_name": "South Lake Union Streetcar",
                "route_type": "tram",
                "agency_id": "SDOT",
            }
        ]

    @pytest.mark.asyncio
    async def test_unknown_stop(self, client: AsyncClient, published: ScheduleIndex) -> None:
        response = await client.get("/stops/NOPE/routes")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_schedule_not_loaded(self, client: AsyncClient) -> None:
        response = await client.get("/stops/S1/routes")
        assert response.status_code == 503
