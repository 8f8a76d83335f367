"""Pytest configuration and fixtures."""

from collections.abc import AsyncGenerator, Iterator

import pytest
from httpx import ASGITransport, AsyncClient

from transit_planner.config import get_settings
from transit_planner.main import app
from transit_planner.models.reliability import ReliabilitySnapshot
from transit_planner.services.realtime.source import reset_live_source
from transit_planner.services.schedule.index import ScheduleIndex
from transit_planner.services.snapshots import (
    get_reliability_store,
    get_schedule_store,
    reset_snapshot_stores,
)

from .fixtures.network import build_index, build_reliability


@pytest.fixture(autouse=True)
def reset_singletons() -> Iterator[None]:
    """Start every test with empty snapshot stores and fresh settings."""
    get_settings.cache_clear()
    reset_snapshot_stores()
    reset_live_source()
    yield
    reset_snapshot_stores()
    reset_live_source()
    get_settings.cache_clear()


@pytest.fixture
def schedule_index() -> ScheduleIndex:
    return build_index()


@pytest.fixture
def reliability_snapshot() -> ReliabilitySnapshot:
    return build_reliability()


@pytest.fixture
def published(
    schedule_index: ScheduleIndex, reliability_snapshot: ReliabilitySnapshot
) -> ScheduleIndex:
    """Publish the fixture schedule and reliability snapshots."""
    get_schedule_store().publish(schedule_index, schedule_index.version)
    get_reliability_store().publish(
        reliability_snapshot, reliability_snapshot.computed_at.isoformat()
    )
    return schedule_index


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
