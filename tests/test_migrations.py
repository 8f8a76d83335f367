"""Tests for versioned reliability snapshot documents."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import pytest

from transit_planner.models.reliability import DayType, TimeBand
from transit_planner.services.reliability.migrations import (
    CURRENT_VERSION,
    MIGRATIONS,
    SnapshotFormatError,
    from_snapshot,
    load_snapshot,
    load_snapshot_file,
    upgrade_document,
)
from transit_planner.services.reliability.model import ReliabilityModel

from .fixtures.network import V1_RELIABILITY, at

if TYPE_CHECKING:
    from pathlib import Path


class TestMigrationChain:
    def test_every_version_has_a_step_to_current(self) -> None:
        assert sorted(MIGRATIONS) == list(range(1, CURRENT_VERSION))


class TestUpgradeV1:
    def test_bare_list_is_version_1(self) -> None:
        document = upgrade_document(V1_RELIABILITY)

        assert document.version == 2
        assert document.computed_at == datetime(2026, 3, 1, 8, tzinfo=timezone.utc)
        assert document.source == "historical"
        assert [route.route_id for route in document.routes] == ["R10", "SLU"]

    def test_rush_hour_delay_becomes_weekday_peak_bucket(self) -> None:
        r10 = upgrade_document(V1_RELIABILITY).routes[0]
        peak = [b for b in r10.buckets if b.time_band is TimeBand.PEAK]

        assert len(peak) == 1
        assert peak[0].day_type is DayType.WEEKDAY
        assert peak[0].average_delay_minutes == 9.0
        assert peak[0].on_time_performance == 0.45

    def test_weekend_performance_becomes_day_types(self) -> None:
        r10 = upgrade_document(V1_RELIABILITY).routes[0]
        weekend = {b.day_type: b for b in r10.buckets if b.time_band is None}

        assert set(weekend) == {DayType.SATURDAY, DayType.SUNDAY}
        assert weekend[DayType.SUNDAY].on_time_performance == 0.6
        assert weekend[DayType.SUNDAY].average_delay_minutes == pytest.approx(6.75)

    def test_explicit_computed_at_wins(self) -> None:
        document = upgrade_document(
            {"version": 1, "computedAt": "2026-03-05T00:00:00Z", "routes": V1_RELIABILITY}
        )
        assert document.computed_at == datetime(2026, 3, 5, tzinfo=timezone.utc)

    def test_mixed_sources(self) -> None:
        records = [dict(V1_RELIABILITY[0]), dict(V1_RELIABILITY[1], dataSource="realtime")]
        assert upgrade_document(records).source == "mixed"

    def test_missing_timestamps_are_stale(self) -> None:
        records = [{"routeId": "R10", "onTimePerformance": 0.9, "averageDelayMinutes": 1.0}]
        snapshot = load_snapshot(records)

        assert snapshot.computed_at == datetime(1970, 1, 1, tzinfo=timezone.utc)
        assert ReliabilityModel(snapshot).score("R10", at(8)).stale


class TestUpgradeErrors:
    def test_unknown_version(self) -> None:
        with pytest.raises(SnapshotFormatError, match="Unsupported"):
            upgrade_document({"version": 3, "routes": []})

    def test_not_an_object(self) -> None:
        with pytest.raises(SnapshotFormatError, match="must be an object"):
            upgrade_document("routes")

    def test_invalid_record(self) -> None:
        records = [{"routeId": "R10", "onTimePerformance": 1.5, "averageDelayMinutes": 1.0}]
        with pytest.raises(SnapshotFormatError, match="version 1"):
            upgrade_document(records)

    def test_migration_that_skips_a_version(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setitem(MIGRATIONS, 1, lambda document: document)
        with pytest.raises(SnapshotFormatError, match="Migration chain ended"):
            upgrade_document(V1_RELIABILITY)


class TestCurrentVersion:
    def test_v2_document_is_read_as_is(self) -> None:
        snapshot = load_snapshot(V1_RELIABILITY)
        document = from_snapshot(snapshot).model_dump(mode="json")

        reloaded = load_snapshot(document)

        assert document["version"] == 2
        assert reloaded.routes == snapshot.routes
        assert reloaded.computed_at == snapshot.computed_at


class TestLoadSnapshotFile:
    def test_load_from_disk(self, tmp_path: Path) -> None:
        path = tmp_path / "reliability.json"
        path.write_text(json.dumps(V1_RELIABILITY), encoding="utf-8")

        snapshot = load_snapshot_file(path)

        assert len(snapshot) == 2
        assert snapshot.routes["SLU"].overall.on_time_performance == 0.92

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "reliability.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(SnapshotFormatError, match="not valid JSON"):
            load_snapshot_file(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_snapshot_file(tmp_path / "missing.json")
