"""Tests for the live feed TTL cache."""

from datetime import datetime, timedelta, timezone

from transit_planner.services.realtime.cache import TtlCache

CAPTURED_AT = datetime(2026, 3, 11, 15, 0, tzinfo=timezone.utc)


class TestTtlCache:
    """Unit tests for TtlCache."""

    def test_miss_on_empty(self) -> None:
        cache: TtlCache[str] = TtlCache(30)
        assert cache.get("trip_updates", CAPTURED_AT) is None

    def test_hit_within_ttl(self) -> None:
        cache: TtlCache[str] = TtlCache(30)
        cache.put("trip_updates", "feed", CAPTURED_AT)

        entry = cache.get("trip_updates", CAPTURED_AT + timedelta(seconds=10))
        assert entry is not None
        assert entry.value == "feed"
        assert entry.captured_at == CAPTURED_AT

    def test_fresh_at_exact_expiry(self) -> None:
        cache: TtlCache[str] = TtlCache(30)
        entry = cache.put("trip_updates", "feed", CAPTURED_AT)

        assert entry.expires_at == CAPTURED_AT + timedelta(seconds=30)
        assert cache.get("trip_updates", entry.expires_at) is not None

    def test_stale_after_expiry(self) -> None:
        cache: TtlCache[str] = TtlCache(30)
        cache.put("trip_updates", "feed", CAPTURED_AT)
        expired = CAPTURED_AT + timedelta(seconds=30, microseconds=1)
        assert cache.get("trip_updates", expired) is None

    def test_put_replaces_entry(self) -> None:
        cache: TtlCache[str] = TtlCache(30)
        cache.put("trip_updates", "old", CAPTURED_AT)
        cache.put("trip_updates", "new", CAPTURED_AT + timedelta(seconds=5))

        entry = cache.get("trip_updates", CAPTURED_AT + timedelta(seconds=6))
        assert entry is not None
        assert entry.value == "new"

    def test_keys_are_independent(self) -> None:
        cache: TtlCache[str] = TtlCache(30)
        cache.put("trip_updates", "feed", CAPTURED_AT)
        assert cache.get("service_alerts", CAPTURED_AT) is None

    def test_lock_is_per_key(self) -> None:
        cache: TtlCache[str] = TtlCache(30)
        assert cache.lock("trip_updates") is cache.lock("trip_updates")
        assert cache.lock("trip_updates") is not cache.lock("service_alerts")

    def test_clear(self) -> None:
        cache: TtlCache[str] = TtlCache(30)
        cache.put("trip_updates", "feed", CAPTURED_AT)
        cache.clear()
        assert cache.get("trip_updates", CAPTURED_AT) is None
