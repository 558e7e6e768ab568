"""
tests/test_cache.py -- KeyedCache TTL semantics and atomic counters.

A float clock is injected so expiry can be tested without sleeping.
"""

from __future__ import annotations

import threading

import pytest

from cache.store import KeyedCache


class _Tick:
    def __init__(self) -> None:
        self.now = 1_000_000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def tick() -> _Tick:
    return _Tick()


@pytest.fixture
def timed_cache(tmp_path, tick):
    c = KeyedCache(tmp_path / "timed.db", clock=tick)
    yield c
    c.close()


class TestGetSet:
    def test_round_trips_json_values(self, timed_cache: KeyedCache) -> None:
        timed_cache.set("k", {"code": "ABC234", "account_id": 7}, ttl=60)
        assert timed_cache.get("k") == {"code": "ABC234", "account_id": 7}

    def test_missing_key_returns_default(self, timed_cache: KeyedCache) -> None:
        assert timed_cache.get("absent") is None
        assert timed_cache.get("absent", 0) == 0

    def test_entry_expires_at_ttl(self, timed_cache: KeyedCache, tick: _Tick) -> None:
        timed_cache.set("k", "v", ttl=60)
        tick.now += 59
        assert timed_cache.get("k") == "v"
        tick.now += 1
        assert timed_cache.get("k") is None

    def test_set_overwrites_previous_value(self, timed_cache: KeyedCache) -> None:
        timed_cache.set("k", "first", ttl=60)
        timed_cache.set("k", "second", ttl=60)
        assert timed_cache.get("k") == "second"

    def test_delete(self, timed_cache: KeyedCache) -> None:
        timed_cache.set("k", "v", ttl=60)
        assert timed_cache.delete("k") is True
        assert timed_cache.delete("k") is False
        assert timed_cache.get("k") is None


class TestCounters:
    def test_incr_starts_at_one_and_counts_up(self, timed_cache: KeyedCache) -> None:
        assert timed_cache.incr("n", ttl=60) == 1
        assert timed_cache.incr("n", ttl=60) == 2
        assert timed_cache.get("n") == 2

    def test_incr_keeps_original_expiry(self, timed_cache: KeyedCache, tick: _Tick) -> None:
        timed_cache.incr("n", ttl=60)
        tick.now += 50
        timed_cache.incr("n", ttl=60)
        tick.now += 10
        assert timed_cache.get("n") is None

    def test_incr_restarts_after_expiry(self, timed_cache: KeyedCache, tick: _Tick) -> None:
        timed_cache.incr("n", ttl=60)
        timed_cache.incr("n", ttl=60)
        tick.now += 61
        assert timed_cache.incr("n", ttl=60) == 1

    def test_concurrent_increments_are_not_lost(self, cache: KeyedCache) -> None:
        def bump() -> None:
            for _ in range(50):
                cache.incr("shared", ttl=600)

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert cache.get("shared") == 200


def test_purge_expired_removes_only_dead_rows(timed_cache: KeyedCache, tick: _Tick) -> None:
    timed_cache.set("short", 1, ttl=10)
    timed_cache.set("long", 2, ttl=1000)
    tick.now += 11
    assert timed_cache.purge_expired() == 1
    assert timed_cache.get("long") == 2
