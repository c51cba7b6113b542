from concurrent.futures import ThreadPoolExecutor

import pytest

from agendamerge.cache import ColorAssignmentCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = ColorAssignmentCache(ttl_seconds=10, max_entries=5, clock=clock)
    cache.set("a", "#3B82F6")

    clock.now = 9.9
    assert cache.get("a") == "#3B82F6"

    clock.now = 10.0
    assert cache.get("a") is None
    assert "a" not in cache
    assert cache.stats()["expirations"] == 1


def test_least_recently_used_entry_is_evicted():
    cache = ColorAssignmentCache(ttl_seconds=60, max_entries=2, clock=FakeClock())
    cache.set("a", "#3B82F6")
    cache.set("b", "#10B981")
    cache.get("a")
    cache.set("c", "#F59E0B")

    assert cache.snapshot() == {"a": "#3B82F6", "c": "#F59E0B"}
    assert cache.stats()["evictions"] == 1


def test_expired_entries_go_before_live_ones():
    clock = FakeClock()
    cache = ColorAssignmentCache(ttl_seconds=10, max_entries=2, clock=clock)
    cache.set("old", "#3B82F6")
    clock.now = 8
    cache.set("b", "#10B981")
    clock.now = 12
    cache.set("c", "#F59E0B")

    assert cache.snapshot() == {"b": "#10B981", "c": "#F59E0B"}
    assert cache.stats()["evictions"] == 0


def test_load_invalidate_and_clear():
    cache = ColorAssignmentCache(clock=FakeClock())
    cache.load({"a": "#3B82F6", "b": "#10B981"})

    assert len(cache) == 2
    assert cache.invalidate("a") is True
    assert cache.invalidate("a") is False
    cache.clear()
    assert len(cache) == 0


def test_hit_ratio_tracks_lookups():
    cache = ColorAssignmentCache(clock=FakeClock())
    cache.set("a", "#3B82F6")
    cache.get("a")
    cache.get("missing")

    stats = cache.stats()
    assert (stats["hits"], stats["misses"]) == (1, 1)
    assert stats["hit_ratio"] == pytest.approx(0.5)


def test_rejects_zero_capacity():
    with pytest.raises(ValueError):
        ColorAssignmentCache(max_entries=0)


def test_concurrent_writers_respect_capacity():
    cache = ColorAssignmentCache(ttl_seconds=60, max_entries=50)

    def write(worker: int) -> None:
        for i in range(200):
            cache.set(f"{worker}-{i}", "#3B82F6")
            cache.get(f"{worker}-{i // 2}")

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(write, range(8)))

    assert len(cache) == 50


def test_loaded_entries_keep_their_age():
    clock = FakeClock()
    cache = ColorAssignmentCache(ttl_seconds=10, clock=clock)
    cache.load({"stale": "#3B82F6", "fresh": "#10B981"}, ages={"stale": 12, "fresh": 4})

    assert cache.get("stale") is None
    assert cache.get("fresh") == "#10B981"

    clock.now = 3
    assert cache.ages() == {"fresh": 7}
    clock.now = 6
    assert cache.get("fresh") is None


def test_lookup_expires_only_what_it_touches():
    clock = FakeClock()
    cache = ColorAssignmentCache(ttl_seconds=10, clock=clock)
    cache.set("a", "#3B82F6")
    clock.now = 5
    cache.set("b", "#10B981")
    cache.get("a")

    clock.now = 11
    assert cache.get("missing") is None
    assert cache.stats()["expirations"] == 0
    assert len(cache) == 2

    assert cache.get("a") is None
    assert cache.stats()["expirations"] == 1
