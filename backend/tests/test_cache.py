from __future__ import annotations

import threading

from app.services.cache import TTLCache
from app.services.locks import ContestLockRegistry


class _Ticker:
    def __init__(self) -> None:
        self.value = 0.0

    def __call__(self) -> float:
        return self.value


def test_entries_expire_after_ttl():
    """Verify values disappear once their TTL has elapsed."""
    ticker = _Ticker()
    cache: TTLCache[str] = TTLCache(ttl_seconds=10, clock=ticker)
    cache.set("c1", "board")

    ticker.value = 9.5
    assert cache.get("c1") == "board"
    ticker.value = 10.5
    assert cache.get("c1") is None
    assert len(cache) == 0


def test_least_recently_used_entry_is_evicted():
    """Verify the cache keeps at most ``maxsize`` entries."""
    cache: TTLCache[int] = TTLCache(ttl_seconds=60, maxsize=2)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.get("a")
    cache.set("c", 3)

    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3


def test_get_or_set_only_fetches_on_miss():
    """Verify the fetch function runs once while the value is cached."""
    cache: TTLCache[int] = TTLCache(ttl_seconds=60)
    calls: list[int] = []

    def fetch() -> int:
        calls.append(1)
        return 42

    assert cache.get_or_set("c1", fetch) == 42
    assert cache.get_or_set("c1", fetch) == 42
    assert len(calls) == 1
    assert cache.invalidate("c1") is True
    assert cache.invalidate("c1") is False


def test_lock_registry_serializes_one_contest():
    """Verify holders of the same contest lock never overlap."""
    registry = ContestLockRegistry()
    active: list[int] = []
    overlaps: list[bool] = []

    def work() -> None:
        for _ in range(50):
            with registry.hold("c1"):
                active.append(1)
                overlaps.append(len(active) > 1)
                active.pop()

    threads = [threading.Thread(target=work) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert not any(overlaps)
    assert registry.lock_for("c1") is not registry.lock_for("c2")
    registry.clear()
    assert len(registry) == 0


def test_value_fetched_across_an_invalidation_is_not_stored():
    """Verify a fetch that overlaps an invalidation is returned but not cached."""
    cache: TTLCache[int] = TTLCache(ttl_seconds=60)

    def fetch_during_write() -> int:
        cache.invalidate("c1")
        return 1

    assert cache.get_or_set("c1", fetch_during_write) == 1
    assert "c1" not in cache
    assert cache.get_or_set("c1", lambda: 2) == 2
    assert cache.get("c1") == 2
