"""Time-bounded cache for leaderboard reads."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(slots=True)
class CacheEntry(Generic[T]):
    value: T
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class TTLCache(Generic[T]):
    """Thread-safe TTL cache with LRU eviction.

    Values expire ``ttl_seconds`` after they are stored. Writers to a contest
    call :meth:`invalidate` so readers never see standings older than the last
    committed evaluation pass. Each invalidation bumps the key's generation;
    :meth:`get_or_set` drops a fetched value if the generation moved while it
    was being built.
    """

    def __init__(
        self,
        ttl_seconds: float = 30.0,
        maxsize: int = 512,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.maxsize = max(1, int(maxsize))
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry[T]] = OrderedDict()
        self._generations: dict[str, int] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[T]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return entry.value

    def set(self, key: str, value: T, ttl: Optional[float] = None) -> None:
        with self._lock:
            self._store(key, value, ttl)

    def _store(self, key: str, value: T, ttl: Optional[float]) -> None:
        ttl_seconds = ttl if ttl is not None else self.ttl_seconds
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl_seconds)
        self._entries.move_to_end(key)
        while len(self._entries) > self.maxsize:
            self._entries.popitem(last=False)

    def generation(self, key: str) -> int:
        with self._lock:
            return self._generations.get(key, 0)

    def get_or_set(self, key: str, fetch_fn: Callable[[], T], ttl: Optional[float] = None) -> T:
        value = self.get(key)
        if value is not None:
            return value
        started = self.generation(key)
        value = fetch_fn()
        with self._lock:
            if self._generations.get(key, 0) == started:
                self._store(key, value, ttl)
        return value

    def invalidate(self, key: str) -> bool:
        with self._lock:
            self._generations[key] = self._generations.get(key, 0) + 1
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
