"""Process-wide evaluation locks, one per contest."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class ContestLockRegistry:
    """Serialize resolution passes, lifecycle advances and finalization per contest.

    Different contests hold different locks and proceed in parallel.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def lock_for(self, contest_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(contest_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[contest_id] = lock
            return lock

    @contextmanager
    def hold(self, contest_id: str) -> Iterator[None]:
        lock = self.lock_for(contest_id)
        with lock:
            yield

    def clear(self) -> None:
        with self._guard:
            self._locks.clear()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
