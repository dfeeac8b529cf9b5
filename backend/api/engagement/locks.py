from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, Optional

from engagement.errors import Timeout


class KeyedLocks:
    """
    One mutex per key, created on demand and dropped when nobody holds or waits on it.

    Engagement writes for the same (actor, content) pair go through the
    same key, so an add and a remove on one pair never interleave.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, threading.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    def _checkout(self, key: Hashable) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
                self._users[key] = 0
            self._users[key] += 1
            return lock

    def _checkin(self, key: Hashable) -> None:
        with self._guard:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    @contextmanager
    def hold(self, key: Hashable, timeout: Optional[float] = None) -> Iterator[None]:
        lock = self._checkout(key)
        try:
            acquired = lock.acquire(timeout=-1 if timeout is None else max(timeout, 0))
            if not acquired:
                raise Timeout(f"Timed out after {timeout}s waiting for {key!r}")
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
