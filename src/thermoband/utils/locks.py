from __future__ import annotations

from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, List
import threading


class KeyedLocks:
    """One mutex per key, created on first use and dropped when unused.

    ``hold`` acquires the given keys in the order passed; callers must use a
    fixed global order (device before patient) to stay deadlock free.
    """

    def __init__(self):
        self._guard = threading.Lock()
        # key -> [lock, number of holders or waiters]
        self._locks: Dict[Hashable, List] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _checkout(self, key: Hashable) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: Hashable) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, *keys: Hashable) -> Iterator[None]:
        acquired = []
        try:
            for key in dict.fromkeys(keys):
                lock = self._checkout(key)
                try:
                    lock.acquire()
                except BaseException:
                    self._checkin(key)
                    raise
                acquired.append((key, lock))
            yield
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._checkin(key)
