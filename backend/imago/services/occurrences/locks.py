"""
Per-key mutual exclusion.

Two keyspaces need it: occurrence ids (one writer per occurrence at a time)
and protocol date keys (one counter increment per day at a time). Locks are
created on demand and dropped once nobody holds or waits on them.
"""
import threading
from contextlib import contextmanager
from typing import Dict, Tuple


class KeyedLock:
    """A registry of re-entrant locks indexed by string key."""

    def __init__(self):
        self._guard = threading.Lock()
        # key -> (lock, number of holders + waiters)
        self._locks: Dict[str, Tuple[threading.RLock, int]] = {}

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            lock, users = self._locks.get(key, (None, 0))
            if lock is None:
                lock = threading.RLock()
            self._locks[key] = (lock, users + 1)

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                lock, users = self._locks[key]
                if users <= 1:
                    del self._locks[key]
                else:
                    self._locks[key] = (lock, users - 1)

    def active_keys(self) -> int:
        with self._guard:
            return len(self._locks)


# Process-wide registries shared by every service instance
occurrence_locks = KeyedLock()
protocol_locks = KeyedLock()
