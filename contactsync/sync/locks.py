"""
Per-key mutual exclusion.
"""

import threading
from collections.abc import Generator
from contextlib import contextmanager


class KeyedLock:
    """
    A set of locks addressed by key.

    Holders of different keys never block each other. Entries are dropped
    once no thread holds or waits for them.

    Usage:
        locks = KeyedLock()
        with locks.hold(source_id):
            ...
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._refcounts: dict[str, int] = {}

    @contextmanager
    def hold(self, key: str) -> Generator[None, None, None]:
        """Hold the lock for key for the duration of the block."""
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._refcounts[key] = self._refcounts.get(key, 0) + 1

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._refcounts[key] -= 1
                if self._refcounts[key] == 0:
                    del self._refcounts[key]
                    del self._locks[key]

    def is_held(self, key: str) -> bool:
        """True if some thread holds or waits for key."""
        with self._guard:
            return key in self._locks
