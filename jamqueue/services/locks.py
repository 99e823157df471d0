"""In-process keyed mutexes.

Database row locks serialize writers across processes; these serialize
threads of one process before they reach the database, which is the only
protection SQLite-backed deployments get for check-then-act sequences.
"""
import threading
from contextlib import contextmanager
from typing import Hashable, Iterable


class KeyedLocks:
    """A lock per key, created on demand and dropped once nobody holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.Lock] = {}
        self._users: dict[Hashable, int] = {}

    def _checkout(self, key: Hashable) -> threading.Lock:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._users[key] = self._users.get(key, 0) + 1
            return lock

    def _checkin(self, key: Hashable) -> None:
        with self._guard:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    @contextmanager
    def hold(self, key: Hashable):
        lock = self._checkout(key)
        try:
            with lock:
                yield
        finally:
            self._checkin(key)

    @contextmanager
    def hold_many(self, keys: Iterable[Hashable]):
        """Acquire several keys in sorted order so overlapping holders cannot deadlock."""
        ordered = sorted(set(keys), key=repr)
        acquired = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                try:
                    lock.acquire()
                except BaseException:
                    self._checkin(key)
                    raise
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
                self._checkin(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
