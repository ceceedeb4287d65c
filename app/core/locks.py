from contextlib import contextmanager
from typing import Iterator
import threading


class KeyedLocks:
    """A registry of mutexes, one per string key."""

    def __init__(self):
        self._locks: dict[str, threading.Lock] = {}
        self._users: dict[str, int] = {}
        self._guard = threading.Lock()

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._users[key] = self._users.get(key, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[key] -= 1

    def prune(self) -> int:
        """Forget locks nobody is holding or waiting on."""
        with self._guard:
            idle = [key for key, users in self._users.items() if users == 0]
            for key in idle:
                del self._users[key]
                del self._locks[key]
        return len(idle)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
