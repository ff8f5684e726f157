"""Per-key in-process mutual exclusion with bounded waits."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator


class LockTimeout(Exception):
    """Raised when a keyed lock could not be acquired in time."""


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class KeyedLock:
    """
    One lock per key, created on demand and dropped when the last holder or
    waiter leaves, so the registry only holds keys that are in use.
    """

    def __init__(self) -> None:
        self._entries: Dict[Hashable, _Entry] = {}
        self._guard = threading.Lock()

    @contextmanager
    def acquire(self, key: Hashable, timeout: float) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1

        acquired = entry.lock.acquire(timeout=timeout)
        try:
            if not acquired:
                raise LockTimeout(f"timed out after {timeout}s waiting for {key}")
            yield
        finally:
            if acquired:
                entry.lock.release()
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
