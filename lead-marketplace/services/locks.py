"""
Per-record lock registry.

Serializes writers to one lead or one professional's credit balance inside the
process. `hold()` always acquires keys in sorted order; every `lead:` key sorts
before every `professional:` key, so two operations can never wait on each other
in opposite orders.

A key's lock lives only while someone holds or waits on it, so a long-running
process does not keep one lock per record it has ever touched.
"""

from __future__ import annotations

import threading
from contextlib import ExitStack, contextmanager
from typing import Dict, Iterator
from uuid import UUID


def lead_key(lead_id: UUID) -> str:
    return f"lead:{lead_id}"


def professional_key(professional_id: UUID) -> str:
    return f"professional:{professional_id}"


class LockRegistry:
    def __init__(self) -> None:
        self._mutex = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        """Number of keys currently held or waited on."""
        with self._mutex:
            return len(self._locks)

    def _checkout(self, key: str) -> threading.RLock:
        with self._mutex:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            self._users[key] = self._users.get(key, 0) + 1
            return lock

    def _checkin(self, key: str) -> None:
        with self._mutex:
            remaining = self._users[key] - 1
            if remaining:
                self._users[key] = remaining
            else:
                del self._users[key]
                del self._locks[key]

    @contextmanager
    def _held(self, key: str) -> Iterator[None]:
        lock = self._checkout(key)
        try:
            with lock:
                yield
        finally:
            self._checkin(key)

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        """Hold every given key; released in reverse order on exit."""

        with ExitStack() as stack:
            for key in sorted(set(keys)):
                stack.enter_context(self._held(key))
            yield


__all__ = ["LockRegistry", "lead_key", "professional_key"]
