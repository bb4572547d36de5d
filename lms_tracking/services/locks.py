"""Per-key async locks with a bounded wait.

Serialises the read-then-write sections of the tracking engine inside
one process: creating an attempt for (learner, lesson) and recomputing
an aggregate for (learner, course).  Across processes the database does
the same job (unique constraint on attempts, FOR UPDATE on aggregates).

A lock exists only while someone holds or waits for it, so the table
does not grow with the number of learners.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager

from lms_tracking.core.config import SETTINGS
from lms_tracking.core.errors import StoreTimeoutError


class KeyedLocks:
    def __init__(self, timeout: float) -> None:
        self._timeout = timeout
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            try:
                async with asyncio.timeout(self._timeout):
                    await lock.acquire()
            except TimeoutError:
                raise StoreTimeoutError(
                    f"timed out after {self._timeout}s waiting for {key!r}"
                ) from None
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


tracking_locks = KeyedLocks(SETTINGS.store_timeout_seconds)
