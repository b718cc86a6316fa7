# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Per-key serialization of rollup updates.

Leaf updaters read the fact store, compare with the rollup's ledger and
write counters. Two updates of the same rollup must never interleave, so
each one runs under a lock keyed by (rollup kind, entity id):

- ``KeyedLock`` serializes coroutines sharing an event loop.
- ``SELECT ... FOR UPDATE`` on the rollup row (issued by the repository)
  serializes across processes on PostgreSQL.

Example:
    locks = get_rollup_locks()
    async with locks.hold("assignment", assignment_id):
        ...
"""

import asyncio
import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable


class KeyedLock:
    """A family of asyncio locks created on demand, one per key.

    Locks are dropped once no coroutine holds or waits for them, so the
    registry does not grow with the number of entities ever touched.
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, *key: Hashable) -> AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def is_locked(self, *key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


_thread_local = threading.local()


def get_rollup_locks() -> KeyedLock:
    """Get the lock registry for rollup updates on this thread.

    asyncio locks belong to one event loop, and every Dramatiq worker thread
    runs its own loop, so each thread gets its own registry. Threads and
    processes are serialized against each other by the row lock.
    """
    registry = getattr(_thread_local, "rollup_locks", None)
    if registry is None:
        registry = KeyedLock()
        _thread_local.rollup_locks = registry
    return registry
