"""Per-hire mutual exclusion.

Every operation that mutates a hire's task set runs under that hire's lock;
operations on different hires never wait on each other.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict


class HireLockRegistry:
    """Lazily created ``asyncio.Lock`` per hire id.

    ``hold()`` counts holders and waiters per hire. An entry is only dropped
    by ``discard_idle()`` once that count is zero, so a lock being handed to
    a waiter that has not resumed yet is never replaced by a fresh one.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def lock_for(self, hire_id: str) -> asyncio.Lock:
        # No await between lookup and insert, so this is atomic on the loop
        lock = self._locks.get(hire_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[hire_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, hire_id: str) -> AsyncGenerator[None, None]:
        lock = self.lock_for(hire_id)
        self._users[hire_id] = self._users.get(hire_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._users[hire_id] - 1
            if remaining:
                self._users[hire_id] = remaining
            else:
                del self._users[hire_id]

    def discard_idle(self) -> int:
        """Drop locks with no holder or waiter; returns how many were removed."""
        idle = [
            hid for hid, lock in self._locks.items()
            if hid not in self._users and not lock.locked()
        ]
        for hid in idle:
            del self._locks[hid]
        return len(idle)
