"""
Spellbook Store Lock
--------------------
Per-key asyncio mutual exclusion for read-modify-write sequences against
the vector store (aggregate counters, Lore catalog registration).

Only coordinates tasks inside one process; the server's instance lock keeps
a second process off the same embedded data directory.
"""

import asyncio
import contextlib
from typing import Dict, Hashable


class KeyedLock:
    """
    Hands out one asyncio.Lock per key, created on first use.

    Every task inside ``acquire`` (holding or waiting) is counted, so a key
    is only forgotten once nobody is using or queued on its lock.
    """

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    def get(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @contextlib.asynccontextmanager
    async def acquire(self, key: Hashable):
        lock = self.get(key)
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._users[key] - 1
            if remaining:
                self._users[key] = remaining
            else:
                del self._users[key]

    def in_use(self, key: Hashable) -> bool:
        return self._users.get(key, 0) > 0

    def discard(self, key: Hashable) -> None:
        """Forget a key's lock unless a task holds it or is waiting for it."""
        if key in self._locks and not self.in_use(key):
            del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
