"""Per-key asyncio locks that exist only while in use.

Rooms, private pairs and users each get their own lock. An entry is created
by the first task that asks for a key and removed when the last task holding
or awaiting it leaves, so the map is bounded by in-flight work rather than
by every key ever seen. Waiters on one key are woken in FIFO order.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class KeyedLocks:
    """Map of key -> asyncio.Lock with usage counting."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        # key -> tasks holding or waiting on the lock
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __contains__(self, key: str) -> bool:
        return key in self._locks

    def __len__(self) -> int:
        return len(self._locks)
