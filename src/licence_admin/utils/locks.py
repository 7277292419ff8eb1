"""In-process keyed locks.

Row locks (``SELECT ... FOR UPDATE``) serialize writers across processes on
PostgreSQL; these locks additionally serialize coroutines of one process,
which also covers backends without row locks.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from weakref import WeakValueDictionary


class KeyedLock:
    """One ``asyncio.Lock`` per key, created on demand and dropped when unused."""

    def __init__(self) -> None:
        self._locks: WeakValueDictionary[str, asyncio.Lock] = WeakValueDictionary()

    def _get(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Wait for and hold the lock for ``key``."""
        lock = self._get(key)
        async with lock:
            yield

    @asynccontextmanager
    async def try_hold(self, key: str) -> AsyncIterator[bool]:
        """Hold the lock for ``key`` only if it is free; yields whether it was acquired."""
        lock = self._get(key)
        if lock.locked():
            yield False
            return
        async with lock:
            yield True
