"""Per-account mutual exclusion for in-process ledger operations."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class KeyedLock:
    """One ``asyncio.Lock`` per key, dropped once nobody holds or awaits it."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._holders[key] - 1
            if remaining:
                self._holders[key] = remaining
            else:
                del self._holders[key]
                del self._locks[key]

    def active_keys(self) -> int:
        return len(self._locks)


account_locks = KeyedLock()
