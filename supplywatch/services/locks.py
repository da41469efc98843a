# supplywatch/services/locks.py

"""Process-wide registry of per-product asyncio locks."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

logger = logging.getLogger("supplywatch.locks")


class ProductLockRegistry:
    """Hands out one exclusive lock per product id.

    Locks are reference counted and dropped once no coroutine holds or
    waits on them, so the registry does not grow with the catalogue.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, product_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(product_id, asyncio.Lock())
        self._users[product_id] = self._users.get(product_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[product_id] -= 1
            if self._users[product_id] == 0:
                del self._users[product_id]
                del self._locks[product_id]

    def is_locked(self, product_id: str) -> bool:
        lock = self._locks.get(product_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
