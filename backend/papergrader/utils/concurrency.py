"""
Concurrency utilities - per-key locks and bounded fan-out.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Awaitable, Dict, Iterable, List, TypeVar

T = TypeVar("T")


class KeyedLock:
    """One asyncio.Lock per key: single writer per submission id, no coordination across ids."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                # Nobody else waiting on this key
                del self._users[key]
                del self._locks[key]

    def __len__(self):
        return len(self._locks)


async def gather_bounded(coros: Iterable[Awaitable[T]], limit: int) -> List[T]:
    """Run coroutines concurrently with at most `limit` in flight, results in input order."""
    semaphore = asyncio.Semaphore(max(1, limit))

    async def _run(coro):
        async with semaphore:
            return await coro

    return await asyncio.gather(*(_run(c) for c in coros))
