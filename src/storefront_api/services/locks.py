"""Process-local keyed locks used alongside database row locks.

Acquisition order is fixed across the code base: ``payment:`` keys first,
then the ``user:`` key, then any ``product:`` and ``voucher:`` keys together.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import UUID


class KeyedLockRegistry:
    """Hands out one ``asyncio.Lock`` per key and forgets it once idle.

    Keys passed to a single ``hold`` call are acquired in sorted order so two
    holders asking for overlapping sets cannot deadlock each other.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._refs: Counter[str] = Counter()

    @asynccontextmanager
    async def hold(self, *keys: str) -> AsyncIterator[None]:
        acquired: list[str] = []
        try:
            for key in sorted(set(keys)):
                lock = self._locks.setdefault(key, asyncio.Lock())
                self._refs[key] += 1
                try:
                    await lock.acquire()
                except BaseException:
                    self._release_ref(key)
                    raise
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
                self._release_ref(key)

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return bool(lock and lock.locked())

    def _release_ref(self, key: str) -> None:
        self._refs[key] -= 1
        if self._refs[key] <= 0:
            del self._refs[key]
            self._locks.pop(key, None)


def user_key(user_id: UUID) -> str:
    return f"user:{user_id}"


def product_key(product_id: UUID) -> str:
    return f"product:{product_id}"


def voucher_key(voucher_id: UUID) -> str:
    return f"voucher:{voucher_id}"


def payment_key(provider: str, reference: str) -> str:
    return f"payment:{provider}:{reference}"


_REGISTRY = KeyedLockRegistry()


def get_lock_registry() -> KeyedLockRegistry:
    return _REGISTRY


__all__ = [
    "KeyedLockRegistry",
    "get_lock_registry",
    "payment_key",
    "product_key",
    "user_key",
    "voucher_key",
]
