"""Process-wide keyed asyncio locks for ledger serialization."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable


class KeyedLockRegistry:
    """Hands out one ``asyncio.Lock`` per key and forgets it once unused.

    ``hold`` acquires several keys in sorted order so that two holders of
    overlapping key sets cannot deadlock each other.
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, *keys: Hashable) -> AsyncIterator[None]:
        ordered = sorted(set(keys), key=repr)
        acquired: list[Hashable] = []
        try:
            for key in ordered:
                await self._acquire(key)
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._release(key)

    async def _acquire(self, key: Hashable) -> None:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            await lock.acquire()
        except BaseException:
            self._forget(key)
            raise

    def _release(self, key: Hashable) -> None:
        self._locks[key].release()
        self._forget(key)

    def _forget(self, key: Hashable) -> None:
        remaining = self._users[key] - 1
        if remaining:
            self._users[key] = remaining
            return
        del self._users[key]
        del self._locks[key]


_REGISTRY = KeyedLockRegistry()


def get_lock_registry() -> KeyedLockRegistry:
    return _REGISTRY


def transaction_key(transaction_id: object) -> tuple[str, str]:
    return ("transaction", str(transaction_id))


def progress_key(customer_id: str, program_id: object) -> tuple[str, str, str]:
    return ("progress", customer_id, str(program_id))


__all__ = ["KeyedLockRegistry", "get_lock_registry", "progress_key", "transaction_key"]
