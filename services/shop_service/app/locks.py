"""Per-key mutual exclusion for ledger, order and balance writers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol

from redis.asyncio import Redis
from redis.exceptions import LockError

logger = logging.getLogger(__name__)


class KeyedLock(Protocol):
    def hold(self, key: str) -> AbstractAsyncContextManager[None]: ...


class LocalKeyedLock:
    """One ``asyncio.Lock`` per key, dropped once nobody holds or awaits it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class RedisKeyedLock:
    """Redis-backed lock so several workers sharing one database serialize too."""

    def __init__(
        self,
        redis_client: Redis,
        *,
        key_prefix: str = "shop:lock",
        timeout: float = 10.0,
    ) -> None:
        self._redis = redis_client
        self._key_prefix = key_prefix
        self._timeout = timeout

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        name = f"{self._key_prefix}:{key}"
        lock = self._redis.lock(name, timeout=self._timeout, blocking_timeout=self._timeout)
        if not await lock.acquire():
            raise LockError(f"Unable to acquire {name} within {self._timeout}s")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as exc:
                # The body has already committed by now.
                logger.warning("Lease on %s expired before release: %s", name, exc)
