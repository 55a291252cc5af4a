import asyncio
import logging

import pytest
from redis.exceptions import LockError, LockNotOwnedError

from services.shop_service.app.locks import LocalKeyedLock, RedisKeyedLock


class _StubRedisLock:
    def __init__(self, owner: "_StubRedis", name: str) -> None:
        self.owner = owner
        self.name = name

    async def acquire(self) -> bool:
        if not self.owner.available:
            return False
        self.owner.acquired.append(self.name)
        return True

    async def release(self) -> None:
        if self.owner.lease_expired:
            raise LockNotOwnedError("Cannot release a lock that's no longer owned")
        self.owner.released.append(self.name)


class _StubRedis:
    def __init__(self, *, available: bool = True, lease_expired: bool = False) -> None:
        self.available = available
        self.lease_expired = lease_expired
        self.lock_calls: list[dict[str, object]] = []
        self.acquired: list[str] = []
        self.released: list[str] = []

    def lock(self, name: str, **kwargs: object) -> _StubRedisLock:
        self.lock_calls.append({"name": name, **kwargs})
        return _StubRedisLock(self, name)


@pytest.mark.asyncio
async def test_local_lock_serializes_same_key() -> None:
    locks = LocalKeyedLock()
    trace: list[str] = []

    async def worker(name: str) -> None:
        async with locks.hold("product:1"):
            trace.append(f"{name}-in")
            await asyncio.sleep(0.01)
            trace.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert trace in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_local_lock_does_not_block_other_keys() -> None:
    locks = LocalKeyedLock()
    entered = asyncio.Event()

    async def holder() -> None:
        async with locks.hold("product:1"):
            await asyncio.wait_for(entered.wait(), timeout=1)

    async def other() -> None:
        async with locks.hold("product:2"):
            entered.set()

    await asyncio.gather(holder(), other())
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_local_lock_is_released_when_body_raises() -> None:
    locks = LocalKeyedLock()

    with pytest.raises(RuntimeError):
        async with locks.hold("product:1"):
            raise RuntimeError("boom")

    assert len(locks) == 0
    async with locks.hold("product:1"):
        assert len(locks) == 1


@pytest.mark.asyncio
async def test_redis_lock_uses_prefixed_key_and_timeout() -> None:
    redis = _StubRedis()
    locks = RedisKeyedLock(redis, key_prefix="test-lock", timeout=2.5)

    async with locks.hold("product:7"):
        assert redis.acquired == ["test-lock:product:7"]
        assert redis.released == []

    assert redis.released == ["test-lock:product:7"]
    assert redis.lock_calls == [{"name": "test-lock:product:7", "timeout": 2.5, "blocking_timeout": 2.5}]


@pytest.mark.asyncio
async def test_redis_lock_raises_when_not_acquired() -> None:
    redis = _StubRedis(available=False)
    locks = RedisKeyedLock(redis, timeout=0.1)
    entered = False

    with pytest.raises(LockError):
        async with locks.hold("product:7"):
            entered = True

    assert entered is False
    assert redis.released == []


@pytest.mark.asyncio
async def test_redis_lock_expired_lease_does_not_fail_committed_work(caplog: pytest.LogCaptureFixture) -> None:
    redis = _StubRedis(lease_expired=True)
    locks = RedisKeyedLock(redis, key_prefix="test-lock")
    committed: list[str] = []

    with caplog.at_level(logging.WARNING, logger="services.shop_service.app.locks"):
        async with locks.hold("product:7"):
            committed.append("reservation")

    assert committed == ["reservation"]
    assert any("test-lock:product:7" in record.getMessage() for record in caplog.records)
