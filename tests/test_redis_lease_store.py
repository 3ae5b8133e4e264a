from __future__ import annotations

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from agency_core.coordination import build_lease_store
from agency_core.coordination.channel import CoordinationChannel, InMemoryLeaseStore, LeaseStoreError
from agency_core.coordination.mutex import CrossTabMutex
from agency_core.coordination.redis_store import RedisLeaseStore
from agency_core.core.config import Settings
from agency_core.core.events import InProcessEventBus


class FakeRedis:
    """Just enough of ``redis.asyncio.Redis`` for lease handling, with a manual clock."""

    def __init__(self) -> None:
        self.now_ms = 0
        self.values: dict[str, tuple[str, int]] = {}
        self.down = False
        self.closed = False

    def _check(self) -> None:
        if self.down:
            raise RedisConnectionError("redis unavailable")

    def _live(self, key: str) -> tuple[str, int] | None:
        entry = self.values.get(key)
        if entry is not None and entry[1] <= self.now_ms:
            del self.values[key]
            return None
        return entry

    async def set(self, key: str, value: str, *, nx: bool = False, px: int | None = None) -> bool | None:
        self._check()
        if nx and self._live(key) is not None:
            return None
        self.values[key] = (value, self.now_ms + (px or 0))
        return True

    async def get(self, key: str) -> str | None:
        self._check()
        entry = self._live(key)
        return entry[0] if entry is not None else None

    async def eval(self, script: str, numkeys: int, key: str, owner: str) -> int:
        self._check()
        entry = self._live(key)
        if entry is not None and entry[0] == owner:
            del self.values[key]
            return 1
        return 0

    async def pttl(self, key: str) -> int:
        self._check()
        entry = self._live(key)
        return -2 if entry is None else entry[1] - self.now_ms

    async def aclose(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_claim_is_exclusive_until_released() -> None:
    redis = FakeRedis()
    store = RedisLeaseStore(redis)

    assert await store.try_claim("lock", "tab-a", 10_000) is True
    assert await store.try_claim("lock", "tab-b", 10_000) is False
    assert await store.try_claim("lock", "tab-a", 10_000) is True

    assert await store.release("lock", "tab-b") is False
    assert await store.release("lock", "tab-a") is True
    assert await store.try_claim("lock", "tab-b", 10_000) is True


@pytest.mark.asyncio
async def test_expired_lease_can_be_claimed_by_peer() -> None:
    redis = FakeRedis()
    store = RedisLeaseStore(redis)
    await store.try_claim("lock", "tab-a", 10_000)

    lease = await store.peek("lock")
    assert lease is not None
    assert lease.owner == "tab-a"

    redis.now_ms = 10_000
    assert await store.peek("lock") is None
    assert await store.try_claim("lock", "tab-b", 10_000) is True


@pytest.mark.asyncio
async def test_redis_errors_become_lease_store_errors() -> None:
    redis = FakeRedis()
    redis.down = True
    store = RedisLeaseStore(redis)

    with pytest.raises(LeaseStoreError):
        await store.try_claim("lock", "tab-a", 1_000)
    with pytest.raises(LeaseStoreError):
        await store.release("lock", "tab-a")


@pytest.mark.asyncio
async def test_mutex_over_redis_store() -> None:
    redis = FakeRedis()
    store, bus = RedisLeaseStore(redis), InProcessEventBus()
    first = CrossTabMutex(CoordinationChannel(store, bus, "tab-a"), retry_interval_ms=5)
    second = CrossTabMutex(CoordinationChannel(store, bus, "tab-b"), retry_interval_ms=5)

    assert await first.acquire("tenant_selection", 0)
    assert not await second.acquire("tenant_selection", 20)
    await first.release("tenant_selection")
    assert await second.acquire("tenant_selection", 0)

    await store.close()
    assert redis.closed


def test_backend_selection() -> None:
    assert isinstance(build_lease_store(Settings(coordination_backend="memory")), InMemoryLeaseStore)
    assert isinstance(
        build_lease_store(Settings(coordination_backend="redis", redis_url="redis://localhost:6379/0")),
        RedisLeaseStore,
    )
    with pytest.raises(ValueError):
        build_lease_store(Settings(coordination_backend="carrier-pigeon"))
