from __future__ import annotations

from redis.asyncio import Redis
from redis.exceptions import RedisError

from agency_core.coordination.channel import Lease, LeaseStoreError, monotonic_ms


_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class RedisLeaseStore:
    """Lease store for contexts spread across processes. Expiry is enforced by Redis itself."""

    def __init__(self, client: Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisLeaseStore:
        return cls(Redis.from_url(url, decode_responses=True))

    async def try_claim(self, key: str, owner: str, ttl_ms: int) -> bool:
        try:
            claimed = await self._client.set(key, owner, nx=True, px=ttl_ms)
            if claimed:
                return True
            current = await self._client.get(key)
        except RedisError as exc:
            raise LeaseStoreError(str(exc)) from exc
        return current == owner

    async def release(self, key: str, owner: str) -> bool:
        try:
            deleted = await self._client.eval(_RELEASE_SCRIPT, 1, key, owner)
        except RedisError as exc:
            raise LeaseStoreError(str(exc)) from exc
        return bool(deleted)

    async def peek(self, key: str) -> Lease | None:
        try:
            owner = await self._client.get(key)
            if owner is None:
                return None
            remaining_ms = await self._client.pttl(key)
        except RedisError as exc:
            raise LeaseStoreError(str(exc)) from exc
        if remaining_ms is None or remaining_ms < 0:
            return Lease(key=key, owner=owner, expires_at_ms=float("inf"))
        return Lease(key=key, owner=owner, expires_at_ms=monotonic_ms() + remaining_ms)

    async def close(self) -> None:
        await self._client.aclose()
