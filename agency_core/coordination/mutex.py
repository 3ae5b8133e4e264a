from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from agency_core.coordination.channel import CoordinationChannel, LeaseStoreError
from agency_core.errors import MutexTimeout
from agency_core.metrics import observe_mutex_acquisition


logger = logging.getLogger("agency_core.coordination.mutex")

DEFAULT_LEASE_TTL_MS = 10_000
DEFAULT_RETRY_INTERVAL_MS = 100
_MAX_BACKOFF_STEPS = 10

Sleep = Callable[[float], Awaitable[None]]


class CrossTabMutex:
    """Advisory, TTL-bounded mutual exclusion between execution contexts.

    A lease expires on its own after ``lease_ttl_ms`` so a context that dies inside a
    critical section cannot block its peers forever. Leases are not renewed.
    """

    def __init__(
        self,
        channel: CoordinationChannel,
        *,
        lease_ttl_ms: int = DEFAULT_LEASE_TTL_MS,
        retry_interval_ms: int = DEFAULT_RETRY_INTERVAL_MS,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if lease_ttl_ms <= 0:
            raise ValueError("lease_ttl_ms must be positive")
        self._channel = channel
        self._lease_ttl_ms = lease_ttl_ms
        self._retry_interval_ms = max(1, retry_interval_ms)
        self._sleep = sleep
        self._held: set[str] = set()

    @property
    def channel(self) -> CoordinationChannel:
        return self._channel

    @property
    def context_id(self) -> str:
        return self._channel.context_id

    def holds(self, lock_name: str) -> bool:
        return lock_name in self._held

    async def acquire(self, lock_name: str, timeout_ms: int) -> bool:
        if lock_name in self._held:
            logger.info("mutex.already_held", extra={"lock_name": lock_name})
            observe_mutex_acquisition(lock_name, "already_held")
            return False

        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(0, timeout_ms) / 1000.0
        attempt = 0
        while True:
            attempt += 1
            try:
                claimed = await self._channel.acquire_lock(lock_name, self._lease_ttl_ms)
            except LeaseStoreError as exc:
                logger.warning(
                    "mutex.claim.failed",
                    extra={"lock_name": lock_name, "attempt": attempt, "error": str(exc)},
                )
                claimed = False

            if claimed:
                self._held.add(lock_name)
                observe_mutex_acquisition(lock_name, "acquired")
                logger.debug("mutex.acquired", extra={"lock_name": lock_name, "attempt": attempt})
                return True

            remaining = deadline - loop.time()
            if remaining <= 0:
                observe_mutex_acquisition(lock_name, "timeout")
                logger.info("mutex.timeout", extra={"lock_name": lock_name, "attempt": attempt})
                return False

            backoff = self._retry_interval_ms * min(attempt, _MAX_BACKOFF_STEPS) / 1000.0
            await self._sleep(min(remaining, backoff))

    async def release(self, lock_name: str) -> None:
        if lock_name not in self._held:
            return
        self._held.discard(lock_name)
        try:
            released = await self._channel.release_lock(lock_name)
        except LeaseStoreError as exc:
            logger.warning("mutex.release.failed", extra={"lock_name": lock_name, "error": str(exc)})
            return
        if not released:
            logger.info("mutex.release.lease_expired", extra={"lock_name": lock_name})

    async def release_all(self) -> None:
        for lock_name in list(self._held):
            await self.release(lock_name)

    @asynccontextmanager
    async def lease(self, lock_name: str, timeout_ms: int) -> AsyncIterator[None]:
        if not await self.acquire(lock_name, timeout_ms):
            raise MutexTimeout(lock_name, timeout_ms)
        try:
            yield
        finally:
            await self.release(lock_name)
