from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from agency_core.errors import RemoteServiceError
from agency_core.metrics import observe_preference_sync_failure
from agency_core.remote.client import AuthorizationClient


logger = logging.getLogger("agency_core.tenancy.sync")

Sleep = Callable[[float], Awaitable[None]]


class PreferenceSync:
    """Detached reconciliation of the upstream current-tenant preference.

    Local session state is committed before a sync is scheduled and is never rolled
    back by it. Only the most recent request matters: scheduling cancels a pending one.
    """

    def __init__(
        self,
        client: AuthorizationClient,
        *,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._client = client
        self._max_attempts = max(1, max_attempts)
        self._backoff_seconds = max(0.0, backoff_seconds)
        self._sleep = sleep
        self._pending: asyncio.Task[bool] | None = None

    @property
    def pending(self) -> asyncio.Task[bool] | None:
        if self._pending is not None and self._pending.done():
            return None
        return self._pending

    def schedule(self, user_id: str, tenant_id: str | None) -> asyncio.Task[bool]:
        previous = self.pending
        if previous is not None:
            previous.cancel()
            logger.debug("preference.sync.superseded", extra={"user_id": user_id, "tenant_id": tenant_id})
        task = asyncio.get_running_loop().create_task(
            self._run(user_id, tenant_id),
            name=f"preference-sync:{user_id}",
        )
        self._pending = task
        return task

    async def drain(self) -> None:
        task = self.pending
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    async def close(self) -> None:
        task = self.pending
        self._pending = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self, user_id: str, tenant_id: str | None) -> bool:
        for attempt in range(1, self._max_attempts + 1):
            try:
                await self._client.set_current_tenant_preference(user_id, tenant_id)
            except RemoteServiceError as exc:
                logger.warning(
                    "preference.sync.failed",
                    extra={"user_id": user_id, "tenant_id": tenant_id, "attempt": attempt, "error": str(exc)},
                )
                if attempt < self._max_attempts:
                    await self._sleep(self._backoff_seconds * (2 ** (attempt - 1)))
                continue
            logger.debug("preference.sync.done", extra={"user_id": user_id, "tenant_id": tenant_id, "attempt": attempt})
            return True

        observe_preference_sync_failure()
        logger.error(
            "preference.sync.abandoned",
            extra={"user_id": user_id, "tenant_id": tenant_id, "attempt": self._max_attempts},
        )
        return False
