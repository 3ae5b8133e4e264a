from __future__ import annotations

import logging

from agency_core.coordination.channel import InMemoryLeaseStore, LeaseStore
from agency_core.coordination.redis_store import RedisLeaseStore
from agency_core.core.config import Settings


logger = logging.getLogger("agency_core.coordination")

MEMORY_BACKEND = "memory"
REDIS_BACKEND = "redis"


def build_lease_store(settings: Settings) -> LeaseStore:
    """Lease transport selected by ``coordination_backend``.

    The in-memory store only coordinates contexts that share it, so build it once per
    process and hand the same instance to every session.
    """
    backend = settings.coordination_backend.strip().lower()
    if backend == REDIS_BACKEND:
        logger.info("coordination.backend", extra={"source": REDIS_BACKEND})
        return RedisLeaseStore.from_url(settings.redis_url)
    if backend != MEMORY_BACKEND:
        raise ValueError(f"Unknown coordination backend '{settings.coordination_backend}'")
    return InMemoryLeaseStore()
