from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol

from agency_core.core.events import InProcessEventBus, InternalEvent


logger = logging.getLogger("agency_core.coordination")

LOCK_KEY_PREFIX = "agency_core:mutex:"
PEER_EVENT_NAME = "coordination.peer"

Clock = Callable[[], float]


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class LeaseStoreError(Exception):
    """The shared lease transport could not be reached."""


@dataclass(slots=True)
class Lease:
    key: str
    owner: str
    expires_at_ms: float


class LeaseStore(Protocol):
    """Pluggable key-value transport that holds TTL-bounded leases shared by every execution context."""

    async def try_claim(self, key: str, owner: str, ttl_ms: int) -> bool:
        ...

    async def release(self, key: str, owner: str) -> bool:
        ...

    async def peek(self, key: str) -> Lease | None:
        ...


class InMemoryLeaseStore:
    """Lease store shared by contexts living in one process."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or monotonic_ms
        self._leases: dict[str, Lease] = {}

    async def try_claim(self, key: str, owner: str, ttl_ms: int) -> bool:
        now = self._clock()
        current = self._live(key, now)
        if current is not None and current.owner != owner:
            return False
        self._leases[key] = Lease(key=key, owner=owner, expires_at_ms=now + ttl_ms)
        return True

    async def release(self, key: str, owner: str) -> bool:
        current = self._live(key, self._clock())
        if current is None or current.owner != owner:
            return False
        del self._leases[key]
        return True

    async def peek(self, key: str) -> Lease | None:
        return self._live(key, self._clock())

    def _live(self, key: str, now: float) -> Lease | None:
        lease = self._leases.get(key)
        if lease is None:
            return None
        if lease.expires_at_ms <= now:
            del self._leases[key]
            return None
        return lease


class PeerEventKind(StrEnum):
    LOCK_ACQUIRED = "lock_acquired"
    LOCK_RELEASED = "lock_released"
    TENANT_SELECTED = "tenant_selected"


@dataclass(slots=True)
class PeerEvent:
    kind: PeerEventKind
    context_id: str
    payload: dict[str, Any] = field(default_factory=dict)


PeerEventHandler = Callable[[PeerEvent], None]


class CoordinationChannel:
    """Typed pub/sub surface one execution context uses to talk to its peers.

    Lease operations go through the pluggable ``LeaseStore``; peer notifications go
    through an event bus shared by the contexts. A context never receives its own events.
    """

    def __init__(self, store: LeaseStore, bus: InProcessEventBus, context_id: str) -> None:
        self.store = store
        self.bus = bus
        self.context_id = context_id

    async def acquire_lock(self, lock_name: str, ttl_ms: int) -> bool:
        claimed = await self.store.try_claim(self._key(lock_name), self.context_id, ttl_ms)
        if claimed:
            self.publish(PeerEventKind.LOCK_ACQUIRED, {"lock_name": lock_name})
        return claimed

    async def release_lock(self, lock_name: str) -> bool:
        released = await self.store.release(self._key(lock_name), self.context_id)
        if released:
            self.publish(PeerEventKind.LOCK_RELEASED, {"lock_name": lock_name})
        return released

    async def lock_holder(self, lock_name: str) -> str | None:
        lease = await self.store.peek(self._key(lock_name))
        return lease.owner if lease is not None else None

    def publish(self, kind: PeerEventKind, payload: dict[str, Any] | None = None) -> None:
        self.bus.publish(
            PEER_EVENT_NAME,
            {"kind": kind.value, "context_id": self.context_id, "payload": payload or {}},
        )

    def on_peer_event(self, handler: PeerEventHandler) -> Callable[[], None]:
        def _dispatch(event: InternalEvent) -> None:
            sender = event.payload.get("context_id")
            if sender == self.context_id:
                return
            try:
                kind = PeerEventKind(event.payload.get("kind"))
            except ValueError:
                logger.warning("peer.event.unknown", extra={"reason": str(event.payload.get("kind"))})
                return
            handler(PeerEvent(kind=kind, context_id=str(sender), payload=dict(event.payload.get("payload") or {})))

        return self.bus.subscribe(PEER_EVENT_NAME, _dispatch)

    @staticmethod
    def _key(lock_name: str) -> str:
        return f"{LOCK_KEY_PREFIX}{lock_name}"
