from agency_core.coordination.backends import build_lease_store
from agency_core.coordination.channel import (
    CoordinationChannel,
    InMemoryLeaseStore,
    Lease,
    LeaseStore,
    LeaseStoreError,
    PeerEvent,
    PeerEventKind,
)
from agency_core.coordination.mutex import CrossTabMutex

__all__ = [
    "CoordinationChannel",
    "CrossTabMutex",
    "InMemoryLeaseStore",
    "Lease",
    "LeaseStore",
    "LeaseStoreError",
    "PeerEvent",
    "PeerEventKind",
    "build_lease_store",
]
