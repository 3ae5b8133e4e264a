from agency_core.tenancy.demo import DEMO_TENANT_ID, demo_membership, demo_tenant, is_demo_tenant_id
from agency_core.tenancy.local_state import (
    InMemoryLocalState,
    JsonFileLocalState,
    LocalStateStore,
    build_local_state,
)
from agency_core.tenancy.schemas import (
    AccessResult,
    CachedTenantSelection,
    CustomRole,
    EffectivePermissionSet,
    Entitlements,
    Membership,
    PermissionOverride,
    RoleAssignment,
    RoleTemplate,
    Subscription,
    Tenant,
)

__all__ = [
    "DEMO_TENANT_ID",
    "AccessResult",
    "CachedTenantSelection",
    "CustomRole",
    "EffectivePermissionSet",
    "Entitlements",
    "InMemoryLocalState",
    "JsonFileLocalState",
    "LocalStateStore",
    "Membership",
    "PermissionOverride",
    "RoleAssignment",
    "RoleTemplate",
    "Subscription",
    "Tenant",
    "build_local_state",
    "demo_membership",
    "demo_tenant",
    "is_demo_tenant_id",
]
