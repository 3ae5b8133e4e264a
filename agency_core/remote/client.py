from __future__ import annotations

from typing import Protocol

from agency_core.tenancy.schemas import (
    AccessResult,
    CustomRole,
    EffectivePermissionSet,
    Membership,
    PermissionOverride,
    RoleAssignment,
    RoleTemplate,
    Subscription,
    Tenant,
)


class AuthorizationClient(Protocol):
    """Operations the session core needs from the remote authorization service.

    Every method raises ``RemoteServiceError`` when the call cannot be completed.
    Single-record reads return ``None`` when the record does not exist.
    """

    async def list_tenants_for_user(self, user_id: str) -> list[Tenant]: ...

    async def list_memberships_for_user(self, user_id: str) -> list[Membership]: ...

    async def get_tenants_by_ids(self, tenant_ids: list[str]) -> list[Tenant]: ...

    async def get_tenant(self, tenant_id: str) -> Tenant | None: ...

    async def validate_access(self, user_id: str, tenant_id: str) -> AccessResult | None: ...

    async def get_membership(self, user_id: str, tenant_id: str, *, status: str | None = None) -> Membership | None: ...

    async def get_current_tenant_preference(self, user_id: str) -> str | None: ...

    async def set_current_tenant_preference(self, user_id: str, tenant_id: str | None) -> None: ...

    async def list_role_templates(self) -> list[RoleTemplate]: ...

    async def get_custom_roles_for_tenant(self, tenant_id: str) -> list[CustomRole]: ...

    async def get_role_assignments(self, user_id: str, tenant_id: str) -> list[RoleAssignment]: ...

    async def get_permission_overrides(self, user_id: str, tenant_id: str) -> list[PermissionOverride]: ...

    async def get_effective_permissions(self, user_id: str, tenant_id: str) -> EffectivePermissionSet | None: ...

    async def get_subscription(self, tenant_id: str) -> Subscription | None: ...
