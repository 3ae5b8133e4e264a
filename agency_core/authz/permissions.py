from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Protocol

from agency_core.authz.catalog import (
    ALL_PERMISSIONS,
    ALL_SECTIONS,
    BILLING_PERMISSION,
    BYPASS_ROLES,
)
from agency_core.errors import PermissionFetchFailed, RemoteServiceError
from agency_core.metrics import observe_permission_resolution
from agency_core.remote.client import AuthorizationClient
from agency_core.tenancy.schemas import (
    CustomRole,
    EffectivePermissionSet,
    PermissionOverride,
    PermissionSource,
    RoleTemplate,
)


logger = logging.getLogger("agency_core.authz.permissions")


class GrantBundle(Protocol):
    @property
    def permissions(self) -> Mapping[str, bool]: ...

    @property
    def section_access(self) -> Mapping[str, bool]: ...


def _resolve_map(
    universe: Iterable[str],
    bundles: list[Mapping[str, bool]],
    overrides: Mapping[str, bool],
) -> dict[str, bool]:
    resolved: dict[str, bool] = {}
    for key in universe:
        if key in overrides:
            resolved[key] = overrides[key]
        else:
            resolved[key] = any(bundle.get(key) is True for bundle in bundles)
    return resolved


def _ordered_union(*groups: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for group in groups:
        for key in group:
            seen.setdefault(key, None)
    return list(seen)


def compute_effective_permissions(
    role: str | None,
    roles: Iterable[GrantBundle],
    overrides: Iterable[PermissionOverride],
    *,
    source: PermissionSource = "local",
) -> EffectivePermissionSet:
    """Resolve the permission and section maps for one member.

    Precedence from highest to lowest: owner/admin bypass, explicit override,
    any assigned role granting the key, default deny. Admins never receive the
    billing-management permission. Shared by the session core and the reference
    service so both sides resolve identically.
    """
    role = role or "member"
    role_list = list(roles)
    permission_overrides: dict[str, bool] = {}
    section_overrides: dict[str, bool] = {}
    for override in overrides:
        target = section_overrides if override.scope == "section" else permission_overrides
        target[override.permission_key] = override.value

    permission_keys = _ordered_union(
        ALL_PERMISSIONS,
        *(bundle.permissions for bundle in role_list),
        permission_overrides,
    )
    section_keys = _ordered_union(
        ALL_SECTIONS,
        *(bundle.section_access for bundle in role_list),
        section_overrides,
    )

    if role in BYPASS_ROLES:
        permissions = {key: True for key in permission_keys}
        if role == "admin":
            permissions[BILLING_PERMISSION] = False
        return EffectivePermissionSet(
            role=role,
            permissions=permissions,
            section_access={key: True for key in section_keys},
            source="demo" if source == "demo" else "bypass",
        )

    return EffectivePermissionSet(
        role=role,
        permissions=_resolve_map(
            permission_keys, [dict(bundle.permissions) for bundle in role_list], permission_overrides
        ),
        section_access=_resolve_map(
            section_keys, [dict(bundle.section_access) for bundle in role_list], section_overrides
        ),
        source=source,
    )


@dataclass(slots=True)
class RoleCatalog:
    templates: list[RoleTemplate] = field(default_factory=list)
    custom_roles: list[CustomRole] = field(default_factory=list)


class PermissionResolver:
    """Computes the effective permission set for the current (user, tenant) pair."""

    def __init__(self, client: AuthorizationClient) -> None:
        self._client = client

    async def resolve(
        self,
        user_id: str,
        tenant_id: str,
        *,
        role: str | None = None,
        is_demo: bool = False,
    ) -> EffectivePermissionSet:
        if is_demo:
            result = compute_effective_permissions("owner", [], [], source="demo")
            observe_permission_resolution(result.source)
            return result

        if role in BYPASS_ROLES:
            result = compute_effective_permissions(role, [], [])
            observe_permission_resolution(result.source)
            return result

        try:
            server_result = await self._client.get_effective_permissions(user_id, tenant_id)
        except RemoteServiceError as exc:
            logger.warning(
                "permissions.server.unavailable",
                extra={"user_id": user_id, "tenant_id": tenant_id, "error": str(exc)},
            )
            server_result = None

        if server_result is not None:
            result = server_result.model_copy(update={"source": "server"})
            observe_permission_resolution(result.source)
            return result

        result = await self._resolve_locally(user_id, tenant_id, role)
        observe_permission_resolution(result.source)
        return result

    async def load_role_catalog(self, tenant_id: str) -> RoleCatalog:
        try:
            templates = await self._client.list_role_templates()
            custom_roles = await self._client.get_custom_roles_for_tenant(tenant_id)
        except RemoteServiceError as exc:
            raise PermissionFetchFailed(tenant_id, str(exc)) from exc
        return RoleCatalog(
            templates=sorted(templates, key=lambda item: item.position),
            custom_roles=sorted(custom_roles, key=lambda item: item.position),
        )

    async def _resolve_locally(self, user_id: str, tenant_id: str, role: str | None) -> EffectivePermissionSet:
        try:
            if role is None:
                membership = await self._client.get_membership(user_id, tenant_id)
                role = membership.role if membership is not None else "member"
            if role in BYPASS_ROLES:
                return compute_effective_permissions(role, [], [])
            custom_roles = await self._client.get_custom_roles_for_tenant(tenant_id)
            assignments = await self._client.get_role_assignments(user_id, tenant_id)
            overrides = await self._client.get_permission_overrides(user_id, tenant_id)
        except RemoteServiceError as exc:
            logger.error(
                "permissions.fetch.failed",
                extra={"user_id": user_id, "tenant_id": tenant_id, "error": str(exc)},
            )
            raise PermissionFetchFailed(tenant_id, str(exc)) from exc

        assigned_ids = {assignment.role_id for assignment in assignments}
        assigned = [custom_role for custom_role in custom_roles if custom_role.id in assigned_ids]
        logger.debug(
            "permissions.resolved.locally",
            extra={"user_id": user_id, "tenant_id": tenant_id, "role": role},
        )
        return compute_effective_permissions(role, assigned, overrides, source="local")
