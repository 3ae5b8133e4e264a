from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from agency_core.authz.catalog import BYPASS_ROLES, can_manage_member
from agency_core.core.auth import AuthUser, get_current_user
from agency_core.core.database import get_db
from agency_core.directory.schemas import (
    AccessCheckRequest,
    AssignRoleRequest,
    CopyTemplateRequest,
    OverrideWrite,
    TenantPreferenceRead,
    TenantPreferenceWrite,
)
from agency_core.directory.service import directory_service
from agency_core.tenancy.schemas import (
    AccessResult,
    CustomRole,
    EffectivePermissionSet,
    Membership,
    OverrideScope,
    PermissionOverride,
    RoleAssignment,
    RoleTemplate,
    Subscription,
    Tenant,
)


router = APIRouter(prefix="/api/authz", tags=["authz.directory"])


def _ensure_self_or_service(user_id: str, user: AuthUser) -> None:
    if user.is_service or user.sub == user_id:
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="cannot act on another user")


def _ensure_tenant_visible(db: Session, tenant_id: str, user: AuthUser) -> None:
    if user.is_service or directory_service.membership_role(db, user.sub, tenant_id) is not None:
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="not a member of tenant")


def _ensure_role_manager(db: Session, tenant_id: str, user: AuthUser, target_user_id: str | None = None) -> None:
    if user.is_service:
        return
    manager_role = directory_service.membership_role(db, user.sub, tenant_id)
    if manager_role not in BYPASS_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="role management requires owner or admin")
    if target_user_id is None:
        return
    target_role = directory_service.membership_role(db, target_user_id, tenant_id)
    if target_role is not None and not can_manage_member(manager_role, target_role):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"{manager_role} cannot manage {target_role}")


@router.get("/users/{user_id}/tenants", response_model=list[Tenant])
def list_tenants_for_user(
    user_id: str,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> list[Tenant]:
    _ensure_self_or_service(user_id, user)
    return directory_service.list_tenants_for_user(db, user_id)


@router.get("/users/{user_id}/memberships", response_model=list[Membership])
def list_memberships_for_user(
    user_id: str,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> list[Membership]:
    _ensure_self_or_service(user_id, user)
    return directory_service.list_memberships_for_user(db, user_id)


@router.get("/users/{user_id}/current-tenant", response_model=TenantPreferenceRead)
def get_current_tenant_preference(
    user_id: str,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> TenantPreferenceRead:
    _ensure_self_or_service(user_id, user)
    return directory_service.get_current_tenant_preference(db, user_id)


@router.put("/users/{user_id}/current-tenant", response_model=TenantPreferenceRead)
def set_current_tenant_preference(
    user_id: str,
    dto: TenantPreferenceWrite,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> TenantPreferenceRead:
    _ensure_self_or_service(user_id, user)
    return directory_service.set_current_tenant_preference(db, user_id, dto.tenant_id)


@router.get("/tenants", response_model=list[Tenant])
def get_tenants_by_ids(
    ids: list[str] = Query(default=[]),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> list[Tenant]:
    tenants = directory_service.get_tenants_by_ids(db, ids)
    if user.is_service:
        return tenants
    return [tenant for tenant in tenants if directory_service.membership_role(db, user.sub, tenant.id) is not None]


@router.get("/tenants/{tenant_id}", response_model=Tenant)
def get_tenant(
    tenant_id: str,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> Tenant:
    tenant = directory_service.get_tenant(db, tenant_id)
    _ensure_tenant_visible(db, tenant_id, user)
    return tenant


@router.post("/access/validate", response_model=AccessResult)
def validate_access(
    dto: AccessCheckRequest,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> AccessResult:
    _ensure_self_or_service(dto.user_id, user)
    return directory_service.validate_access(db, dto.user_id, dto.tenant_id)


@router.get("/tenants/{tenant_id}/members/{user_id}", response_model=Membership)
def get_membership(
    tenant_id: str,
    user_id: str,
    invitation_status: str | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> Membership:
    _ensure_self_or_service(user_id, user)
    return directory_service.get_membership(db, user_id, tenant_id, invitation_status=invitation_status)


@router.get("/role-templates", response_model=list[RoleTemplate])
def list_role_templates(
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(get_current_user),
) -> list[RoleTemplate]:
    return directory_service.list_role_templates(db)


@router.get("/tenants/{tenant_id}/roles", response_model=list[CustomRole])
def get_custom_roles_for_tenant(
    tenant_id: str,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> list[CustomRole]:
    _ensure_tenant_visible(db, tenant_id, user)
    return directory_service.get_custom_roles_for_tenant(db, tenant_id)


@router.post("/tenants/{tenant_id}/roles/from-template", response_model=CustomRole, status_code=status.HTTP_201_CREATED)
def copy_template_to_tenant(
    tenant_id: str,
    dto: CopyTemplateRequest,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> CustomRole:
    _ensure_role_manager(db, tenant_id, user)
    return directory_service.copy_template_to_tenant(db, tenant_id, dto)


@router.get("/tenants/{tenant_id}/members/{user_id}/roles", response_model=list[RoleAssignment])
def get_role_assignments(
    tenant_id: str,
    user_id: str,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> list[RoleAssignment]:
    _ensure_self_or_service(user_id, user)
    return directory_service.get_role_assignments(db, user_id, tenant_id)


@router.post(
    "/tenants/{tenant_id}/members/{user_id}/roles",
    response_model=RoleAssignment,
    status_code=status.HTTP_201_CREATED,
)
def assign_role(
    tenant_id: str,
    user_id: str,
    dto: AssignRoleRequest,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> RoleAssignment:
    _ensure_role_manager(db, tenant_id, user, user_id)
    return directory_service.assign_role(db, tenant_id, user_id, dto.role_id)


@router.delete("/tenants/{tenant_id}/members/{user_id}/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
def unassign_role(
    tenant_id: str,
    user_id: str,
    role_id: str,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> None:
    _ensure_role_manager(db, tenant_id, user, user_id)
    directory_service.unassign_role(db, tenant_id, user_id, role_id)


@router.get("/tenants/{tenant_id}/members/{user_id}/overrides", response_model=list[PermissionOverride])
def get_permission_overrides(
    tenant_id: str,
    user_id: str,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> list[PermissionOverride]:
    _ensure_self_or_service(user_id, user)
    return directory_service.get_permission_overrides(db, user_id, tenant_id)


@router.put("/tenants/{tenant_id}/members/{user_id}/overrides/{permission_key}", response_model=PermissionOverride)
def set_override(
    tenant_id: str,
    user_id: str,
    permission_key: str,
    dto: OverrideWrite,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> PermissionOverride:
    _ensure_role_manager(db, tenant_id, user, user_id)
    return directory_service.set_override(db, tenant_id, user_id, permission_key, dto)


@router.delete(
    "/tenants/{tenant_id}/members/{user_id}/overrides/{permission_key}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def remove_override(
    tenant_id: str,
    user_id: str,
    permission_key: str,
    scope: OverrideScope = Query(default="permission"),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> None:
    _ensure_role_manager(db, tenant_id, user, user_id)
    directory_service.remove_override(db, tenant_id, user_id, permission_key, scope)


@router.get(
    "/tenants/{tenant_id}/members/{user_id}/effective-permissions",
    response_model=EffectivePermissionSet,
)
def get_effective_permissions(
    tenant_id: str,
    user_id: str,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> EffectivePermissionSet:
    _ensure_self_or_service(user_id, user)
    return directory_service.get_effective_permissions(db, user_id, tenant_id)


@router.get("/tenants/{tenant_id}/subscription", response_model=Subscription)
def get_subscription(
    tenant_id: str,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> Subscription:
    _ensure_tenant_visible(db, tenant_id, user)
    return directory_service.get_subscription(db, tenant_id)
