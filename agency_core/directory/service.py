from __future__ import annotations

import logging

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from agency_core.authz.catalog import ALL_PERMISSIONS, ALL_SECTIONS
from agency_core.authz.permissions import compute_effective_permissions
from agency_core.directory.models import (
    AgencyCustomRole,
    AgencyMembership,
    AgencyPermissionOverride,
    AgencyRoleAssignment,
    AgencyRoleTemplate,
    AgencySubscription,
    AgencyTenant,
    AgencyTenantPreference,
)
from agency_core.directory.schemas import CopyTemplateRequest, OverrideWrite, TenantPreferenceRead
from agency_core.tenancy.schemas import (
    ACTIVE_INVITATION_STATUS,
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


logger = logging.getLogger("agency_core.directory")


def _available_tenants():
    return select(AgencyTenant).where(AgencyTenant.is_active.is_(True), AgencyTenant.deleted_at.is_(None))


class DirectoryService:
    """Tenants, memberships and role data backing the authorization endpoints."""

    def list_tenants_for_user(self, session: Session, user_id: str) -> list[Tenant]:
        rows = session.scalars(
            _available_tenants()
            .join(AgencyMembership, AgencyMembership.tenant_id == AgencyTenant.id)
            .where(
                AgencyMembership.user_id == user_id,
                AgencyMembership.invitation_status == ACTIVE_INVITATION_STATUS,
            )
            .order_by(AgencyMembership.joined_at.asc(), AgencyTenant.name.asc())
        ).all()
        return [Tenant.model_validate(row) for row in rows]

    def list_memberships_for_user(self, session: Session, user_id: str) -> list[Membership]:
        rows = session.scalars(
            select(AgencyMembership)
            .where(AgencyMembership.user_id == user_id)
            .order_by(AgencyMembership.joined_at.asc())
        ).all()
        return [Membership.model_validate(row) for row in rows]

    def get_tenants_by_ids(self, session: Session, tenant_ids: list[str]) -> list[Tenant]:
        if not tenant_ids:
            return []
        rows = session.scalars(_available_tenants().where(AgencyTenant.id.in_(tenant_ids))).all()
        order = {tenant_id: index for index, tenant_id in enumerate(tenant_ids)}
        return [Tenant.model_validate(row) for row in sorted(rows, key=lambda row: order.get(row.id, len(order)))]

    def get_tenant(self, session: Session, tenant_id: str) -> Tenant:
        row = session.scalar(_available_tenants().where(AgencyTenant.id == tenant_id))
        if row is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="tenant not found")
        return Tenant.model_validate(row)

    def validate_access(self, session: Session, user_id: str, tenant_id: str) -> AccessResult:
        tenant = session.scalar(_available_tenants().where(AgencyTenant.id == tenant_id))
        if tenant is None:
            return AccessResult(granted=False, reason="tenant_inactive", tier="enhanced")
        membership = self._membership_row(session, user_id, tenant_id)
        if membership is None:
            return AccessResult(granted=False, reason="not_a_member", tier="enhanced")
        if membership.invitation_status != ACTIVE_INVITATION_STATUS:
            return AccessResult(granted=False, reason="invitation_not_active", tier="enhanced")
        return AccessResult(granted=True, role=membership.role, tier="enhanced")

    def get_membership(
        self,
        session: Session,
        user_id: str,
        tenant_id: str,
        *,
        invitation_status: str | None = None,
    ) -> Membership:
        row = self._membership_row(session, user_id, tenant_id)
        if row is None or (invitation_status is not None and row.invitation_status != invitation_status):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="membership not found")
        return Membership.model_validate(row)

    def get_current_tenant_preference(self, session: Session, user_id: str) -> TenantPreferenceRead:
        row = session.get(AgencyTenantPreference, user_id)
        return TenantPreferenceRead(user_id=user_id, tenant_id=row.tenant_id if row is not None else None)

    def set_current_tenant_preference(
        self,
        session: Session,
        user_id: str,
        tenant_id: str | None,
    ) -> TenantPreferenceRead:
        if tenant_id is not None:
            self.get_tenant(session, tenant_id)
            membership = self._membership_row(session, user_id, tenant_id)
            if membership is None or membership.invitation_status != ACTIVE_INVITATION_STATUS:
                raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="not a member of tenant")

        row = session.get(AgencyTenantPreference, user_id)
        if row is None:
            row = AgencyTenantPreference(user_id=user_id, tenant_id=tenant_id)
            session.add(row)
        else:
            row.tenant_id = tenant_id
        session.commit()
        logger.info("directory.preference.updated", extra={"user_id": user_id, "tenant_id": tenant_id})
        return TenantPreferenceRead(user_id=user_id, tenant_id=tenant_id)

    def list_role_templates(self, session: Session) -> list[RoleTemplate]:
        rows = session.scalars(
            select(AgencyRoleTemplate).order_by(AgencyRoleTemplate.position.asc(), AgencyRoleTemplate.name.asc())
        ).all()
        return [RoleTemplate.model_validate(row) for row in rows]

    def get_custom_roles_for_tenant(self, session: Session, tenant_id: str) -> list[CustomRole]:
        rows = session.scalars(
            select(AgencyCustomRole)
            .where(AgencyCustomRole.tenant_id == tenant_id)
            .order_by(AgencyCustomRole.position.asc(), AgencyCustomRole.name.asc())
        ).all()
        return [CustomRole.model_validate(row) for row in rows]

    def get_role_assignments(self, session: Session, user_id: str, tenant_id: str) -> list[RoleAssignment]:
        rows = session.scalars(
            select(AgencyRoleAssignment)
            .where(AgencyRoleAssignment.user_id == user_id, AgencyRoleAssignment.tenant_id == tenant_id)
            .order_by(AgencyRoleAssignment.created_at.asc())
        ).all()
        return [RoleAssignment.model_validate(row) for row in rows]

    def get_permission_overrides(self, session: Session, user_id: str, tenant_id: str) -> list[PermissionOverride]:
        rows = session.scalars(
            select(AgencyPermissionOverride)
            .where(AgencyPermissionOverride.user_id == user_id, AgencyPermissionOverride.tenant_id == tenant_id)
            .order_by(AgencyPermissionOverride.permission_key.asc())
        ).all()
        return [PermissionOverride.model_validate(row) for row in rows]

    def get_effective_permissions(self, session: Session, user_id: str, tenant_id: str) -> EffectivePermissionSet:
        membership = self.get_membership(session, user_id, tenant_id, invitation_status=ACTIVE_INVITATION_STATUS)
        assigned = session.scalars(
            select(AgencyCustomRole)
            .join(AgencyRoleAssignment, AgencyRoleAssignment.role_id == AgencyCustomRole.id)
            .where(AgencyRoleAssignment.user_id == user_id, AgencyRoleAssignment.tenant_id == tenant_id)
        ).all()
        overrides = self.get_permission_overrides(session, user_id, tenant_id)
        return compute_effective_permissions(membership.role, assigned, overrides, source="server")

    def get_subscription(self, session: Session, tenant_id: str) -> Subscription:
        row = session.get(AgencySubscription, tenant_id)
        if row is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="subscription not found")
        return Subscription.model_validate(row)

    def copy_template_to_tenant(self, session: Session, tenant_id: str, dto: CopyTemplateRequest) -> CustomRole:
        self.get_tenant(session, tenant_id)
        template = session.get(AgencyRoleTemplate, dto.template_id)
        if template is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="role template not found")

        role = AgencyCustomRole(
            tenant_id=tenant_id,
            name=(dto.name or template.name).strip(),
            display_name=dto.display_name or template.display_name,
            color=dto.color or template.color,
            template_id=template.id,
            permissions=dict(template.permissions),
            section_access=dict(template.section_access),
            position=template.position,
        )
        session.add(role)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="role already exists")
        session.refresh(role)
        logger.info("directory.role.copied", extra={"tenant_id": tenant_id, "role": role.name})
        return CustomRole.model_validate(role)

    def assign_role(self, session: Session, tenant_id: str, user_id: str, role_id: str) -> RoleAssignment:
        self.get_membership(session, user_id, tenant_id)
        role = session.get(AgencyCustomRole, role_id)
        if role is None or role.tenant_id != tenant_id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="role not found")

        assignment = AgencyRoleAssignment(user_id=user_id, tenant_id=tenant_id, role_id=role_id)
        session.add(assignment)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="role already assigned")
        session.refresh(assignment)
        return RoleAssignment.model_validate(assignment)

    def unassign_role(self, session: Session, tenant_id: str, user_id: str, role_id: str) -> None:
        assignment = session.scalar(
            select(AgencyRoleAssignment).where(
                AgencyRoleAssignment.user_id == user_id,
                AgencyRoleAssignment.tenant_id == tenant_id,
                AgencyRoleAssignment.role_id == role_id,
            )
        )
        if assignment is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="role assignment not found")
        session.delete(assignment)
        session.commit()

    def set_override(
        self,
        session: Session,
        tenant_id: str,
        user_id: str,
        permission_key: str,
        dto: OverrideWrite,
    ) -> PermissionOverride:
        known = ALL_SECTIONS if dto.scope == "section" else ALL_PERMISSIONS
        if permission_key not in known:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"unknown {dto.scope} key: {permission_key}",
            )
        self.get_membership(session, user_id, tenant_id)

        row = self._override_row(session, tenant_id, user_id, permission_key, dto.scope)
        if row is None:
            row = AgencyPermissionOverride(
                user_id=user_id,
                tenant_id=tenant_id,
                permission_key=permission_key,
                scope=dto.scope,
                value=dto.value,
                reason=dto.reason,
            )
            session.add(row)
        else:
            row.value = dto.value
            row.reason = dto.reason
        session.commit()
        session.refresh(row)
        logger.info(
            "directory.override.set",
            extra={"tenant_id": tenant_id, "user_id": user_id, "outcome": str(dto.value).lower()},
        )
        return PermissionOverride.model_validate(row)

    def remove_override(
        self,
        session: Session,
        tenant_id: str,
        user_id: str,
        permission_key: str,
        scope: str,
    ) -> None:
        row = self._override_row(session, tenant_id, user_id, permission_key, scope)
        if row is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="override not found")
        session.delete(row)
        session.commit()

    def membership_role(self, session: Session, user_id: str, tenant_id: str) -> str | None:
        row = self._membership_row(session, user_id, tenant_id)
        if row is None or row.invitation_status != ACTIVE_INVITATION_STATUS:
            return None
        return row.role

    def _membership_row(self, session: Session, user_id: str, tenant_id: str) -> AgencyMembership | None:
        return session.scalar(
            select(AgencyMembership).where(
                AgencyMembership.user_id == user_id,
                AgencyMembership.tenant_id == tenant_id,
            )
        )

    def _override_row(
        self,
        session: Session,
        tenant_id: str,
        user_id: str,
        permission_key: str,
        scope: str,
    ) -> AgencyPermissionOverride | None:
        return session.scalar(
            select(AgencyPermissionOverride).where(
                AgencyPermissionOverride.user_id == user_id,
                AgencyPermissionOverride.tenant_id == tenant_id,
                AgencyPermissionOverride.permission_key == permission_key,
                AgencyPermissionOverride.scope == scope,
            )
        )


directory_service = DirectoryService()
