from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from agency_core.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class AgencyTenant(Base):
    __tablename__ = "agency_tenant"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    subscription_tier: Mapped[str | None] = mapped_column(String(32), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class AgencyMembership(Base):
    __tablename__ = "agency_membership"
    __table_args__ = (UniqueConstraint("user_id", "tenant_id", name="uq_agency_membership_user_tenant"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    tenant_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("agency_tenant.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="member")
    invitation_status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class AgencyRoleTemplate(Base):
    __tablename__ = "agency_role_template"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    color: Mapped[str | None] = mapped_column(String(16), nullable=True)
    permissions: Mapped[dict[str, bool]] = mapped_column(JSON, nullable=False, default=dict)
    section_access: Mapped[dict[str, bool]] = mapped_column(JSON, nullable=False, default=dict)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class AgencyCustomRole(Base):
    __tablename__ = "agency_custom_role"
    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_agency_custom_role_tenant_name"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("agency_tenant.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    color: Mapped[str | None] = mapped_column(String(16), nullable=True)
    template_id: Mapped[str | None] = mapped_column(
        String(64),
        ForeignKey("agency_role_template.id", ondelete="SET NULL"),
        nullable=True,
    )
    permissions: Mapped[dict[str, bool]] = mapped_column(JSON, nullable=False, default=dict)
    section_access: Mapped[dict[str, bool]] = mapped_column(JSON, nullable=False, default=dict)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class AgencyRoleAssignment(Base):
    __tablename__ = "agency_role_assignment"
    __table_args__ = (
        UniqueConstraint("user_id", "tenant_id", "role_id", name="uq_agency_role_assignment_user_tenant_role"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    tenant_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("agency_tenant.id", ondelete="CASCADE"),
        nullable=False,
    )
    role_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("agency_custom_role.id", ondelete="CASCADE"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class AgencyPermissionOverride(Base):
    __tablename__ = "agency_permission_override"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "tenant_id",
            "permission_key",
            "scope",
            name="uq_agency_permission_override_member_key",
        ),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    tenant_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("agency_tenant.id", ondelete="CASCADE"),
        nullable=False,
    )
    permission_key: Mapped[str] = mapped_column(String(128), nullable=False)
    value: Mapped[bool] = mapped_column(Boolean, nullable=False)
    scope: Mapped[str] = mapped_column(String(16), nullable=False, default="permission")
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class AgencySubscription(Base):
    __tablename__ = "agency_subscription"

    tenant_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("agency_tenant.id", ondelete="CASCADE"),
        primary_key=True,
    )
    tier: Mapped[str | None] = mapped_column(String(32), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")
    trial_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class AgencyTenantPreference(Base):
    __tablename__ = "agency_tenant_preference"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    tenant_id: Mapped[str | None] = mapped_column(
        String(64),
        ForeignKey("agency_tenant.id", ondelete="SET NULL"),
        nullable=True,
    )
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
