from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


MemberRole = Literal["owner", "admin", "member"]
DEFAULT_MEMBER_ROLE = "member"
OverrideScope = Literal["permission", "section"]
PermissionSource = Literal["demo", "bypass", "server", "local"]

ACTIVE_INVITATION_STATUS = "active"


class SubscriptionStatus(StrEnum):
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    UNPAID = "unpaid"


class Tenant(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    slug: str
    subscription_tier: str | None = None
    is_active: bool = True
    deleted_at: datetime | None = None
    is_demo: bool = False

    @property
    def is_available(self) -> bool:
        return self.is_active and self.deleted_at is None


class Membership(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    tenant_id: str
    role: MemberRole = "member"
    invitation_status: str = ACTIVE_INVITATION_STATUS
    joined_at: datetime | None = None

    @field_validator("role", mode="before")
    @classmethod
    def _default_missing_role(cls, value: object) -> object:
        return value or DEFAULT_MEMBER_ROLE

    @property
    def is_active(self) -> bool:
        return self.invitation_status == ACTIVE_INVITATION_STATUS


class RoleTemplate(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    name: str
    display_name: str | None = None
    description: str | None = None
    category: str | None = None
    color: str | None = None
    permissions: dict[str, bool] = Field(default_factory=dict)
    section_access: dict[str, bool] = Field(default_factory=dict)
    position: int = 0


class CustomRole(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    name: str
    display_name: str | None = None
    color: str | None = None
    template_id: str | None = None
    permissions: dict[str, bool] = Field(default_factory=dict)
    section_access: dict[str, bool] = Field(default_factory=dict)
    position: int = 0


class RoleAssignment(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    tenant_id: str
    role_id: str


class PermissionOverride(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    tenant_id: str
    permission_key: str
    value: bool
    scope: OverrideScope = "permission"
    reason: str | None = None


class EffectivePermissionSet(BaseModel):
    """Computed permission and section-access maps for one (user, tenant) pair. Never persisted."""

    role: str
    permissions: dict[str, bool] = Field(default_factory=dict)
    section_access: dict[str, bool] = Field(default_factory=dict)
    source: PermissionSource = "local"

    def allows(self, key: str) -> bool:
        return self.permissions.get(key) is True

    def allows_any(self, keys: list[str]) -> bool:
        return any(self.allows(key) for key in keys)

    def allows_all(self, keys: list[str]) -> bool:
        return all(self.allows(key) for key in keys)

    def can_access(self, section: str) -> bool:
        return self.section_access.get(section) is True

    @classmethod
    def empty(cls, role: str = "member") -> EffectivePermissionSet:
        return cls(role=role, permissions={}, section_access={}, source="local")


class Subscription(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tenant_id: str
    tier: str | None = None
    status: str = SubscriptionStatus.ACTIVE.value
    trial_end: datetime | None = None


class AccessResult(BaseModel):
    granted: bool
    role: MemberRole | None = None
    reason: str | None = None
    tier: str | None = None

    @field_validator("role", mode="before")
    @classmethod
    def _blank_role_is_missing(cls, value: object) -> object:
        return value or None


class CachedTenantSelection(BaseModel):
    """Non-authoritative record of the tenant most recently selected by any local context."""

    id: str
    name: str
    slug: str
    selecting_context_id: str
    timestamp: datetime


class Entitlements(BaseModel):
    tier: str
    display_name: str
    seat_limit: int | None
    features: list[str] = Field(default_factory=list)
    is_trialing: bool = False
    trial_days_left: int | None = None
    has_active_subscription: bool = False

    @property
    def unlimited_seats(self) -> bool:
        return self.seat_limit is None

    def has_feature(self, feature: str) -> bool:
        return feature in self.features

    def is_within_seat_limit(self, current_seats: int) -> bool:
        if self.seat_limit is None:
            return True
        return current_seats < self.seat_limit
