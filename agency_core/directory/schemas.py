from __future__ import annotations

from pydantic import BaseModel, Field

from agency_core.tenancy.schemas import OverrideScope


class AccessCheckRequest(BaseModel):
    user_id: str = Field(min_length=1)
    tenant_id: str = Field(min_length=1)


class TenantPreferenceWrite(BaseModel):
    tenant_id: str | None = None


class TenantPreferenceRead(BaseModel):
    user_id: str
    tenant_id: str | None = None


class CopyTemplateRequest(BaseModel):
    template_id: str = Field(min_length=1)
    name: str | None = Field(default=None, max_length=128)
    display_name: str | None = Field(default=None, max_length=255)
    color: str | None = Field(default=None, max_length=16)


class AssignRoleRequest(BaseModel):
    role_id: str = Field(min_length=1)


class OverrideWrite(BaseModel):
    value: bool
    scope: OverrideScope = "permission"
    reason: str | None = None
