from __future__ import annotations

from typing import Any, TypeVar

import httpx
from opentelemetry import trace
from pydantic import BaseModel, TypeAdapter, ValidationError

from agency_core.context import get_correlation_id
from agency_core.core.config import Settings
from agency_core.errors import RemoteServiceError
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


tracer = trace.get_tracer("agency_core.remote.http")

ModelT = TypeVar("ModelT", bound=BaseModel)

API_PREFIX = "/api/authz"


class HttpAuthorizationClient:
    """``AuthorizationClient`` over the reference service's HTTP API."""

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"accept": "application/json"}
        if token:
            headers["authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + API_PREFIX,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings, *, token: str | None = None) -> HttpAuthorizationClient:
        return cls(
            settings.authz_base_url,
            token=token or settings.authz_service_token,
            timeout=settings.authz_timeout_seconds,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> HttpAuthorizationClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def list_tenants_for_user(self, user_id: str) -> list[Tenant]:
        data = await self._request("list_tenants_for_user", "GET", f"/users/{user_id}/tenants", user_id=user_id)
        return self._parse_list("list_tenants_for_user", Tenant, data)

    async def list_memberships_for_user(self, user_id: str) -> list[Membership]:
        data = await self._request("list_memberships_for_user", "GET", f"/users/{user_id}/memberships", user_id=user_id)
        return self._parse_list("list_memberships_for_user", Membership, data)

    async def get_tenants_by_ids(self, tenant_ids: list[str]) -> list[Tenant]:
        if not tenant_ids:
            return []
        data = await self._request("get_tenants_by_ids", "GET", "/tenants", params={"ids": tenant_ids})
        return self._parse_list("get_tenants_by_ids", Tenant, data)

    async def get_tenant(self, tenant_id: str) -> Tenant | None:
        data = await self._request("get_tenant", "GET", f"/tenants/{tenant_id}", tenant_id=tenant_id, allow_missing=True)
        return self._parse_optional("get_tenant", Tenant, data)

    async def validate_access(self, user_id: str, tenant_id: str) -> AccessResult | None:
        data = await self._request(
            "validate_access",
            "POST",
            "/access/validate",
            json={"user_id": user_id, "tenant_id": tenant_id},
            user_id=user_id,
            tenant_id=tenant_id,
        )
        return self._parse_optional("validate_access", AccessResult, data)

    async def get_membership(self, user_id: str, tenant_id: str, *, status: str | None = None) -> Membership | None:
        params = {"status": status} if status is not None else None
        data = await self._request(
            "get_membership",
            "GET",
            f"/tenants/{tenant_id}/members/{user_id}",
            params=params,
            user_id=user_id,
            tenant_id=tenant_id,
            allow_missing=True,
        )
        return self._parse_optional("get_membership", Membership, data)

    async def get_current_tenant_preference(self, user_id: str) -> str | None:
        data = await self._request(
            "get_current_tenant_preference",
            "GET",
            f"/users/{user_id}/current-tenant",
            user_id=user_id,
            allow_missing=True,
        )
        if not isinstance(data, dict):
            return None
        tenant_id = data.get("tenant_id")
        return str(tenant_id) if tenant_id else None

    async def set_current_tenant_preference(self, user_id: str, tenant_id: str | None) -> None:
        await self._request(
            "set_current_tenant_preference",
            "PUT",
            f"/users/{user_id}/current-tenant",
            json={"tenant_id": tenant_id},
            user_id=user_id,
            tenant_id=tenant_id,
        )

    async def list_role_templates(self) -> list[RoleTemplate]:
        data = await self._request("list_role_templates", "GET", "/role-templates")
        return self._parse_list("list_role_templates", RoleTemplate, data)

    async def get_custom_roles_for_tenant(self, tenant_id: str) -> list[CustomRole]:
        data = await self._request("get_custom_roles_for_tenant", "GET", f"/tenants/{tenant_id}/roles", tenant_id=tenant_id)
        return self._parse_list("get_custom_roles_for_tenant", CustomRole, data)

    async def get_role_assignments(self, user_id: str, tenant_id: str) -> list[RoleAssignment]:
        data = await self._request(
            "get_role_assignments",
            "GET",
            f"/tenants/{tenant_id}/members/{user_id}/roles",
            user_id=user_id,
            tenant_id=tenant_id,
        )
        return self._parse_list("get_role_assignments", RoleAssignment, data)

    async def get_permission_overrides(self, user_id: str, tenant_id: str) -> list[PermissionOverride]:
        data = await self._request(
            "get_permission_overrides",
            "GET",
            f"/tenants/{tenant_id}/members/{user_id}/overrides",
            user_id=user_id,
            tenant_id=tenant_id,
        )
        return self._parse_list("get_permission_overrides", PermissionOverride, data)

    async def get_effective_permissions(self, user_id: str, tenant_id: str) -> EffectivePermissionSet | None:
        data = await self._request(
            "get_effective_permissions",
            "GET",
            f"/tenants/{tenant_id}/members/{user_id}/effective-permissions",
            user_id=user_id,
            tenant_id=tenant_id,
            allow_missing=True,
        )
        return self._parse_optional("get_effective_permissions", EffectivePermissionSet, data)

    async def get_subscription(self, tenant_id: str) -> Subscription | None:
        data = await self._request(
            "get_subscription",
            "GET",
            f"/tenants/{tenant_id}/subscription",
            tenant_id=tenant_id,
            allow_missing=True,
        )
        return self._parse_optional("get_subscription", Subscription, data)

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        user_id: str | None = None,
        tenant_id: str | None = None,
        allow_missing: bool = False,
    ) -> Any:
        with tracer.start_as_current_span(f"authz.{operation}") as span:
            if user_id is not None:
                span.set_attribute("user_id", user_id)
            if tenant_id is not None:
                span.set_attribute("tenant_id", tenant_id)
            correlation_id = get_correlation_id()
            headers: dict[str, str] = {}
            if correlation_id:
                span.set_attribute("correlation_id", correlation_id)
                headers["x-correlation-id"] = correlation_id

            try:
                response = await self._client.request(method, path, params=params, json=json, headers=headers)
            except httpx.HTTPError as exc:
                span.set_attribute("error", True)
                raise RemoteServiceError(operation, str(exc)) from exc

            span.set_attribute("status_code", response.status_code)
            if response.status_code == 404 and allow_missing:
                return None
            if response.status_code >= 400:
                raise RemoteServiceError(operation, _error_detail(response), status_code=response.status_code)
            if response.status_code == 204 or not response.content:
                return None
            try:
                return response.json()
            except ValueError as exc:
                raise RemoteServiceError(operation, "invalid JSON payload") from exc

    @staticmethod
    def _parse_list(operation: str, model: type[ModelT], data: Any) -> list[ModelT]:
        try:
            return TypeAdapter(list[model]).validate_python(data or [])  # type: ignore[valid-type]
        except ValidationError as exc:
            raise RemoteServiceError(operation, f"unexpected payload: {exc.error_count()} errors") from exc

    @staticmethod
    def _parse_optional(operation: str, model: type[ModelT], data: Any) -> ModelT | None:
        if data is None:
            return None
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise RemoteServiceError(operation, f"unexpected payload: {exc.error_count()} errors") from exc


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict) and "detail" in payload:
        return str(payload["detail"])
    return str(payload)[:200]
