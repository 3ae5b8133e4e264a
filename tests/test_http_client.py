from __future__ import annotations

import httpx
import pytest
from fastapi import FastAPI

from agency_core.context import reset_correlation_id, set_correlation_id
from agency_core.core.auth import Identity
from agency_core.errors import RemoteServiceError
from agency_core.otel import setup_inmemory_otel
from agency_core.remote.http import HttpAuthorizationClient
from agency_core.tenancy.session import SessionState, SwitchOutcome, TenantSession


def _client(app: FastAPI) -> HttpAuthorizationClient:
    return HttpAuthorizationClient("http://testserver/", transport=httpx.ASGITransport(app=app))


@pytest.mark.asyncio
async def test_reads_tenants_and_memberships(api_app: FastAPI) -> None:
    async with _client(api_app) as client:
        tenants = await client.list_tenants_for_user("u1")
        memberships = await client.list_memberships_for_user("u1")
        by_ids = await client.get_tenants_by_ids(["t2", "t1"])

    assert [tenant.id for tenant in tenants] == ["t1", "t2"]
    assert [item.invitation_status for item in memberships] == ["active", "active", "active"]
    assert [tenant.id for tenant in by_ids] == ["t2", "t1"]


@pytest.mark.asyncio
async def test_missing_resources_read_as_none(api_app: FastAPI) -> None:
    async with _client(api_app) as client:
        assert await client.get_tenant("nope") is None
        assert await client.get_membership("u3", "t1", status="active") is None
        assert await client.get_subscription("t2") is None
        assert await client.get_effective_permissions("u3", "t1") is None
        assert await client.get_tenants_by_ids([]) == []


@pytest.mark.asyncio
async def test_access_and_membership_results(api_app: FastAPI) -> None:
    async with _client(api_app) as client:
        granted = await client.validate_access("u2", "t1")
        denied = await client.validate_access("u3", "t1")
        pending = await client.get_membership("u3", "t1")

    assert granted.granted is True
    assert granted.role == "admin"
    assert denied.granted is False
    assert denied.reason == "invitation_not_active"
    assert pending.invitation_status == "pending"


@pytest.mark.asyncio
async def test_preference_write_then_read(api_app: FastAPI) -> None:
    async with _client(api_app) as client:
        assert await client.get_current_tenant_preference("u1") is None
        await client.set_current_tenant_preference("u1", "t2")
        assert await client.get_current_tenant_preference("u1") == "t2"


@pytest.mark.asyncio
async def test_error_status_raises_remote_service_error(api_app: FastAPI) -> None:
    async with _client(api_app) as client:
        with pytest.raises(RemoteServiceError) as exc_info:
            await client.set_current_tenant_preference("u2", "t2")

    assert exc_info.value.status_code == 403
    assert exc_info.value.operation == "set_current_tenant_preference"


@pytest.mark.asyncio
async def test_transport_failure_raises_remote_service_error() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with HttpAuthorizationClient("http://authz.invalid", transport=httpx.MockTransport(refuse)) as client:
        with pytest.raises(RemoteServiceError) as exc_info:
            await client.list_tenants_for_user("u1")

    assert exc_info.value.status_code is None


@pytest.mark.asyncio
async def test_unexpected_payload_raises_remote_service_error() -> None:
    def garbage(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"unexpected": True}])

    async with HttpAuthorizationClient("http://authz.invalid", transport=httpx.MockTransport(garbage)) as client:
        with pytest.raises(RemoteServiceError):
            await client.list_tenants_for_user("u1")


@pytest.mark.asyncio
async def test_requests_carry_token_and_correlation_id() -> None:
    seen: list[httpx.Request] = []

    def capture(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[])

    token = set_correlation_id("corr-42")
    try:
        async with HttpAuthorizationClient(
            "http://authz.invalid",
            token="svc-token",
            transport=httpx.MockTransport(capture),
        ) as client:
            await client.get_role_assignments("u1", "t1")
    finally:
        reset_correlation_id(token)

    assert seen[0].url.path == "/api/authz/tenants/t1/members/u1/roles"
    assert seen[0].headers["authorization"] == "Bearer svc-token"
    assert seen[0].headers["x-correlation-id"] == "corr-42"


@pytest.mark.asyncio
async def test_calls_are_traced() -> None:
    exporter = setup_inmemory_otel("agency-core-test")
    exporter.clear()

    def not_found(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"detail": "tenant not found"})

    async with HttpAuthorizationClient("http://authz.invalid", transport=httpx.MockTransport(not_found)) as client:
        assert await client.get_tenant("t9") is None

    spans = [span for span in exporter.get_finished_spans() if span.name == "authz.get_tenant"]
    assert spans
    assert spans[-1].attributes.get("tenant_id") == "t9"
    assert spans[-1].attributes.get("status_code") == 404


@pytest.mark.asyncio
async def test_session_runs_against_directory_service(
    api_app: FastAPI,
    lease_store,
    peer_bus,
    local_state,
    settings,
) -> None:
    async with _client(api_app) as client:
        session = TenantSession.create(
            client,
            lease_store,
            peer_bus,
            settings=settings,
            local_state=local_state,
            context_id="tab-http",
        )
        async with session:
            await session.on_auth_changed(True, Identity(user_id="u1"))

            assert session.state is SessionState.SELECTED
            assert session.current_tenant.id == "t1"
            assert session.entitlements.tier == "build"
            assert session.entitlements.is_trialing is True

            assert await session.switch_tenant("t2") is SwitchOutcome.SELECTED
            assert session.permissions.source == "server"
            assert session.current_membership.role == "member"

            assert await session.switch_tenant("t3") is SwitchOutcome.DENIED
            assert session.current_tenant.id == "t2"

            await session.preference_sync.drain()

        assert await client.get_current_tenant_preference("u1") == "t2"
