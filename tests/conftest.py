from __future__ import annotations

import asyncio
from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar

import pytest
from fastapi import FastAPI
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from agency_core.coordination.channel import InMemoryLeaseStore
from agency_core.core.auth import SERVICE_ROLE, AuthUser, get_current_user
from agency_core.core.config import Settings, get_settings
from agency_core.core.database import Base, get_db
from agency_core.core.events import InProcessEventBus
from agency_core.directory.models import AgencyMembership, AgencySubscription, AgencyTenant
from agency_core.directory.seed import seed_role_templates
from agency_core.errors import RemoteServiceError
from agency_core.main import app
from agency_core.tenancy.local_state import InMemoryLocalState
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
from agency_core.tenancy.session import TenantSession


T = TypeVar("T")


class FakeClock:
    def __init__(self, start_ms: float = 0.0) -> None:
        self.now_ms = start_ms

    def __call__(self) -> float:
        return self.now_ms

    def advance(self, ms: float) -> None:
        self.now_ms += ms


class FakeAuthorizationClient:
    """In-memory authorization service with per-operation failure and latency injection."""

    def __init__(self) -> None:
        self.tenants: dict[str, Tenant] = {}
        self.memberships: list[Membership] = []
        self.templates: list[RoleTemplate] = []
        self.custom_roles: list[CustomRole] = []
        self.assignments: list[RoleAssignment] = []
        self.overrides: list[PermissionOverride] = []
        self.subscriptions: dict[str, Subscription] = {}
        self.preferences: dict[str, str | None] = {}
        self.server_permissions: dict[tuple[str, str], EffectivePermissionSet] = {}
        self.enhanced_check_available = True
        self.revoked: set[tuple[str, str]] = set()
        self.calls: list[str] = []
        self.delays: dict[str, float] = {}
        self._failures: dict[str, int | None] = {}

    def fail(self, operation: str, times: int | None = None) -> None:
        """Make ``operation`` raise ``RemoteServiceError``; ``times=None`` fails forever."""
        self._failures[operation] = times

    def recover(self, operation: str) -> None:
        self._failures.pop(operation, None)

    def add_tenant(self, tenant_id: str, name: str | None = None, *, tier: str | None = None, is_active: bool = True) -> Tenant:
        tenant = Tenant(
            id=tenant_id,
            name=name or tenant_id.upper(),
            slug=tenant_id,
            subscription_tier=tier,
            is_active=is_active,
        )
        self.tenants[tenant_id] = tenant
        return tenant

    def add_membership(self, user_id: str, tenant_id: str, role: str = "member", status: str = "active") -> Membership:
        membership = Membership(user_id=user_id, tenant_id=tenant_id, role=role, invitation_status=status)
        self.memberships.append(membership)
        return membership

    def add_role(
        self,
        tenant_id: str,
        role_id: str,
        permissions: dict[str, bool],
        section_access: dict[str, bool] | None = None,
        *,
        position: int = 0,
    ) -> CustomRole:
        role = CustomRole(
            id=role_id,
            tenant_id=tenant_id,
            name=role_id,
            permissions=permissions,
            section_access=section_access or {},
            position=position,
        )
        self.custom_roles.append(role)
        return role

    def assign(self, user_id: str, tenant_id: str, role_id: str) -> None:
        self.assignments.append(RoleAssignment(user_id=user_id, tenant_id=tenant_id, role_id=role_id))

    def override(self, user_id: str, tenant_id: str, key: str, value: bool, scope: str = "permission") -> None:
        self.overrides.append(
            PermissionOverride(user_id=user_id, tenant_id=tenant_id, permission_key=key, value=value, scope=scope)
        )

    def calls_to(self, operation: str) -> int:
        return self.calls.count(operation)

    async def _respond(self, operation: str, result: T) -> T:
        self.calls.append(operation)
        if operation in self._failures:
            remaining = self._failures[operation]
            if remaining is not None:
                if remaining <= 1:
                    self._failures.pop(operation)
                else:
                    self._failures[operation] = remaining - 1
            raise RemoteServiceError(operation, "injected failure")
        delay = self.delays.get(operation)
        if delay:
            await asyncio.sleep(delay)
        return result

    def _membership(self, user_id: str, tenant_id: str) -> Membership | None:
        return next(
            (item for item in self.memberships if item.user_id == user_id and item.tenant_id == tenant_id),
            None,
        )

    def _available(self, tenant_id: str) -> Tenant | None:
        tenant = self.tenants.get(tenant_id)
        if tenant is None or not tenant.is_available:
            return None
        return tenant

    async def list_tenants_for_user(self, user_id: str) -> list[Tenant]:
        result = [
            tenant
            for item in self.memberships
            if item.user_id == user_id and item.is_active
            for tenant in [self._available(item.tenant_id)]
            if tenant is not None
        ]
        return await self._respond("list_tenants_for_user", result)

    async def list_memberships_for_user(self, user_id: str) -> list[Membership]:
        result = [item for item in self.memberships if item.user_id == user_id]
        return await self._respond("list_memberships_for_user", result)

    async def get_tenants_by_ids(self, tenant_ids: list[str]) -> list[Tenant]:
        result = [tenant for tenant_id in tenant_ids for tenant in [self._available(tenant_id)] if tenant is not None]
        return await self._respond("get_tenants_by_ids", result)

    async def get_tenant(self, tenant_id: str) -> Tenant | None:
        return await self._respond("get_tenant", self._available(tenant_id))

    async def validate_access(self, user_id: str, tenant_id: str) -> AccessResult | None:
        if not self.enhanced_check_available:
            return await self._respond("validate_access", None)
        membership = self._membership(user_id, tenant_id)
        if self._available(tenant_id) is None:
            result = AccessResult(granted=False, reason="tenant_inactive", tier="enhanced")
        elif membership is None:
            result = AccessResult(granted=False, reason="not_a_member", tier="enhanced")
        elif (user_id, tenant_id) in self.revoked:
            result = AccessResult(granted=False, reason="membership_revoked", tier="enhanced")
        elif not membership.is_active:
            result = AccessResult(granted=False, reason="invitation_not_active", tier="enhanced")
        else:
            result = AccessResult(granted=True, role=membership.role, tier="enhanced")
        return await self._respond("validate_access", result)

    async def get_membership(self, user_id: str, tenant_id: str, *, status: str | None = None) -> Membership | None:
        membership = self._membership(user_id, tenant_id)
        if membership is not None and status is not None and membership.invitation_status != status:
            membership = None
        return await self._respond("get_membership", membership)

    async def get_current_tenant_preference(self, user_id: str) -> str | None:
        return await self._respond("get_current_tenant_preference", self.preferences.get(user_id))

    async def set_current_tenant_preference(self, user_id: str, tenant_id: str | None) -> None:
        await self._respond("set_current_tenant_preference", None)
        self.preferences[user_id] = tenant_id

    async def list_role_templates(self) -> list[RoleTemplate]:
        return await self._respond("list_role_templates", list(self.templates))

    async def get_custom_roles_for_tenant(self, tenant_id: str) -> list[CustomRole]:
        result = [role for role in self.custom_roles if role.tenant_id == tenant_id]
        return await self._respond("get_custom_roles_for_tenant", result)

    async def get_role_assignments(self, user_id: str, tenant_id: str) -> list[RoleAssignment]:
        result = [item for item in self.assignments if item.user_id == user_id and item.tenant_id == tenant_id]
        return await self._respond("get_role_assignments", result)

    async def get_permission_overrides(self, user_id: str, tenant_id: str) -> list[PermissionOverride]:
        result = [item for item in self.overrides if item.user_id == user_id and item.tenant_id == tenant_id]
        return await self._respond("get_permission_overrides", result)

    async def get_effective_permissions(self, user_id: str, tenant_id: str) -> EffectivePermissionSet | None:
        return await self._respond("get_effective_permissions", self.server_permissions.get((user_id, tenant_id)))

    async def get_subscription(self, tenant_id: str) -> Subscription | None:
        return await self._respond("get_subscription", self.subscriptions.get(tenant_id))


async def _wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() >= deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture()
def wait_until() -> Callable[..., Any]:
    return _wait_until


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        tenant_selection_timeout_ms=200,
        mutex_retry_interval_ms=10,
        session_load_timeout_seconds=2.0,
        preference_sync_max_attempts=3,
        preference_sync_backoff_seconds=0.0,
        platform_operator_emails=["ops@agency.test"],
        jwt_secret="test-secret",
    )


@pytest.fixture()
def fake_client() -> FakeAuthorizationClient:
    return FakeAuthorizationClient()


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def lease_store() -> InMemoryLeaseStore:
    return InMemoryLeaseStore()


@pytest.fixture()
def peer_bus() -> InProcessEventBus:
    return InProcessEventBus()


@pytest.fixture()
def local_state() -> InMemoryLocalState:
    return InMemoryLocalState()


@pytest.fixture()
def make_session(
    fake_client: FakeAuthorizationClient,
    lease_store: InMemoryLeaseStore,
    peer_bus: InProcessEventBus,
    local_state: InMemoryLocalState,
    settings: Settings,
) -> Callable[..., TenantSession]:
    def _make(context_id: str = "tab-1", *, session_settings: Settings | None = None, client: Any = None) -> TenantSession:
        return TenantSession.create(
            client or fake_client,
            lease_store,
            peer_bus,
            settings=session_settings or settings,
            local_state=local_state,
            context_id=context_id,
        )

    return _make


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def seeded_db(db_session: Session) -> Session:
    joined = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
    db_session.add_all(
        [
            AgencyTenant(id="t1", name="Alpha", slug="alpha", subscription_tier="build"),
            AgencyTenant(id="t2", name="Beta", slug="beta"),
            AgencyTenant(id="t3", name="Closed", slug="closed", is_active=False),
        ]
    )
    db_session.flush()
    db_session.add_all(
        [
            AgencyMembership(user_id="u1", tenant_id="t1", role="owner", joined_at=joined),
            AgencyMembership(user_id="u1", tenant_id="t2", role="member", joined_at=joined + timedelta(days=1)),
            AgencyMembership(user_id="u1", tenant_id="t3", role="member", joined_at=joined + timedelta(days=2)),
            AgencyMembership(user_id="u2", tenant_id="t1", role="admin", joined_at=joined),
            AgencyMembership(user_id="u3", tenant_id="t1", invitation_status="pending", joined_at=joined),
            AgencyMembership(user_id="u4", tenant_id="t1", role="member", joined_at=joined),
            AgencySubscription(tenant_id="t1", tier="build", status="trialing", trial_end=joined + timedelta(days=14)),
        ]
    )
    db_session.commit()
    seed_role_templates(db_session)
    return db_session


@pytest.fixture()
def api_actor() -> dict[str, AuthUser]:
    return {"user": AuthUser(sub="authz-svc", roles=[SERVICE_ROLE])}


@pytest.fixture()
def api_app(seeded_db: Session, api_actor: dict[str, AuthUser]) -> Generator[FastAPI, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield seeded_db

    def override_get_current_user() -> AuthUser:
        return api_actor["user"]

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    yield app
    app.dependency_overrides.clear()
