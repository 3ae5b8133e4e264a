from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Callable, Coroutine, Iterator
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import ValidationError

from agency_core.authz.access import AccessValidator
from agency_core.authz.catalog import BYPASS_ROLES
from agency_core.authz.permissions import PermissionResolver
from agency_core.context import reset_execution_context_id, set_execution_context_id
from agency_core.coordination.channel import CoordinationChannel, LeaseStore, PeerEvent, PeerEventKind
from agency_core.coordination.mutex import CrossTabMutex
from agency_core.core.auth import Identity
from agency_core.core.config import Settings, get_settings
from agency_core.core.events import InProcessEventBus
from agency_core.entitlements.service import EntitlementEngine
from agency_core.errors import (
    AccessDenied,
    AuthenticationRequired,
    LoadFailed,
    MutexTimeout,
    PermissionFetchFailed,
    RemoteServiceError,
    SessionLoadTimeout,
    TenancyError,
    TenantNotFound,
)
from agency_core.metrics import observe_session_load_timeout, observe_tenant_list_load, observe_tenant_switch
from agency_core.remote.client import AuthorizationClient
from agency_core.tenancy.demo import DEMO_TENANT_ID, demo_membership, demo_tenant, is_demo_tenant_id
from agency_core.tenancy.local_state import (
    LocalStateStore,
    build_local_state,
    clear_cached_selection,
    read_cached_selection,
    read_demo_mode,
    write_cached_selection,
    write_demo_mode,
)
from agency_core.tenancy.schemas import (
    CachedTenantSelection,
    EffectivePermissionSet,
    Entitlements,
    Membership,
    Subscription,
    Tenant,
)
from agency_core.tenancy.sync import PreferenceSync


logger = logging.getLogger("agency_core.tenancy.session")

TENANT_HEADER = "X-Agency-ID"


class SessionState(StrEnum):
    UNSELECTED = "unselected"
    LOADING = "loading"
    SELECTED = "selected"
    SWITCHING_PENDING = "switching_pending"
    FAILED = "failed"


class SwitchOutcome(StrEnum):
    SELECTED = "selected"
    DEMO_SELECTED = "demo_selected"
    SKIPPED = "skipped"
    DENIED = "denied"
    NOT_FOUND = "not_found"
    UNAUTHENTICATED = "unauthenticated"


class SessionEvent(StrEnum):
    LIST_LOADED = "tenant.list_loaded"
    SELECTED = "tenant.selected"
    LOAD_FAILED = "tenant.load_failed"
    LOAD_TIMEOUT = "tenant.load_timeout"
    ACCESS_DENIED = "tenant.access_denied"
    SWITCH_SKIPPED = "tenant.switch_skipped"


_SUCCESSFUL = frozenset({SwitchOutcome.SELECTED, SwitchOutcome.DEMO_SELECTED})


class TenantSession:
    """Current-tenant state for one execution context.

    Owns discovery of the caller's tenants, selection of exactly one of them (the
    synthetic demo tenant included), and coordination with peer contexts of the same
    account. Collaborators are injected; call ``init()`` before use and ``dispose()``
    when the context goes away.
    """

    def __init__(
        self,
        client: AuthorizationClient,
        mutex: CrossTabMutex,
        local_state: LocalStateStore,
        *,
        bus: InProcessEventBus | None = None,
        settings: Settings | None = None,
        access_validator: AccessValidator | None = None,
        permission_resolver: PermissionResolver | None = None,
        entitlement_engine: EntitlementEngine | None = None,
        preference_sync: PreferenceSync | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client
        self._mutex = mutex
        self._local_state = local_state
        self.events = bus or InProcessEventBus()
        self._access_validator = access_validator or AccessValidator(client)
        self._permission_resolver = permission_resolver or PermissionResolver(client)
        self._entitlement_engine = entitlement_engine or EntitlementEngine()
        self._preference_sync = preference_sync or PreferenceSync(
            client,
            max_attempts=self._settings.preference_sync_max_attempts,
            backoff_seconds=self._settings.preference_sync_backoff_seconds,
        )

        self.state = SessionState.UNSELECTED
        self.identity: Identity | None = None
        self.tenants: list[Tenant] = []
        self.current_tenant: Tenant | None = None
        self.current_membership: Membership | None = None
        self.permissions = EffectivePermissionSet.empty()
        self.subscription: Subscription | None = None
        self.entitlements: Entitlements | None = None
        self.load_failed = False
        self.load_timed_out = False
        self.error: TenancyError | None = None
        self.peer_selection: CachedTenantSelection | None = None

        self._ready = False
        self._load_attempt = 0
        self._deferred_selection: str | None = None
        self._selection_turn = asyncio.Lock()
        self._watchdog: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._unsubscribe_peer: Callable[[], None] | None = None

    @classmethod
    def create(
        cls,
        client: AuthorizationClient,
        lease_store: LeaseStore,
        peer_bus: InProcessEventBus,
        *,
        settings: Settings | None = None,
        local_state: LocalStateStore | None = None,
        context_id: str | None = None,
    ) -> TenantSession:
        settings = settings or get_settings()
        channel = CoordinationChannel(lease_store, peer_bus, context_id or f"ctx-{uuid.uuid4().hex[:12]}")
        mutex = CrossTabMutex(
            channel,
            lease_ttl_ms=settings.mutex_lease_ttl_ms,
            retry_interval_ms=settings.mutex_retry_interval_ms,
        )
        return cls(
            client,
            mutex,
            local_state or build_local_state(settings.local_state_path),
            settings=settings,
        )

    @property
    def context_id(self) -> str:
        return self._mutex.context_id

    @property
    def load_attempt(self) -> int:
        return self._load_attempt

    @property
    def preference_sync(self) -> PreferenceSync:
        return self._preference_sync

    async def init(self) -> None:
        if self._unsubscribe_peer is None:
            self._unsubscribe_peer = self._mutex.channel.on_peer_event(self._on_peer_event)

    async def dispose(self) -> None:
        if self._unsubscribe_peer is not None:
            self._unsubscribe_peer()
            self._unsubscribe_peer = None
        self._disarm_watchdog()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self._preference_sync.close()
        await self._mutex.release_all()
        self._ready = False

    async def __aenter__(self) -> TenantSession:
        await self.init()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.dispose()

    async def on_auth_changed(self, ready: bool, identity: Identity | None) -> None:
        if identity is None or self.identity is None or identity.user_id != self.identity.user_id:
            self._clear_selection()
            self.tenants = []
        self.identity = identity
        self._ready = ready
        await self.load()

    async def load(self) -> None:
        with self._context_scope():
            if not self._ready:
                self._load_attempt += 1
                self._set_state(SessionState.LOADING)
                self._arm_watchdog()
                return
            self._disarm_watchdog()

            self._load_attempt += 1
            attempt = self._load_attempt
            identity = self.identity
            if identity is None:
                self._clear_selection()
                self.tenants = []
                self.load_failed = False
                self._set_state(SessionState.UNSELECTED)
                return

            self._set_state(SessionState.LOADING)
            try:
                async with asyncio.timeout(self._settings.session_load_timeout_seconds):
                    await self._load(identity, attempt)
            except TimeoutError:
                if attempt == self._load_attempt:
                    self._fail_with_timeout()
                return

            tenant = self.current_tenant
            if not self._is_stale(attempt) and self.state is SessionState.SELECTED and tenant is not None:
                if not tenant.is_demo:
                    await self._refresh_entitlements(identity, tenant)

    async def switch_tenant(self, tenant_id: str) -> SwitchOutcome:
        with self._context_scope():
            identity = self.identity
            if identity is None:
                logger.warning("tenant.switch.unauthenticated", extra={"tenant_id": tenant_id})
                observe_tenant_switch(SwitchOutcome.UNAUTHENTICATED.value)
                return SwitchOutcome.UNAUTHENTICATED
            self._deferred_selection = None
            return await self._select(identity, tenant_id)

    async def set_demo_mode(self, enabled: bool) -> None:
        identity = self.identity
        if identity is None:
            raise AuthenticationRequired()
        if not identity.is_platform_operator:
            raise AccessDenied(DEMO_TENANT_ID, "platform_operator_required")
        write_demo_mode(self._local_state, identity.user_id, enabled)
        logger.info("tenant.demo_mode.changed", extra={"user_id": identity.user_id, "outcome": str(enabled).lower()})
        await self.load()

    def demo_mode_enabled(self) -> bool:
        return self.identity is not None and self._demo_enabled(self.identity)

    async def forget_tenant(self, tenant_id: str) -> None:
        """Drop a tenant that no longer exists upstream and pick a new current one."""
        self.tenants = [tenant for tenant in self.tenants if tenant.id != tenant_id]
        if self.current_tenant is not None and self.current_tenant.id == tenant_id:
            self._clear_selection()
            cached = read_cached_selection(self._local_state)
            if cached is not None and cached.id == tenant_id:
                clear_cached_selection(self._local_state)
            if self.identity is not None and not is_demo_tenant_id(tenant_id):
                self._preference_sync.schedule(self.identity.user_id, None)
        logger.info("tenant.forgotten", extra={"tenant_id": tenant_id})
        await self.load()

    async def refresh_permissions(self) -> EffectivePermissionSet:
        identity, tenant, membership = self.identity, self.current_tenant, self.current_membership
        if identity is None or tenant is None or membership is None:
            return self.permissions
        self.permissions = await self._permission_resolver.resolve(
            identity.user_id,
            tenant.id,
            role=membership.role,
            is_demo=tenant.is_demo,
        )
        return self.permissions

    async def refresh_subscription(self) -> Entitlements | None:
        if self.identity is None or self.current_tenant is None:
            return None
        await self._refresh_entitlements(self.identity, self.current_tenant)
        return self.entitlements

    def has_permission(self, key: str) -> bool:
        if self._is_operator():
            return True
        return self.permissions.allows(key)

    def has_any_permission(self, keys: list[str]) -> bool:
        return self._is_operator() or self.permissions.allows_any(keys)

    def has_all_permissions(self, keys: list[str]) -> bool:
        return self._is_operator() or self.permissions.allows_all(keys)

    def can_access_section(self, section: str) -> bool:
        return self._is_operator() or self.permissions.can_access(section)

    def is_admin(self) -> bool:
        if self._is_operator():
            return True
        return self.current_membership is not None and self.current_membership.role in BYPASS_ROLES

    def is_read_only(self) -> bool:
        if self.is_admin():
            return False
        return self.current_membership is None or self.current_membership.role == "member"

    def can_edit(self) -> bool:
        return not self.is_read_only()

    def can_create(self) -> bool:
        return not self.is_read_only()

    def is_demo_selected(self) -> bool:
        return self.current_tenant is not None and self.current_tenant.is_demo

    def should_prompt_workspace_creation(self) -> bool:
        if self.identity is None or self.state in (SessionState.LOADING, SessionState.FAILED):
            return False
        if self.load_failed or self.load_timed_out:
            return False
        return not self.tenants

    def tenant_headers(self) -> dict[str, str]:
        cached = read_cached_selection(self._local_state)
        if cached is None:
            return {}
        return {TENANT_HEADER: cached.id}

    async def _load(self, identity: Identity, attempt: int) -> None:
        try:
            tenants = await self._fetch_tenants(identity.user_id)
        except LoadFailed as exc:
            if self._is_stale(attempt):
                return
            self.tenants = []
            self._clear_selection()
            self.load_failed = True
            self.error = exc
            self._set_state(SessionState.FAILED)
            self.events.publish(SessionEvent.LOAD_FAILED, {"user_id": identity.user_id, "error": str(exc)})
            return

        if self._is_stale(attempt):
            logger.info("tenant.load.stale", extra={"user_id": identity.user_id, "attempt": attempt})
            return

        demo_enabled = self._demo_enabled(identity)
        real = [tenant for tenant in tenants if tenant.is_available and not is_demo_tenant_id(tenant.id)]
        self.tenants = [demo_tenant(), *real] if demo_enabled else real
        self.load_failed = False
        self.load_timed_out = False
        self.error = None
        self.events.publish(
            SessionEvent.LIST_LOADED,
            {"user_id": identity.user_id, "count": len(self.tenants), "demo": demo_enabled},
        )

        candidates = await self._initial_candidates(identity, demo_enabled)
        if self._is_stale(attempt):
            return

        for tenant in candidates:
            outcome = await self._select(identity, tenant.id, attempt=attempt)
            if self._is_stale(attempt):
                return
            if outcome in _SUCCESSFUL:
                return
            if outcome is SwitchOutcome.SKIPPED:
                self._deferred_selection = tenant.id
                break

        known_ids = {tenant.id for tenant in self.tenants}
        if self.current_tenant is not None and self.current_tenant.id in known_ids:
            self._set_state(SessionState.SELECTED)
        else:
            self._clear_selection()
            self._set_state(SessionState.UNSELECTED)

    async def _fetch_tenants(self, user_id: str) -> list[Tenant]:
        try:
            tenants = await self._client.list_tenants_for_user(user_id)
        except RemoteServiceError as exc:
            observe_tenant_list_load("enriched", "failure")
            logger.warning("tenant.list.enriched_failed", extra={"user_id": user_id, "error": str(exc)})
        else:
            observe_tenant_list_load("enriched", "success")
            return tenants

        try:
            memberships = await self._client.list_memberships_for_user(user_id)
            tenant_ids = list(dict.fromkeys(item.tenant_id for item in memberships if item.is_active))
            tenants = await self._client.get_tenants_by_ids(tenant_ids) if tenant_ids else []
        except RemoteServiceError as exc:
            observe_tenant_list_load("fallback", "failure")
            logger.error("tenant.list.failed", extra={"user_id": user_id, "error": str(exc)})
            raise LoadFailed(f"Could not list tenants for user '{user_id}'") from exc

        observe_tenant_list_load("fallback", "success")
        order = {tenant_id: index for index, tenant_id in enumerate(tenant_ids)}
        return sorted(tenants, key=lambda tenant: order.get(tenant.id, len(order)))

    async def _initial_candidates(self, identity: Identity, demo_enabled: bool) -> list[Tenant]:
        if not self.tenants:
            return []
        real = [tenant for tenant in self.tenants if not tenant.is_demo]
        cached = read_cached_selection(self._local_state)

        chosen: Tenant | None = None
        if not demo_enabled and cached is not None and is_demo_tenant_id(cached.id):
            logger.info("tenant.demo.left", extra={"user_id": identity.user_id})
            chosen = real[0] if real else None
        elif demo_enabled:
            chosen = self.tenants[0]
        else:
            preferred = await self._preferred_tenant_id(identity.user_id)
            chosen = next((tenant for tenant in self.tenants if tenant.id == preferred), None)

        if chosen is None:
            chosen = self.tenants[0]
        return [chosen, *(tenant for tenant in self.tenants if tenant.id != chosen.id)]

    async def _preferred_tenant_id(self, user_id: str) -> str | None:
        try:
            return await self._client.get_current_tenant_preference(user_id)
        except RemoteServiceError as exc:
            logger.warning("tenant.preference.unavailable", extra={"user_id": user_id, "error": str(exc)})
            return None

    async def _select(self, identity: Identity, tenant_id: str, *, attempt: int | None = None) -> SwitchOutcome:
        if is_demo_tenant_id(tenant_id):
            outcome = await self._select_demo(identity, attempt)
            observe_tenant_switch(outcome.value)
            return outcome

        previous_state = self.state
        if previous_state is SessionState.SELECTED:
            self._set_state(SessionState.SWITCHING_PENDING)

        outcome = SwitchOutcome.SKIPPED
        try:
            async with self._own_turn(), self._mutex.lease(
                self._settings.tenant_selection_lock,
                self._settings.tenant_selection_timeout_ms,
            ):
                outcome = await self._select_real(identity, tenant_id, attempt)
        except MutexTimeout:
            logger.info(
                "tenant.switch.skipped",
                extra={"user_id": identity.user_id, "tenant_id": tenant_id, "reason": "selection_in_progress"},
            )
            self.events.publish(SessionEvent.SWITCH_SKIPPED, {"tenant_id": tenant_id})
        finally:
            if outcome is not SwitchOutcome.SELECTED and self.state is SessionState.SWITCHING_PENDING:
                self._set_state(previous_state)

        observe_tenant_switch(outcome.value)
        if attempt is None and outcome is SwitchOutcome.SELECTED and self.current_tenant is not None:
            await self._refresh_entitlements(identity, self.current_tenant)
        return outcome

    @asynccontextmanager
    async def _own_turn(self) -> AsyncIterator[None]:
        """Queue selections of this context behind each other; the mutex only arbitrates between peers."""
        timeout_ms = self._settings.tenant_selection_timeout_ms
        try:
            async with asyncio.timeout(timeout_ms / 1000):
                await self._selection_turn.acquire()
        except TimeoutError as exc:
            raise MutexTimeout(self._settings.tenant_selection_lock, timeout_ms) from exc
        try:
            yield
        finally:
            self._selection_turn.release()

    async def _select_demo(self, identity: Identity, attempt: int | None) -> SwitchOutcome:
        if not self._demo_enabled(identity):
            self.error = AccessDenied(DEMO_TENANT_ID, "demo_unavailable")
            logger.warning("tenant.switch.denied", extra={"user_id": identity.user_id, "tenant_id": DEMO_TENANT_ID})
            self.events.publish(SessionEvent.ACCESS_DENIED, {"tenant_id": DEMO_TENANT_ID, "reason": "demo_unavailable"})
            return SwitchOutcome.DENIED
        if self._is_stale(attempt):
            return SwitchOutcome.SKIPPED

        tenant = demo_tenant()
        membership = demo_membership(identity.user_id)
        permissions = await self._permission_resolver.resolve(identity.user_id, tenant.id, is_demo=True)
        self._commit(identity, tenant, membership, permissions)
        self.error = None
        self.entitlements = self._entitlement_engine.entitlements(
            tenant,
            None,
            is_platform_operator=identity.is_platform_operator,
        )
        return SwitchOutcome.DEMO_SELECTED

    async def _select_real(self, identity: Identity, tenant_id: str, attempt: int | None) -> SwitchOutcome:
        access = await self._access_validator.validate(identity.user_id, tenant_id)
        if not access.granted:
            denied = AccessDenied(tenant_id, access.reason)
            self.error = denied
            logger.warning(
                "tenant.switch.denied",
                extra={"user_id": identity.user_id, "tenant_id": tenant_id, "reason": denied.reason, "tier": access.tier},
            )
            self.events.publish(SessionEvent.ACCESS_DENIED, {"tenant_id": tenant_id, "reason": denied.reason})
            return SwitchOutcome.DENIED

        try:
            tenant = await self._client.get_tenant(tenant_id)
        except RemoteServiceError as exc:
            logger.error("tenant.details.failed", extra={"tenant_id": tenant_id, "error": str(exc)})
            tenant = None
        if tenant is None or not tenant.is_available:
            self.error = TenantNotFound(tenant_id)
            logger.warning("tenant.switch.not_found", extra={"user_id": identity.user_id, "tenant_id": tenant_id})
            return SwitchOutcome.NOT_FOUND

        membership = Membership(user_id=identity.user_id, tenant_id=tenant.id, role=access.role or "member")
        fetch_error: PermissionFetchFailed | None = None
        try:
            permissions = await self._permission_resolver.resolve(identity.user_id, tenant.id, role=membership.role)
        except PermissionFetchFailed as exc:
            logger.error("tenant.permissions.failed", extra={"tenant_id": tenant.id, "error": str(exc)})
            permissions = EffectivePermissionSet.empty(membership.role)
            fetch_error = exc

        if self._is_stale(attempt):
            logger.info("tenant.switch.stale", extra={"tenant_id": tenant.id, "attempt": attempt})
            return SwitchOutcome.SKIPPED

        self._commit(identity, tenant, membership, permissions)
        self.error = fetch_error
        self._preference_sync.schedule(identity.user_id, tenant.id)
        return SwitchOutcome.SELECTED

    def _commit(
        self,
        identity: Identity,
        tenant: Tenant,
        membership: Membership,
        permissions: EffectivePermissionSet,
    ) -> None:
        self.current_tenant = tenant
        self.current_membership = membership
        self.permissions = permissions
        self.subscription = None
        self.entitlements = None
        if all(item.id != tenant.id for item in self.tenants):
            self.tenants.append(tenant)
        self._set_state(SessionState.SELECTED)

        selection = CachedTenantSelection(
            id=tenant.id,
            name=tenant.name,
            slug=tenant.slug,
            selecting_context_id=self.context_id,
            timestamp=datetime.now(timezone.utc),
        )
        write_cached_selection(self._local_state, selection)
        self._mutex.channel.publish(PeerEventKind.TENANT_SELECTED, selection.model_dump(mode="json"))

        logger.info(
            "tenant.selected",
            extra={
                "user_id": identity.user_id,
                "tenant_id": tenant.id,
                "role": membership.role,
                "source": permissions.source,
            },
        )
        self.events.publish(
            SessionEvent.SELECTED,
            {"user_id": identity.user_id, "tenant_id": tenant.id, "is_demo": tenant.is_demo},
        )

    async def _refresh_entitlements(self, identity: Identity, tenant: Tenant) -> None:
        subscription: Subscription | None = None
        if not tenant.is_demo:
            try:
                subscription = await self._client.get_subscription(tenant.id)
            except RemoteServiceError as exc:
                logger.warning("tenant.subscription.failed", extra={"tenant_id": tenant.id, "error": str(exc)})
        if self.current_tenant is None or self.current_tenant.id != tenant.id:
            return
        self.subscription = subscription
        self.entitlements = self._entitlement_engine.entitlements(
            tenant,
            subscription,
            is_platform_operator=identity.is_platform_operator,
        )

    def _on_peer_event(self, event: PeerEvent) -> None:
        if event.kind is PeerEventKind.TENANT_SELECTED:
            try:
                selection = CachedTenantSelection.model_validate(event.payload)
            except ValidationError:
                logger.warning("tenant.peer.invalid", extra={"source": event.context_id})
                return
            self.peer_selection = selection
            logger.info("tenant.peer.selected", extra={"tenant_id": selection.id, "source": event.context_id})
            if self._should_follow(selection):
                self._spawn(self.switch_tenant(selection.id))
            return

        if event.kind is PeerEventKind.LOCK_RELEASED:
            if event.payload.get("lock_name") != self._settings.tenant_selection_lock:
                return
            deferred = self._deferred_selection
            if deferred is None or self.identity is None or self.current_tenant is not None:
                return
            self._deferred_selection = None
            logger.info("tenant.switch.retry", extra={"tenant_id": deferred, "source": event.context_id})
            self._spawn(self.switch_tenant(deferred))

    def _should_follow(self, selection: CachedTenantSelection) -> bool:
        if not self._settings.follow_peer_selection or self.identity is None or not self._ready:
            return False
        if self.current_tenant is not None and self.current_tenant.id == selection.id:
            return False
        return any(tenant.id == selection.id for tenant in self.tenants)

    def _fail_with_timeout(self) -> None:
        seconds = self._settings.session_load_timeout_seconds
        self._load_attempt += 1
        self.load_timed_out = True
        self.error = SessionLoadTimeout(seconds)
        self._set_state(SessionState.FAILED)
        observe_session_load_timeout()
        logger.error("tenant.load.timeout", extra={"duration_ms": round(seconds * 1000)})
        self.events.publish(SessionEvent.LOAD_TIMEOUT, {"seconds": seconds})

    def _arm_watchdog(self) -> None:
        if self._watchdog is not None and not self._watchdog.done():
            return
        self._watchdog = self._spawn(self._watch_loading())

    def _disarm_watchdog(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    async def _watch_loading(self) -> None:
        await asyncio.sleep(self._settings.session_load_timeout_seconds)
        if self.state is SessionState.LOADING:
            self._fail_with_timeout()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("tenant.session.task_failed", extra={"error": str(exc)})

    def _demo_enabled(self, identity: Identity) -> bool:
        return identity.is_platform_operator and read_demo_mode(self._local_state, identity.user_id)

    def _is_operator(self) -> bool:
        return self.identity is not None and self.identity.is_platform_operator

    def _is_stale(self, attempt: int | None) -> bool:
        return attempt is not None and attempt != self._load_attempt

    def _clear_selection(self) -> None:
        self.current_tenant = None
        self.current_membership = None
        self.permissions = EffectivePermissionSet.empty()
        self.subscription = None
        self.entitlements = None

    def _set_state(self, state: SessionState) -> None:
        if state is self.state:
            return
        logger.debug("tenant.session.state", extra={"outcome": state.value})
        self.state = state

    @contextmanager
    def _context_scope(self) -> Iterator[None]:
        token = set_execution_context_id(self.context_id)
        try:
            yield
        finally:
            reset_execution_context_id(token)
