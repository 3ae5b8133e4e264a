from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from agency_core.errors import AccessDenied, RemoteServiceError
from agency_core.metrics import observe_access_tier
from agency_core.remote.client import AuthorizationClient
from agency_core.tenancy.schemas import ACTIVE_INVITATION_STATUS, DEFAULT_MEMBER_ROLE, AccessResult


logger = logging.getLogger("agency_core.authz.access")


@dataclass(frozen=True, slots=True)
class Granted:
    role: str


@dataclass(frozen=True, slots=True)
class Denied:
    reason: str


@dataclass(frozen=True, slots=True)
class Inconclusive:
    reason: str


TierOutcome = Granted | Denied | Inconclusive
TierCheck = Callable[[AuthorizationClient, str, str], Awaitable[TierOutcome]]


@dataclass(frozen=True, slots=True)
class AccessTier:
    name: str
    check: TierCheck


async def enhanced_check(client: AuthorizationClient, user_id: str, tenant_id: str) -> TierOutcome:
    result = await client.validate_access(user_id, tenant_id)
    if result is None:
        return Inconclusive("no_decision")
    if result.granted:
        return Granted(result.role or DEFAULT_MEMBER_ROLE)
    return Denied(result.reason or "access_denied")


async def direct_membership_check(client: AuthorizationClient, user_id: str, tenant_id: str) -> TierOutcome:
    membership = await client.get_membership(user_id, tenant_id, status=ACTIVE_INVITATION_STATUS)
    if membership is None or not membership.is_active:
        return Denied("no_active_membership")
    return Granted(membership.role or DEFAULT_MEMBER_ROLE)


async def existence_check(client: AuthorizationClient, user_id: str, tenant_id: str) -> TierOutcome:
    membership = await client.get_membership(user_id, tenant_id)
    if membership is None:
        return Denied("membership_not_found")
    return Granted(DEFAULT_MEMBER_ROLE)


DEFAULT_TIERS: tuple[AccessTier, ...] = (
    AccessTier("enhanced", enhanced_check),
    AccessTier("direct_membership", direct_membership_check),
    AccessTier("existence", existence_check),
)


class AccessValidator:
    """Answers "may this user act on this tenant" through an ordered fallback pipeline.

    Each tier yields ``Granted``, ``Denied`` or ``Inconclusive``. The first decisive
    outcome wins; a tier that cannot reach the remote service is ``Inconclusive`` and
    hands over to the next one. Running out of tiers denies access.
    """

    def __init__(self, client: AuthorizationClient, tiers: Sequence[AccessTier] | None = None) -> None:
        self._client = client
        self._tiers = tuple(tiers) if tiers is not None else DEFAULT_TIERS

    @property
    def tier_names(self) -> list[str]:
        return [tier.name for tier in self._tiers]

    async def validate(self, user_id: str, tenant_id: str) -> AccessResult:
        for tier in self._tiers:
            outcome = await self._run_tier(tier, user_id, tenant_id)
            if isinstance(outcome, Granted):
                observe_access_tier(tier.name, "granted")
                return AccessResult(granted=True, role=outcome.role, tier=tier.name)
            if isinstance(outcome, Denied):
                observe_access_tier(tier.name, "denied")
                logger.info(
                    "access.denied",
                    extra={"user_id": user_id, "tenant_id": tenant_id, "tier": tier.name, "reason": outcome.reason},
                )
                return AccessResult(granted=False, reason=outcome.reason, tier=tier.name)
            observe_access_tier(tier.name, "inconclusive")

        logger.warning("access.tiers.exhausted", extra={"user_id": user_id, "tenant_id": tenant_id})
        return AccessResult(granted=False, reason="all_tiers_failed")

    async def require(self, user_id: str, tenant_id: str) -> AccessResult:
        result = await self.validate(user_id, tenant_id)
        if not result.granted:
            raise AccessDenied(tenant_id, result.reason)
        return result

    async def _run_tier(self, tier: AccessTier, user_id: str, tenant_id: str) -> TierOutcome:
        try:
            return await tier.check(self._client, user_id, tenant_id)
        except RemoteServiceError as exc:
            logger.warning(
                "access.tier.failed",
                extra={"user_id": user_id, "tenant_id": tenant_id, "tier": tier.name, "error": str(exc)},
            )
            return Inconclusive(f"{tier.name}_unavailable")
