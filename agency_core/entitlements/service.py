from __future__ import annotations

import logging
import math
from datetime import datetime, timezone

from agency_core.entitlements.tiers import Tier, tier_definition
from agency_core.tenancy.schemas import Entitlements, Subscription, SubscriptionStatus, Tenant


logger = logging.getLogger("agency_core.entitlements")

SECONDS_PER_DAY = 86_400
ACTIVE_STATUSES = frozenset({SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value})


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def trial_days_left(subscription: Subscription | None, now: datetime | None = None) -> int | None:
    if subscription is None or subscription.trial_end is None:
        return None
    current = _as_utc(now or datetime.now(timezone.utc))
    remaining = (_as_utc(subscription.trial_end) - current).total_seconds()
    return max(0, math.ceil(remaining / SECONDS_PER_DAY))


def current_tier(tenant: Tenant | None, subscription: Subscription | None) -> str:
    if subscription is not None and subscription.tier:
        return subscription.tier
    if tenant is not None and tenant.subscription_tier:
        return tenant.subscription_tier
    return Tier.FREE.value


class EntitlementEngine:
    """Maps a tenant's subscription onto tier features, seat limits and trial state."""

    def entitlements(
        self,
        tenant: Tenant | None,
        subscription: Subscription | None = None,
        *,
        is_platform_operator: bool = False,
        now: datetime | None = None,
    ) -> Entitlements:
        is_trialing = subscription is not None and subscription.status == SubscriptionStatus.TRIALING.value
        days_left = trial_days_left(subscription, now)

        if is_platform_operator:
            definition = tier_definition(Tier.GOD_MODE.value)
            return Entitlements(
                tier=str(definition.tier),
                display_name=definition.display_name,
                seat_limit=None,
                features=list(definition.features),
                is_trialing=is_trialing,
                trial_days_left=days_left,
                has_active_subscription=True,
            )

        tier = current_tier(tenant, subscription)
        definition = tier_definition(tier)
        has_active = subscription is not None and subscription.status in ACTIVE_STATUSES
        logger.debug(
            "entitlements.resolved",
            extra={"tenant_id": tenant.id if tenant is not None else None, "tier": tier},
        )
        return Entitlements(
            tier=str(definition.tier),
            display_name=definition.display_name,
            seat_limit=definition.seat_limit,
            features=list(definition.features),
            is_trialing=is_trialing,
            trial_days_left=days_left,
            has_active_subscription=has_active,
        )
