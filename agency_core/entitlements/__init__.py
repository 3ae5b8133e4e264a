from agency_core.entitlements.service import EntitlementEngine, current_tier, trial_days_left
from agency_core.entitlements.tiers import (
    TIER_DEFINITIONS,
    TIER_HIERARCHY,
    Tier,
    TierDefinition,
    is_tier_at_least,
    tier_definition,
    tier_level,
    upgrade_path,
)

__all__ = [
    "TIER_DEFINITIONS",
    "TIER_HIERARCHY",
    "EntitlementEngine",
    "Tier",
    "TierDefinition",
    "current_tier",
    "is_tier_at_least",
    "tier_definition",
    "tier_level",
    "trial_days_left",
    "upgrade_path",
]
