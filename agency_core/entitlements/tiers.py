from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class Tier(StrEnum):
    FREE = "free"
    SALES = "sales"
    BUILD = "build"
    SCALE = "scale"
    GOD_MODE = "god_mode"


TIER_HIERARCHY: tuple[Tier, ...] = (Tier.FREE, Tier.SALES, Tier.BUILD, Tier.SCALE, Tier.GOD_MODE)


@dataclass(frozen=True, slots=True)
class TierDefinition:
    tier: str
    display_name: str
    seat_limit: int | None
    features: tuple[str, ...]


_SALES_FEATURES = ("crm", "leads", "contacts", "calendar", "forms_basic", "email_basic")
_BUILD_FEATURES = (
    "crm",
    "leads",
    "contacts",
    "calendar",
    "forms",
    "email",
    "automation_basic",
    "reports",
    "ai_basic",
    "seats_3",
)
_SCALE_FEATURES = (
    "crm",
    "leads",
    "contacts",
    "calendar",
    "forms",
    "email",
    "automation",
    "reports",
    "ai",
    "seats_unlimited",
    "api",
    "white_label",
)


def _union(*groups: tuple[str, ...]) -> tuple[str, ...]:
    merged: dict[str, None] = {}
    for group in groups:
        for feature in group:
            merged.setdefault(feature, None)
    return tuple(merged)


TIER_DEFINITIONS: dict[Tier, TierDefinition] = {
    Tier.FREE: TierDefinition(Tier.FREE, "Free", 1, _SALES_FEATURES),
    Tier.SALES: TierDefinition(Tier.SALES, "Sales", 1, _SALES_FEATURES),
    Tier.BUILD: TierDefinition(Tier.BUILD, "Build", 3, _BUILD_FEATURES),
    Tier.SCALE: TierDefinition(Tier.SCALE, "Scale", None, _SCALE_FEATURES),
    Tier.GOD_MODE: TierDefinition(
        Tier.GOD_MODE,
        "God Mode",
        None,
        _union(_SALES_FEATURES, _BUILD_FEATURES, _SCALE_FEATURES),
    ),
}


def parse_tier(value: str | None) -> Tier | None:
    if not value:
        return None
    try:
        return Tier(value.strip().lower())
    except ValueError:
        return None


def tier_definition(value: str | None) -> TierDefinition:
    """Definition for ``value``; unknown tiers keep their name but get the sales features and one seat."""
    tier = parse_tier(value)
    if tier is None:
        return TierDefinition(value or Tier.FREE.value, value or "Free", 1, _SALES_FEATURES)
    return TIER_DEFINITIONS[tier]


def tier_level(value: str | None) -> int:
    tier = parse_tier(value)
    if tier is None:
        return -1
    return TIER_HIERARCHY.index(tier)


def is_tier_at_least(value: str | None, minimum: str) -> bool:
    required = tier_level(minimum)
    return required >= 0 and tier_level(value) >= required


def upgrade_path(value: str | None) -> list[Tier]:
    """Purchasable tiers above ``value``."""
    current = tier_level(value)
    return [tier for tier in TIER_HIERARCHY if tier is not Tier.GOD_MODE and TIER_HIERARCHY.index(tier) > current]
