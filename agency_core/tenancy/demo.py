from __future__ import annotations

from agency_core.tenancy.schemas import ACTIVE_INVITATION_STATUS, Membership, Tenant


DEMO_TENANT_ID = "demo-agency-virtual"
DEMO_TENANT_SLUG = "demo-agency"
DEMO_TENANT_NAME = "Demo Agency"
DEMO_TENANT_TIER = "scale"
DEMO_MEMBER_ROLE = "admin"


def demo_tenant() -> Tenant:
    """Synthetic tenant for product demonstrations. Lives only in session memory and the local cache."""
    return Tenant(
        id=DEMO_TENANT_ID,
        name=DEMO_TENANT_NAME,
        slug=DEMO_TENANT_SLUG,
        subscription_tier=DEMO_TENANT_TIER,
        is_demo=True,
    )


def demo_membership(user_id: str) -> Membership:
    return Membership(
        user_id=user_id,
        tenant_id=DEMO_TENANT_ID,
        role=DEMO_MEMBER_ROLE,
        invitation_status=ACTIVE_INVITATION_STATUS,
    )


def is_demo_tenant_id(tenant_id: str | None) -> bool:
    return tenant_id == DEMO_TENANT_ID
