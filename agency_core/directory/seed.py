from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from agency_core.authz.catalog import ALL_PERMISSIONS, ALL_SECTIONS, BILLING_PERMISSION
from agency_core.directory.models import AgencyRoleTemplate


logger = logging.getLogger("agency_core.directory.seed")


@dataclass(frozen=True)
class TemplateSeed:
    name: str
    display_name: str
    description: str
    category: str
    color: str
    permissions: tuple[str, ...]
    sections: tuple[str, ...]


_CRM_READ = ("can_view_dashboard", "can_view_leads", "can_view_contacts", "can_view_opportunities", "can_view_activities")
_CRM_WRITE = (
    "can_create_leads",
    "can_edit_leads",
    "can_create_contacts",
    "can_edit_contacts",
    "can_create_opportunities",
    "can_edit_opportunities",
    "can_create_activities",
    "can_edit_activities",
)
_CALENDAR = ("can_view_calendar", "can_manage_calendar", "can_view_meetings", "can_manage_meetings")
_MARKETING = (
    "can_view_forms",
    "can_manage_forms",
    "can_view_campaigns",
    "can_manage_campaigns",
    "can_view_workflows",
    "can_manage_workflows",
)

DEFAULT_TEMPLATES: tuple[TemplateSeed, ...] = (
    TemplateSeed(
        name="sales_rep",
        display_name="Sales Rep",
        description="Works leads and deals end to end",
        category="Sales",
        color="#2563eb",
        permissions=(*_CRM_READ, *_CRM_WRITE, *_CALENDAR),
        sections=("dashboard", "leads", "contacts", "opportunities", "calendar"),
    ),
    TemplateSeed(
        name="marketing_manager",
        display_name="Marketing Manager",
        description="Runs forms, campaigns and automations",
        category="Marketing",
        color="#db2777",
        permissions=(*_CRM_READ, "can_create_leads", *_MARKETING, "can_view_reports", "can_export_data"),
        sections=("dashboard", "leads", "contacts", "forms", "campaigns", "workflows", "reports"),
    ),
    TemplateSeed(
        name="account_manager",
        display_name="Account Manager",
        description="Owns client relationships and reporting",
        category="Client Success",
        color="#059669",
        permissions=(*_CRM_READ, *_CRM_WRITE, *_CALENDAR, "can_view_reports", "can_view_second_brain"),
        sections=("dashboard", "leads", "contacts", "opportunities", "calendar", "reports", "second_brain"),
    ),
    TemplateSeed(
        name="operations",
        display_name="Operations",
        description="Manages team, data and integrations",
        category="Administration",
        color="#7c3aed",
        permissions=(
            *_CRM_READ,
            "can_view_reports",
            "can_export_data",
            "can_import_data",
            "can_manage_team",
            "can_manage_integrations",
        ),
        sections=("dashboard", "reports", "settings"),
    ),
    TemplateSeed(
        name="viewer",
        display_name="Viewer",
        description="Read-only access to CRM records",
        category="General",
        color="#6b7280",
        permissions=_CRM_READ,
        sections=("dashboard", "leads", "contacts", "opportunities"),
    ),
)


def _expand(granted: tuple[str, ...], universe: tuple[str, ...]) -> dict[str, bool]:
    granted_set = set(granted)
    return {key: key in granted_set for key in universe}


def seed_role_templates(session: Session, templates: tuple[TemplateSeed, ...] = DEFAULT_TEMPLATES) -> int:
    """Insert any missing global role templates. Returns how many were created."""
    existing = set(session.scalars(select(AgencyRoleTemplate.name)).all())
    created = 0
    for position, template in enumerate(templates):
        if template.name in existing:
            continue
        if BILLING_PERMISSION in template.permissions:
            raise ValueError(f"role template '{template.name}' cannot grant billing management")
        session.add(
            AgencyRoleTemplate(
                name=template.name,
                display_name=template.display_name,
                description=template.description,
                category=template.category,
                color=template.color,
                permissions=_expand(template.permissions, tuple(ALL_PERMISSIONS)),
                section_access=_expand(template.sections, ALL_SECTIONS),
                position=position,
            )
        )
        created += 1
    session.commit()
    if created:
        logger.info("directory.templates.seeded", extra={"outcome": str(created)})
    return created
