from __future__ import annotations

from enum import StrEnum


BILLING_PERMISSION = "can_manage_billing"

ALL_PERMISSIONS: dict[str, str] = {
    "can_view_dashboard": "View the main dashboard",
    "can_view_leads": "View leads",
    "can_create_leads": "Create new leads",
    "can_edit_leads": "Edit existing leads",
    "can_delete_leads": "Delete leads",
    "can_view_contacts": "View contacts",
    "can_create_contacts": "Create new contacts",
    "can_edit_contacts": "Edit existing contacts",
    "can_delete_contacts": "Delete contacts",
    "can_view_opportunities": "View opportunities/deals",
    "can_create_opportunities": "Create new opportunities",
    "can_edit_opportunities": "Edit existing opportunities",
    "can_delete_opportunities": "Delete opportunities",
    "can_view_activities": "View activities",
    "can_create_activities": "Create new activities",
    "can_edit_activities": "Edit existing activities",
    "can_view_calendar": "View calendar",
    "can_manage_calendar": "Manage calendar events",
    "can_view_meetings": "View meetings",
    "can_manage_meetings": "Schedule and manage meetings",
    "can_view_forms": "View forms",
    "can_manage_forms": "Create and manage forms",
    "can_view_campaigns": "View email campaigns",
    "can_manage_campaigns": "Create and manage campaigns",
    "can_view_workflows": "View automation workflows",
    "can_manage_workflows": "Create and manage workflows",
    "can_view_reports": "View reports and analytics",
    "can_export_data": "Export data",
    "can_import_data": "Import data",
    "can_manage_team": "Invite and manage team members",
    "can_manage_roles": "Create and manage roles",
    BILLING_PERMISSION: "Manage billing and subscription",
    "can_manage_agency_settings": "Manage agency settings",
    "can_access_api": "Access API",
    "can_manage_integrations": "Manage integrations",
    "can_view_second_brain": "View Second Brain",
    "can_manage_second_brain": "Manage Second Brain content",
}

PERMISSION_CATEGORIES: dict[str, tuple[str, ...]] = {
    "CRM": (
        "can_view_dashboard",
        "can_view_leads",
        "can_create_leads",
        "can_edit_leads",
        "can_delete_leads",
        "can_view_contacts",
        "can_create_contacts",
        "can_edit_contacts",
        "can_delete_contacts",
        "can_view_opportunities",
        "can_create_opportunities",
        "can_edit_opportunities",
        "can_delete_opportunities",
        "can_view_activities",
        "can_create_activities",
        "can_edit_activities",
    ),
    "Calendar": ("can_view_calendar", "can_manage_calendar", "can_view_meetings", "can_manage_meetings"),
    "Marketing": (
        "can_view_forms",
        "can_manage_forms",
        "can_view_campaigns",
        "can_manage_campaigns",
        "can_view_workflows",
        "can_manage_workflows",
    ),
    "Data": ("can_view_reports", "can_export_data", "can_import_data"),
    "Administration": (
        "can_manage_team",
        "can_manage_roles",
        BILLING_PERMISSION,
        "can_manage_agency_settings",
        "can_access_api",
        "can_manage_integrations",
    ),
    "AI Features": ("can_view_second_brain", "can_manage_second_brain"),
}


class Section(StrEnum):
    DASHBOARD = "dashboard"
    LEADS = "leads"
    CONTACTS = "contacts"
    OPPORTUNITIES = "opportunities"
    CALENDAR = "calendar"
    FORMS = "forms"
    CAMPAIGNS = "campaigns"
    WORKFLOWS = "workflows"
    REPORTS = "reports"
    SETTINGS = "settings"
    SECOND_BRAIN = "second_brain"


ALL_SECTIONS: tuple[str, ...] = tuple(section.value for section in Section)

BYPASS_ROLES = frozenset({"owner", "admin"})

_MANAGEABLE_ROLES: dict[str, frozenset[str]] = {
    "owner": frozenset({"owner", "admin", "member"}),
    "admin": frozenset({"member"}),
    "member": frozenset(),
}


def owner_permissions() -> dict[str, bool]:
    return {key: True for key in ALL_PERMISSIONS}


def admin_permissions() -> dict[str, bool]:
    return {key: key != BILLING_PERMISSION for key in ALL_PERMISSIONS}


def category_for(permission_key: str) -> str | None:
    for category, keys in PERMISSION_CATEGORIES.items():
        if permission_key in keys:
            return category
    return None


def can_manage_member(manager_role: str, target_role: str) -> bool:
    """Owners manage anyone, admins manage plain members, members manage nobody."""
    return target_role in _MANAGEABLE_ROLES.get(manager_role, frozenset())
