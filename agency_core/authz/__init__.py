from agency_core.authz.access import AccessValidator, Denied, Granted, Inconclusive
from agency_core.authz.catalog import ALL_PERMISSIONS, ALL_SECTIONS, BILLING_PERMISSION, can_manage_member
from agency_core.authz.permissions import PermissionResolver, RoleCatalog, compute_effective_permissions

__all__ = [
    "ALL_PERMISSIONS",
    "ALL_SECTIONS",
    "BILLING_PERMISSION",
    "AccessValidator",
    "Denied",
    "Granted",
    "Inconclusive",
    "PermissionResolver",
    "RoleCatalog",
    "can_manage_member",
    "compute_effective_permissions",
]
