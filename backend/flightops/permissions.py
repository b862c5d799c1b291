"""
Role and capability definitions.

Roles are held per organization membership. What a role may do is a static
table keyed by Capability; services ask `role_has_capability` instead of
comparing role strings.

DESIGN PRINCIPLES:
- Capabilities are granular (one action per capability)
- Staff roles (owner, admin, instructor) run the flight line
- Financial visibility is restricted to owner and admin
"""

from __future__ import annotations

from enum import Enum


# =============================================================================
# ROLES
# =============================================================================

class Role:
    OWNER = "owner"
    ADMIN = "admin"
    INSTRUCTOR = "instructor"
    MEMBER = "member"
    STUDENT = "student"


VALID_ROLES = {Role.OWNER, Role.ADMIN, Role.INSTRUCTOR, Role.MEMBER, Role.STUDENT}

STAFF_ROLES = frozenset({Role.OWNER, Role.ADMIN, Role.INSTRUCTOR})

ROLE_HIERARCHY = {
    Role.OWNER: 4,
    Role.ADMIN: 3,
    Role.INSTRUCTOR: 2,
    Role.MEMBER: 1,
    Role.STUDENT: 0,
}


# =============================================================================
# CAPABILITIES
# =============================================================================

class Capability(str, Enum):
    VIEW_BOOKINGS = "VIEW_BOOKINGS"
    MANAGE_BOOKINGS = "MANAGE_BOOKINGS"
    MANAGE_INVOICES = "MANAGE_INVOICES"
    RECORD_PAYMENTS = "RECORD_PAYMENTS"
    VIEW_FINANCIALS = "VIEW_FINANCIALS"
    VIEW_AUDIT_LOG = "VIEW_AUDIT_LOG"
    MODIFY_ORG_SETTINGS = "MODIFY_ORG_SETTINGS"
    MANAGE_STAFF = "MANAGE_STAFF"


# Each capability is defined as: (capability, name, description)
CAPABILITY_DEFINITIONS = [
    (Capability.VIEW_BOOKINGS, "View Bookings", "See every booking in the organization"),
    (Capability.MANAGE_BOOKINGS, "Manage Bookings", "Create, edit, check out and cancel bookings"),
    (Capability.MANAGE_INVOICES, "Manage Invoices", "Create and edit member invoices"),
    (Capability.RECORD_PAYMENTS, "Record Payments", "Record payments against invoices"),
    (Capability.VIEW_FINANCIALS, "View Financials", "See member account balances and ledgers"),
    (Capability.VIEW_AUDIT_LOG, "View Audit Log", "See change history of bookings"),
    (Capability.MODIFY_ORG_SETTINGS, "Modify Organization Settings", "Change organization settings"),
    (Capability.MANAGE_STAFF, "Manage Staff", "Add and remove staff members"),
]

_STAFF_CAPABILITIES = {
    Capability.VIEW_BOOKINGS,
    Capability.MANAGE_BOOKINGS,
    Capability.MANAGE_INVOICES,
    Capability.RECORD_PAYMENTS,
    Capability.VIEW_AUDIT_LOG,
}

ROLE_CAPABILITIES: dict[str, frozenset[Capability]] = {
    Role.OWNER: frozenset(Capability),
    Role.ADMIN: frozenset(Capability),
    Role.INSTRUCTOR: frozenset(_STAFF_CAPABILITIES),
    Role.MEMBER: frozenset(),
    Role.STUDENT: frozenset(),
}


# =============================================================================
# NAVIGATION ACCESS
# =============================================================================

_ALL = [Role.OWNER, Role.ADMIN, Role.INSTRUCTOR, Role.MEMBER, Role.STUDENT]
_STAFF = [Role.OWNER, Role.ADMIN, Role.INSTRUCTOR]

TAB_ROLE_ACCESS: dict[str, list[str]] = {
    # Navigation items
    "dashboard": _ALL,
    "scheduler": _ALL,
    "bookings": _STAFF + [Role.STUDENT],
    "aircraft": _STAFF + [Role.STUDENT],
    "members": _STAFF,
    "staff": _STAFF,
    "invoices": _STAFF + [Role.STUDENT],
    "training": _ALL,
    "safety": _STAFF,
    "settings": _ALL,

    # Member profile tabs
    "contact": _ALL,
    "pilot": _STAFF,
    "memberships": _ALL,
    "account": _ALL,
    "flights": _ALL,
}


# =============================================================================
# HELPERS
# =============================================================================

def is_staff_role(role: str | None) -> bool:
    return role in STAFF_ROLES


def has_role_privilege(role: str | None, required_role: str) -> bool:
    """True if role sits at or above required_role in the hierarchy."""
    if role not in ROLE_HIERARCHY:
        return False
    return ROLE_HIERARCHY[role] >= ROLE_HIERARCHY[required_role]


def role_has_capability(role: str | None, capability: Capability) -> bool:
    if role is None:
        return False
    return capability in ROLE_CAPABILITIES.get(role, frozenset())


def capabilities_for_role(role: str | None) -> list[str]:
    if role is None:
        return []
    return sorted(c.value for c in ROLE_CAPABILITIES.get(role, frozenset()))


def can_access_tab(tab: str, role: str | None) -> bool:
    if role is None:
        return False
    return role in TAB_ROLE_ACCESS.get(tab, [])


def accessible_tabs(role: str | None) -> list[str]:
    return [tab for tab in TAB_ROLE_ACCESS if can_access_tab(tab, role)]
