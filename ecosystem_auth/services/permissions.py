"""Role vocabulary shared by the POS, payroll and accounting apps.

Two evaluation models live side by side: a capability list per role and a
numeric level per role. Both are pure lookups over the static tables below.
"""
from __future__ import annotations

from typing import Dict, FrozenSet, Optional

SUPER_ADMIN_ROLE = "super_admin"

# Legacy spellings still stored on some access rows
ROLE_ALIASES = {
    "owner": "business_owner",
    "manager": "store_manager",
}

ROLE_LEVELS: Dict[str, int] = {
    SUPER_ADMIN_ROLE: 100,
    "business_owner": 95,
    "corporate_admin": 92,
    "accountant": 90,
    "admin": 80,
    "payroll_admin": 70,
    "store_manager": 70,
    "cashier": 20,
    "trainee": 5,
}

VIEW_COMPANY = "view_company"
EDIT_COMPANY = "edit_company"
CREATE_COMPANY = "create_company"
VIEW_USERS = "view_users"
MANAGE_USERS = "manage_users"
INVITE_USERS = "invite_users"
PROCESS_SALES = "process_sales"
VOID_SALES = "void_sales"
PROCESS_REFUNDS = "process_refunds"
APPROVE_OVERRIDES = "approve_overrides"
VIEW_REPORTS = "view_reports"
MANAGE_PRODUCTS = "manage_products"
MANAGE_SETTINGS = "manage_settings"
VIEW_PAYROLL = "view_payroll"
PROCESS_PAYROLL = "process_payroll"
VIEW_ACCOUNTING = "view_accounting"
POST_JOURNALS = "post_journals"
VIEW_AUDIT = "view_audit"

ALL_PERMISSIONS: FrozenSet[str] = frozenset(
    {
        VIEW_COMPANY,
        EDIT_COMPANY,
        CREATE_COMPANY,
        VIEW_USERS,
        MANAGE_USERS,
        INVITE_USERS,
        PROCESS_SALES,
        VOID_SALES,
        PROCESS_REFUNDS,
        APPROVE_OVERRIDES,
        VIEW_REPORTS,
        MANAGE_PRODUCTS,
        MANAGE_SETTINGS,
        VIEW_PAYROLL,
        PROCESS_PAYROLL,
        VIEW_ACCOUNTING,
        POST_JOURNALS,
        VIEW_AUDIT,
    }
)

_STORE_FLOOR = frozenset(
    {VIEW_COMPANY, VIEW_USERS, PROCESS_SALES, VOID_SALES, PROCESS_REFUNDS, APPROVE_OVERRIDES, VIEW_REPORTS, MANAGE_PRODUCTS}
)

ROLE_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    SUPER_ADMIN_ROLE: ALL_PERMISSIONS,
    "business_owner": ALL_PERMISSIONS,
    "corporate_admin": ALL_PERMISSIONS,
    "accountant": frozenset(
        {
            VIEW_COMPANY,
            CREATE_COMPANY,
            VIEW_USERS,
            VIEW_REPORTS,
            VIEW_PAYROLL,
            PROCESS_PAYROLL,
            VIEW_ACCOUNTING,
            POST_JOURNALS,
            VIEW_AUDIT,
        }
    ),
    "admin": _STORE_FLOOR
    | frozenset({EDIT_COMPANY, MANAGE_USERS, MANAGE_SETTINGS, VIEW_PAYROLL, VIEW_ACCOUNTING, VIEW_AUDIT}),
    "payroll_admin": frozenset({VIEW_COMPANY, VIEW_USERS, VIEW_REPORTS, VIEW_PAYROLL, PROCESS_PAYROLL}),
    "store_manager": _STORE_FLOOR,
    "cashier": frozenset({VIEW_COMPANY, PROCESS_SALES}),
    "trainee": frozenset({PROCESS_SALES}),
}

INVITABLE_ROLES = frozenset({"accountant", "admin", "store_manager", "cashier", "payroll_admin", "trainee"})
ASSIGNABLE_ROLES = frozenset(ROLE_LEVELS) - {SUPER_ADMIN_ROLE}


def normalize_role(role: Optional[str]) -> str:
    value = (role or "").strip().lower()
    return ROLE_ALIASES.get(value, value)


def is_known_role(role: Optional[str]) -> bool:
    return normalize_role(role) in ROLE_LEVELS


def role_level(role: Optional[str]) -> int:
    return ROLE_LEVELS.get(normalize_role(role), 0)


def has_min_role(role: Optional[str], required_role: str) -> bool:
    if normalize_role(role) == SUPER_ADMIN_ROLE:
        return True
    return role_level(role) >= role_level(required_role)


def has_permission(role: Optional[str], permission: str) -> bool:
    return permission in ROLE_PERMISSIONS.get(normalize_role(role), frozenset())


def get_role_permissions(role: Optional[str]) -> Dict[str, bool]:
    granted = ROLE_PERMISSIONS.get(normalize_role(role), frozenset())
    return {permission: permission in granted for permission in sorted(ALL_PERMISSIONS)}
