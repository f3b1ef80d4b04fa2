from __future__ import annotations

from ecosystem_auth.services.permissions import (
    ALL_PERMISSIONS,
    APPROVE_OVERRIDES,
    INVITE_USERS,
    MANAGE_USERS,
    PROCESS_PAYROLL,
    PROCESS_SALES,
    SUPER_ADMIN_ROLE,
    VIEW_AUDIT,
    VOID_SALES,
    get_role_permissions,
    has_min_role,
    has_permission,
    normalize_role,
    role_level,
)


def test_role_levels_follow_the_hierarchy():
    assert role_level(SUPER_ADMIN_ROLE) == 100
    assert role_level("business_owner") == 95
    assert role_level("corporate_admin") == 92
    assert role_level("accountant") == 90
    assert role_level("admin") == 80
    assert role_level("store_manager") == 70
    assert role_level("payroll_admin") == 70
    assert role_level("cashier") == 20
    assert role_level("trainee") == 5


def test_unknown_role_has_no_level():
    assert role_level("janitor") == 0
    assert role_level(None) == 0
    assert has_min_role("janitor", "trainee") is False


def test_aliases_resolve_to_canonical_roles():
    assert normalize_role("Owner") == "business_owner"
    assert normalize_role(" manager ") == "store_manager"
    assert role_level("owner") == role_level("business_owner")


def test_min_role_comparison():
    assert has_min_role("admin", "store_manager") is True
    assert has_min_role("store_manager", "payroll_admin") is True
    assert has_min_role("cashier", "store_manager") is False
    assert has_min_role(SUPER_ADMIN_ROLE, "business_owner") is True


def test_cashier_can_sell_but_not_void():
    assert has_permission("cashier", PROCESS_SALES) is True
    assert has_permission("cashier", VOID_SALES) is False
    assert has_permission("cashier", MANAGE_USERS) is False


def test_manager_can_approve_overrides():
    assert has_permission("store_manager", APPROVE_OVERRIDES) is True
    assert has_permission("manager", APPROVE_OVERRIDES) is True
    assert has_permission("trainee", APPROVE_OVERRIDES) is False


def test_admin_manages_users_but_does_not_invite():
    assert has_permission("admin", MANAGE_USERS) is True
    assert has_permission("admin", VIEW_AUDIT) is True
    assert has_permission("admin", INVITE_USERS) is False


def test_payroll_admin_runs_payroll_only():
    assert has_permission("payroll_admin", PROCESS_PAYROLL) is True
    assert has_permission("payroll_admin", PROCESS_SALES) is False


def test_permission_map_lists_every_capability():
    cashier = get_role_permissions("cashier")

    assert set(cashier) == set(ALL_PERMISSIONS)
    assert cashier[PROCESS_SALES] is True
    assert cashier[VOID_SALES] is False


def test_super_admin_and_owner_hold_every_capability():
    assert all(get_role_permissions(SUPER_ADMIN_ROLE).values())
    assert all(get_role_permissions("owner").values())


def test_unknown_role_holds_nothing():
    assert not any(get_role_permissions("janitor").values())
    assert has_permission(None, PROCESS_SALES) is False
