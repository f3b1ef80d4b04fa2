from __future__ import annotations

import pytest
from starlette.requests import Request

from ecosystem_auth.core.errors import AuthorizationError, CompanySelectionRequiredError
from ecosystem_auth.deps import (
    require_company,
    require_company_permission,
    require_min_role,
    require_permission,
    require_super_admin,
)
from ecosystem_auth.services.access_policy import (
    APP_ACCESS,
    COACHING_DATA,
    RolePermissionPolicy,
    SuperUserGatePolicy,
)
from ecosystem_auth.services.permissions import MANAGE_USERS, PROCESS_SALES, VOID_SALES
from ecosystem_auth.services.session_provider import Identity


def _build_request(path: str = "/api/resource", method: str = "GET") -> Request:
    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "query_string": b"",
        "headers": [],
        "path_params": {},
        "client": ("testclient", 50000),
        "server": ("testserver", 80),
        "scheme": "http",
    }
    return Request(scope)


def test_require_company_rejects_unscoped_identity():
    identity = Identity(user_id=1)

    with pytest.raises(CompanySelectionRequiredError) as exc:
        require_company(request=_build_request(), identity=identity)

    assert exc.value.status_code == 403
    assert exc.value.to_body()["code"] == "COMPANY_SELECTION_REQUIRED"


def test_company_scope_is_checked_before_role():
    identity = Identity(user_id=2, company_id=1, role="business_owner")
    dependency = require_company_permission(MANAGE_USERS)

    with pytest.raises(AuthorizationError) as exc:
        dependency(company_id=2, request=_build_request(), identity=identity, policy=RolePermissionPolicy())

    assert exc.value.message == "Access denied to this company"


def test_permission_is_denied_when_company_matches():
    identity = Identity(user_id=3, company_id=5, role="cashier")
    dependency = require_company_permission(MANAGE_USERS)

    with pytest.raises(AuthorizationError) as exc:
        dependency(company_id=5, request=_build_request(), identity=identity, policy=RolePermissionPolicy())

    assert exc.value.message == "Insufficient permissions"
    assert exc.value.context == {"required": MANAGE_USERS, "role": "cashier"}


def test_super_admin_bypasses_company_scope_and_permissions():
    identity = Identity(user_id=4, is_super_admin=True)
    dependency = require_company_permission(VOID_SALES)

    assert dependency(company_id=99, request=_build_request(), identity=identity, policy=RolePermissionPolicy()) is identity


def test_require_permission_allows_granted_capability():
    identity = Identity(user_id=5, company_id=1, role="cashier")

    result = require_permission(PROCESS_SALES)(request=_build_request(), identity=identity, policy=RolePermissionPolicy())

    assert result is identity


def test_require_min_role_uses_level_hierarchy():
    manager = Identity(user_id=6, company_id=1, role="manager")
    trainee = Identity(user_id=7, company_id=1, role="trainee")
    dependency = require_min_role("cashier")

    assert dependency(request=_build_request(), identity=manager, policy=RolePermissionPolicy()) is manager
    with pytest.raises(AuthorizationError):
        dependency(request=_build_request(), identity=trainee, policy=RolePermissionPolicy())


def test_gate_policy_needs_app_access_flag():
    allowed = Identity(user_id=8, can_access_app=True)
    revoked = Identity(user_id=9, can_access_app=False)
    dependency = require_permission(APP_ACCESS)

    assert dependency(request=_build_request(), identity=allowed, policy=SuperUserGatePolicy()) is allowed
    with pytest.raises(AuthorizationError):
        dependency(request=_build_request(), identity=revoked, policy=SuperUserGatePolicy())


def test_gate_policy_maps_coaching_requirement_to_its_flag():
    policy = SuperUserGatePolicy()

    assert policy.has_permission(Identity(user_id=10, can_access_coaching_data=True), COACHING_DATA) is True
    assert policy.has_permission(Identity(user_id=11), COACHING_DATA) is False
    assert policy.has_min_role(Identity(user_id=12), "business_owner") is True


def test_require_super_admin_rejects_regular_users():
    with pytest.raises(AuthorizationError) as exc:
        require_super_admin(request=_build_request(), identity=Identity(user_id=13, company_id=1, role="business_owner"))

    assert exc.value.message == "Super admin access required"
