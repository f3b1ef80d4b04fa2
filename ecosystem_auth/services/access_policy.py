from __future__ import annotations

from abc import ABC, abstractmethod

from fastapi import Request

from ecosystem_auth.core.config import APP_MODE, APP_MODE_SUPER_USER_GATE
from ecosystem_auth.services import permissions
from ecosystem_auth.services.session_provider import Identity

APP_ACCESS = "app_access"
COACHING_DATA = "coaching_data"


class AccessPolicy(ABC):
    """Decides whether a resolved identity may perform an operation."""

    #: Whether permission checks need a company-scoped identity.
    requires_company: bool = True

    @abstractmethod
    def has_permission(self, identity: Identity, permission: str) -> bool:
        ...

    @abstractmethod
    def has_min_role(self, identity: Identity, required_role: str) -> bool:
        ...


class RolePermissionPolicy(AccessPolicy):
    """Multi-tenant role model: capability list or role level, super-admin bypass."""

    requires_company = True

    def has_permission(self, identity: Identity, permission: str) -> bool:
        if identity.is_super_admin:
            return True
        return permissions.has_permission(identity.role, permission)

    def has_min_role(self, identity: Identity, required_role: str) -> bool:
        if identity.is_super_admin:
            return True
        return permissions.has_min_role(identity.role, required_role)


class SuperUserGatePolicy(AccessPolicy):
    """Single-flag gate: everything needs ``can_access_app``; coaching data also needs its own flag."""

    requires_company = False

    def has_permission(self, identity: Identity, permission: str) -> bool:
        if not identity.can_access_app:
            return False
        if permission == COACHING_DATA:
            return identity.can_access_coaching_data
        return True

    def has_min_role(self, identity: Identity, required_role: str) -> bool:
        return identity.can_access_app


_role_policy = RolePermissionPolicy()
_gate_policy = SuperUserGatePolicy()


def policy_for_mode(app_mode: str) -> AccessPolicy:
    if app_mode == APP_MODE_SUPER_USER_GATE:
        return _gate_policy
    return _role_policy


def get_access_policy(request: Request) -> AccessPolicy:
    app = request.scope.get("app")
    app_mode = getattr(getattr(app, "state", None), "app_mode", None) or APP_MODE
    return policy_for_mode(app_mode)
