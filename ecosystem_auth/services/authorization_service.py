from __future__ import annotations

import logging
from typing import Optional

from fastapi import Request

from ecosystem_auth.core.errors import AuthorizationError, CompanySelectionRequiredError
from ecosystem_auth.services.access_policy import AccessPolicy
from ecosystem_auth.services.permissions import normalize_role, role_level
from ecosystem_auth.services.session_provider import Identity

logger = logging.getLogger(__name__)


class AuthorizationService:
    """Centralize company-scope and RBAC checks for protected endpoints."""

    @staticmethod
    def log_access_denied(
        *, reason: str, identity: Identity, company_id: Optional[int], request: Optional[Request]
    ) -> None:
        endpoint = f"{request.method} {request.url.path}" if request is not None else None
        logger.warning(
            "Access denied (%s): user_id=%s user_role=%s user_company=%s company_id=%s endpoint=%s",
            reason,
            identity.user_id,
            identity.role,
            identity.company_id,
            company_id,
            endpoint,
        )

    @classmethod
    def ensure_company_selected(cls, *, request: Optional[Request], identity: Identity) -> int:
        if identity.company_id is None:
            cls.log_access_denied(reason="company_not_selected", identity=identity, company_id=None, request=request)
            raise CompanySelectionRequiredError(
                "Company selection required",
                message="Select a company before using this endpoint.",
            )
        return identity.company_id

    @classmethod
    def ensure_company_scope(cls, *, request: Optional[Request], identity: Identity, company_id: int) -> int:
        if identity.is_super_admin:
            return company_id
        current = cls.ensure_company_selected(request=request, identity=identity)
        if int(current) != int(company_id):
            cls.log_access_denied(reason="company_mismatch", identity=identity, company_id=company_id, request=request)
            raise AuthorizationError("Access denied to this company")
        return company_id

    @classmethod
    def ensure_permission(
        cls,
        *,
        request: Optional[Request],
        identity: Identity,
        policy: AccessPolicy,
        permission: str,
    ) -> None:
        if policy.requires_company and not identity.is_super_admin:
            cls.ensure_company_selected(request=request, identity=identity)
        if not policy.has_permission(identity, permission):
            cls.log_access_denied(
                reason=f"permission_denied:{permission}",
                identity=identity,
                company_id=identity.company_id,
                request=request,
            )
            raise AuthorizationError(
                "Insufficient permissions",
                required=permission,
                role=normalize_role(identity.role) or None,
            )

    @classmethod
    def ensure_min_role(
        cls,
        *,
        request: Optional[Request],
        identity: Identity,
        policy: AccessPolicy,
        required_role: str,
    ) -> None:
        if policy.requires_company and not identity.is_super_admin:
            cls.ensure_company_selected(request=request, identity=identity)
        if not policy.has_min_role(identity, required_role):
            cls.log_access_denied(
                reason=f"role_denied:{required_role}",
                identity=identity,
                company_id=identity.company_id,
                request=request,
            )
            raise AuthorizationError(
                f"Requires role {required_role} or higher",
                required=required_role,
                role=normalize_role(identity.role) or None,
            )

    @classmethod
    def ensure_can_assign_role(cls, *, request: Optional[Request], identity: Identity, role: str) -> None:
        """Company admins may only hand out roles up to their own level."""
        if identity.is_super_admin:
            return
        if role_level(role) > role_level(identity.role):
            cls.log_access_denied(
                reason=f"role_above_caller:{role}",
                identity=identity,
                company_id=identity.company_id,
                request=request,
            )
            raise AuthorizationError(
                "Cannot assign a role above your own",
                required=role,
                role=normalize_role(identity.role) or None,
            )

    @classmethod
    def ensure_can_manage_member(
        cls,
        *,
        request: Optional[Request],
        identity: Identity,
        target_user_id: int,
        target_role: Optional[str],
        target_is_super_admin: bool = False,
    ) -> None:
        """Reject edits of the caller's own edge, of super-admins and of members at or above the caller."""
        if identity.is_super_admin:
            return
        if int(target_user_id) == int(identity.user_id):
            cls.log_access_denied(
                reason="self_management",
                identity=identity,
                company_id=identity.company_id,
                request=request,
            )
            raise AuthorizationError("You cannot change your own access")
        if target_is_super_admin or (target_role and role_level(target_role) >= role_level(identity.role)):
            cls.log_access_denied(
                reason="target_outranks_caller",
                identity=identity,
                company_id=identity.company_id,
                request=request,
            )
            raise AuthorizationError("Cannot manage a member at or above your own role")
