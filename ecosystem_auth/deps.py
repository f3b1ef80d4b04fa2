# ecosystem_auth/deps.py
from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from ecosystem_auth.core.database import get_db
from ecosystem_auth.core.errors import AuthenticationError, AuthorizationError
from ecosystem_auth.models.user import User
from ecosystem_auth.services.access_policy import AccessPolicy, get_access_policy
from ecosystem_auth.services.authorization_service import AuthorizationService
from ecosystem_auth.services.session_provider import Identity, SessionProvider, get_session_provider


def get_current_identity(
    request: Request,
    db: Session = Depends(get_db),
    provider: SessionProvider = Depends(get_session_provider),
) -> Identity:
    """Resolve the caller through the active session provider and attach it to the request."""
    identity = provider.authenticate(request, db)
    request.state.identity = identity
    return identity


def get_current_user(
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
) -> User:
    user = db.query(User).filter(User.id == identity.user_id).first()
    if user is None or not user.is_active:
        raise AuthenticationError("User not found or inactive")
    return user


def require_company(
    request: Request,
    identity: Identity = Depends(get_current_identity),
) -> Identity:
    """Reject unscoped tokens with a distinct 'company selection required' error."""
    AuthorizationService.ensure_company_selected(request=request, identity=identity)
    return identity


def require_permission(permission: str):
    def _dependency(
        request: Request,
        identity: Identity = Depends(get_current_identity),
        policy: AccessPolicy = Depends(get_access_policy),
    ) -> Identity:
        AuthorizationService.ensure_permission(
            request=request,
            identity=identity,
            policy=policy,
            permission=permission,
        )
        return identity

    return _dependency


def require_min_role(required_role: str):
    def _dependency(
        request: Request,
        identity: Identity = Depends(get_current_identity),
        policy: AccessPolicy = Depends(get_access_policy),
    ) -> Identity:
        AuthorizationService.ensure_min_role(
            request=request,
            identity=identity,
            policy=policy,
            required_role=required_role,
        )
        return identity

    return _dependency


def require_company_permission(permission: str):
    """Path ``company_id`` must be the caller's current company (super-admins excepted), then RBAC."""

    def _dependency(
        company_id: int,
        request: Request,
        identity: Identity = Depends(get_current_identity),
        policy: AccessPolicy = Depends(get_access_policy),
    ) -> Identity:
        AuthorizationService.ensure_company_scope(request=request, identity=identity, company_id=company_id)
        AuthorizationService.ensure_permission(
            request=request,
            identity=identity,
            policy=policy,
            permission=permission,
        )
        return identity

    return _dependency


def require_super_admin(
    request: Request,
    identity: Identity = Depends(get_current_identity),
) -> Identity:
    if not identity.is_super_admin:
        AuthorizationService.log_access_denied(
            reason="super_admin_required",
            identity=identity,
            company_id=identity.company_id,
            request=request,
        )
        raise AuthorizationError("Super admin access required")
    return identity
