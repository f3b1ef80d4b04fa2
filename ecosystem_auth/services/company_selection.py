from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from ecosystem_auth.core.errors import AuthorizationError, NotFoundError, TenantStateError
from ecosystem_auth.models.company import BLOCKED_SUBSCRIPTION_STATUSES, Company
from ecosystem_auth.models.user import User
from ecosystem_auth.services.permissions import SUPER_ADMIN_ROLE, get_role_permissions
from ecosystem_auth.services.tenant_access import (
    AccessibleCompany,
    get_access_edge,
    list_accessible_companies,
)
from ecosystem_auth.services.tokens import DEFAULT_TOKEN_TTL, SessionClaims, issue_token

logger = logging.getLogger(__name__)

ACCESS_DENIED_MESSAGE = "Access denied to this company"


@dataclass(frozen=True)
class LoginBinding:
    token: str
    claims: SessionClaims
    companies: List[AccessibleCompany]
    selected_company: Optional[AccessibleCompany]
    requires_company_selection: bool


@dataclass(frozen=True)
class CompanySelection:
    token: str
    claims: SessionClaims
    company: AccessibleCompany
    role: str
    permissions: Dict[str, bool]


def claims_for_user(user: User) -> SessionClaims:
    return SessionClaims(
        user_id=user.id,
        username=user.username,
        email=user.email,
        full_name=user.full_name,
        is_super_admin=bool(user.is_super_admin),
    )


def is_blocked_status(subscription_status: Optional[str]) -> bool:
    return (subscription_status or "").strip().lower() in BLOCKED_SUBSCRIPTION_STATUSES


def ensure_company_available(company: Company) -> None:
    if is_blocked_status(company.subscription_status):
        raise TenantStateError(company.subscription_status.strip().lower())


def bind_at_login(db: Session, user: User, *, ttl: timedelta = DEFAULT_TOKEN_TTL) -> LoginBinding:
    """Mint the login token.

    Exactly one accessible company is bound immediately unless its
    subscription is pending or suspended; any other count yields an unscoped
    token, and more than one requires an explicit company selection.
    """
    base_claims = claims_for_user(user)
    companies = list_accessible_companies(db, user)

    selected: Optional[AccessibleCompany] = None
    claims = base_claims
    if len(companies) == 1 and not is_blocked_status(companies[0].subscription_status):
        selected = companies[0]
        claims = base_claims.scoped_to(selected.company_id, selected.role)

    return LoginBinding(
        token=issue_token(claims, ttl),
        claims=claims,
        companies=companies,
        selected_company=selected,
        requires_company_selection=len(companies) > 1,
    )


def select_company(
    db: Session,
    user: User,
    company_id: int,
    *,
    ttl: timedelta = DEFAULT_TOKEN_TTL,
) -> CompanySelection:
    """Bind ``company_id`` for ``user``; no token is minted on any failure."""
    company = db.query(Company).filter(Company.id == company_id).first()

    if user.is_super_admin:
        if company is None:
            raise NotFoundError("Company not found")
        if not company.is_active:
            raise AuthorizationError("Company is inactive")
        role = SUPER_ADMIN_ROLE
        is_primary = False
    else:
        edge = get_access_edge(db, user_id=user.id, company_id=company_id)
        if edge is None or company is None or not company.is_active:
            logger.warning(
                "Access denied (no_access_edge): user_id=%s company_id=%s",
                user.id,
                company_id,
            )
            raise AuthorizationError(ACCESS_DENIED_MESSAGE)
        role = edge.role
        is_primary = bool(edge.is_primary)

    ensure_company_available(company)

    claims = claims_for_user(user).scoped_to(company.id, role)
    accessible = AccessibleCompany(
        company_id=company.id,
        company_name=company.company_name,
        trading_name=company.trading_name,
        role=role,
        is_primary=is_primary,
        subscription_status=company.subscription_status,
        modules_enabled=list(company.modules_enabled or []),
    )
    return CompanySelection(
        token=issue_token(claims, ttl),
        claims=claims,
        company=accessible,
        role=role,
        permissions=get_role_permissions(role),
    )
