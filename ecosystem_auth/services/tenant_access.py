from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from ecosystem_auth.models.company import Company
from ecosystem_auth.models.user import User
from ecosystem_auth.models.user_company_access import UserCompanyAccess
from ecosystem_auth.services.permissions import SUPER_ADMIN_ROLE


@dataclass(frozen=True)
class AccessibleCompany:
    company_id: int
    company_name: str
    trading_name: Optional[str]
    role: str
    is_primary: bool
    subscription_status: str
    modules_enabled: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.company_id,
            "companyName": self.company_name,
            "tradingName": self.trading_name,
            "role": self.role,
            "isPrimary": self.is_primary,
            "subscriptionStatus": self.subscription_status,
            "modulesEnabled": list(self.modules_enabled),
        }


def _from_company(company: Company, *, role: str, is_primary: bool) -> AccessibleCompany:
    return AccessibleCompany(
        company_id=company.id,
        company_name=company.company_name,
        trading_name=company.trading_name,
        role=role,
        is_primary=bool(is_primary),
        subscription_status=company.subscription_status,
        modules_enabled=list(company.modules_enabled or []),
    )


def list_accessible_companies(db: Session, user: User) -> List[AccessibleCompany]:
    """Companies ``user`` may bind to, in a stable order.

    Super-admins see every active company with a synthetic ``super_admin``
    role, ordered by id. Everyone else sees their active edges into active
    companies, primary edge first and then by company id.
    """
    if user.is_super_admin:
        companies = db.query(Company).filter(Company.is_active.is_(True)).order_by(Company.id.asc()).all()
        return [_from_company(company, role=SUPER_ADMIN_ROLE, is_primary=False) for company in companies]

    rows = (
        db.query(UserCompanyAccess, Company)
        .join(Company, Company.id == UserCompanyAccess.company_id)
        .filter(
            UserCompanyAccess.user_id == user.id,
            UserCompanyAccess.is_active.is_(True),
            Company.is_active.is_(True),
        )
        .order_by(UserCompanyAccess.is_primary.desc(), Company.id.asc())
        .all()
    )
    return [_from_company(company, role=edge.role, is_primary=edge.is_primary) for edge, company in rows]


def choose_default_company(companies: Sequence[AccessibleCompany]) -> Optional[AccessibleCompany]:
    """Primary edge first, otherwise the lowest company id."""
    if not companies:
        return None
    primaries = [company for company in companies if company.is_primary]
    if primaries:
        return min(primaries, key=lambda company: company.company_id)
    return min(companies, key=lambda company: company.company_id)


def get_access_edge(
    db: Session, *, user_id: int, company_id: int, active_only: bool = True
) -> Optional[UserCompanyAccess]:
    query = db.query(UserCompanyAccess).filter(
        UserCompanyAccess.user_id == user_id,
        UserCompanyAccess.company_id == company_id,
    )
    if active_only:
        query = query.filter(UserCompanyAccess.is_active.is_(True))
    return query.first()


def _clear_other_primaries(db: Session, *, user_id: int, company_id: int) -> None:
    (
        db.query(UserCompanyAccess)
        .filter(
            UserCompanyAccess.user_id == user_id,
            UserCompanyAccess.company_id != company_id,
            UserCompanyAccess.is_primary.is_(True),
        )
        .update({UserCompanyAccess.is_primary: False}, synchronize_session="fetch")
    )


def upsert_access_edge(
    db: Session,
    *,
    user_id: int,
    company_id: int,
    role: str,
    is_primary: Optional[bool] = None,
    is_active: bool = True,
    granted_by_user_id: Optional[int] = None,
) -> UserCompanyAccess:
    """Update the (user, company) edge in place, or create it. Does not commit."""
    edge = get_access_edge(db, user_id=user_id, company_id=company_id, active_only=False)
    if edge is None:
        edge = UserCompanyAccess(
            user_id=user_id,
            company_id=company_id,
            role=role,
            is_primary=bool(is_primary),
            is_active=is_active,
            granted_by_user_id=granted_by_user_id,
        )
        db.add(edge)
    else:
        edge.role = role
        edge.is_active = is_active
        if is_primary is not None:
            edge.is_primary = is_primary
        if granted_by_user_id is not None:
            edge.granted_by_user_id = granted_by_user_id

    if edge.is_primary:
        _clear_other_primaries(db, user_id=user_id, company_id=company_id)
    db.flush()
    return edge


def deactivate_access_edge(db: Session, *, user_id: int, company_id: int) -> Optional[UserCompanyAccess]:
    edge = get_access_edge(db, user_id=user_id, company_id=company_id)
    if edge is None:
        return None
    edge.is_active = False
    edge.is_primary = False
    db.flush()
    return edge


def has_active_edges_elsewhere(db: Session, *, user_id: int, company_id: int) -> bool:
    return (
        db.query(UserCompanyAccess.id)
        .filter(
            UserCompanyAccess.user_id == user_id,
            UserCompanyAccess.company_id != company_id,
            UserCompanyAccess.is_active.is_(True),
        )
        .first()
        is not None
    )
