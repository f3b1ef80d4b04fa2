from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from ecosystem_auth.core.errors import NotFoundError, ValidationError
from ecosystem_auth.models.audit_log import AuditLog
from ecosystem_auth.models.company import (
    SUBSCRIPTION_ACTIVE,
    SUBSCRIPTION_STATUSES,
    Company,
)
from ecosystem_auth.models.gate_session import GateSession
from ecosystem_auth.models.invitation import Invitation
from ecosystem_auth.models.user import User
from ecosystem_auth.models.user_company_access import UserCompanyAccess
from ecosystem_auth.services.tenant_access import upsert_access_edge

logger = logging.getLogger(__name__)

OWNER_ROLE = "business_owner"
ECOSYSTEM_MODULES = ("pos", "payroll", "accounting", "sean")
DEFAULT_MODULES = ["pos"]


def get_company_or_404(db: Session, company_id: int) -> Company:
    company = db.query(Company).filter(Company.id == company_id).first()
    if company is None:
        raise NotFoundError("Company not found")
    return company


def company_has_module(company: Company, module: str) -> bool:
    """Companies without an enabled-modules list predate module gating and allow every app."""
    if company.modules_enabled is None:
        return True
    return module in company.modules_enabled


def user_has_primary_edge(db: Session, user_id: int) -> bool:
    return (
        db.query(UserCompanyAccess.id)
        .filter(
            UserCompanyAccess.user_id == user_id,
            UserCompanyAccess.is_active.is_(True),
            UserCompanyAccess.is_primary.is_(True),
        )
        .first()
        is not None
    )


def create_company_with_owner(
    db: Session,
    *,
    owner: User,
    company_name: str,
    trading_name: Optional[str] = None,
    subscription_status: str = SUBSCRIPTION_ACTIVE,
    modules_enabled: Optional[Iterable[str]] = None,
    is_primary: Optional[bool] = None,
) -> Tuple[Company, UserCompanyAccess]:
    """Create the company and its owner edge in the caller's transaction."""
    name = (company_name or "").strip()
    if not name:
        raise ValidationError("Company name is required")

    company = Company(
        company_name=name,
        trading_name=(trading_name or "").strip() or name,
        is_active=True,
        subscription_status=subscription_status,
        modules_enabled=list(modules_enabled) if modules_enabled is not None else list(DEFAULT_MODULES),
        owner_user_id=owner.id,
    )
    db.add(company)
    db.flush()

    if is_primary is None:
        is_primary = not user_has_primary_edge(db, owner.id)
    edge = upsert_access_edge(
        db,
        user_id=owner.id,
        company_id=company.id,
        role=OWNER_ROLE,
        is_primary=is_primary,
        granted_by_user_id=owner.id,
    )
    return company, edge


def update_company_status(db: Session, company: Company, status: str, *, actor_user_id: int) -> str:
    normalized = (status or "").strip().lower()
    if normalized not in SUBSCRIPTION_STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(SUBSCRIPTION_STATUSES)}")

    previous = company.subscription_status
    company.subscription_status = normalized
    if normalized == SUBSCRIPTION_ACTIVE:
        company.approved_at = datetime.utcnow()
        company.approved_by_user_id = actor_user_id
    db.flush()
    return previous


def count_active_members(db: Session, company_ids: Iterable[int]) -> Dict[int, int]:
    ids = list(company_ids)
    if not ids:
        return {}
    rows = (
        db.query(UserCompanyAccess.company_id, func.count(UserCompanyAccess.id))
        .filter(UserCompanyAccess.company_id.in_(ids), UserCompanyAccess.is_active.is_(True))
        .group_by(UserCompanyAccess.company_id)
        .all()
    )
    return {company_id: count for company_id, count in rows}


def list_company_members(db: Session, company_id: int) -> List[Tuple[User, UserCompanyAccess]]:
    return (
        db.query(User, UserCompanyAccess)
        .join(UserCompanyAccess, UserCompanyAccess.user_id == User.id)
        .filter(
            UserCompanyAccess.company_id == company_id,
            UserCompanyAccess.is_active.is_(True),
        )
        .order_by(User.id.asc())
        .all()
    )


def _orphaned_user_ids(db: Session, company_id: int) -> List[int]:
    member_ids = [
        row[0]
        for row in db.query(UserCompanyAccess.user_id).filter(UserCompanyAccess.company_id == company_id).all()
    ]
    if not member_ids:
        return []
    with_other_edges = {
        row[0]
        for row in db.query(UserCompanyAccess.user_id)
        .filter(
            UserCompanyAccess.user_id.in_(member_ids),
            UserCompanyAccess.company_id != company_id,
        )
        .all()
    }
    super_admins = {
        row[0] for row in db.query(User.id).filter(User.id.in_(member_ids), User.is_super_admin.is_(True)).all()
    }
    return sorted(set(member_ids) - with_other_edges - super_admins)


def purge_company(db: Session, company_id: int) -> Dict[str, int]:
    """Hard-delete a company and its dependent rows in the caller's transaction.

    Members whose only edge was this company are deleted with it, except
    super-admins.
    """
    company = get_company_or_404(db, company_id)
    orphan_ids = _orphaned_user_ids(db, company_id)

    counts = {
        "accessEdges": db.query(UserCompanyAccess)
        .filter(UserCompanyAccess.company_id == company_id)
        .delete(synchronize_session=False),
        "invitations": db.query(Invitation)
        .filter(Invitation.company_id == company_id)
        .delete(synchronize_session=False),
        "auditEntries": db.query(AuditLog)
        .filter(AuditLog.company_id == company_id)
        .delete(synchronize_session=False),
    }

    if orphan_ids:
        db.query(Invitation).filter(Invitation.invited_by_user_id.in_(orphan_ids)).update(
            {Invitation.invited_by_user_id: None}, synchronize_session=False
        )
        db.query(Company).filter(Company.approved_by_user_id.in_(orphan_ids)).update(
            {Company.approved_by_user_id: None}, synchronize_session=False
        )
        db.query(Company).filter(
            Company.owner_user_id.in_(orphan_ids), Company.id != company_id
        ).update({Company.owner_user_id: None}, synchronize_session=False)
        db.query(GateSession).filter(GateSession.user_id.in_(orphan_ids)).delete(synchronize_session=False)

    db.delete(company)
    db.flush()

    counts["users"] = (
        db.query(User).filter(User.id.in_(orphan_ids)).delete(synchronize_session=False) if orphan_ids else 0
    )
    logger.info("Company purged company_id=%s counts=%s", company_id, counts)
    return counts
