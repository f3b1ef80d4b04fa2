from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from ecosystem_auth.core.database import get_db, transaction
from ecosystem_auth.core.errors import NotFoundError, ValidationError
from ecosystem_auth.deps import require_super_admin
from ecosystem_auth.models.company import Company
from ecosystem_auth.models.user import User
from ecosystem_auth.models.user_company_access import UserCompanyAccess
from ecosystem_auth.services import audit
from ecosystem_auth.services.companies import (
    count_active_members,
    get_company_or_404,
    purge_company,
    update_company_status,
)
from ecosystem_auth.services.session_provider import Identity

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)


class CompanyStatusUpdate(BaseModel):
    status: str = Field(..., min_length=1)


def _company_row(company: Company, member_count: int) -> dict:
    return {
        "id": company.id,
        "companyName": company.company_name,
        "tradingName": company.trading_name,
        "isActive": bool(company.is_active),
        "subscriptionStatus": company.subscription_status,
        "modulesEnabled": list(company.modules_enabled or []),
        "ownerUserId": company.owner_user_id,
        "approvedAt": company.approved_at.isoformat() if company.approved_at else None,
        "createdAt": company.created_at.isoformat() if company.created_at else None,
        "userCount": member_count,
    }


@router.get("/companies")
def list_companies(
    _identity: Identity = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    companies = db.query(Company).order_by(Company.id.asc()).all()
    counts = count_active_members(db, [company.id for company in companies])
    return {"companies": [_company_row(company, counts.get(company.id, 0)) for company in companies]}


@router.put("/companies/{company_id}/status")
def set_company_status(
    company_id: int,
    payload: CompanyStatusUpdate,
    background_tasks: BackgroundTasks,
    identity: Identity = Depends(require_super_admin),
    db: Session = Depends(get_db),
    recorder: audit.AuditRecorder = Depends(audit.get_audit_recorder),
):
    company = get_company_or_404(db, company_id)
    with transaction(db):
        previous = update_company_status(db, company, payload.status, actor_user_id=identity.user_id)

    logger.info(
        "Company status changed company_id=%s from=%s to=%s by=%s",
        company.id,
        previous,
        company.subscription_status,
        identity.user_id,
    )
    audit.emit(
        background_tasks,
        recorder,
        audit.AuditEvent(
            action_type=audit.COMPANY_STATUS_CHANGED,
            company_id=company.id,
            user_id=identity.user_id,
            actor_email=identity.email,
            entity_type="company",
            entity_id=company.id,
            old_value={"status": previous},
            new_value={"status": company.subscription_status},
        ),
    )
    counts = count_active_members(db, [company.id])
    return {"success": True, "company": _company_row(company, counts.get(company.id, 0))}


@router.delete("/companies/{company_id}")
def delete_company(
    company_id: int,
    background_tasks: BackgroundTasks,
    identity: Identity = Depends(require_super_admin),
    db: Session = Depends(get_db),
    recorder: audit.AuditRecorder = Depends(audit.get_audit_recorder),
):
    with transaction(db):
        company = get_company_or_404(db, company_id)
        company_name = company.company_name
        deleted = purge_company(db, company_id)

    # Company-scoped rows were purged; the record of the purge itself is global.
    audit.emit(
        background_tasks,
        recorder,
        audit.AuditEvent(
            action_type=audit.COMPANY_PURGED,
            user_id=identity.user_id,
            actor_email=identity.email,
            entity_type="company",
            entity_id=company_id,
            old_value={"companyName": company_name},
            metadata=deleted,
        ),
    )
    return {"success": True, "deleted": deleted}


@router.get("/users")
def list_users(
    _identity: Identity = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    users = db.query(User).order_by(User.id.asc()).all()
    rows = (
        db.query(UserCompanyAccess.user_id, func.count(UserCompanyAccess.id))
        .filter(UserCompanyAccess.is_active.is_(True))
        .group_by(UserCompanyAccess.user_id)
        .all()
    )
    company_counts = {user_id: count for user_id, count in rows}
    return {
        "users": [
            {
                "id": user.id,
                "username": user.username,
                "email": user.email,
                "fullName": user.full_name,
                "isActive": bool(user.is_active),
                "isSuperAdmin": bool(user.is_super_admin),
                "lastLoginAt": user.last_login_at.isoformat() if user.last_login_at else None,
                "createdAt": user.created_at.isoformat() if user.created_at else None,
                "companyCount": company_counts.get(user.id, 0),
            }
            for user in users
        ]
    }


@router.delete("/users/{user_id}")
def deactivate_user(
    user_id: int,
    background_tasks: BackgroundTasks,
    identity: Identity = Depends(require_super_admin),
    db: Session = Depends(get_db),
    recorder: audit.AuditRecorder = Depends(audit.get_audit_recorder),
):
    if user_id == identity.user_id:
        raise ValidationError("You cannot deactivate your own account")
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise NotFoundError("User not found")

    with transaction(db):
        user.is_active = False

    audit.emit(
        background_tasks,
        recorder,
        audit.AuditEvent(
            action_type=audit.USER_DEACTIVATED,
            user_id=identity.user_id,
            actor_email=identity.email,
            entity_type="user",
            entity_id=user.id,
        ),
    )
    return {"success": True}
