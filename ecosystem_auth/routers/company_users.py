from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ecosystem_auth.core.database import get_db, transaction
from ecosystem_auth.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from ecosystem_auth.deps import get_current_user, require_company_permission, require_permission
from ecosystem_auth.models.user import User
from ecosystem_auth.services import audit
from ecosystem_auth.services.authorization_service import AuthorizationService
from ecosystem_auth.services.companies import create_company_with_owner, get_company_or_404, list_company_members
from ecosystem_auth.services.passwords import hash_password
from ecosystem_auth.services.permissions import (
    ASSIGNABLE_ROLES,
    CREATE_COMPANY,
    MANAGE_USERS,
    is_known_role,
    normalize_role,
)
from ecosystem_auth.services.registration import DUPLICATE_LOGIN_MESSAGE, create_user, validate_new_password
from ecosystem_auth.services.session_provider import Identity
from ecosystem_auth.services.tenant_access import (
    deactivate_access_edge,
    get_access_edge,
    has_active_edges_elsewhere,
    upsert_access_edge,
)

router = APIRouter(prefix="/companies", tags=["companies"])


class CompanyUserCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(..., min_length=1, max_length=120)
    email: Optional[EmailStr] = None
    password: str = Field(..., min_length=1)
    full_name: str = Field(..., min_length=1, max_length=200, alias="fullName")
    role: str = Field(..., min_length=1)


class CompanyUserAccessUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    role: str = Field(..., min_length=1)
    is_primary: Optional[bool] = Field(default=None, alias="isPrimary")
    is_active: bool = Field(default=True, alias="isActive")


class CompanyUserResetPassword(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    new_password: str = Field(..., min_length=1, alias="newPassword")


class CompanyCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    company_name: str = Field(..., min_length=1, max_length=200, alias="companyName")
    trading_name: Optional[str] = Field(default=None, max_length=200, alias="tradingName")


def _assignable_role(role: str, request: Request, identity: Identity) -> str:
    normalized = normalize_role(role)
    if not is_known_role(normalized) or normalized not in ASSIGNABLE_ROLES:
        raise ValidationError("Invalid role", field="role")
    AuthorizationService.ensure_can_assign_role(request=request, identity=identity, role=normalized)
    return normalized


def _member_payload(user: User, edge) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "fullName": user.full_name,
        "role": edge.role,
        "isPrimary": bool(edge.is_primary),
        "isActive": bool(edge.is_active),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_company(
    payload: CompanyCreate,
    background_tasks: BackgroundTasks,
    _identity: Identity = Depends(require_permission(CREATE_COMPANY)),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    recorder: audit.AuditRecorder = Depends(audit.get_audit_recorder),
):
    with transaction(db):
        company, edge = create_company_with_owner(
            db,
            owner=user,
            company_name=payload.company_name,
            trading_name=payload.trading_name,
        )

    audit.emit(
        background_tasks,
        recorder,
        audit.AuditEvent(
            action_type=audit.COMPANY_CREATED,
            company_id=company.id,
            user_id=user.id,
            actor_email=user.email,
            entity_type="company",
            entity_id=company.id,
            new_value={"companyName": company.company_name},
        ),
    )
    return {
        "success": True,
        "company": {
            "id": company.id,
            "companyName": company.company_name,
            "tradingName": company.trading_name,
            "subscriptionStatus": company.subscription_status,
            "modulesEnabled": list(company.modules_enabled or []),
        },
        "role": edge.role,
        "isPrimary": bool(edge.is_primary),
    }


@router.get("/{company_id}/users")
def list_company_users(
    company_id: int,
    _identity: Identity = Depends(require_company_permission(MANAGE_USERS)),
    db: Session = Depends(get_db),
):
    get_company_or_404(db, company_id)
    return {"users": [_member_payload(user, edge) for user, edge in list_company_members(db, company_id)]}


@router.post("/{company_id}/users", status_code=status.HTTP_201_CREATED)
def create_company_user(
    company_id: int,
    payload: CompanyUserCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    identity: Identity = Depends(require_company_permission(MANAGE_USERS)),
    db: Session = Depends(get_db),
    recorder: audit.AuditRecorder = Depends(audit.get_audit_recorder),
):
    get_company_or_404(db, company_id)
    role = _assignable_role(payload.role, request, identity)

    try:
        with transaction(db):
            user = create_user(
                db,
                username=payload.username,
                email=payload.email,
                password=payload.password,
                full_name=payload.full_name,
            )
            edge = upsert_access_edge(
                db,
                user_id=user.id,
                company_id=company_id,
                role=role,
                is_primary=True,
                granted_by_user_id=identity.user_id,
            )
    except IntegrityError as exc:
        raise ConflictError(DUPLICATE_LOGIN_MESSAGE) from exc

    audit.emit(
        background_tasks,
        recorder,
        audit.AuditEvent(
            action_type=audit.ACCESS_UPDATED,
            company_id=company_id,
            user_id=identity.user_id,
            actor_email=identity.email,
            entity_type="user",
            entity_id=user.id,
            new_value={"role": role, "created": True},
        ),
    )
    return {"success": True, "user": _member_payload(user, edge)}


@router.put("/{company_id}/users/{user_id}")
def update_company_user_access(
    company_id: int,
    user_id: int,
    payload: CompanyUserAccessUpdate,
    request: Request,
    background_tasks: BackgroundTasks,
    identity: Identity = Depends(require_company_permission(MANAGE_USERS)),
    db: Session = Depends(get_db),
    recorder: audit.AuditRecorder = Depends(audit.get_audit_recorder),
):
    get_company_or_404(db, company_id)
    role = _assignable_role(payload.role, request, identity)
    target = db.query(User).filter(User.id == user_id).first()
    if target is None:
        raise NotFoundError("User not found")

    previous = get_access_edge(db, user_id=user_id, company_id=company_id, active_only=False)
    AuthorizationService.ensure_can_manage_member(
        request=request,
        identity=identity,
        target_user_id=user_id,
        target_role=previous.role if previous else None,
        target_is_super_admin=bool(target.is_super_admin),
    )
    old_value = {"role": previous.role, "isActive": bool(previous.is_active)} if previous else None

    with transaction(db):
        edge = upsert_access_edge(
            db,
            user_id=user_id,
            company_id=company_id,
            role=role,
            is_primary=payload.is_primary,
            is_active=payload.is_active,
            granted_by_user_id=identity.user_id,
        )

    audit.emit(
        background_tasks,
        recorder,
        audit.AuditEvent(
            action_type=audit.ACCESS_UPDATED,
            company_id=company_id,
            user_id=identity.user_id,
            actor_email=identity.email,
            entity_type="user",
            entity_id=user_id,
            old_value=old_value,
            new_value={"role": edge.role, "isActive": bool(edge.is_active), "isPrimary": bool(edge.is_primary)},
        ),
    )
    return {"success": True, "user": _member_payload(target, edge)}


@router.delete("/{company_id}/users/{user_id}")
def revoke_company_user_access(
    company_id: int,
    user_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    identity: Identity = Depends(require_company_permission(MANAGE_USERS)),
    db: Session = Depends(get_db),
    recorder: audit.AuditRecorder = Depends(audit.get_audit_recorder),
):
    current = get_access_edge(db, user_id=user_id, company_id=company_id)
    if current is None:
        raise NotFoundError("User does not have access to this company")
    target = db.query(User).filter(User.id == user_id).first()
    AuthorizationService.ensure_can_manage_member(
        request=request,
        identity=identity,
        target_user_id=user_id,
        target_role=current.role,
        target_is_super_admin=bool(target is not None and target.is_super_admin),
    )

    with transaction(db):
        edge = deactivate_access_edge(db, user_id=user_id, company_id=company_id)

    audit.emit(
        background_tasks,
        recorder,
        audit.AuditEvent(
            action_type=audit.ACCESS_REVOKED,
            company_id=company_id,
            user_id=identity.user_id,
            actor_email=identity.email,
            entity_type="user",
            entity_id=user_id,
            old_value={"role": edge.role},
        ),
    )
    return {"success": True}


@router.put("/{company_id}/users/{user_id}/reset-password")
def reset_company_user_password(
    company_id: int,
    user_id: int,
    payload: CompanyUserResetPassword,
    request: Request,
    background_tasks: BackgroundTasks,
    identity: Identity = Depends(require_company_permission(MANAGE_USERS)),
    db: Session = Depends(get_db),
    recorder: audit.AuditRecorder = Depends(audit.get_audit_recorder),
):
    edge = get_access_edge(db, user_id=user_id, company_id=company_id)
    target = db.query(User).filter(User.id == user_id).first()
    if edge is None or target is None:
        raise NotFoundError("User not found in this company")
    AuthorizationService.ensure_can_manage_member(
        request=request,
        identity=identity,
        target_user_id=user_id,
        target_role=edge.role,
        target_is_super_admin=bool(target.is_super_admin),
    )
    # The account is shared with other tenants; only a super-admin may reset it.
    if not identity.is_super_admin and has_active_edges_elsewhere(db, user_id=user_id, company_id=company_id):
        AuthorizationService.log_access_denied(
            reason="member_of_other_companies",
            identity=identity,
            company_id=company_id,
            request=request,
        )
        raise AuthorizationError("This user belongs to other companies; ask a super admin to reset the password")
    validate_new_password(payload.new_password)

    with transaction(db):
        target.password_hash = hash_password(payload.new_password)
        target.must_change_password = True

    audit.emit(
        background_tasks,
        recorder,
        audit.AuditEvent(
            action_type=audit.PASSWORD_RESET,
            company_id=company_id,
            user_id=identity.user_id,
            actor_email=identity.email,
            entity_type="user",
            entity_id=user_id,
        ),
    )
    return {"success": True, "message": "Password reset. The user must change it at next login."}
