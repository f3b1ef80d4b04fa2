from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from sqlalchemy.orm import Session

from ecosystem_auth.core.config import REMEMBER_ME_TTL_MINUTES
from ecosystem_auth.core.database import get_db, transaction
from ecosystem_auth.core.errors import (
    AppError,
    AuthorizationError,
    InvalidCredentialsError,
    NotFoundError,
    TooManyAttemptsError,
    ValidationError,
)
from ecosystem_auth.deps import get_current_identity, get_current_user, require_company
from ecosystem_auth.models.company import Company
from ecosystem_auth.models.user import User
from ecosystem_auth.services import audit
from ecosystem_auth.services.access_policy import AccessPolicy, get_access_policy
from ecosystem_auth.services.authorization_service import AuthorizationService
from ecosystem_auth.services.companies import ECOSYSTEM_MODULES, company_has_module
from ecosystem_auth.services.company_selection import (
    ACCESS_DENIED_MESSAGE,
    bind_at_login,
    claims_for_user,
    ensure_company_available,
    select_company,
)
from ecosystem_auth.services.credentials import authenticate
from ecosystem_auth.services.invitations import build_invite_url, create_invitation, get_pending_invitation
from ecosystem_auth.services.login_attempts import (
    check_login_lock,
    clear_login_attempts,
    register_failed_login,
)
from ecosystem_auth.services.passwords import hash_password, verify_password
from ecosystem_auth.services.permissions import (
    APPROVE_OVERRIDES,
    INVITE_USERS,
    SUPER_ADMIN_ROLE,
    get_role_permissions,
    has_permission,
)
from ecosystem_auth.services.registration import (
    register_company_signup,
    register_user,
    validate_new_password,
)
from ecosystem_auth.services.session_provider import Identity, SessionProvider, get_session_provider
from ecosystem_auth.services.tenant_access import (
    choose_default_company,
    get_access_edge,
    list_accessible_companies,
)
from ecosystem_auth.services.tokens import DEFAULT_TOKEN_TTL, issue_token

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class LoginPayload(_CamelModel):
    identifier: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None
    password: str = Field(..., min_length=1)
    remember_me: bool = Field(default=False, alias="rememberMe")

    def login_identifier(self) -> str:
        return (self.identifier or self.username or self.email or "").strip()


class SelectCompanyPayload(_CamelModel):
    company_id: int = Field(..., alias="companyId")


class RegisterPayload(_CamelModel):
    username: str = Field(..., min_length=1, max_length=120)
    email: Optional[EmailStr] = None
    password: str = Field(..., min_length=1)
    full_name: str = Field(..., min_length=1, max_length=200, alias="fullName")
    company_name: Optional[str] = Field(default=None, max_length=200, alias="companyName")
    trading_name: Optional[str] = Field(default=None, max_length=200, alias="tradingName")
    invitation_token: Optional[str] = Field(default=None, alias="invitationToken")


class RegisterCompanyPayload(_CamelModel):
    username: Optional[str] = Field(default=None, max_length=120)
    email: EmailStr
    password: str = Field(..., min_length=1)
    full_name: str = Field(..., min_length=1, max_length=200, alias="fullName")
    company_name: str = Field(..., min_length=1, max_length=200, alias="companyName")
    trading_name: Optional[str] = Field(default=None, max_length=200, alias="tradingName")


class ChangePasswordPayload(_CamelModel):
    current_password: str = Field(..., min_length=1, alias="currentPassword")
    new_password: str = Field(..., min_length=1, alias="newPassword")


class VerifyManagerPayload(_CamelModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class SsoLaunchPayload(_CamelModel):
    target_app: str = Field(..., alias="targetApp")
    company_id: Optional[int] = Field(default=None, alias="companyId")


class InvitePayload(_CamelModel):
    email: EmailStr
    role: str = Field(..., min_length=1)
    company_id: Optional[int] = Field(default=None, alias="companyId")


def serialize_user(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "fullName": user.full_name,
        "isSuperAdmin": bool(user.is_super_admin),
        "mustChangePassword": bool(user.must_change_password),
    }


def _company_payload(company: Company) -> Dict[str, Any]:
    return {
        "id": company.id,
        "companyName": company.company_name,
        "tradingName": company.trading_name,
        "subscriptionStatus": company.subscription_status,
        "modulesEnabled": list(company.modules_enabled or []),
    }


def _error_response(exc: AppError, background_tasks: BackgroundTasks) -> JSONResponse:
    # Returned rather than raised so the scheduled audit task still runs.
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_body(),
        headers=exc.headers(),
        background=background_tasks,
    )


@router.post("/login")
def login(
    payload: LoginPayload,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    recorder: audit.AuditRecorder = Depends(audit.get_audit_recorder),
):
    identifier = payload.login_identifier()
    if not identifier:
        raise ValidationError("Username or email is required", field="identifier")

    ip_address = audit.client_ip(request)
    locked, _ = check_login_lock(db, identifier)
    if locked:
        audit.emit(
            background_tasks,
            recorder,
            audit.AuditEvent(
                action_type=audit.LOGIN_FAILED,
                actor_email=identifier,
                metadata={"reason": "locked"},
                ip_address=ip_address,
            ),
        )
        return _error_response(TooManyAttemptsError(), background_tasks)

    try:
        user = authenticate(db, identifier, payload.password)
    except InvalidCredentialsError as exc:
        _, locked_after = register_failed_login(db, identifier)
        db.commit()
        audit.emit(
            background_tasks,
            recorder,
            audit.AuditEvent(
                action_type=audit.LOGIN_FAILED,
                actor_email=identifier,
                metadata={"reason": "locked" if locked_after else "invalid_credentials"},
                ip_address=ip_address,
            ),
        )
        if locked_after:
            return _error_response(TooManyAttemptsError(), background_tasks)
        return _error_response(exc, background_tasks)

    clear_login_attempts(db, identifier)
    user.last_login_at = datetime.utcnow()
    db.commit()

    ttl = timedelta(minutes=REMEMBER_ME_TTL_MINUTES) if payload.remember_me else None
    binding = bind_at_login(db, user, ttl=ttl or DEFAULT_TOKEN_TTL)
    selected = binding.selected_company

    audit.emit(
        background_tasks,
        recorder,
        audit.AuditEvent(
            action_type=audit.LOGIN,
            company_id=selected.company_id if selected else None,
            user_id=user.id,
            actor_email=user.email,
            entity_type="user",
            entity_id=user.id,
            metadata={"companies": len(binding.companies), "autoSelected": selected is not None},
            ip_address=ip_address,
        ),
    )
    logger.info(
        "Login success user_id=%s companies=%s selected_company=%s",
        user.id,
        len(binding.companies),
        selected.company_id if selected else None,
    )

    return {
        "success": True,
        "token": binding.token,
        "user": serialize_user(user),
        "companies": [company.to_dict() for company in binding.companies],
        "selectedCompany": selected.to_dict() if selected else None,
        "companyId": binding.claims.company_id,
        "role": binding.claims.role,
        "permissions": get_role_permissions(binding.claims.role) if selected else None,
        "requiresCompanySelection": binding.requires_company_selection,
    }


@router.post("/select-company")
def select_company_endpoint(
    payload: SelectCompanyPayload,
    request: Request,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    recorder: audit.AuditRecorder = Depends(audit.get_audit_recorder),
):
    selection = select_company(db, user, payload.company_id)
    audit.emit(
        background_tasks,
        recorder,
        audit.AuditEvent(
            action_type=audit.SELECT_COMPANY,
            company_id=selection.company.company_id,
            user_id=user.id,
            actor_email=user.email,
            entity_type="company",
            entity_id=selection.company.company_id,
            metadata={"role": selection.role},
            ip_address=audit.client_ip(request),
        ),
    )
    return {
        "success": True,
        "token": selection.token,
        "companyId": selection.company.company_id,
        "company": selection.company.to_dict(),
        "role": selection.role,
        "permissions": selection.permissions,
    }


@router.get("/me")
def me(
    identity: Identity = Depends(get_current_identity),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    company = None
    if identity.company_id is not None:
        company = db.query(Company).filter(Company.id == identity.company_id).first()

    role = identity.role
    if role is None and identity.is_super_admin:
        role = SUPER_ADMIN_ROLE
    return {
        "user": serialize_user(user),
        "companyId": identity.company_id,
        "company": _company_payload(company) if company else None,
        "role": role,
        "permissions": get_role_permissions(role) if role else {},
        "targetApp": identity.target_app,
    }


@router.get("/companies")
def companies(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return {"companies": [company.to_dict() for company in list_accessible_companies(db, user)]}


@router.post("/logout")
def logout(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    provider: SessionProvider = Depends(get_session_provider),
    recorder: audit.AuditRecorder = Depends(audit.get_audit_recorder),
):
    """Always succeeds; an expired or unknown token only skips the audit entry."""
    identity = provider.end_session(request, db)
    if identity is not None:
        audit.emit(
            background_tasks,
            recorder,
            audit.AuditEvent(
                action_type=audit.LOGOUT,
                company_id=identity.company_id,
                user_id=identity.user_id,
                actor_email=identity.email,
                ip_address=audit.client_ip(request),
            ),
        )
    return {"success": True, "message": "Logged out successfully"}


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterPayload,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    recorder: audit.AuditRecorder = Depends(audit.get_audit_recorder),
):
    result = register_user(
        db,
        username=payload.username,
        email=payload.email,
        password=payload.password,
        full_name=payload.full_name,
        company_name=payload.company_name,
        trading_name=payload.trading_name,
        invitation_token=payload.invitation_token,
    )
    user = result.user
    claims = claims_for_user(user)
    if result.company is not None and result.role is not None:
        claims = claims.scoped_to(result.company.id, result.role)

    audit.emit(
        background_tasks,
        recorder,
        audit.AuditEvent(
            action_type=audit.REGISTER,
            company_id=result.company.id if result.company else None,
            user_id=user.id,
            actor_email=user.email,
            entity_type="user",
            entity_id=user.id,
            metadata={"invited": result.invitation is not None},
            ip_address=audit.client_ip(request),
        ),
    )
    if result.invitation is not None:
        audit.emit(
            background_tasks,
            recorder,
            audit.AuditEvent(
                action_type=audit.INVITE_ACCEPTED,
                company_id=result.invitation.company_id,
                user_id=user.id,
                actor_email=user.email,
                entity_type="invitation",
                entity_id=result.invitation.id,
                new_value={"role": result.invitation.role},
            ),
        )

    return {
        "success": True,
        "token": issue_token(claims),
        "user": serialize_user(user),
        "company": _company_payload(result.company) if result.company else None,
        "role": result.role,
    }


@router.post("/register-company", status_code=status.HTTP_201_CREATED)
def register_company(
    payload: RegisterCompanyPayload,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    recorder: audit.AuditRecorder = Depends(audit.get_audit_recorder),
):
    result = register_company_signup(
        db,
        username=payload.username,
        email=payload.email,
        password=payload.password,
        full_name=payload.full_name,
        company_name=payload.company_name,
        trading_name=payload.trading_name,
    )
    audit.emit(
        background_tasks,
        recorder,
        audit.AuditEvent(
            action_type=audit.COMPANY_CREATED,
            company_id=result.company.id,
            user_id=result.user.id,
            actor_email=result.user.email,
            entity_type="company",
            entity_id=result.company.id,
            new_value={"companyName": result.company.company_name, "status": result.company.subscription_status},
            ip_address=audit.client_ip(request),
        ),
    )
    return {
        "success": True,
        "message": "Registration received. Your company is pending approval.",
        "user": serialize_user(result.user),
        "company": {
            "id": result.company.id,
            "companyName": result.company.company_name,
            "status": result.company.subscription_status,
        },
    }


@router.post("/change-password")
def change_password(
    payload: ChangePasswordPayload,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    recorder: audit.AuditRecorder = Depends(audit.get_audit_recorder),
):
    if not verify_password(payload.current_password, user.password_hash):
        raise InvalidCredentialsError("Current password is incorrect")
    validate_new_password(payload.new_password)

    with transaction(db):
        user.password_hash = hash_password(payload.new_password)
        user.must_change_password = False

    audit.emit(
        background_tasks,
        recorder,
        audit.AuditEvent(
            action_type=audit.PASSWORD_CHANGED,
            user_id=user.id,
            actor_email=user.email,
            entity_type="user",
            entity_id=user.id,
        ),
    )
    return {"success": True, "message": "Password changed successfully"}


@router.post("/verify-manager")
def verify_manager(
    payload: VerifyManagerPayload,
    request: Request,
    identity: Identity = Depends(require_company),
    db: Session = Depends(get_db),
):
    try:
        manager = authenticate(db, payload.username, payload.password)
    except InvalidCredentialsError:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"authorized": False, "error": "Invalid credentials"},
        )

    if manager.is_super_admin:
        role = SUPER_ADMIN_ROLE
    else:
        edge = get_access_edge(db, user_id=manager.id, company_id=identity.company_id)
        role = edge.role if edge else None

    if role is None or not (role == SUPER_ADMIN_ROLE or has_permission(role, APPROVE_OVERRIDES)):
        logger.warning(
            "Manager override denied requested_by=%s manager_id=%s company_id=%s",
            identity.user_id,
            manager.id,
            identity.company_id,
        )
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={"authorized": False, "error": "User does not have manager privileges"},
        )

    return {
        "authorized": True,
        "manager": {
            "id": manager.id,
            "username": manager.username,
            "fullName": manager.full_name,
            "role": role,
        },
    }


def _resolve_sso_company(db: Session, user: User, identity: Identity, requested: Optional[int]) -> tuple[Company, str]:
    if user.is_super_admin:
        company_id = requested or identity.company_id
        query = db.query(Company).filter(Company.is_active.is_(True))
        company = (
            query.filter(Company.id == company_id).first()
            if company_id is not None
            else query.order_by(Company.id.asc()).first()
        )
        if company is None:
            raise NotFoundError("Company not found")
        return company, SUPER_ADMIN_ROLE

    if requested is not None:
        edge = get_access_edge(db, user_id=user.id, company_id=requested)
        company = db.query(Company).filter(Company.id == requested, Company.is_active.is_(True)).first()
        if edge is None or company is None:
            raise AuthorizationError(ACCESS_DENIED_MESSAGE)
        return company, edge.role

    default = choose_default_company(list_accessible_companies(db, user))
    if default is None:
        raise AuthorizationError("No company access")
    company = db.query(Company).filter(Company.id == default.company_id).first()
    return company, default.role


@router.post("/sso-launch")
def sso_launch(
    payload: SsoLaunchPayload,
    request: Request,
    background_tasks: BackgroundTasks,
    identity: Identity = Depends(get_current_identity),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    recorder: audit.AuditRecorder = Depends(audit.get_audit_recorder),
):
    target_app = (payload.target_app or "").strip().lower()
    if target_app not in ECOSYSTEM_MODULES:
        raise ValidationError(f"Invalid targetApp. Must be one of: {', '.join(ECOSYSTEM_MODULES)}")

    company, role = _resolve_sso_company(db, user, identity, payload.company_id)
    ensure_company_available(company)
    if not user.is_super_admin and not company_has_module(company, target_app):
        raise AuthorizationError(f"The {target_app} module is not enabled for this company", targetApp=target_app)

    claims = claims_for_user(user).scoped_to(company.id, role)
    claims = replace(claims, target_app=target_app, sso_source="ecosystem")
    audit.emit(
        background_tasks,
        recorder,
        audit.AuditEvent(
            action_type=audit.SSO_LAUNCH,
            company_id=company.id,
            user_id=user.id,
            actor_email=user.email,
            entity_type="app",
            entity_id=target_app,
            metadata={"role": role},
            ip_address=audit.client_ip(request),
        ),
    )
    return {
        "success": True,
        "appToken": issue_token(claims),
        "user": serialize_user(user),
        "company": _company_payload(company),
        "role": role,
        "targetApp": target_app,
    }


@router.post("/invite", status_code=status.HTTP_201_CREATED)
def invite(
    payload: InvitePayload,
    request: Request,
    background_tasks: BackgroundTasks,
    identity: Identity = Depends(get_current_identity),
    policy: AccessPolicy = Depends(get_access_policy),
    db: Session = Depends(get_db),
    recorder: audit.AuditRecorder = Depends(audit.get_audit_recorder),
):
    company_id = payload.company_id if payload.company_id is not None else identity.company_id
    if company_id is None:
        AuthorizationService.ensure_company_selected(request=request, identity=identity)
    AuthorizationService.ensure_company_scope(request=request, identity=identity, company_id=company_id)
    AuthorizationService.ensure_permission(request=request, identity=identity, policy=policy, permission=INVITE_USERS)

    company = db.query(Company).filter(Company.id == company_id).first()
    if company is None:
        raise NotFoundError("Company not found")

    with transaction(db):
        invitation = create_invitation(
            db,
            company_id=company.id,
            email=payload.email,
            role=payload.role,
            invited_by_user_id=identity.user_id,
        )

    audit.emit(
        background_tasks,
        recorder,
        audit.AuditEvent(
            action_type=audit.INVITE_CREATED,
            company_id=company.id,
            user_id=identity.user_id,
            actor_email=identity.email,
            entity_type="invitation",
            entity_id=invitation.id,
            new_value={"email": invitation.email, "role": invitation.role},
        ),
    )
    return {
        "success": True,
        "inviteUrl": build_invite_url(invitation.token),
        "token": invitation.token,
        "expiresAt": invitation.expires_at.isoformat(),
        "companyName": company.company_name,
    }


@router.get("/invite/{token}")
def get_invitation(token: str, db: Session = Depends(get_db)):
    invitation = get_pending_invitation(db, token)
    if invitation is None:
        raise NotFoundError("Invalid or expired invitation")

    company = db.query(Company).filter(Company.id == invitation.company_id).first()
    inviter = None
    if invitation.invited_by_user_id is not None:
        inviter = db.query(User).filter(User.id == invitation.invited_by_user_id).first()
    return {
        "valid": True,
        "email": invitation.email,
        "role": invitation.role,
        "companyName": company.company_name if company else None,
        "invitedBy": inviter.full_name if inviter else None,
        "expiresAt": invitation.expires_at.isoformat(),
    }
