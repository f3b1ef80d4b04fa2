from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from ecosystem_auth.core.config import APP_MODE_SUPER_USER_GATE
from ecosystem_auth.core.database import get_db, transaction
from ecosystem_auth.core.errors import AuthorizationError, InvalidCredentialsError, TooManyAttemptsError
from ecosystem_auth.deps import get_current_identity, require_permission
from ecosystem_auth.models.allowed_email import ROLE_SUPER_USER
from ecosystem_auth.services import audit
from ecosystem_auth.services.access_policy import APP_ACCESS, COACHING_DATA
from ecosystem_auth.services.credentials import authenticate, normalize_email
from ecosystem_auth.services.login_attempts import (
    check_login_lock,
    clear_login_attempts,
    register_failed_login,
)
from ecosystem_auth.services.session_cookies import clear_session_cookie, set_session_cookie
from ecosystem_auth.services.session_provider import Identity, StatefulSessionProvider, provider_for_mode
from ecosystem_auth.services.super_users import (
    add_allowed_email,
    has_coaching_access,
    is_super_user,
    list_allowed_emails,
    remove_allowed_email,
)

router = APIRouter(prefix="/gate", tags=["gate"])
logger = logging.getLogger(__name__)

ACCESS_RESTRICTED_MESSAGE = "Access restricted to authorized users"
COACHING_RESTRICTED_MESSAGE = "Coaching data is restricted. Ask a super user to grant coaching access."


class GateLoginPayload(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class AllowedEmailCreate(BaseModel):
    email: EmailStr
    role: str = Field(default=ROLE_SUPER_USER, min_length=1)


def get_gate_provider() -> StatefulSessionProvider:
    return provider_for_mode(APP_MODE_SUPER_USER_GATE)


def _gate_payload(identity: Identity) -> dict:
    return {
        "user": identity.user_payload(),
        "canAccessApp": identity.can_access_app,
        "canAccessCoachingData": identity.can_access_coaching_data,
    }


@router.post("/auth/login")
def gate_login(
    payload: GateLoginPayload,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    provider: StatefulSessionProvider = Depends(get_gate_provider),
    recorder: audit.AuditRecorder = Depends(audit.get_audit_recorder),
):
    email = normalize_email(payload.email)
    locked, _ = check_login_lock(db, email)
    if locked:
        raise TooManyAttemptsError()

    try:
        user = authenticate(db, email, payload.password)
    except InvalidCredentialsError:
        _, locked_after = register_failed_login(db, email)
        db.commit()
        audit.emit(
            background_tasks,
            recorder,
            audit.AuditEvent(
                action_type=audit.LOGIN_FAILED,
                actor_email=email,
                metadata={"app": "gate"},
                ip_address=audit.client_ip(request),
            ),
        )
        exc = TooManyAttemptsError() if locked_after else InvalidCredentialsError()
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_body(),
            headers=exc.headers(),
            background=background_tasks,
        )

    clear_login_attempts(db, email)
    db.commit()

    if not is_super_user(db, user.email):
        logger.warning("Gate login refused user_id=%s reason=not_allow_listed", user.id)
        raise AuthorizationError(ACCESS_RESTRICTED_MESSAGE)

    cookie_value = provider.start_session(db, user)
    identity = Identity(
        user_id=user.id,
        username=user.username,
        email=user.email,
        full_name=user.full_name,
        is_super_admin=bool(user.is_super_admin),
        can_access_app=True,
        can_access_coaching_data=has_coaching_access(user),
    )
    audit.emit(
        background_tasks,
        recorder,
        audit.AuditEvent(
            action_type=audit.GATE_LOGIN,
            user_id=user.id,
            actor_email=user.email,
            ip_address=audit.client_ip(request),
        ),
    )

    response = JSONResponse(content={"success": True, **_gate_payload(identity)}, background=background_tasks)
    set_session_cookie(response, cookie_value, request)
    return response


@router.post("/auth/logout")
def gate_logout(
    request: Request,
    response: Response,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    provider: StatefulSessionProvider = Depends(get_gate_provider),
    recorder: audit.AuditRecorder = Depends(audit.get_audit_recorder),
):
    identity = provider.end_session(request, db)
    if identity is not None:
        audit.emit(
            background_tasks,
            recorder,
            audit.AuditEvent(action_type=audit.GATE_LOGOUT, user_id=identity.user_id),
        )
    clear_session_cookie(response, request)
    return {"success": True}


@router.get("/auth/me")
def gate_me(identity: Identity = Depends(get_current_identity)):
    return _gate_payload(identity)


@router.get("/allowed-emails")
def get_allowed_emails(
    _identity: Identity = Depends(require_permission(APP_ACCESS)),
    db: Session = Depends(get_db),
):
    return {"emails": list_allowed_emails(db)}


@router.post("/allowed-emails", status_code=status.HTTP_201_CREATED)
def create_allowed_email(
    payload: AllowedEmailCreate,
    identity: Identity = Depends(require_permission(APP_ACCESS)),
    db: Session = Depends(get_db),
):
    with transaction(db):
        entry = add_allowed_email(db, email=payload.email, role=payload.role, added_by=identity.email)
    logger.info("Allow-list entry added email=%s role=%s by=%s", entry.email, entry.role, identity.user_id)
    return {"success": True, "email": entry.email, "role": entry.role}


@router.delete("/allowed-emails/{email}")
def delete_allowed_email(
    email: str,
    identity: Identity = Depends(require_permission(APP_ACCESS)),
    db: Session = Depends(get_db),
):
    with transaction(db):
        remove_allowed_email(db, email)
    logger.info("Allow-list entry removed email=%s by=%s", normalize_email(email), identity.user_id)
    return {"success": True}


@router.get("/coaching/access")
def coaching_access(
    request: Request,
    background_tasks: BackgroundTasks,
    identity: Identity = Depends(require_permission(APP_ACCESS)),
    recorder: audit.AuditRecorder = Depends(audit.get_audit_recorder),
):
    if not identity.can_access_coaching_data:
        logger.warning("Coaching access denied user_id=%s", identity.user_id)
        raise AuthorizationError(COACHING_RESTRICTED_MESSAGE, required=COACHING_DATA)

    audit.emit(
        background_tasks,
        recorder,
        audit.AuditEvent(
            action_type=audit.COACHING_ACCESS,
            user_id=identity.user_id,
            actor_email=identity.email,
            ip_address=audit.client_ip(request),
        ),
    )
    return {"hasAccess": True}
