"""Session strategies behind one interface.

``StatelessTokenProvider`` serves the multi-tenant apps: a signed bearer token
that is never stored. ``StatefulSessionProvider`` serves the super-user gate:
an opaque id in a signed cookie, backed by a ``gate_sessions`` row that can be
revoked. The running application's mode picks the provider.
"""
from __future__ import annotations

import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Request
from fastapi.security.utils import get_authorization_scheme_param
from sqlalchemy.orm import Session

from ecosystem_auth.core.config import (
    APP_MODE,
    APP_MODE_SUPER_USER_GATE,
    GATE_SESSION_MAX_AGE_SECONDS,
    TOKEN_DENYLIST_ENABLED,
)
from ecosystem_auth.core.errors import (
    AuthenticationError,
    AuthenticationRequiredError,
    InvalidTokenError,
    TokenExpiredError,
)
from ecosystem_auth.models.gate_session import GateSession
from ecosystem_auth.models.user import User
from ecosystem_auth.services.super_users import has_coaching_access, is_super_user
from ecosystem_auth.services.token_denylist import is_token_revoked, revoke_token
from ecosystem_auth.services.tokens import SessionClaims, verify_token
from ecosystem_auth.services.session_cookies import (
    GATE_SESSION_COOKIE,
    sign_session_token,
    unsign_session_token,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """Request-scoped view of who is calling and in which company."""

    user_id: int
    username: Optional[str] = None
    email: Optional[str] = None
    full_name: Optional[str] = None
    company_id: Optional[int] = None
    role: Optional[str] = None
    is_super_admin: bool = False
    can_access_app: bool = True
    can_access_coaching_data: bool = False
    token_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    target_app: Optional[str] = None

    def user_payload(self) -> dict:
        return {
            "id": self.user_id,
            "username": self.username,
            "email": self.email,
            "fullName": self.full_name,
            "isSuperAdmin": self.is_super_admin,
        }


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def extract_bearer_token(request: Request) -> Optional[str]:
    scheme, credentials = get_authorization_scheme_param(request.headers.get("Authorization"))
    if not credentials or scheme.lower() != "bearer":
        return None
    return credentials.strip() or None


def _load_active_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None or not user.is_active:
        raise AuthenticationError("User not found or inactive")
    return user


class SessionProvider(ABC):
    name: str

    @abstractmethod
    def authenticate(self, request: Request, db: Session) -> Identity:
        """Resolve the caller or raise an ``AuthenticationError`` subtype."""

    @abstractmethod
    def end_session(self, request: Request, db: Session) -> Optional[Identity]:
        """Best-effort logout. Never raises for a missing, expired or invalid credential."""


class StatelessTokenProvider(SessionProvider):
    name = "stateless_token"

    def __init__(self, *, denylist_enabled: bool = TOKEN_DENYLIST_ENABLED) -> None:
        self.denylist_enabled = denylist_enabled

    def decode(self, request: Request) -> SessionClaims:
        token = extract_bearer_token(request)
        if not token:
            raise AuthenticationRequiredError("Access token required")
        return verify_token(token)

    def authenticate(self, request: Request, db: Session) -> Identity:
        claims = self.decode(request)
        if self.denylist_enabled and is_token_revoked(db, claims.token_id):
            raise InvalidTokenError("Token revoked")

        user = _load_active_user(db, claims.user_id)
        return Identity(
            user_id=user.id,
            username=user.username,
            email=user.email,
            full_name=user.full_name,
            company_id=claims.company_id,
            role=claims.role,
            is_super_admin=bool(user.is_super_admin),
            can_access_app=True,
            can_access_coaching_data=bool(user.is_super_admin) or has_coaching_access(user),
            token_id=claims.token_id,
            expires_at=claims.expires_at,
            target_app=claims.target_app,
        )

    def end_session(self, request: Request, db: Session) -> Optional[Identity]:
        token = extract_bearer_token(request)
        if not token:
            return None
        try:
            claims = verify_token(token, allow_expired=True)
        except InvalidTokenError:
            return None

        if self.denylist_enabled:
            revoke_token(db, claims)
        return Identity(
            user_id=claims.user_id,
            username=claims.username,
            email=claims.email,
            full_name=claims.full_name,
            company_id=claims.company_id,
            role=claims.role,
            is_super_admin=claims.is_super_admin,
            token_id=claims.token_id,
            expires_at=claims.expires_at,
        )


class StatefulSessionProvider(SessionProvider):
    name = "stateful_session"

    def __init__(self, *, max_age: timedelta = timedelta(seconds=GATE_SESSION_MAX_AGE_SECONDS)) -> None:
        self.max_age = max_age

    def start_session(self, db: Session, user: User) -> str:
        """Persist a new session row and return the signed cookie value. Commits."""
        session = GateSession(
            token=secrets.token_hex(32),
            user_id=user.id,
            expires_at=_now() + self.max_age,
        )
        db.add(session)
        db.commit()
        return sign_session_token(session.token)

    def _session_row(self, request: Request, db: Session) -> Optional[GateSession]:
        cookie = request.cookies.get(GATE_SESSION_COOKIE)
        if not cookie:
            return None
        session_token = unsign_session_token(cookie)
        if session_token is None:
            raise InvalidTokenError("Invalid session")
        return db.query(GateSession).filter(GateSession.token == session_token).first()

    def authenticate(self, request: Request, db: Session) -> Identity:
        if not request.cookies.get(GATE_SESSION_COOKIE):
            raise AuthenticationRequiredError("Not authenticated")

        session = self._session_row(request, db)
        if session is None or session.revoked_at is not None:
            raise InvalidTokenError("Invalid session")
        if session.expires_at <= _now():
            logger.info("Gate session expired user_id=%s", session.user_id)
            db.delete(session)
            db.commit()
            raise TokenExpiredError("Session expired")

        user = _load_active_user(db, session.user_id)
        # Allow-list is re-read on every request so removals take effect immediately.
        allowed = is_super_user(db, user.email)
        return Identity(
            user_id=user.id,
            username=user.username,
            email=user.email,
            full_name=user.full_name,
            is_super_admin=bool(user.is_super_admin),
            can_access_app=allowed,
            can_access_coaching_data=allowed and has_coaching_access(user),
            token_id=session.token,
            expires_at=session.expires_at,
        )

    def end_session(self, request: Request, db: Session) -> Optional[Identity]:
        try:
            session = self._session_row(request, db)
        except InvalidTokenError:
            return None
        if session is None:
            return None
        if session.revoked_at is None:
            session.revoked_at = _now()
            db.commit()
        return Identity(user_id=session.user_id, token_id=session.token)


_stateless_provider = StatelessTokenProvider()
_stateful_provider = StatefulSessionProvider()


def provider_for_mode(app_mode: str) -> SessionProvider:
    if app_mode == APP_MODE_SUPER_USER_GATE:
        return _stateful_provider
    return _stateless_provider


def get_session_provider(request: Request) -> SessionProvider:
    app = request.scope.get("app")
    app_mode = getattr(getattr(app, "state", None), "app_mode", None) or APP_MODE
    return provider_for_mode(app_mode)
