from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from ecosystem_auth.core.config import JWT_ALGORITHM, JWT_SECRET_KEY, TOKEN_TTL_MINUTES
from ecosystem_auth.core.errors import InvalidTokenError, TokenExpiredError

DEFAULT_TOKEN_TTL = timedelta(minutes=TOKEN_TTL_MINUTES)


@dataclass(frozen=True)
class SessionClaims:
    """Logical content of a session token.

    ``company_id`` and ``role`` travel together: both are ``None`` on an
    unscoped token. ``issued_at``, ``expires_at`` and ``token_id`` are filled
    in when a token is minted or verified and do not take part in equality.
    """

    user_id: int
    username: Optional[str] = None
    email: Optional[str] = None
    full_name: Optional[str] = None
    company_id: Optional[int] = None
    role: Optional[str] = None
    is_super_admin: bool = False
    target_app: Optional[str] = None
    sso_source: Optional[str] = None
    issued_at: Optional[datetime] = field(default=None, compare=False)
    expires_at: Optional[datetime] = field(default=None, compare=False)
    token_id: Optional[str] = field(default=None, compare=False)

    @property
    def is_scoped(self) -> bool:
        return self.company_id is not None

    def scoped_to(self, company_id: int, role: str) -> "SessionClaims":
        return replace(self, company_id=company_id, role=role, issued_at=None, expires_at=None, token_id=None)


def _encode_claims(claims: SessionClaims, *, now: datetime, expires_at: datetime, token_id: str) -> Dict[str, Any]:
    # "sub" must be a string for python-jose
    return {
        "sub": str(claims.user_id),
        "username": claims.username,
        "email": claims.email,
        "name": claims.full_name,
        "company_id": claims.company_id,
        "role": claims.role,
        "is_super_admin": bool(claims.is_super_admin),
        "target_app": claims.target_app,
        "sso_source": claims.sso_source,
        "jti": token_id,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }


def _decode_claims(payload: Dict[str, Any]) -> SessionClaims:
    raw_sub = payload.get("sub")
    if raw_sub is None or not str(raw_sub).strip().isdigit():
        raise InvalidTokenError("Invalid token (missing subject)")

    company_id = payload.get("company_id")
    role = payload.get("role")
    if company_id is not None:
        try:
            company_id = int(company_id)
        except (TypeError, ValueError) as exc:
            raise InvalidTokenError() from exc
    if company_id is None and role is not None and not payload.get("is_super_admin"):
        raise InvalidTokenError("Invalid token (role without company)")

    iat = payload.get("iat")
    exp = payload.get("exp")
    return SessionClaims(
        user_id=int(str(raw_sub).strip()),
        username=payload.get("username"),
        email=payload.get("email"),
        full_name=payload.get("name"),
        company_id=company_id,
        role=role,
        is_super_admin=bool(payload.get("is_super_admin", False)),
        target_app=payload.get("target_app"),
        sso_source=payload.get("sso_source"),
        issued_at=datetime.fromtimestamp(int(iat), tz=timezone.utc) if iat is not None else None,
        expires_at=datetime.fromtimestamp(int(exp), tz=timezone.utc) if exp is not None else None,
        token_id=payload.get("jti"),
    )


def issue_token(claims: SessionClaims, ttl: timedelta = DEFAULT_TOKEN_TTL) -> str:
    now = datetime.now(timezone.utc)
    payload = _encode_claims(
        claims,
        now=now,
        expires_at=now + ttl,
        token_id=uuid.uuid4().hex,
    )
    return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def verify_token(token: str, *, allow_expired: bool = False) -> SessionClaims:
    """Verify signature and expiry and return the embedded claims.

    Raises ``TokenExpiredError`` for a well-signed token past its expiry and
    ``InvalidTokenError`` for anything malformed or wrongly signed.
    ``allow_expired`` still checks the signature; it is meant for logout.
    """
    if not token:
        raise InvalidTokenError()
    options = {"verify_exp": not allow_expired}
    try:
        payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM], options=options)
    except ExpiredSignatureError as exc:
        raise TokenExpiredError() from exc
    except JWTError as exc:
        raise InvalidTokenError() from exc
    if "exp" not in payload:
        raise InvalidTokenError("Invalid token (missing expiry)")
    return _decode_claims(payload)
