from __future__ import annotations

from typing import Any, Optional
from urllib.parse import urlsplit

from fastapi import Request, Response
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from ecosystem_auth.core.config import (
    GATE_SESSION_COOKIE_DOMAIN,
    GATE_SESSION_COOKIE_HTTPONLY,
    GATE_SESSION_COOKIE_SAMESITE,
    GATE_SESSION_COOKIE_SECURE,
    GATE_SESSION_MAX_AGE_SECONDS,
    GATE_SESSION_SECRET,
)

GATE_SESSION_COOKIE = "gate_session"
GATE_SESSION_SALT = "gate-session"


def _serializer() -> URLSafeTimedSerializer:
    if not GATE_SESSION_SECRET:
        raise RuntimeError("GATE_SESSION_SECRET not configured.")
    return URLSafeTimedSerializer(GATE_SESSION_SECRET, salt=GATE_SESSION_SALT)


def sign_session_token(session_token: str) -> str:
    return _serializer().dumps({"sid": session_token})


def unsign_session_token(value: str) -> Optional[str]:
    """Return the opaque session id, or None for a tampered or stale cookie."""
    try:
        payload = _serializer().loads(value, max_age=GATE_SESSION_MAX_AGE_SECONDS)
    except (BadSignature, SignatureExpired, ValueError):
        return None
    if not isinstance(payload, dict):
        return None
    session_token = payload.get("sid")
    return session_token if isinstance(session_token, str) and session_token else None


def build_session_cookie_options(request: Request | None = None) -> dict[str, Any]:
    secure = GATE_SESSION_COOKIE_SECURE
    samesite = GATE_SESSION_COOKIE_SAMESITE

    host = ""
    origin_host = ""
    if request is not None:
        host = (request.headers.get("x-forwarded-host") or request.headers.get("host") or "").lower()
        host = host.split(",")[0].strip().split(":")[0]

        origin = (request.headers.get("origin") or "").strip()
        if origin:
            origin_host = (urlsplit(origin).hostname or "").lower()

    is_local_request = host in {"", "localhost", "127.0.0.1", "testserver"}
    is_cross_site_request = bool(origin_host and host and origin_host != host)

    # Public hosts never get an insecure session cookie.
    if not is_local_request:
        secure = True

    if is_cross_site_request and secure:
        samesite = "none"

    # Browsers reject SameSite=None without Secure.
    if samesite == "none" and not secure:
        samesite = "lax"

    return {
        "domain": GATE_SESSION_COOKIE_DOMAIN,
        "httponly": GATE_SESSION_COOKIE_HTTPONLY,
        "samesite": samesite,
        "path": "/",
        "secure": secure,
    }


def set_session_cookie(response: Response, value: str, request: Request | None = None) -> None:
    response.set_cookie(
        key=GATE_SESSION_COOKIE,
        value=value,
        max_age=GATE_SESSION_MAX_AGE_SECONDS,
        **build_session_cookie_options(request),
    )


def clear_session_cookie(response: Response, request: Request | None = None) -> None:
    response.delete_cookie(
        key=GATE_SESSION_COOKIE,
        **build_session_cookie_options(request),
    )
