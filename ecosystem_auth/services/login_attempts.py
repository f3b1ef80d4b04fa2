from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from ecosystem_auth.core.config import (
    LOGIN_ATTEMPT_WINDOW_MINUTES,
    LOGIN_LOCK_MINUTES,
    LOGIN_MAX_FAILED_ATTEMPTS,
)
from ecosystem_auth.models.login_attempt import LoginAttempt

MAX_FAILED_ATTEMPTS = LOGIN_MAX_FAILED_ATTEMPTS
ATTEMPT_WINDOW = timedelta(minutes=LOGIN_ATTEMPT_WINDOW_MINUTES)
LOCK_DURATION = timedelta(minutes=LOGIN_LOCK_MINUTES)


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_identifier(identifier: str) -> str:
    """Emails fold case like the credential lookup does; usernames stay case-sensitive."""
    value = (identifier or "").strip()
    return value.lower() if "@" in value else value


def get_login_attempt(db: Session, identifier: str) -> Optional[LoginAttempt]:
    return db.query(LoginAttempt).filter(LoginAttempt.identifier == normalize_identifier(identifier)).first()


def is_locked(attempt: LoginAttempt, now: Optional[datetime] = None) -> bool:
    now = now or _now()
    if attempt.locked_until is None:
        return False
    return attempt.locked_until > now


def check_login_lock(db: Session, identifier: str) -> Tuple[bool, Optional[datetime]]:
    attempt = get_login_attempt(db, identifier)
    if attempt is not None and is_locked(attempt):
        return True, attempt.locked_until
    return False, None


def register_failed_login(db: Session, identifier: str) -> Tuple[LoginAttempt, bool]:
    """Count one failure inside the rolling window. Returns the row and whether it is now locked."""
    now = _now()
    attempt = get_login_attempt(db, identifier)
    if attempt is None:
        attempt = LoginAttempt(
            identifier=normalize_identifier(identifier),
            failed_count=1,
            first_failed_at=now,
            last_failed_at=now,
        )
        db.add(attempt)
    else:
        if attempt.first_failed_at is None or (now - attempt.first_failed_at) > ATTEMPT_WINDOW:
            attempt.failed_count = 0
            attempt.first_failed_at = now
            attempt.locked_until = None
        attempt.failed_count += 1
        attempt.last_failed_at = now

    locked = False
    if attempt.failed_count >= MAX_FAILED_ATTEMPTS:
        attempt.locked_until = now + LOCK_DURATION
        locked = True

    return attempt, locked


def clear_login_attempts(db: Session, identifier: str) -> None:
    attempt = get_login_attempt(db, identifier)
    if attempt is None:
        return
    db.delete(attempt)
