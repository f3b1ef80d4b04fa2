from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ecosystem_auth.core.errors import InvalidCredentialsError
from ecosystem_auth.models.user import User
from ecosystem_auth.services.passwords import dummy_password_hash, verify_password

logger = logging.getLogger(__name__)


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def find_user_by_login(db: Session, identifier: str) -> Optional[User]:
    """Username matches case-sensitively, email case-insensitively; a username hit wins."""
    identifier = (identifier or "").strip()
    if not identifier:
        return None

    user = db.query(User).filter(User.username == identifier).first()
    if user is not None:
        return user
    return db.query(User).filter(func.lower(User.email) == normalize_email(identifier)).first()


def find_active_user_by_login(db: Session, identifier: str) -> Optional[User]:
    user = find_user_by_login(db, identifier)
    if user is None or not user.is_active:
        return None
    return user


def login_identifier_taken(db: Session, *, username: Optional[str], email: Optional[str]) -> bool:
    if username and db.query(User.id).filter(User.username == username.strip()).first() is not None:
        return True
    normalized = normalize_email(email)
    if normalized and db.query(User.id).filter(func.lower(User.email) == normalized).first() is not None:
        return True
    return False


def authenticate(db: Session, identifier: str, password: str) -> User:
    """Return the active user for these credentials or raise a generic InvalidCredentialsError.

    An unknown or inactive identifier still pays for one bcrypt comparison so
    the public login endpoint cannot be used to enumerate accounts.
    """
    user = find_active_user_by_login(db, identifier)
    stored_hash = user.password_hash if user is not None else dummy_password_hash()
    password_ok = verify_password(password, stored_hash)
    if user is None or not password_ok:
        raise InvalidCredentialsError()
    return user
