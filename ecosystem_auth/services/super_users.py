from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ecosystem_auth.core.config import COACHING_ACCESS_EMAILS, SUPER_USER_EMAILS
from ecosystem_auth.core.errors import ConflictError, NotFoundError, ValidationError
from ecosystem_auth.models.allowed_email import (
    ALLOWED_EMAIL_ROLES,
    ROLE_SUPER_USER,
    AllowedEmail,
)
from ecosystem_auth.models.user import User
from ecosystem_auth.services.credentials import normalize_email


def core_super_users() -> frozenset[str]:
    return frozenset(normalize_email(email) for email in SUPER_USER_EMAILS)


def is_core_super_user(email: Optional[str]) -> bool:
    return normalize_email(email) in core_super_users()


def _allowed_entry(db: Session, email: str) -> Optional[AllowedEmail]:
    return db.query(AllowedEmail).filter(func.lower(AllowedEmail.email) == normalize_email(email)).first()


def is_super_user(db: Session, email: Optional[str]) -> bool:
    """Gate allow-list: configured core emails plus SUPER_USER rows."""
    normalized = normalize_email(email)
    if not normalized:
        return False
    if is_core_super_user(normalized):
        return True
    entry = _allowed_entry(db, normalized)
    return entry is not None and entry.role == ROLE_SUPER_USER


def has_coaching_access(user: User) -> bool:
    if bool(getattr(user, "has_coaching_access", False)):
        return True
    coaching = {normalize_email(email) for email in COACHING_ACCESS_EMAILS}
    return normalize_email(getattr(user, "email", None)) in coaching


def list_allowed_emails(db: Session) -> List[Dict[str, Any]]:
    entries: List[Dict[str, Any]] = [
        {"email": email, "role": ROLE_SUPER_USER, "source": "core", "addedBy": None, "createdAt": None}
        for email in sorted(core_super_users())
    ]
    for entry in db.query(AllowedEmail).order_by(AllowedEmail.email.asc()).all():
        if is_core_super_user(entry.email):
            continue
        entries.append(
            {
                "email": entry.email,
                "role": entry.role,
                "source": "database",
                "addedBy": entry.added_by,
                "createdAt": entry.created_at.isoformat() if entry.created_at else None,
            }
        )
    return entries


def add_allowed_email(db: Session, *, email: str, role: str, added_by: Optional[str]) -> AllowedEmail:
    normalized = normalize_email(email)
    role = (role or ROLE_SUPER_USER).strip().upper()
    if role not in ALLOWED_EMAIL_ROLES:
        raise ValidationError(f"Invalid role. Must be one of: {', '.join(ALLOWED_EMAIL_ROLES)}")
    if is_core_super_user(normalized) or _allowed_entry(db, normalized) is not None:
        raise ConflictError("Email is already on the allow-list")

    entry = AllowedEmail(email=normalized, role=role, added_by=normalize_email(added_by) or None)
    db.add(entry)
    db.flush()
    return entry


def remove_allowed_email(db: Session, email: str) -> None:
    normalized = normalize_email(email)
    if is_core_super_user(normalized):
        raise ValidationError("Core super users cannot be removed")
    entry = _allowed_entry(db, normalized)
    if entry is None:
        raise NotFoundError("Email not found on the allow-list")
    db.delete(entry)
    db.flush()
