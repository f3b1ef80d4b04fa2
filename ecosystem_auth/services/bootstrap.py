from __future__ import annotations

import logging
import os
from typing import Iterable, Optional

from sqlalchemy import func, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from ecosystem_auth.models.company import Company
from ecosystem_auth.models.user import User
from ecosystem_auth.services.credentials import normalize_email
from ecosystem_auth.services.passwords import hash_password, password_looks_hashed
from ecosystem_auth.services.permissions import is_known_role, normalize_role
from ecosystem_auth.services.tenant_access import upsert_access_edge

logger = logging.getLogger(__name__)
BOOTSTRAP_PREFIX = "[ADMIN_BOOTSTRAP]"
REQUIRED_TABLES = ("users", "companies", "user_company_access")


def ensure_auth_tables(engine: Engine) -> None:
    inspector = inspect(engine)
    missing = [table for table in REQUIRED_TABLES if not inspector.has_table(table)]
    if missing:
        logger.error("%s tables missing / migrations not applied missing=%s", BOOTSTRAP_PREFIX, ",".join(missing))
        raise RuntimeError("tables missing / migrations not applied")


def _resolve_password_hash(password: str) -> str:
    if password_looks_hashed(password):
        logger.info("%s password already hashed; storing as-is", BOOTSTRAP_PREFIX)
        return password
    return hash_password(password)


def sync_super_admin_flags(db: Session, emails: Iterable[str]) -> int:
    """Flag users whose email is on the configured super-admin list. Returns how many changed."""
    normalized = sorted({normalize_email(email) for email in emails if normalize_email(email)})
    if not normalized:
        return 0
    users = (
        db.query(User)
        .filter(func.lower(User.email).in_(normalized), User.is_super_admin.is_(False))
        .all()
    )
    for user in users:
        user.is_super_admin = True
        logger.info("%s promoted super-admin user_id=%s", BOOTSTRAP_PREFIX, user.id)
    db.commit()
    return len(users)


def upsert_user(
    db: Session,
    *,
    email: str,
    full_name: str,
    password: Optional[str],
    username: Optional[str] = None,
    super_admin: bool = False,
    company_id: Optional[int] = None,
    role: Optional[str] = None,
) -> tuple[User, bool]:
    normalized_email = normalize_email(email)
    existing = db.query(User).filter(func.lower(User.email) == normalized_email).first()
    created = existing is None

    if existing is None:
        if not password:
            raise ValueError("Password is required to create a new user.")
        user = User(
            email=normalized_email,
            username=(username or "").strip() or None,
            full_name=full_name,
            password_hash=_resolve_password_hash(password),
            is_active=True,
            is_super_admin=super_admin,
        )
        db.add(user)
        db.flush()
    else:
        user = existing
        user.full_name = full_name or user.full_name
        user.is_active = True
        if super_admin:
            user.is_super_admin = True
        if password:
            user.password_hash = _resolve_password_hash(password)

    if company_id is not None:
        if db.query(Company.id).filter(Company.id == company_id).first() is None:
            db.rollback()
            raise ValueError(f"Company {company_id} not found.")
        if not is_known_role(role):
            db.rollback()
            raise ValueError(f"Unknown role: {role}")
        upsert_access_edge(db, user_id=user.id, company_id=company_id, role=normalize_role(role))

    db.commit()
    db.refresh(user)
    return user, created


def bootstrap_initial_admin(db: Session) -> Optional[User]:
    """Create the first super-admin from DEV_ADMIN_* when no user with that email exists."""
    password = os.getenv("DEV_ADMIN_PASSWORD", "").strip()
    email = normalize_email(os.getenv("DEV_ADMIN_EMAIL", ""))
    if not password or not email:
        logger.info("%s skipped: configure DEV_ADMIN_EMAIL and DEV_ADMIN_PASSWORD.", BOOTSTRAP_PREFIX)
        return None

    existing = db.query(User).filter(func.lower(User.email) == email).first()
    if existing is not None:
        logger.info("%s exists id=%s email=%s", BOOTSTRAP_PREFIX, existing.id, existing.email)
        return existing

    name = os.getenv("DEV_ADMIN_NAME", "Admin").strip() or "Admin"
    logger.info("%s creating email=%s", BOOTSTRAP_PREFIX, email)
    user, _ = upsert_user(db, email=email, full_name=name, password=password, super_admin=True)
    logger.info("%s created success id=%s email=%s", BOOTSTRAP_PREFIX, user.id, user.email)
    return user
