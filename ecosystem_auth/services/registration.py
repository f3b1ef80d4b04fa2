from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ecosystem_auth.core.config import MIN_PASSWORD_LENGTH
from ecosystem_auth.core.database import transaction
from ecosystem_auth.core.errors import ConflictError, ValidationError
from ecosystem_auth.models.company import SUBSCRIPTION_ACTIVE, SUBSCRIPTION_PENDING, Company
from ecosystem_auth.models.invitation import Invitation
from ecosystem_auth.models.user import User
from ecosystem_auth.services.companies import OWNER_ROLE, create_company_with_owner
from ecosystem_auth.services.credentials import login_identifier_taken, normalize_email
from ecosystem_auth.services.invitations import (
    INVALID_INVITATION_MESSAGE,
    get_pending_invitation,
    redeem_invitation,
)
from ecosystem_auth.services.passwords import hash_password
from ecosystem_auth.services.tenant_access import upsert_access_edge

logger = logging.getLogger(__name__)

DUPLICATE_LOGIN_MESSAGE = "Username or email already registered"


@dataclass
class RegistrationResult:
    user: User
    company: Optional[Company] = None
    role: Optional[str] = None
    invitation: Optional[Invitation] = None


def validate_new_password(password: str) -> None:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def _new_user(db: Session, *, username: Optional[str], email: Optional[str], password: str, full_name: str) -> User:
    user = User(
        username=(username or "").strip() or None,
        email=normalize_email(email) or None,
        password_hash=hash_password(password),
        full_name=(full_name or "").strip() or None,
        is_active=True,
    )
    db.add(user)
    db.flush()
    return user


def create_user(
    db: Session,
    *,
    username: Optional[str],
    email: Optional[str],
    password: str,
    full_name: str,
) -> User:
    """Add a user in the caller's transaction after the duplicate-identifier check."""
    if not (username or "").strip() and not normalize_email(email):
        raise ValidationError("Username or email is required")
    validate_new_password(password)
    if login_identifier_taken(db, username=username, email=email):
        raise ConflictError(DUPLICATE_LOGIN_MESSAGE)
    return _new_user(db, username=username, email=email, password=password, full_name=full_name)


def register_user(
    db: Session,
    *,
    username: Optional[str],
    email: Optional[str],
    password: str,
    full_name: str,
    company_name: Optional[str] = None,
    trading_name: Optional[str] = None,
    invitation_token: Optional[str] = None,
) -> RegistrationResult:
    """Create a user and, optionally, join an invited company or create an owned one.

    Every row is written in one transaction: a failure at any step leaves
    neither a user nor a company behind.
    """
    invitation = None
    if invitation_token:
        invitation = get_pending_invitation(db, invitation_token)
        if invitation is None:
            raise ValidationError(INVALID_INVITATION_MESSAGE)
        email = email or invitation.email

    try:
        with transaction(db):
            user = create_user(db, username=username, email=email, password=password, full_name=full_name)
            result = RegistrationResult(user=user)

            if invitation is not None:
                redeemed = redeem_invitation(db, invitation_token, user_id=user.id)
                upsert_access_edge(
                    db,
                    user_id=user.id,
                    company_id=redeemed.company_id,
                    role=redeemed.role,
                    is_primary=True,
                    granted_by_user_id=redeemed.invited_by_user_id,
                )
                result.company = db.query(Company).filter(Company.id == redeemed.company_id).first()
                result.role = redeemed.role
                result.invitation = redeemed
            elif company_name:
                company, _ = create_company_with_owner(
                    db,
                    owner=user,
                    company_name=company_name,
                    trading_name=trading_name,
                    subscription_status=SUBSCRIPTION_ACTIVE,
                    is_primary=True,
                )
                result.company = company
                result.role = OWNER_ROLE
    except IntegrityError as exc:
        logger.warning("Registration conflict username=%s", username)
        raise ConflictError(DUPLICATE_LOGIN_MESSAGE) from exc

    db.refresh(result.user)
    return result


def register_company_signup(
    db: Session,
    *,
    username: Optional[str],
    email: str,
    password: str,
    full_name: str,
    company_name: str,
    trading_name: Optional[str] = None,
) -> RegistrationResult:
    """Public signup: the company starts ``pending`` until a super-admin approves it."""
    try:
        with transaction(db):
            user = create_user(db, username=username, email=email, password=password, full_name=full_name)
            company, _ = create_company_with_owner(
                db,
                owner=user,
                company_name=company_name,
                trading_name=trading_name,
                subscription_status=SUBSCRIPTION_PENDING,
                is_primary=True,
            )
    except IntegrityError as exc:
        logger.warning("Company signup conflict email=%s", normalize_email(email))
        raise ConflictError(DUPLICATE_LOGIN_MESSAGE) from exc

    db.refresh(user)
    db.refresh(company)
    return RegistrationResult(user=user, company=company, role=OWNER_ROLE)
