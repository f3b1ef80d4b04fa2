from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from ecosystem_auth.core.config import APP_URL, INVITATION_TTL_DAYS
from ecosystem_auth.core.errors import ValidationError
from ecosystem_auth.models.invitation import Invitation
from ecosystem_auth.services.credentials import normalize_email
from ecosystem_auth.services.permissions import INVITABLE_ROLES, normalize_role

INVALID_INVITATION_MESSAGE = "Invalid or expired invitation"


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_invitation_token() -> str:
    return secrets.token_hex(32)


def build_invite_url(token: str) -> str:
    return f"{APP_URL}/register?invite={token}"


def create_invitation(
    db: Session,
    *,
    company_id: int,
    email: str,
    role: str,
    invited_by_user_id: Optional[int],
    ttl: timedelta = timedelta(days=INVITATION_TTL_DAYS),
) -> Invitation:
    canonical_role = normalize_role(role)
    if canonical_role not in INVITABLE_ROLES:
        raise ValidationError(f"Invalid role. Must be one of: {', '.join(sorted(INVITABLE_ROLES))}")

    invitation = Invitation(
        email=normalize_email(email),
        company_id=company_id,
        role=canonical_role,
        token=generate_invitation_token(),
        expires_at=_now() + ttl,
        is_used=False,
        invited_by_user_id=invited_by_user_id,
    )
    db.add(invitation)
    db.flush()
    return invitation


def get_pending_invitation(db: Session, token: str) -> Optional[Invitation]:
    if not token:
        return None
    return (
        db.query(Invitation)
        .filter(
            Invitation.token == token,
            Invitation.is_used.is_(False),
            Invitation.expires_at > _now(),
        )
        .first()
    )


def redeem_invitation(db: Session, token: str, *, user_id: int) -> Invitation:
    """Mark the invitation used with a single conditional UPDATE.

    Two concurrent redemptions race on the same row; only the one whose
    UPDATE matches ``is_used = false`` wins. Does not commit.
    """
    now = _now()
    result = db.execute(
        update(Invitation)
        .where(
            Invitation.token == token,
            Invitation.is_used.is_(False),
            Invitation.expires_at > now,
        )
        .values(is_used=True, accepted_at=now, accepted_by_user_id=user_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ValidationError(INVALID_INVITATION_MESSAGE)

    invitation = db.query(Invitation).filter(Invitation.token == token).first()
    db.refresh(invitation)
    return invitation
