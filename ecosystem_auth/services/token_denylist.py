from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ecosystem_auth.models.revoked_token import RevokedToken
from ecosystem_auth.services.tokens import SessionClaims


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _naive(value: datetime) -> datetime:
    return value.astimezone(timezone.utc).replace(tzinfo=None) if value.tzinfo else value


def is_token_revoked(db: Session, token_id: str | None) -> bool:
    if not token_id:
        return False
    return db.query(RevokedToken.id).filter(RevokedToken.jti == token_id).first() is not None


def revoke_token(db: Session, claims: SessionClaims) -> bool:
    """Record ``claims.token_id`` until its natural expiry. Returns False when nothing new was stored."""
    if not claims.token_id or claims.expires_at is None:
        return False

    now = _now()
    expires_at = _naive(claims.expires_at)
    db.query(RevokedToken).filter(RevokedToken.expires_at <= now).delete(synchronize_session=False)
    if expires_at <= now or is_token_revoked(db, claims.token_id):
        db.commit()
        return False

    db.add(RevokedToken(jti=claims.token_id, user_id=claims.user_id, expires_at=expires_at))
    try:
        db.commit()
    except IntegrityError:
        # concurrent logout of the same token
        db.rollback()
        return False
    return True
