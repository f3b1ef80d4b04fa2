from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String

from ecosystem_auth.core.database import Base

ROLE_SUPER_USER = "SUPER_USER"
ROLE_ADMIN = "ADMIN"
ALLOWED_EMAIL_ROLES = (ROLE_SUPER_USER, ROLE_ADMIN)


class AllowedEmail(Base):
    __tablename__ = "allowed_emails"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, nullable=False, unique=True, index=True)
    role = Column(String, nullable=False, default=ROLE_SUPER_USER)
    added_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
