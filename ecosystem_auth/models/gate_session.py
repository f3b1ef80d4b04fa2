from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from ecosystem_auth.core.database import Base


class GateSession(Base):
    __tablename__ = "gate_sessions"

    id = Column(Integer, primary_key=True, index=True)
    token = Column(String(64), nullable=False, unique=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
