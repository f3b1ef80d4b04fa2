from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String

from ecosystem_auth.core.database import Base

SUBSCRIPTION_ACTIVE = "active"
SUBSCRIPTION_PENDING = "pending"
SUBSCRIPTION_SUSPENDED = "suspended"
SUBSCRIPTION_TRIAL = "trial"
SUBSCRIPTION_STATUSES = (
    SUBSCRIPTION_ACTIVE,
    SUBSCRIPTION_PENDING,
    SUBSCRIPTION_SUSPENDED,
    SUBSCRIPTION_TRIAL,
)
# Statuses that refuse company binding even when the access edge is active
BLOCKED_SUBSCRIPTION_STATUSES = frozenset({SUBSCRIPTION_PENDING, SUBSCRIPTION_SUSPENDED})


class Company(Base):
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    company_name = Column(String, nullable=False)
    trading_name = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    subscription_status = Column(String, nullable=False, default=SUBSCRIPTION_ACTIVE)
    modules_enabled = Column(JSON, nullable=True)

    owner_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    approved_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
