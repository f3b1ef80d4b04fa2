import os

os.environ.setdefault("ENV", "test")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("SUPER_USER_EMAILS", "founder@example.com")
os.environ.setdefault("COACHING_ACCESS_EMAILS", "founder@example.com")
os.environ.setdefault("CORS_ORIGINS", "http://localhost:3000")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ecosystem_auth.core.config import APP_MODE_MULTI_TENANT
from ecosystem_auth.core.database import Base, get_db
from ecosystem_auth.models.company import Company
from ecosystem_auth.models.user import User
from ecosystem_auth.services import audit
from ecosystem_auth.services.passwords import hash_password
from ecosystem_auth.services.tenant_access import upsert_access_edge
import ecosystem_auth.models  # noqa: F401


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def audit_recorder():
    return audit.InMemoryAuditRecorder()


@pytest.fixture
def build_client(db_session, audit_recorder, monkeypatch):
    from ecosystem_auth import main

    monkeypatch.setattr(main, "_startup_tasks", lambda: None)

    def _build(app_mode: str = APP_MODE_MULTI_TENANT) -> TestClient:
        app = main.create_app(app_mode=app_mode)
        app.dependency_overrides[get_db] = lambda: db_session
        app.dependency_overrides[audit.get_audit_recorder] = lambda: audit_recorder
        return TestClient(app)

    return _build


@pytest.fixture
def client(build_client):
    return build_client()


@pytest.fixture
def make_user(db_session):
    def _make(
        *,
        username=None,
        email=None,
        password="secret123",
        full_name="Test User",
        is_super_admin=False,
        is_active=True,
        has_coaching_access=False,
    ):
        user = User(
            username=username,
            email=email,
            password_hash=hash_password(password),
            full_name=full_name,
            is_super_admin=is_super_admin,
            is_active=is_active,
            has_coaching_access=has_coaching_access,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture
def make_company(db_session):
    def _make(name="Acme", *, subscription_status="active", is_active=True, modules_enabled=None):
        company = Company(
            company_name=name,
            trading_name=name,
            subscription_status=subscription_status,
            is_active=is_active,
            modules_enabled=modules_enabled,
        )
        db_session.add(company)
        db_session.commit()
        return company

    return _make


@pytest.fixture
def grant(db_session):
    def _grant(user, company, role, *, is_primary=False, is_active=True):
        edge = upsert_access_edge(
            db_session,
            user_id=user.id,
            company_id=company.id,
            role=role,
            is_primary=is_primary,
            is_active=is_active,
        )
        db_session.commit()
        return edge

    return _grant
