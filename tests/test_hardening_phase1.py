from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from uuid import UUID

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from ecosystem_auth.core import errors, startup_checks
from ecosystem_auth.core.config import CORS_ORIGINS
from ecosystem_auth.core.errors import register_exception_handlers
from ecosystem_auth.core.logging_setup import JsonFormatter, mask_sensitive
from ecosystem_auth.services.tokens import SessionClaims, issue_token

ALEMBIC_INI = Path(__file__).resolve().parents[1] / "alembic.ini"


def test_request_id_is_returned_in_response_header(client):
    response = client.get("/health")

    assert response.status_code == 200
    UUID(response.headers["X-Request-ID"])


def test_incoming_request_id_is_propagated(client):
    response = client.get("/health", headers={"X-Request-ID": "trace-123"})

    assert response.headers["X-Request-ID"] == "trace-123"


def test_cors_allows_known_origin_and_blocks_unknown_origin(client):
    allowed_origin = CORS_ORIGINS[0]

    allowed_response = client.options(
        "/health",
        headers={"origin": allowed_origin, "access-control-request-method": "GET"},
    )
    blocked_response = client.options(
        "/health",
        headers={"origin": "https://blocked-origin.example", "access-control-request-method": "GET"},
    )

    assert allowed_response.status_code == 200
    assert allowed_response.headers.get("access-control-allow-origin") == allowed_origin
    assert blocked_response.status_code == 400
    assert blocked_response.headers.get("access-control-allow-origin") is None


def test_production_environment_rejects_sqlite(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "production")
    monkeypatch.setattr(startup_checks, "DATABASE_URL", "sqlite:///./forbidden.db")

    with pytest.raises(RuntimeError, match="SQLite is forbidden"):
        startup_checks.validate_database_environment()


def test_production_environment_rejects_placeholder_secret(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "production")
    monkeypatch.setattr(startup_checks, "JWT_SECRET_IS_PLACEHOLDER", True)

    with pytest.raises(RuntimeError, match="JWT_SECRET_KEY"):
        startup_checks.validate_signing_secrets()


def test_gate_mode_also_requires_gate_secret(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "staging")
    monkeypatch.setattr(startup_checks, "JWT_SECRET_IS_PLACEHOLDER", False)
    monkeypatch.setattr(startup_checks, "GATE_SECRET_IS_PLACEHOLDER", True)
    monkeypatch.setattr(startup_checks, "APP_MODE", "super_user_gate")

    with pytest.raises(RuntimeError, match="GATE_SESSION_SECRET"):
        startup_checks.validate_signing_secrets()


def test_development_only_warns_about_placeholder_secret(monkeypatch, caplog):
    monkeypatch.setenv("ENVIRONMENT", "development")
    monkeypatch.setattr(startup_checks, "JWT_SECRET_IS_PLACEHOLDER", True)

    with caplog.at_level(logging.WARNING):
        startup_checks.validate_signing_secrets()

    assert "JWT_SECRET_KEY" in caplog.text


def _sqlite_with_version(path: Path, version: str) -> None:
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE alembic_version (version_num VARCHAR(32) NOT NULL)")
    conn.execute("INSERT INTO alembic_version (version_num) VALUES (?)", (version,))
    conn.commit()
    conn.close()


def test_migration_check_fails_when_pending_migration(tmp_path: Path, monkeypatch):
    from sqlalchemy import create_engine

    db_path = tmp_path / "pending.db"
    _sqlite_with_version(db_path, "000000000000")
    monkeypatch.setenv("ENVIRONMENT", "development")

    with pytest.raises(RuntimeError, match="Pending migrations"):
        startup_checks.ensure_migrations_applied(
            engine=create_engine(f"sqlite:///{db_path}"),
            alembic_config_path=ALEMBIC_INI,
        )


def test_migration_check_passes_at_head(tmp_path: Path, monkeypatch):
    from sqlalchemy import create_engine

    db_path = tmp_path / "current.db"
    _sqlite_with_version(db_path, "0001_create_auth_schema")
    monkeypatch.setenv("ENVIRONMENT", "development")

    startup_checks.ensure_migrations_applied(
        engine=create_engine(f"sqlite:///{db_path}"),
        alembic_config_path=ALEMBIC_INI,
    )


def test_unexpected_errors_return_generic_body():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/boom")
    def boom():
        raise RuntimeError("database exploded: password=hunter2")

    with TestClient(app, raise_server_exceptions=False) as client:
        response = client.get("/boom")

    assert response.status_code == 500
    assert response.json()["error"] == "Internal server error"


def _boom_client() -> TestClient:
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/boom")
    def boom():
        raise RuntimeError("database exploded at 10.0.0.5")

    return TestClient(app, raise_server_exceptions=False)


def test_staging_and_production_hide_error_detail(monkeypatch):
    monkeypatch.setattr(errors, "IS_DEV", False)
    monkeypatch.setattr(errors, "IS_TEST", False)

    with _boom_client() as client:
        response = client.get("/boom")

    assert response.status_code == 500
    assert "detail" not in response.json()


def test_test_environment_exposes_error_detail():
    with _boom_client() as client:
        response = client.get("/boom")

    assert response.json()["detail"] == "database exploded at 10.0.0.5"


def test_unknown_route_uses_flat_error_body(client):
    response = client.get("/does-not-exist")

    assert response.status_code == 404
    assert response.json() == {"error": "Not Found"}


def test_missing_token_is_401_with_error_body(client):
    response = client.get("/auth/me")

    assert response.status_code == 401
    assert response.json()["error"] == "Access token required"
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_secrets_and_tokens_are_masked_in_logs():
    token = issue_token(SessionClaims(user_id=1))

    masked = mask_sensitive(f"Authorization: Bearer {token} password=hunter2 issued {token}")

    assert token not in masked
    assert "hunter2" not in masked


def test_json_formatter_renders_masked_message():
    record = logging.LogRecord(
        name="ecosystem_auth.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="login password=%s",
        args=("hunter2",),
        exc_info=None,
    )

    rendered = JsonFormatter("%(message)s").format(record)

    assert "hunter2" not in rendered
    assert '"module": "ecosystem_auth.test"' in rendered
