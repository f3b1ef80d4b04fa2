from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from ecosystem_auth.core.config import APP_MODE_SUPER_USER_GATE
from ecosystem_auth.models.gate_session import GateSession
from ecosystem_auth.services.session_cookies import GATE_SESSION_COOKIE, sign_session_token


@pytest.fixture
def gate_client(build_client):
    return build_client(APP_MODE_SUPER_USER_GATE)


@pytest.fixture
def founder(make_user):
    return make_user(email="founder@example.com", password="founder-pass", full_name="Founder")


def _gate_login(client, email: str, password: str):
    return client.post("/gate/auth/login", json={"email": email, "password": password})


def test_allow_listed_user_gets_session_cookie(gate_client, founder, audit_recorder):
    response = _gate_login(gate_client, "founder@example.com", "founder-pass")

    assert response.status_code == 200
    assert response.json()["canAccessApp"] is True
    set_cookie = response.headers.get("set-cookie", "")
    assert f"{GATE_SESSION_COOKIE}=" in set_cookie
    assert "HttpOnly" in set_cookie

    me = gate_client.get("/gate/auth/me")
    assert me.status_code == 200
    assert me.json()["user"]["email"] == "founder@example.com"
    assert me.json()["canAccessCoachingData"] is True
    assert "GATE_LOGIN" in audit_recorder.actions()


def test_gate_rejects_bad_password_generically(gate_client, founder):
    response = _gate_login(gate_client, "founder@example.com", "wrong-pass")

    assert response.status_code == 401
    assert response.json()["error"] == "Invalid credentials"


def test_gate_rejects_users_off_the_allow_list(gate_client, make_user):
    make_user(email="outsider@example.com", password="outsider-pass")

    response = _gate_login(gate_client, "outsider@example.com", "outsider-pass")

    assert response.status_code == 403
    assert GATE_SESSION_COOKIE not in gate_client.cookies


def test_gate_me_without_session_is_unauthenticated(gate_client):
    assert gate_client.get("/gate/auth/me").status_code == 401


def test_removing_allow_list_entry_revokes_access_immediately(build_client, founder, make_user):
    founder_client = build_client(APP_MODE_SUPER_USER_GATE)
    helper_client = build_client(APP_MODE_SUPER_USER_GATE)
    make_user(email="helper@example.com", password="helper-pass")
    _gate_login(founder_client, "founder@example.com", "founder-pass")

    added = founder_client.post("/gate/allowed-emails", json={"email": "helper@example.com", "role": "SUPER_USER"})
    duplicate = founder_client.post("/gate/allowed-emails", json={"email": "HELPER@example.com"})
    assert added.status_code == 201
    assert duplicate.status_code == 409

    assert _gate_login(helper_client, "helper@example.com", "helper-pass").status_code == 200
    assert helper_client.get("/gate/allowed-emails").status_code == 200

    removed = founder_client.delete("/gate/allowed-emails/helper@example.com")
    assert removed.status_code == 200

    assert helper_client.get("/gate/allowed-emails").status_code == 403
    assert helper_client.get("/gate/auth/me").json()["canAccessApp"] is False


def test_core_super_users_cannot_be_removed(gate_client, founder):
    _gate_login(gate_client, "founder@example.com", "founder-pass")

    listing = gate_client.get("/gate/allowed-emails")
    response = gate_client.delete("/gate/allowed-emails/founder@example.com")

    assert {"email": "founder@example.com", "source": "core"}.items() <= listing.json()["emails"][0].items()
    assert response.status_code == 400


def test_coaching_access_requires_its_own_grant(build_client, founder, make_user, audit_recorder):
    founder_client = build_client(APP_MODE_SUPER_USER_GATE)
    helper_client = build_client(APP_MODE_SUPER_USER_GATE)
    make_user(email="helper@example.com", password="helper-pass")
    _gate_login(founder_client, "founder@example.com", "founder-pass")
    founder_client.post("/gate/allowed-emails", json={"email": "helper@example.com"})
    _gate_login(helper_client, "helper@example.com", "helper-pass")

    denied = helper_client.get("/gate/coaching/access")
    granted = founder_client.get("/gate/coaching/access")

    assert denied.status_code == 403
    assert "coaching" in denied.json()["error"].lower()
    assert granted.status_code == 200
    assert granted.json() == {"hasAccess": True}
    assert audit_recorder.actions().count("COACHING_ACCESS") == 1


def test_gate_logout_revokes_session_and_is_idempotent(build_client, db_session, founder, audit_recorder):
    gate_client = build_client(APP_MODE_SUPER_USER_GATE)
    replay_client = build_client(APP_MODE_SUPER_USER_GATE)
    _gate_login(gate_client, "founder@example.com", "founder-pass")
    replay_client.cookies.set(GATE_SESSION_COOKIE, gate_client.cookies.get(GATE_SESSION_COOKIE))

    first = gate_client.post("/gate/auth/logout")
    replayed = replay_client.get("/gate/auth/me")
    second = replay_client.post("/gate/auth/logout")

    assert first.status_code == 200
    assert replayed.status_code == 401
    assert second.status_code == 200
    assert db_session.query(GateSession).one().revoked_at is not None
    assert "GATE_LOGOUT" in audit_recorder.actions()


def test_expired_gate_session_is_deleted_on_access(gate_client, db_session, founder):
    db_session.add(
        GateSession(
            token="stale-token",
            user_id=founder.id,
            expires_at=datetime.utcnow() - timedelta(minutes=1),
        )
    )
    db_session.commit()
    gate_client.cookies.set(GATE_SESSION_COOKIE, sign_session_token("stale-token"))

    response = gate_client.get("/gate/auth/me")

    assert response.status_code == 401
    assert response.json()["code"] == "TOKEN_EXPIRED"
    assert db_session.query(GateSession).count() == 0


def test_tampered_gate_cookie_is_rejected(gate_client, founder):
    gate_client.cookies.set(GATE_SESSION_COOKIE, "forged.value.signature")

    assert gate_client.get("/gate/auth/me").status_code == 401


def test_multi_tenant_routes_are_not_mounted_in_gate_mode(gate_client):
    assert gate_client.post("/auth/login", json={"identifier": "x", "password": "y"}).status_code == 404
