from __future__ import annotations

from datetime import datetime, timedelta

from ecosystem_auth.models.company import Company
from ecosystem_auth.models.invitation import Invitation
from ecosystem_auth.models.user import User
from ecosystem_auth.models.user_company_access import UserCompanyAccess
from ecosystem_auth.services.tokens import verify_token
from tests.fixtures_data import REGISTER_WITH_COMPANY, SIGNUP_COMPANY


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _login(client, identifier: str, password: str) -> str:
    response = client.post("/auth/login", json={"identifier": identifier, "password": password})
    assert response.status_code == 200
    return response.json()["token"]


def test_register_with_company_creates_owner_edge(client, db_session, audit_recorder):
    response = client.post("/auth/register", json=REGISTER_WITH_COMPANY)

    assert response.status_code == 201
    body = response.json()
    assert body["role"] == "business_owner"
    assert body["company"]["companyName"] == "NewCo"
    assert body["company"]["modulesEnabled"] == ["pos"]

    claims = verify_token(body["token"])
    assert claims.company_id == body["company"]["id"]
    assert claims.role == "business_owner"

    edge = db_session.query(UserCompanyAccess).filter(UserCompanyAccess.user_id == body["user"]["id"]).one()
    assert edge.is_primary is True
    assert "REGISTER" in audit_recorder.actions()


def test_register_duplicate_username_conflicts_without_orphans(client, db_session, make_user):
    make_user(username="founder", email="someone@example.com")
    users_before = db_session.query(User).count()

    response = client.post("/auth/register", json=REGISTER_WITH_COMPANY)

    assert response.status_code == 409
    assert response.json()["error"] == "Username or email already registered"
    assert db_session.query(User).count() == users_before
    assert db_session.query(Company).count() == 0


def test_register_duplicate_email_is_case_insensitive(client, make_user):
    make_user(username="other", email="owner@newco.example")
    payload = dict(REGISTER_WITH_COMPANY, username="fresh", email="OWNER@NewCo.example")

    response = client.post("/auth/register", json=payload)

    assert response.status_code == 409


def test_register_rejects_short_password(client, db_session):
    payload = dict(REGISTER_WITH_COMPANY, password="123")

    response = client.post("/auth/register", json=payload)

    assert response.status_code == 400
    assert db_session.query(User).count() == 0


def test_register_company_signup_starts_pending(client, db_session):
    response = client.post("/auth/register-company", json=SIGNUP_COMPANY)

    assert response.status_code == 201
    body = response.json()
    assert body["company"]["status"] == "pending"

    token = _login(client, SIGNUP_COMPANY["email"], SIGNUP_COMPANY["password"])
    selection = client.post(
        "/auth/select-company",
        json={"companyId": body["company"]["id"]},
        headers=_auth(token),
    )
    assert selection.status_code == 403
    assert selection.json()["subscriptionStatus"] == "pending"


def _owner_token(client, make_user, make_company, grant):
    owner = make_user(username="boss", email="boss@example.com", password="boss-pass")
    company = make_company("Invite Co")
    grant(owner, company, "business_owner", is_primary=True)
    return company, _login(client, "boss", "boss-pass")


def test_invitation_can_be_redeemed_once(client, db_session, make_user, make_company, grant, audit_recorder):
    company, token = _owner_token(client, make_user, make_company, grant)

    invite = client.post(
        "/auth/invite",
        json={"email": "newbie@example.com", "role": "cashier"},
        headers=_auth(token),
    )
    assert invite.status_code == 201
    invite_token = invite.json()["token"]
    assert len(invite_token) == 64
    assert invite.json()["inviteUrl"].endswith(invite_token)

    lookup = client.get(f"/auth/invite/{invite_token}")
    assert lookup.status_code == 200
    assert lookup.json()["companyName"] == "Invite Co"
    assert lookup.json()["role"] == "cashier"

    first = client.post(
        "/auth/register",
        json={"username": "newbie", "password": "newbie-pass", "fullName": "New Bie", "invitationToken": invite_token},
    )
    second = client.post(
        "/auth/register",
        json={"username": "copycat", "password": "copycat-pass", "fullName": "Copy Cat", "invitationToken": invite_token},
    )

    assert first.status_code == 201
    assert first.json()["user"]["email"] == "newbie@example.com"
    assert first.json()["role"] == "cashier"
    assert verify_token(first.json()["token"]).company_id == company.id
    assert second.status_code == 400
    assert db_session.query(User).filter(User.username == "copycat").first() is None
    assert client.get(f"/auth/invite/{invite_token}").status_code == 404
    assert "INVITE_CREATED" in audit_recorder.actions()
    assert "INVITE_ACCEPTED" in audit_recorder.actions()


def test_expired_invitation_is_rejected(client, db_session, make_user, make_company, grant):
    company, _ = _owner_token(client, make_user, make_company, grant)
    db_session.add(
        Invitation(
            email="late@example.com",
            company_id=company.id,
            role="cashier",
            token="e" * 64,
            expires_at=datetime.utcnow() - timedelta(days=1),
            is_used=False,
        )
    )
    db_session.commit()

    response = client.post(
        "/auth/register",
        json={"username": "late", "password": "late-pass", "fullName": "Late", "invitationToken": "e" * 64},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid or expired invitation"


def test_invite_rejects_non_invitable_role(client, make_user, make_company, grant):
    _, token = _owner_token(client, make_user, make_company, grant)

    response = client.post(
        "/auth/invite",
        json={"email": "x@example.com", "role": "business_owner"},
        headers=_auth(token),
    )

    assert response.status_code == 400


def test_cashier_cannot_invite(client, make_user, make_company, grant):
    cashier = make_user(username="till", password="till-pass")
    grant(cashier, make_company(), "cashier")
    token = _login(client, "till", "till-pass")

    response = client.post(
        "/auth/invite",
        json={"email": "x@example.com", "role": "cashier"},
        headers=_auth(token),
    )

    assert response.status_code == 403
    assert response.json()["required"] == "invite_users"


def test_invite_into_another_company_is_forbidden(client, make_user, make_company, grant):
    _, token = _owner_token(client, make_user, make_company, grant)
    other = make_company("Elsewhere")

    response = client.post(
        "/auth/invite",
        json={"email": "x@example.com", "role": "cashier", "companyId": other.id},
        headers=_auth(token),
    )

    assert response.status_code == 403


def test_change_password_flow(client, make_user):
    make_user(username="changer", password="old-pass")
    token = _login(client, "changer", "old-pass")

    wrong = client.post(
        "/auth/change-password",
        json={"currentPassword": "bad-pass", "newPassword": "new-pass"},
        headers=_auth(token),
    )
    short = client.post(
        "/auth/change-password",
        json={"currentPassword": "old-pass", "newPassword": "x"},
        headers=_auth(token),
    )
    ok = client.post(
        "/auth/change-password",
        json={"currentPassword": "old-pass", "newPassword": "new-pass"},
        headers=_auth(token),
    )

    assert wrong.status_code == 401
    assert short.status_code == 400
    assert ok.status_code == 200
    assert client.post("/auth/login", json={"identifier": "changer", "password": "new-pass"}).status_code == 200
