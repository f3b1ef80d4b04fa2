from __future__ import annotations

from datetime import timedelta

import pytest
from jose import jwt

from ecosystem_auth.core.config import JWT_ALGORITHM, JWT_SECRET_KEY
from ecosystem_auth.core.errors import InvalidTokenError, TokenExpiredError
from ecosystem_auth.services.tokens import SessionClaims, issue_token, verify_token


def _claims(**overrides) -> SessionClaims:
    values = {
        "user_id": 42,
        "username": "cashier1",
        "email": "cashier1@example.com",
        "full_name": "Cashier One",
        "company_id": 7,
        "role": "cashier",
    }
    values.update(overrides)
    return SessionClaims(**values)


def test_verify_returns_the_issued_claims():
    claims = _claims()

    decoded = verify_token(issue_token(claims))

    assert decoded == claims
    assert decoded.token_id
    assert decoded.expires_at > decoded.issued_at
    assert decoded.is_scoped is True


def test_unscoped_token_carries_no_company_or_role():
    decoded = verify_token(issue_token(_claims(company_id=None, role=None)))

    assert decoded.company_id is None
    assert decoded.role is None
    assert decoded.is_scoped is False


def test_each_token_gets_its_own_id():
    claims = _claims()

    assert verify_token(issue_token(claims)).token_id != verify_token(issue_token(claims)).token_id


def test_expired_token_is_rejected_with_expired_error():
    token = issue_token(_claims(), ttl=timedelta(seconds=-5))

    with pytest.raises(TokenExpiredError):
        verify_token(token)


def test_expired_token_still_decodes_for_logout():
    token = issue_token(_claims(), ttl=timedelta(seconds=-5))

    decoded = verify_token(token, allow_expired=True)

    assert decoded.user_id == 42


def test_token_signed_with_another_key_is_invalid():
    forged = jwt.encode({"sub": "42", "exp": 9999999999}, "not-the-key", algorithm=JWT_ALGORITHM)

    with pytest.raises(InvalidTokenError):
        verify_token(forged)


def test_tampered_token_is_invalid():
    token = issue_token(_claims())
    header, payload, signature = token.split(".")
    tampered = ".".join([header, payload[:-2] + ("AA" if payload[-2:] != "AA" else "BB"), signature])

    with pytest.raises(InvalidTokenError):
        verify_token(tampered)


def test_token_without_expiry_is_invalid():
    token = jwt.encode({"sub": "42"}, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)

    with pytest.raises(InvalidTokenError):
        verify_token(token)


def test_role_without_company_is_invalid_for_regular_users():
    token = jwt.encode(
        {"sub": "42", "role": "admin", "exp": 9999999999},
        JWT_SECRET_KEY,
        algorithm=JWT_ALGORITHM,
    )

    with pytest.raises(InvalidTokenError):
        verify_token(token)


def test_empty_token_is_invalid():
    with pytest.raises(InvalidTokenError):
        verify_token("")
