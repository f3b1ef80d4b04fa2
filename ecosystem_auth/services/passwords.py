from __future__ import annotations

from functools import lru_cache

import bcrypt

from ecosystem_auth.core.config import BCRYPT_ROUNDS

BCRYPT_MAX_BYTES = 72


# bcrypt directly, no passlib: passlib breaks against bcrypt 4.x/5.x
def _normalize_password_for_bcrypt(password: str) -> bytes:
    """bcrypt only looks at the first 72 bytes; longer inputs are truncated instead of raising."""
    pw = (password or "").encode("utf-8")
    if len(pw) <= BCRYPT_MAX_BYTES:
        return pw
    return pw[:BCRYPT_MAX_BYTES]


def hash_password(password: str, *, rounds: int | None = None) -> str:
    pw = _normalize_password_for_bcrypt(password)
    salt = bcrypt.gensalt(rounds=rounds or BCRYPT_ROUNDS)
    return bcrypt.hashpw(pw, salt).decode("utf-8")


def verify_password(plain_password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(_normalize_password_for_bcrypt(plain_password), password_hash.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


def password_looks_hashed(value: str) -> bool:
    return value.startswith(("$2a$", "$2b$", "$2y$"))


@lru_cache(maxsize=1)
def dummy_password_hash() -> str:
    """Hash compared against when the login identifier does not exist, so both paths pay one bcrypt check."""
    return hash_password("ecosystem-auth-dummy-password")
