import os
import secrets

from dotenv import load_dotenv

# Load .env from the project root
load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _csv(name: str) -> list[str]:
    raw = os.getenv(name, "")
    return [item.strip().lower() for item in raw.split(",") if item.strip()]


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./ecosystem_auth.db")
ENV = os.getenv("ENVIRONMENT", os.getenv("ENV", "dev"))
ENV_NORMALIZED = ENV.strip().lower()
IS_DEV = ENV_NORMALIZED in {"dev", "development", "local"}
IS_TEST = ENV_NORMALIZED == "test"
IS_STAGE = ENV_NORMALIZED in {"stage", "staging", "homolog"}
IS_PROD = ENV_NORMALIZED in {"prod", "production"}
DEV_BOOTSTRAP_ALLOW = _flag("DEV_BOOTSTRAP_ALLOW", "")

APP_MODE_MULTI_TENANT = "multi_tenant"
APP_MODE_SUPER_USER_GATE = "super_user_gate"
APP_MODE = os.getenv("APP_MODE", APP_MODE_MULTI_TENANT).strip().lower()
if APP_MODE not in {APP_MODE_MULTI_TENANT, APP_MODE_SUPER_USER_GATE}:
    APP_MODE = APP_MODE_MULTI_TENANT

# CORS
_cors_env = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS = [origin.strip() for origin in _cors_env.split(",") if origin.strip() and origin.strip() != "*"]

if not CORS_ORIGINS and IS_DEV:
    CORS_ORIGINS = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

# Auth (JWT)
PLACEHOLDER_SECRETS = {
    "",
    "change_me",
    "changeme",
    "change-me",
    "secret",
    "your-secret-key",
    "change_me_super_secret",
    "dev-secret",
}

_jwt_secret_env = os.getenv("JWT_SECRET_KEY", "").strip()
JWT_SECRET_IS_PLACEHOLDER = _jwt_secret_env.lower() in PLACEHOLDER_SECRETS
# Placeholder secrets are replaced by a per-process key; startup_checks refuses them outside dev/test.
JWT_SECRET_KEY = secrets.token_urlsafe(48) if JWT_SECRET_IS_PLACEHOLDER else _jwt_secret_env
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
TOKEN_TTL_MINUTES = int(os.getenv("TOKEN_TTL_MINUTES", "480"))
REMEMBER_ME_TTL_MINUTES = int(os.getenv("REMEMBER_ME_TTL_MINUTES", str(60 * 24 * 7)))
TOKEN_DENYLIST_ENABLED = _flag("TOKEN_DENYLIST_ENABLED", "0")

BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
MIN_PASSWORD_LENGTH = int(os.getenv("MIN_PASSWORD_LENGTH", "6"))

# Allow-lists
SUPER_ADMIN_EMAILS = _csv("SUPER_ADMIN_EMAILS")
SUPER_USER_EMAILS = _csv("SUPER_USER_EMAILS")
COACHING_ACCESS_EMAILS = _csv("COACHING_ACCESS_EMAILS")

# Gate sessions
_gate_secret_env = os.getenv("GATE_SESSION_SECRET", "").strip()
GATE_SECRET_IS_PLACEHOLDER = _gate_secret_env.lower() in PLACEHOLDER_SECRETS
GATE_SESSION_SECRET = secrets.token_urlsafe(48) if GATE_SECRET_IS_PLACEHOLDER else _gate_secret_env
GATE_SESSION_MAX_AGE_SECONDS = int(os.getenv("GATE_SESSION_MAX_AGE_SECONDS", str(60 * 60 * 24 * 30)))
GATE_SESSION_COOKIE_SECURE = _flag("GATE_SESSION_COOKIE_SECURE", "0" if IS_DEV or IS_TEST else "1")
GATE_SESSION_COOKIE_HTTPONLY = _flag("GATE_SESSION_COOKIE_HTTPONLY", "1")
GATE_SESSION_COOKIE_SAMESITE = os.getenv("GATE_SESSION_COOKIE_SAMESITE", "lax").strip().lower()
if GATE_SESSION_COOKIE_SAMESITE not in {"lax", "strict", "none"}:
    GATE_SESSION_COOKIE_SAMESITE = "lax"
GATE_SESSION_COOKIE_DOMAIN = os.getenv("GATE_SESSION_COOKIE_DOMAIN", "").strip() or None

# Invitations
INVITATION_TTL_DAYS = int(os.getenv("INVITATION_TTL_DAYS", "7"))
APP_URL = os.getenv("APP_URL", "http://localhost:3000").rstrip("/")

# Abuse protection
PUBLIC_RATE_LIMIT = int(os.getenv("PUBLIC_RATE_LIMIT", "30"))
PUBLIC_RATE_WINDOW_SECONDS = int(os.getenv("PUBLIC_RATE_WINDOW_SECONDS", "60"))
# Peers allowed to set X-Forwarded-For (load balancer addresses)
TRUSTED_PROXY_IPS = _csv("TRUSTED_PROXY_IPS")
LOGIN_MAX_FAILED_ATTEMPTS = int(os.getenv("LOGIN_MAX_FAILED_ATTEMPTS", "8"))
LOGIN_ATTEMPT_WINDOW_MINUTES = int(os.getenv("LOGIN_ATTEMPT_WINDOW_MINUTES", "10"))
LOGIN_LOCK_MINUTES = int(os.getenv("LOGIN_LOCK_MINUTES", "10"))
