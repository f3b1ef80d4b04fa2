from __future__ import annotations

import logging
import os
import subprocess
import sys
from pathlib import Path

from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from ecosystem_auth.core.config import (
    APP_MODE,
    APP_MODE_SUPER_USER_GATE,
    DATABASE_URL,
    GATE_SECRET_IS_PLACEHOLDER,
    JWT_SECRET_IS_PLACEHOLDER,
)

logger = logging.getLogger(__name__)
MIGRATIONS_PREFIX = "[MIGRATIONS]"
SECRETS_PREFIX = "[SECRETS]"


def _current_env() -> str:
    return os.getenv("ENVIRONMENT", os.getenv("ENV", "dev")).strip().lower()


def _is_production_like(env: str) -> bool:
    return env in {"prod", "production", "stage", "staging", "homolog"}


def validate_database_environment() -> None:
    env = _current_env()
    if env in {"prod", "production"} and DATABASE_URL.startswith("sqlite"):
        logger.critical("%s SQLite is forbidden in production", MIGRATIONS_PREFIX)
        raise RuntimeError("SQLite is forbidden in production environment")


def validate_signing_secrets() -> None:
    """Refuse to boot a production-like environment without real signing secrets."""
    env = _current_env()
    placeholders = []
    if JWT_SECRET_IS_PLACEHOLDER:
        placeholders.append("JWT_SECRET_KEY")
    if APP_MODE == APP_MODE_SUPER_USER_GATE and GATE_SECRET_IS_PLACEHOLDER:
        placeholders.append("GATE_SESSION_SECRET")

    if not placeholders:
        return

    if _is_production_like(env):
        logger.critical("%s missing or placeholder secrets in env=%s: %s", SECRETS_PREFIX, env, ",".join(placeholders))
        raise RuntimeError(f"Signing secret not configured: {', '.join(placeholders)}")

    logger.warning(
        "%s %s not configured; using a random per-process key. Issued tokens will not survive a restart.",
        SECRETS_PREFIX,
        ",".join(placeholders),
    )


def apply_migrations(*, alembic_config_path: Path) -> None:
    """Apply pending Alembic migrations when AUTO_APPLY_MIGRATIONS is enabled."""
    env = _current_env()
    auto_apply_raw = os.getenv("AUTO_APPLY_MIGRATIONS", "").strip().lower()

    if auto_apply_raw not in {"1", "true", "yes", "on"}:
        logger.info("%s auto migration skipped env=%s", MIGRATIONS_PREFIX, env)
        return

    if not alembic_config_path.exists():
        logger.critical("%s alembic config not found path=%s", MIGRATIONS_PREFIX, alembic_config_path)
        raise RuntimeError("alembic config not found")

    logger.info("%s applying migrations to head", MIGRATIONS_PREFIX)
    try:
        subprocess.run(
            [sys.executable, "-m", "alembic", "-c", str(alembic_config_path), "upgrade", "head"],
            check=True,
            capture_output=True,
            text=True,
        )
    except subprocess.CalledProcessError as exc:
        logger.critical(
            "%s migration apply failed returncode=%s stdout=%s stderr=%s",
            MIGRATIONS_PREFIX,
            exc.returncode,
            (exc.stdout or "").strip(),
            (exc.stderr or "").strip(),
        )
        raise RuntimeError("Automatic migration failed") from exc

    logger.info("%s migrations applied", MIGRATIONS_PREFIX)


def ensure_migrations_applied(*, engine: Engine, alembic_config_path: Path) -> None:
    env = _current_env()
    if env == "test":
        logger.info("%s skipped migration check in test environment", MIGRATIONS_PREFIX)
        return

    if not alembic_config_path.exists():
        logger.critical("%s alembic config not found path=%s", MIGRATIONS_PREFIX, alembic_config_path)
        raise RuntimeError("alembic config not found")

    alembic_cfg = Config(str(alembic_config_path))
    script_directory = ScriptDirectory.from_config(alembic_cfg)
    expected_heads = set(script_directory.get_heads())

    with engine.connect() as connection:
        inspector = inspect(connection)
        if "alembic_version" not in inspector.get_table_names():
            logger.critical("%s alembic_version table missing", MIGRATIONS_PREFIX)
            raise RuntimeError("Database has no migration state")

        current_rows = connection.exec_driver_sql("SELECT version_num FROM alembic_version").fetchall()

    current_heads = {row[0] for row in current_rows if row and row[0]}
    if current_heads != expected_heads:
        logger.critical(
            "%s pending migration detected current=%s expected=%s",
            MIGRATIONS_PREFIX,
            sorted(current_heads),
            sorted(expected_heads),
        )
        raise RuntimeError("Pending migrations detected")

    logger.info("%s migration state verified", MIGRATIONS_PREFIX)
