import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ecosystem_auth.core.config import (
    APP_MODE,
    APP_MODE_SUPER_USER_GATE,
    CORS_ORIGINS,
    DATABASE_URL,
    SUPER_ADMIN_EMAILS,
)
from ecosystem_auth.core.database import Base, SessionLocal, engine
from ecosystem_auth.core.errors import register_exception_handlers
from ecosystem_auth.core.logging_setup import configure_logging
from ecosystem_auth.core.startup_checks import (
    apply_migrations,
    ensure_migrations_applied,
    validate_database_environment,
    validate_signing_secrets,
)
from ecosystem_auth.middleware.observability import ObservabilityMiddleware
from ecosystem_auth.middleware.public_rate_limit import PublicRateLimitMiddleware
from ecosystem_auth.middleware.session_context import SessionContextMiddleware
import ecosystem_auth.models  # registers every table on Base.metadata before create_all

from ecosystem_auth.routers.admin import router as admin_router
from ecosystem_auth.routers.audit import router as audit_router
from ecosystem_auth.routers.auth import router as auth_router
from ecosystem_auth.routers.company_users import router as company_users_router
from ecosystem_auth.routers.gate import router as gate_router
from ecosystem_auth.routers.internal_metrics import router as internal_metrics_router
from ecosystem_auth.services.bootstrap import (
    BOOTSTRAP_PREFIX,
    bootstrap_initial_admin,
    ensure_auth_tables,
    sync_super_admin_flags,
)

configure_logging()

logger = logging.getLogger(__name__)
REPO_ROOT = Path(__file__).resolve().parents[1]
ALEMBIC_CONFIG_PATH = Path(os.getenv("ALEMBIC_CONFIG", str(REPO_ROOT / "alembic.ini")))


def _sync_configured_accounts() -> None:
    db = SessionLocal()
    try:
        promoted = sync_super_admin_flags(db, SUPER_ADMIN_EMAILS)
        if promoted:
            logger.info("%s super-admin flags synced count=%s", BOOTSTRAP_PREFIX, promoted)
        bootstrap_initial_admin(db)
    finally:
        db.close()


def _startup_tasks() -> None:
    try:
        validate_database_environment()
        validate_signing_secrets()
        if DATABASE_URL.startswith("sqlite"):
            Base.metadata.create_all(bind=engine)
        else:
            apply_migrations(alembic_config_path=ALEMBIC_CONFIG_PATH)
            ensure_migrations_applied(engine=engine, alembic_config_path=ALEMBIC_CONFIG_PATH)
        ensure_auth_tables(engine)
        _sync_configured_accounts()
    except Exception:
        logger.exception("%s ERROR startup failed", BOOTSTRAP_PREFIX)
        raise


@asynccontextmanager
async def lifespan(_: FastAPI):
    _startup_tasks()
    yield


def create_app(app_mode: str = APP_MODE) -> FastAPI:
    application = FastAPI(
        title="Ecosystem Auth API",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    application.state.app_mode = app_mode
    register_exception_handlers(application)

    application.add_middleware(PublicRateLimitMiddleware)
    application.add_middleware(SessionContextMiddleware)
    application.add_middleware(ObservabilityMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if app_mode == APP_MODE_SUPER_USER_GATE:
        logger.info("[APP_MODE] super_user_gate: mounting gate routes")
        application.include_router(gate_router)
    else:
        application.include_router(auth_router)
        application.include_router(company_users_router)
        application.include_router(audit_router)
        application.include_router(admin_router)
    application.include_router(internal_metrics_router)

    @application.get("/")
    def root():
        return {"status": "ok", "mode": app_mode}

    @application.get("/health")
    def health():
        return {"status": "healthy"}

    return application


app = create_app()
