"""
FastAPI Application Entry Point
-------------------------------
Main application initialization and configuration.
Builds the credential services, registers routers, middleware, and
lifecycle handlers.
"""

from contextlib import asynccontextmanager
from typing import Optional, Tuple

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from lawcase_auth.api import auth_endpoints, health_endpoints
from lawcase_auth.auth.blacklist import BlacklistService
from lawcase_auth.auth.credential_store import CredentialStore, InMemoryCredentialStore
from lawcase_auth.auth.errors import AuthErrorKind
from lawcase_auth.auth.jwt_utils import TokenService
from lawcase_auth.auth.rbac import RBACEnforcer
from lawcase_auth.auth.session_orchestrator import SessionOrchestrator
from lawcase_auth.auth.two_factor import TwoFactorService
from lawcase_auth.core.config_manager import ApplicationSettings, settings
from lawcase_auth.core.database_connection import db_manager
from lawcase_auth.models.seed_data import build_default_roles
from lawcase_auth.psql_db_services.credential_store_service import (
    CredentialStoreService,
)
from lawcase_auth.services.email_notifier import EmailNotifier
from lawcase_auth.utils.password_hashing import PasswordHasher


async def build_credential_store(config: ApplicationSettings) -> CredentialStore:
    """Create the configured store backend and seed default roles."""
    if config.credential_store_backend == "memory":
        logger.warning("Using in-memory credential store; data is lost on restart")
        store: CredentialStore = InMemoryCredentialStore()
    else:
        logger.info("Checking PostgreSQL connectivity...")
        await db_manager.initialize()
        if not await db_manager.ping():
            raise RuntimeError("PostgreSQL did not answer SELECT 1")
        logger.info("[SUCCESS] PostgreSQL connected and ready")
        store = CredentialStoreService(db_manager)

    if config.seed_default_roles:
        added = await store.seed_roles(build_default_roles())
        logger.info(f"Seeded {added} default roles")
    return store


def build_auth_services(
    store: CredentialStore,
    notifier: Optional[EmailNotifier] = None,
    config: ApplicationSettings = settings,
) -> Tuple[SessionOrchestrator, RBACEnforcer]:
    """Wire the credential services around one store."""
    token_service = TokenService(
        secret_key=config.jwt_secret_key,
        algorithm=config.jwt_algorithm,
        access_token_lifetime=config.access_token_lifetime,
        refresh_token_lifetime=config.refresh_token_lifetime,
    )
    blacklist_service = BlacklistService(store, token_service)
    orchestrator = SessionOrchestrator(
        store=store,
        token_service=token_service,
        password_hasher=PasswordHasher(rounds=config.bcrypt_rounds),
        two_factor_service=TwoFactorService(
            issuer=config.totp_issuer,
            valid_window=config.totp_valid_window,
            backup_code_count=config.backup_code_count,
        ),
        blacklist_service=blacklist_service,
        notifier=notifier,
        default_role_name=config.default_role_name,
        revoke_sessions_on_password_change=config.revoke_sessions_on_password_change,
    )
    return orchestrator, RBACEnforcer(store, token_service, blacklist_service)


def _install_services(
    app: FastAPI, orchestrator: SessionOrchestrator, rbac: RBACEnforcer
) -> None:
    app.state.session_orchestrator = orchestrator
    app.state.rbac_enforcer = rbac
    app.state.credential_store_backend = (
        "memory" if isinstance(orchestrator.store, InMemoryCredentialStore) else "postgres"
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager: build services on startup, drain on shutdown."""

    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Debug mode: {settings.debug}")

    owns_services = getattr(app.state, "session_orchestrator", None) is None
    if owns_services:
        store = await build_credential_store(settings)
        orchestrator, rbac = build_auth_services(
            store, EmailNotifier.from_settings(settings)
        )
        _install_services(app, orchestrator, rbac)

    logger.info("[SUCCESS] Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down application")
    await app.state.session_orchestrator.drain_notifications()
    if owns_services:
        try:
            await db_manager.close()
            logger.info("Application shutdown complete")
        except Exception as e:
            logger.error(f"Shutdown error: {e}")


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report request validation errors in the standard error body with status 400."""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": {
                "error": AuthErrorKind.VALIDATION_FAILED.value,
                "message": "; ".join(messages) or "Invalid request",
            }
        },
    )


def create_app(
    session_orchestrator: Optional[SessionOrchestrator] = None,
    rbac_enforcer: Optional[RBACEnforcer] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        session_orchestrator: Pre-built orchestrator; when omitted the lifespan
                              builds one from settings
        rbac_enforcer: Pre-built enforcer; derived from the orchestrator when omitted
    """
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Credential and session lifecycle service for LawCase Bench",
        lifespan=lifespan,
        debug=settings.debug,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        swagger_ui_parameters={"displayRequestDuration": True},
    )

    if session_orchestrator is not None:
        if rbac_enforcer is None:
            rbac_enforcer = RBACEnforcer(
                session_orchestrator.store,
                session_orchestrator.token_service,
                session_orchestrator.blacklist_service,
            )
        _install_services(app, session_orchestrator, rbac_enforcer)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    # Register routers
    app.include_router(health_endpoints.router)
    app.include_router(auth_endpoints.router)

    @app.get("/")
    async def root():
        """Root endpoint with basic information."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "status": "running",
            "docs": "/api/docs",
            "redoc": "/api/redoc",
            "openapi": "/api/openapi.json",
        }

    return app


app = create_app()
