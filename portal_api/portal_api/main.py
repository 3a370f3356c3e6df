"""FastAPI application entry-point for the clinic portal API."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from portal_api import __version__
from portal_api.config import PlatformEnv, PortalSettings, load_portal_settings
from portal_api.dependencies import (
    dispose_engine,
    dispose_redis,
    get_redis,
    init_engine,
    init_redis,
)
from portal_api.middleware.auth import AuthenticationMiddleware
from portal_api.middleware.logging import RequestLoggingMiddleware
from portal_api.middleware.rate_limit import RateLimitConfig, RateLimitMiddleware
from portal_api.routers import admin, auth, billing, downloads, health, releases, subscription
from portal_api.security import TokenManager

logger = logging.getLogger(__name__)


def check_required_secrets(settings: PortalSettings) -> None:
    """Refuse to run staging/production without session and webhook secrets."""
    if settings.platform_env not in (PlatformEnv.STAGING, PlatformEnv.PRODUCTION):
        return
    missing = [
        name
        for name, secret in (
            ("PORTAL_SESSION_SECRET", settings.session_secret),
            ("PORTAL_STRIPE_WEBHOOK_SECRET", settings.stripe_webhook_secret),
        )
        if not secret.get_secret_value()
    ]
    if missing:
        raise RuntimeError(
            f"{', '.join(missing)} required in {settings.platform_env.value} mode. Refusing to start."
        )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup / shutdown lifecycle.

    On startup:
    - Initialise the async database engine.
    - Create tables in dev or local SQLite mode (production uses Alembic).
    - Initialise the shared Redis client.
    - Switch the root logger to JSON output when structured logging is on.

    On shutdown:
    - Close Redis and dispose the database engine connection pool.
    """
    settings: PortalSettings = app.state.settings

    engine = init_engine(settings)
    is_local = settings.database_url.startswith("sqlite")
    logger.info(
        "Database engine initialised (%s, %s)",
        settings.database_url[:40] + "...",
        "local" if is_local else "postgres",
    )

    if settings.platform_env == PlatformEnv.DEV or is_local:
        from access_core.state.sqlite_adapter import create_local_tables

        await create_local_tables(engine)
        logger.info(
            "Database tables ensured (%s)",
            "local SQLite" if is_local else "dev auto-migration",
        )

    init_redis(settings)
    logger.info("Redis client initialised")

    # Single-line JSON logs for log aggregation.
    if settings.structured_logging:
        from portal_api.middleware.json_formatter import JSONFormatter
        from portal_api.middleware.logging import CorrelationIdFilter

        root_logger = logging.getLogger()
        root_logger.handlers.clear()
        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
        handler.addFilter(CorrelationIdFilter())
        root_logger.addHandler(handler)
        root_logger.setLevel(logging.DEBUG if settings.debug else logging.INFO)
        logger.info("Structured JSON logging enabled")

    yield

    await dispose_redis()
    await dispose_engine()
    logger.info("Application shutdown complete")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(settings: PortalSettings | None = None) -> FastAPI:
    """Construct and configure the FastAPI application."""
    settings = settings or load_portal_settings()
    check_required_secrets(settings)

    app = FastAPI(
        title="Clinic Portal API",
        description="Subscription entitlement, Stripe webhooks and operator tools for the clinic portal.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # -- Middleware (last added is outermost) --------------------------------

    app.add_middleware(AuthenticationMiddleware, token_manager=TokenManager.from_settings(settings))
    app.add_middleware(
        RateLimitMiddleware,
        config=RateLimitConfig(
            enabled=settings.rate_limit_enabled,
            requests=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
            path_prefixes=settings.rate_limit_paths,
        ),
        client_provider=get_redis,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Correlation-ID", "Accept"],
    )

    # -- Routers -------------------------------------------------------------

    app.include_router(health.router, prefix="/api/v1")
    app.include_router(billing.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")
    app.include_router(subscription.router, prefix="/api/v1")
    app.include_router(auth.router, prefix="/api/v1")
    app.include_router(downloads.router, prefix="/api/v1")
    app.include_router(releases.router, prefix="/api/v1")

    # -- Exception handlers --------------------------------------------------

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info("Validation failed on %s: %s", request.url.path, exc.errors())
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        return JSONResponse(status_code=400, content={"detail": "Invalid request", "errors": errors})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.warning("ValueError on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=400, content={"detail": "Invalid request"})

    @app.exception_handler(PermissionError)
    async def permission_error_handler(request: Request, exc: PermissionError) -> JSONResponse:
        logger.warning("PermissionError on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=403, content={"detail": "Permission denied"})

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("Database error: %s", exc, exc_info=True)
        return JSONResponse(status_code=500, content={"detail": "Internal database error"})

    return app


# Module-level application instance used by ``uvicorn portal_api.main:app``.
app = create_app()
