"""FastAPI application entry-point for the Portlio API."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from portlio_core.errors import (
    ExternalServiceError,
    NotFoundError,
    PortalPasswordError,
    QuotaExceededError,
    ReorderConflictError,
)
from sqlalchemy.exc import SQLAlchemyError

from portlio_api import __version__
from portlio_api.config import APISettings, PlatformEnv, load_api_settings
from portlio_api.dependencies import (
    dispose_engine,
    get_session_factory,
    init_blob_store,
    init_engine,
)
from portlio_api.middleware import (
    AuthenticationMiddleware,
    PrometheusMiddleware,
    RequestLoggingMiddleware,
)
from portlio_api.routers import auth, billing, emails, health, portals, profile, public
from portlio_api.routers import metrics as metrics_router

logger = logging.getLogger(__name__)

_DEV_JWT_SECRET = "portlio-dev-secret-change-in-production"


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup / shutdown lifecycle.

    On startup:
    - Initialise the async database engine.
    - Create tables for SQLite or dev (production uses Alembic).
    - Wire the token revocation checker and purge expired revocations.
    - Wire the blob store.

    On shutdown:
    - Dispose the database engine connection pool.
    """
    settings: APISettings = load_api_settings()

    # Refuse to start in production/staging with the development secret.
    if (
        settings.platform_env in (PlatformEnv.STAGING, PlatformEnv.PRODUCTION)
        and settings.jwt_secret.get_secret_value() == _DEV_JWT_SECRET
    ):
        raise RuntimeError(
            f"PORTLIO_JWT_SECRET must be set in {settings.platform_env.value} mode. Refusing to start."
        )

    engine = init_engine(settings)
    is_local = settings.database_url.startswith("sqlite")
    logger.info("Database engine initialised (%s)", "local" if is_local else "postgres")

    if settings.platform_env == PlatformEnv.DEV or is_local:
        from portlio_core.state.sqlite_adapter import create_local_tables

        await create_local_tables(engine)

    from portlio_api.middleware.auth import init_revocation_checker, purge_expired_revocations

    init_revocation_checker(get_session_factory())
    logger.info("Token revocation checker initialised")
    await purge_expired_revocations(get_session_factory())

    store = init_blob_store(settings)
    logger.info("Blob store initialised (bucket=%s)", store.bucket)

    # Structured JSON logging.
    if settings.structured_logging:
        from portlio_api.middleware.json_formatter import JSONFormatter

        root_logger = logging.getLogger()
        root_logger.handlers.clear()
        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
        root_logger.addHandler(handler)
        root_logger.setLevel(logging.INFO)
        logger.info("Structured JSON logging enabled")

    if not settings.billing_enabled:
        logger.info("Billing disabled; Stripe webhooks will be acknowledged without processing")

    yield

    await dispose_engine()
    logger.info("Application shutdown complete")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Construct and configure the FastAPI application."""
    settings = load_api_settings()

    app = FastAPI(
        title="Portlio API",
        description="Client onboarding portals with plan limits and Stripe subscriptions.",
        version=__version__,
        lifespan=lifespan,
    )

    # -- Middleware (outermost last) -----------------------------------------

    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "X-Correlation-ID",
            "X-Portal-Password",
            "Accept",
        ],
    )
    app.add_middleware(AuthenticationMiddleware, settings=settings)
    app.add_middleware(RequestLoggingMiddleware)

    # -- Routers -------------------------------------------------------------

    app.include_router(health.router, prefix="/api/v1")
    app.include_router(auth.router, prefix="/api/v1")
    app.include_router(profile.router, prefix="/api/v1")
    app.include_router(portals.router, prefix="/api/v1")
    app.include_router(public.router, prefix="/api/v1")
    app.include_router(billing.router, prefix="/api/v1")
    app.include_router(emails.router, prefix="/api/v1")

    app.include_router(metrics_router.router)
    app.include_router(health.readiness_router)

    # -- Exception handlers --------------------------------------------------

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.warning("ValueError on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(PermissionError)
    async def permission_error_handler(request: Request, exc: PermissionError) -> JSONResponse:
        logger.warning("PermissionError on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=403, content={"detail": str(exc) or "Permission denied"})

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": f"{exc.entity.capitalize()} not found"})

    @app.exception_handler(PortalPasswordError)
    async def portal_password_handler(request: Request, exc: PortalPasswordError) -> JSONResponse:
        return JSONResponse(status_code=401, content={"detail": "Portal password required", "slug": exc.slug})

    @app.exception_handler(QuotaExceededError)
    async def quota_exceeded_handler(request: Request, exc: QuotaExceededError) -> JSONResponse:
        logger.info("Quota exceeded on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=402,
            content={
                "detail": str(exc),
                "metric": exc.metric,
                "used": exc.used,
                "limit": exc.limit,
                "upgrade": exc.upgrade,
            },
        )

    @app.exception_handler(ReorderConflictError)
    async def reorder_conflict_handler(request: Request, exc: ReorderConflictError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc), "blocks": exc.blocks})

    @app.exception_handler(ExternalServiceError)
    async def external_service_handler(request: Request, exc: ExternalServiceError) -> JSONResponse:
        logger.error("External service error on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=502, content={"detail": f"{exc.service} request failed"})

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("Database error: %s", exc, exc_info=True)
        return JSONResponse(status_code=500, content={"detail": "Internal database error"})

    return app


# Module-level application instance used by ``uvicorn portlio_api.main:app``.
app = create_app()
