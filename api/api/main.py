"""FastAPI application entry-point for the headshot orchestration service."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from headshot_engine.config import load_engine_settings
from headshot_engine.errors import HeadshotError
from headshot_engine.state.sqlite_adapter import create_local_tables
from sqlalchemy.exc import SQLAlchemyError

from api import __version__
from api.config import PlatformEnv, load_api_settings
from api.dependencies import (
    dispose_engine,
    dispose_services,
    get_session_factory,
    get_sweeper,
    init_engine,
    init_services,
)
from api.middleware.json_formatter import configure_json_logging
from api.middleware.logging import RequestLoggingMiddleware
from api.middleware.prometheus import PrometheusMiddleware
from api.routers import generations, health, usage, webhooks
from api.routers import metrics as metrics_router

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup / shutdown lifecycle.

    On startup:
    - Refuse to start in staging/production without webhook secrets.
    - Initialise the async database engine.
    - Create database tables if they do not exist (dev convenience;
      production should use Alembic migrations).
    - Build provider adapters, the orchestrator and the webhook gateway.
    - Start the stale generation sweeper.

    On shutdown:
    - Stop the sweeper and close provider connections.
    - Dispose the database engine connection pool.
    """
    settings = load_api_settings()
    engine_settings = load_engine_settings()

    if settings.structured_logging:
        configure_json_logging()
        logger.info("Structured JSON logging enabled")

    # Fail fast: unauthenticated webhooks are a dev-only convenience.
    missing = engine_settings.missing_webhook_secrets()
    if settings.platform_env in (PlatformEnv.STAGING, PlatformEnv.PRODUCTION) and missing:
        raise RuntimeError(
            f"Webhook secrets {', '.join(missing)} are required in {settings.platform_env.value} mode. "
            "Refusing to start."
        )
    for name in missing:
        logger.warning("%s is not set; matching webhook deliveries will not be authenticated", name)

    # Database engine.
    engine = init_engine(engine_settings)
    is_local = engine_settings.database_url.startswith("sqlite")
    logger.info("Database engine initialised (%s)", "local" if is_local else "postgres")

    # Auto-create tables in dev or local SQLite mode (idempotent).
    if settings.platform_env == PlatformEnv.DEV or is_local:
        await create_local_tables(engine)
        logger.info(
            "Database tables ensured (%s)",
            "local SQLite" if is_local else "dev auto-migration",
        )

    orchestrator = init_services(engine_settings, settings, get_session_factory())
    logger.info(
        "Orchestrator initialised (preferred=%s, fallback=%s)",
        orchestrator.selector.config.preferred.value,
        orchestrator.selector.config.fallback.value if orchestrator.selector.config.fallback else "none",
    )

    if settings.sweeper_enabled:
        await get_sweeper().start()

    yield

    # Shutdown.
    await dispose_services()
    await dispose_engine()
    logger.info("Application shutdown complete")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Construct and configure the FastAPI application."""
    settings = load_api_settings()

    app = FastAPI(
        title="Headshot Orchestrator API",
        description="Quota-guarded AI headshot generation across Replicate and RunPod.",
        version=__version__,
        lifespan=lifespan,
    )

    # -- Middleware (outermost first) ----------------------------------------

    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "X-Correlation-ID",
            "Accept",
        ],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # -- Routers -------------------------------------------------------------

    app.include_router(health.router, prefix="/api/v1")
    app.include_router(generations.router, prefix="/api/v1")
    app.include_router(usage.router, prefix="/api/v1")
    app.include_router(webhooks.router, prefix="/api/v1")

    # Metrics endpoint, outside /api/v1 versioning (Prometheus scrape).
    app.include_router(metrics_router.router)

    # Infrastructure endpoints, outside versioning (probes, root-level).
    app.include_router(health.readiness_router)

    # -- Exception handlers --------------------------------------------------

    @app.exception_handler(HeadshotError)
    async def headshot_error_handler(request: Request, exc: HeadshotError) -> JSONResponse:
        if exc.http_status >= 500:
            logger.error("%s on %s: %s", exc.code, request.url.path, exc.message)
        else:
            logger.info("%s on %s: %s", exc.code, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.http_status,
            content={"success": False, "error": exc.to_dict()},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        # Log the full error for debugging; return a safe message to the client.
        logger.warning("ValueError on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": {"code": "validation_error", "message": "Invalid request"}},
        )

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("Database error: %s", exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": {"code": "internal_error", "message": "Internal database error"}},
        )

    return app


# Module-level application instance used by ``uvicorn api.main:app``.
app = create_app()
