"""FastAPI application entry point for Geo Escrow.

Lifecycle:
    1. Startup: logging, database, Redis, component wiring, expiry sweeper.
    2. Running: Serve REST API + MCP tools on a single Uvicorn process.
    3. Shutdown: Stop the sweeper, close database and Redis connections.

The MCP server is mounted at /mcp so agents can discover tools alongside
the REST API at /api/v1/*.

Run with:
    uvicorn geo_escrow.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from geo_escrow.config import get_settings
from geo_escrow.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info("app.starting", env=settings.app_env, gateway_mode=settings.gateway_mode)

    # 2. Initialize database
    from geo_escrow.infrastructure.database.engine import close_db, init_db

    session_factory = await init_db(settings)

    # 3. Initialize Redis (webhook idempotency depends on it, so fail fast)
    from geo_escrow.infrastructure.redis_client import close_redis, init_redis

    redis = await init_redis(settings)

    # 4. Wire components
    from geo_escrow.bootstrap import build_components
    from geo_escrow.mcp_server.tools import bind_engine

    components = build_components(settings, session_factory, redis)
    app.state.engine = components.engine
    app.state.ingestor = components.ingestor
    app.state.onboarding = components.onboarding
    app.state.stripe_parser = components.stripe_parser
    app.state.admin_principal_ids = components.admin_principal_ids
    bind_engine(components.engine, components.admin_principal_ids, components.onboarding)

    # 5. Expiry sweeper (APScheduler interval job)
    components.sweeper.start()

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    components.sweeper.stop()
    bind_engine(None)
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Geo Escrow",
        description=(
            "Conditional escrow: funds are released to the recipient only "
            "after a time-lock and inside a geofence."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from geo_escrow.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from geo_escrow.api.routes.health import router as health_router
    from geo_escrow.api.routes.payees import router as payees_router
    from geo_escrow.api.routes.transfers import router as transfers_router
    from geo_escrow.api.routes.webhooks import router as webhooks_router

    app.include_router(health_router)
    app.include_router(transfers_router)
    app.include_router(payees_router)
    app.include_router(webhooks_router)

    # --- MCP Server (mounted as sub-application) ---
    from geo_escrow.mcp_server.tools import mcp

    app.mount("/mcp", mcp.sse_app())

    return app


# The app instance used by Uvicorn
app = create_app()
