"""FastAPI application entry point for the property title registry.

Lifecycle:
    1. Startup: Initialize logging, database (create tables) and the chain gateway.
    2. Running: Serve the REST API at /api/v1/*.
    3. Shutdown: Close chain and database connections gracefully.

Run with:
    uv run uvicorn title_registry.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from title_registry.config import get_settings
from title_registry.logging_config import get_logger, setup_logging

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
    logger.info(
        "app.starting",
        env=settings.app_env,
        chain_simulated=settings.chain_simulate,
        documents_simulated=settings.document_store_simulate,
    )

    # 2. Initialize database
    from title_registry.infrastructure.database.engine import close_db, init_db

    await init_db()

    # 3. Initialize chain gateway
    from title_registry.infrastructure.chain import close_chain_gateway, init_chain_gateway

    await init_chain_gateway()

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    await close_chain_gateway()
    await close_db()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Property Title Registry",
        description=(
            "Owner-signed registration of land titles as on-chain assets, "
            "with marketplace listing and sale."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from title_registry.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from title_registry.api.routes.accounts import router as accounts_router
    from title_registry.api.routes.escrow import router as escrow_router
    from title_registry.api.routes.health import router as health_router
    from title_registry.api.routes.property import router as property_router
    from title_registry.api.routes.registration import router as registration_router

    app.include_router(health_router)
    app.include_router(registration_router)
    app.include_router(property_router)
    app.include_router(escrow_router)
    app.include_router(accounts_router)

    return app


# The app instance used by Uvicorn
app = create_app()
