"""FastAPI application entry point for the marketplace escrow service.

Lifecycle:
    1. Startup: Initialize logging and the database, create tables (dev mode),
       and start the periodic expiry sweep when sweep_interval_seconds > 0.
    2. Running: Serve the REST API on a single Uvicorn process.
    3. Shutdown: Stop the sweep task and close database connections gracefully.

Run with:
    uv run uvicorn marketplace_escrow.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from marketplace_escrow.config import get_settings
from marketplace_escrow.logging_config import get_logger, setup_logging_from_settings

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging_from_settings(settings)
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
    )

    # 2. Initialize database
    from marketplace_escrow.infrastructure.database.engine import (
        close_db,
        get_session_factory,
        init_db,
    )

    await init_db()

    # 3. Start the in-process sweep scheduler, if enabled
    sweep_task: asyncio.Task | None = None
    if settings.sweep_interval_seconds > 0:
        from marketplace_escrow.services.sweep_worker import ExpirySweepWorker, run_periodically

        worker = ExpirySweepWorker(get_session_factory())
        sweep_task = asyncio.create_task(
            run_periodically(worker, settings.sweep_interval_seconds),
            name="expiry-sweep",
        )
        logger.info("app.sweep_scheduled", interval_seconds=settings.sweep_interval_seconds)

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    if sweep_task is not None:
        sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweep_task
    await close_db()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Marketplace Escrow",
        description=(
            "Escrow for service marketplace payments: funds are held until the "
            "client confirms the work or the confirmation window elapses."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from marketplace_escrow.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from marketplace_escrow.api.routes.admin import router as admin_router
    from marketplace_escrow.api.routes.confirmations import router as confirmations_router
    from marketplace_escrow.api.routes.health import router as health_router
    from marketplace_escrow.api.routes.payments import router as payments_router
    from marketplace_escrow.api.routes.requests import router as requests_router

    app.include_router(health_router)
    app.include_router(requests_router)
    app.include_router(payments_router)
    app.include_router(confirmations_router)
    app.include_router(admin_router)

    return app


# The app instance used by Uvicorn
app = create_app()
