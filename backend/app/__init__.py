# ==============================================================================
# brainboard: FastAPI application factory
# ------------------------------------------------------------------------------
# Purpose: builds the leaderboard API: middleware, exception handlers,
# routers under API_PREFIX, /health and the lifespan (core boot, optional
# snapshot warmer, engine disposal).
#
# Rules:
#   • create_app() is repeatable; no state is shared between app instances
#     except the lazily created engine.
#   • The warmer runs in-process only when LEADERBOARD_WARMER_ENABLED=true;
#     otherwise it is a separate process (scheduler/update_rating.py).
# ==============================================================================
from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core import boot_core
from .core.config_core import get_settings
from .core.database_core import db_ping, dispose_engine
from .core.errors_core import setup_exception_handlers
from .core.logging_core import CorrelationIdMiddleware, get_logger
from .routes import register
from .schemas.leaderboard_schemas import HealthOut

logger = get_logger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    boot_core()

    warmer: Optional[asyncio.Task] = None
    if settings.LEADERBOARD_WARMER_ENABLED:
        from .scheduler.update_rating import _run_forever

        warmer = asyncio.create_task(_run_forever(), name="leaderboard-warmer")

    try:
        yield
    finally:
        if warmer is not None:
            warmer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await warmer
        await dispose_engine()
        logger.info("FastAPI app stopped")


def create_app() -> FastAPI:
    """Create the FastAPI app with middleware, handlers and routers."""
    settings = get_settings()
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.APP_VERSION,
        debug=settings.DEBUG,
        lifespan=_lifespan,
    )

    app.add_middleware(CorrelationIdMiddleware)
    origins = settings.effective_cors_origins()
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["GET"],
            allow_headers=["*"],
            expose_headers=["ETag", "X-Request-ID"],
        )

    setup_exception_handlers(app)
    register(app, prefix=settings.API_PREFIX)

    @app.get("/health", tags=["health"], response_model=HealthOut)
    async def health() -> HealthOut:
        """Liveness plus a DB round trip; never fails."""
        db_ok = await db_ping()
        return HealthOut(
            status="ok",
            db="ok" if db_ok else "down",
            env=settings.env_normalized,
            version=settings.APP_VERSION,
        )

    logger.info("FastAPI app initialised", extra={"api_prefix": settings.API_PREFIX})
    return app
