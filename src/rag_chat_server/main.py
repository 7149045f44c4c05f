"""
RAG Chat Server Application Entry Point

This module defines the FastAPI application instance, registers all routers,
configures global exception handling, and owns the lifespan of background
work (rate limiter sweepers, database connections).

Design Goals
------------
- Deterministic startup and shutdown
- Centralized router registration
- Global exception safety net
- Test-friendly via create_app()
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from .api import (
    chat_routes,
    health_routes,
    provider_routes,
    search_routes,
    stats_routes,
)
from .api.dependencies import get_document_store, get_rate_limiters
from .config import settings
from .core.errors import (
    RateLimitExceededError,
    rate_limit_exception_handler,
    unhandled_exception_handler,
)
from .store import SqlDocumentBackend

logger = logging.getLogger("rag.app")


# ---------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Start background work before serving and stop it on shutdown.

    Sweepers are explicit tasks so shutdown can cancel them cleanly.
    """
    logger.info("Starting rag-chat-server")

    backend = get_document_store().backend
    if isinstance(backend, SqlDocumentBackend):
        await backend.create_schema()

    limiters = get_rate_limiters()
    for limiter in limiters:
        limiter.start_sweeper(settings.rate_limit_sweep_seconds)

    try:
        yield
    finally:
        logger.info("Shutting down rag-chat-server")
        for limiter in limiters:
            await limiter.stop_sweeper()
        if isinstance(backend, SqlDocumentBackend):
            await backend.dispose()


# ---------------------------------------------------------------------
# Application Factory (Test-Friendly)
# ---------------------------------------------------------------------

def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns
    -------
    FastAPI
        Fully configured FastAPI application.
    """
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="rag-chat-server",
        version="1.0.0",
        lifespan=lifespan,
    )

    # --------------------------------------------------------------
    # Exception Handling
    # --------------------------------------------------------------

    app.add_exception_handler(RateLimitExceededError, rate_limit_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # --------------------------------------------------------------
    # Router Registration
    # --------------------------------------------------------------

    app.include_router(health_routes.router)
    app.include_router(search_routes.router)
    app.include_router(chat_routes.router)
    app.include_router(provider_routes.router)
    app.include_router(stats_routes.router)

    return app


# ---------------------------------------------------------------------
# Default Application Instance (for Uvicorn)
# ---------------------------------------------------------------------

app = create_app()
