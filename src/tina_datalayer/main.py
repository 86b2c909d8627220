"""
Query Service Application Entry Point

This module defines the FastAPI application factory for the long-running
server mode: it attaches a Database, registers routers and installs the
global exception handlers.

Design Goals
------------
- Deterministic startup
- Centralized router registration
- Global exception safety net
- Test-friendly via create_app(database)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .core.errors import (
    DatalayerError,
    datalayer_exception_handler,
    unhandled_exception_handler,
)
from .database import Database

from .api import (
    health_routes,
    query_routes,
)


logger = logging.getLogger("datalayer.app")


# ---------------------------------------------------------------------
# Application Factory (Test-Friendly)
# ---------------------------------------------------------------------

def create_app(database: Optional[Database] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Parameters
    ----------
    database : Database, optional
        Database served by the application. May be attached later through
        `app.state.database`; requests fail with 500 until it is.

    Returns
    -------
    FastAPI
        Fully configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = getattr(app.state, "database", None)
        logger.info(
            "Starting tina-datalayer query service (schema %s)",
            db.schema.version[:12] if db is not None and db.schema else "<unbound>",
        )
        yield
        logger.info("Shutting down tina-datalayer query service")

    app = FastAPI(
        title="tina-datalayer",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.database = database

    # --------------------------------------------------------------
    # Global Exception Handling
    # --------------------------------------------------------------

    app.add_exception_handler(DatalayerError, datalayer_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # --------------------------------------------------------------
    # Router Registration
    # --------------------------------------------------------------

    app.include_router(health_routes.router)
    app.include_router(query_routes.router)

    return app
