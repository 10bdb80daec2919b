"""
FastAPI application exposing the ledger engine's admin operations.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ledger_engine.core.config import Settings, settings as default_settings
from ledger_engine.core.database import close_database, init_database
from ledger_engine.core.exceptions import (
    ConcurrencyError,
    LedgerEngineException,
    NoWalletsAvailableError,
    NotFoundError,
    ValidationError,
)
from ledger_engine.core.logging import setup_logging
from ledger_engine.services.engine import LedgerEngine
from ledger_engine.services.notifier import LoggingNotifier
from .admin_routes import admin_router, wallets_router
from .schemas import HealthCheckResponse, create_error_response


logger = structlog.get_logger(__name__)


def _status_for(exc: LedgerEngineException) -> int:
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ConcurrencyError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, NoWalletsAvailableError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_app(engine: Optional[LedgerEngine] = None, config: Optional[Settings] = None) -> FastAPI:
    """
    Build the API application.

    When no engine is given, the lifespan connects to the configured
    database and builds one.
    """
    config = config or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting ledger engine API server")
        owns_database = engine is None
        if owns_database:
            setup_logging(config=config)
            session_factory = await init_database(config.database_url)
            app.state.engine = LedgerEngine(session_factory, notifier=LoggingNotifier(), config=config)
        else:
            app.state.engine = engine

        yield

        logger.info("Shutting down ledger engine API server")
        if owns_database:
            await close_database()

    app = FastAPI(
        title=config.app_name,
        version=config.app_version,
        lifespan=lifespan,
    )
    app.state.engine = engine

    @app.exception_handler(LedgerEngineException)
    async def ledger_exception_handler(request: Request, exc: LedgerEngineException):
        code = _status_for(exc)
        if code >= 500:
            logger.error("Request failed", path=request.url.path, error=exc.message, code=exc.code)
        else:
            logger.info("Request refused", path=request.url.path, error=exc.message, code=exc.code)
        return JSONResponse(
            status_code=code,
            content=create_error_response(exc.message, exc.code, exc.details).model_dump(mode="json"),
        )

    @app.get("/health", response_model=HealthCheckResponse, tags=["health"])
    async def health_check(request: Request):
        ledger = request.app.state.engine
        healthy = False
        if ledger is not None:
            healthy = await ledger.health_check()
        return HealthCheckResponse(
            status="healthy" if healthy else "degraded",
            version=config.app_version,
            services={"database": "healthy" if healthy else "unhealthy"},
        )

    app.include_router(admin_router, prefix=f"{config.api_prefix}/admin", tags=["admin"])
    app.include_router(wallets_router, prefix=f"{config.api_prefix}/wallets", tags=["wallets"])

    return app
