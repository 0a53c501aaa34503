"""
Application factory and setup functions.

Builds the FastAPI application: lifespan, middleware, error handlers and
routes.
"""
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from app.api.middleware.audit import AuditMiddleware
from app.config.database import init_db
from app.utils.errors import (
    AppError,
    app_error_handler,
    general_exception_handler,
    validation_error_handler,
)
from app.utils.logger import get_logger

logger = get_logger(__name__)


def create_lifespan() -> Callable:
    """Create the application lifespan context manager."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting application...")
        await init_db()
        logger.info("Application started successfully")
        yield
        logger.info("Shutting down application...")

    return lifespan


def setup_middleware(app: FastAPI) -> None:
    app.add_middleware(AuditMiddleware)
    logger.info("Middleware configured successfully")


def setup_error_handlers(app: FastAPI) -> None:
    """
    Register all application error handlers.

    Error handlers are registered in order of specificity:
    1. AppError (EDI, matching and posting errors included)
    2. RequestValidationError (FastAPI validation errors)
    3. Exception (catch-all for unexpected errors)
    """
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    logger.info("Error handlers registered successfully")


def register_routes(app: FastAPI) -> None:
    """Register the API v1 routers."""
    from app.api.routes import era_files, health, remits

    app.include_router(health.router, prefix="/api/v1", tags=["health"])
    app.include_router(remits.router, prefix="/api/v1", tags=["remits"])
    app.include_router(era_files.router, prefix="/api/v1", tags=["era-files"])

    logger.info("Routes registered successfully")


def create_application() -> FastAPI:
    """Create and configure the FastAPI application instance."""
    app = FastAPI(
        title="ERA Posting Service",
        description="835 remittance ingestion, claim matching and payment posting",
        version="1.0.0",
        lifespan=create_lifespan(),
    )

    setup_middleware(app)
    setup_error_handlers(app)
    register_routes(app)

    return app
