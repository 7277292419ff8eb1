"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from licence_admin import __version__
from licence_admin.config import get_settings
from licence_admin.exceptions import LicenceAdminError
from licence_admin.middleware.error_handler import (
    generic_exception_handler,
    http_exception_handler,
    licence_admin_exception_handler,
    sqlalchemy_exception_handler,
    validation_exception_handler,
)
from licence_admin.routers import assignments, audit, licenses, lifecycle, sync
from licence_admin.tasks.scheduler import start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers to all responses."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if "Cache-Control" not in response.headers:
            response.headers["Cache-Control"] = "no-store, max-age=0"
        return response


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    settings = get_settings()
    if settings.scheduler_enabled:
        await start_scheduler()
    yield
    await stop_scheduler()

    # Close shared HTTP clients to release connections
    from licence_admin.providers.external_api import ExternalLicenseApiProvider
    from licence_admin.services.notification_service import WebhookReminderNotifier

    await ExternalLicenseApiProvider.close_client()
    await WebhookReminderNotifier.close_client()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    config = get_settings()

    app = FastAPI(
        title=config.app_name,
        version=__version__,
        description="License administration API",
        lifespan=lifespan,
        docs_url="/docs" if config.debug else None,
        redoc_url="/redoc" if config.debug else None,
    )

    app.add_exception_handler(LicenceAdminError, licence_admin_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.add_middleware(SecurityHeadersMiddleware)

    app.include_router(licenses.router, prefix="/api/v1/licenses", tags=["Licenses"])
    app.include_router(assignments.router, prefix="/api/v1/assignments", tags=["Assignments"])
    app.include_router(audit.router, prefix="/api/v1/audit", tags=["Audit"])
    app.include_router(sync.router, prefix="/api/v1/sync", tags=["Sync"])
    app.include_router(lifecycle.router, prefix="/api/v1/lifecycle", tags=["Lifecycle"])

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()
