"""Exception handlers that map errors to JSON without leaking internals."""

import logging

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from licence_admin.config import get_settings
from licence_admin.exceptions import LicenceAdminError

logger = logging.getLogger(__name__)

# Safe error messages that can be shown to users
SAFE_ERROR_MESSAGES = {
    400: "Invalid request",
    404: "Resource not found",
    405: "Method not allowed",
    409: "Conflict with existing resource",
    422: "Invalid input data",
    500: "Internal server error",
    502: "Service unavailable",
    503: "Service temporarily unavailable",
}


def _error_response(
    status_code: int, code: str, message: str, details: dict | None = None
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": code, "message": message, "details": details or {}},
    )


async def licence_admin_exception_handler(request: Request, exc: LicenceAdminError) -> JSONResponse:
    """Map domain errors to their stable code and HTTP status.

    Args:
        request: FastAPI request
        exc: Domain exception

    Returns:
        JSONResponse with ``error``, ``message`` and ``details``
    """
    if exc.http_status >= 500:
        logger.warning(f"{exc.code} for {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle framework HTTP exceptions (unknown routes, wrong methods)."""
    message = exc.detail if isinstance(exc.detail, str) and get_settings().debug else None
    return _error_response(
        exc.status_code,
        "http_error",
        message or SAFE_ERROR_MESSAGES.get(exc.status_code, "Request failed"),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle request validation errors with field-level messages only.

    Args:
        request: FastAPI request
        exc: Validation exception

    Returns:
        JSONResponse listing the invalid fields
    """
    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")

    errors = []
    for error in exc.errors():
        loc = error.get("loc", [])
        field = loc[-1] if loc else "field"
        errors.append(f"{field}: {error.get('msg', 'Invalid value')}")

    return _error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "validation_error",
        SAFE_ERROR_MESSAGES[422],
        {"errors": errors[:10]},
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle SQLAlchemy exceptions without leaking database details."""
    logger.error(f"Database error for {request.url.path}: {exc}", exc_info=True)
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "database_error",
        "Database error occurred",
        {"type": type(exc).__name__} if get_settings().debug else None,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions without leaking information."""
    logger.error(f"Unhandled exception for {request.url.path}: {exc}", exc_info=True)
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "internal_error",
        SAFE_ERROR_MESSAGES[500],
        {"type": type(exc).__name__} if get_settings().debug else None,
    )
