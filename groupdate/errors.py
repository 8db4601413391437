"""Standardized error handling for the API.

This module provides:
1. The domain error taxonomy (validation, not found, unauthorized, conflict)
2. Exception handlers for FastAPI
3. Standard error response models

Usage:
    from groupdate.errors import ConflictError, NotFoundError

    if not event:
        raise NotFoundError(detail="Event not found", token=token[:8])

    # Register handlers in main.py:
    from groupdate.errors import register_exception_handlers
    register_exception_handlers(app)
"""

import logging
from typing import Any

import psycopg
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class ErrorResponse(BaseModel):
    """Standard error response model."""

    error: str
    detail: str | None = None
    error_code: str | None = None
    context: dict[str, Any] | None = None


class APIError(Exception):
    """Base class for API errors."""

    status_code: int = 500
    error: str = "internal_error"
    detail: str = "An unexpected error occurred"

    def __init__(
        self,
        detail: str | None = None,
        error_code: str | None = None,
        **context: Any,
    ) -> None:
        self.detail = detail or self.__class__.detail
        self.error_code = error_code
        self.context = context if context else None
        super().__init__(self.detail)

    def to_response(self) -> ErrorResponse:
        """Convert exception to error response model."""
        return ErrorResponse(
            error=self.error,
            detail=self.detail,
            error_code=self.error_code,
            context=self.context,
        )


class ValidationError(APIError):
    """Malformed input such as bad dates or unknown phase names (400)."""

    status_code = 400
    error = "validation_error"
    detail = "Invalid request"


class UnauthorizedError(APIError):
    """No identity, or not enough confidence, for a write (401)."""

    status_code = 401
    error = "unauthorized"
    detail = "Authentication required"


class NotFoundError(APIError):
    """Resource not found error (404)."""

    status_code = 404
    error = "not_found"
    detail = "Resource not found"


class ConflictError(APIError):
    """Illegal transition, claimed slot, or closed voting (409)."""

    status_code = 409
    error = "conflict"
    detail = "Request conflicts with the current event state"


class DatabaseError(APIError):
    """Database error (500)."""

    status_code = 500
    error = "database_error"
    detail = "Database operation failed"


class ServiceUnavailableError(APIError):
    """Service unavailable error (503)."""

    status_code = 503
    error = "service_unavailable"
    detail = "Service temporarily unavailable"


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Handle custom API errors."""
    logger.warning(
        "API error: %s (status=%d, path=%s)",
        exc.detail,
        exc.status_code,
        request.url.path,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(exclude_none=True),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report request body/query validation failures with the validation kind."""
    fields = [".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()]
    return JSONResponse(
        status_code=ValidationError.status_code,
        content=ErrorResponse(
            error=ValidationError.error,
            detail="Invalid request data",
            context={"fields": fields},
        ).model_dump(exclude_none=True),
    )


async def database_exception_handler(request: Request, exc: psycopg.Error) -> JSONResponse:
    """Hide driver errors behind a generic database error."""
    logger.exception("Database error (path=%s)", request.url.path)
    return JSONResponse(
        status_code=DatabaseError.status_code,
        content=ErrorResponse(
            error=DatabaseError.error,
            detail=DatabaseError.detail,
        ).model_dump(exclude_none=True),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Unknown routes and disallowed methods, in the standard shape."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=_status_to_error_type(exc.status_code),
            detail=str(exc.detail),
        ).model_dump(exclude_none=True),
        headers=getattr(exc, "headers", None),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions."""
    logger.exception("Unhandled exception: %s (path=%s)", exc, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error="internal_error",
            detail="An unexpected error occurred",
        ).model_dump(exclude_none=True),
    )


def _status_to_error_type(status_code: int) -> str:
    """Map HTTP status code to error type string."""
    mapping = {
        400: "validation_error",
        401: "unauthorized",
        403: "forbidden",
        404: "not_found",
        409: "conflict",
        422: "validation_error",
        429: "rate_limited",
        500: "internal_error",
        502: "bad_gateway",
        503: "service_unavailable",
        504: "gateway_timeout",
    }
    return mapping.get(status_code, "error")


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(psycopg.Error, database_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
