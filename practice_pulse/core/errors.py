"""
API errors.

Every error leaves the API as `{"error": "<message>"}`. Route code raises
one of the classes below and the handlers installed by the app factory
render it.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

import asyncpg
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from practice_pulse.integrations.sentry import capture_exception

logger = logging.getLogger(__name__)

# SQLSTATE for unique_violation
UNIQUE_VIOLATION = "23505"


# =============================================================================
# Error Types
# =============================================================================


class ApiError(HTTPException):
    """Base class for errors that map onto an HTTP status."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        super().__init__(status_code=self.status_code, detail=message or self.default_message)

    @property
    def message(self) -> str:
        return self.detail


class BadRequestError(ApiError):
    status_code = 400
    default_message = "Bad request"


class NotAuthenticatedError(ApiError):
    status_code = 401
    default_message = "Not authenticated"


class ForbiddenError(ApiError):
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(ApiError):
    status_code = 404
    default_message = "Not found"


class ConflictError(ApiError):
    status_code = 409
    default_message = "Conflict"


class InternalServerError(ApiError):
    status_code = 500


def internal_error(action: str, error: BaseException) -> InternalServerError:
    """
    Log an unexpected failure and build the 500 to raise for it.

    The client sees only which action failed; details stay in the logs.
    """
    logger.error(f"Error {action}: {error}", exc_info=error)
    capture_exception(error, action=action)
    return InternalServerError(f"Internal server error, {action} failed")


# =============================================================================
# Store Error Translation
# =============================================================================


def is_unique_violation(error: BaseException) -> bool:
    """True if the store reported a unique-constraint violation."""
    return isinstance(error, asyncpg.PostgresError) and getattr(error, "sqlstate", None) == UNIQUE_VIOLATION


@contextmanager
def unique_violation_as_conflict(message: str) -> Iterator[None]:
    """
    Translate a unique-constraint violation into a 409.

    Usage:
        with unique_violation_as_conflict("A role with that name already exists."):
            async with db.transaction() as conn:
                ...
    """
    try:
        yield
    except asyncpg.PostgresError as e:
        if not is_unique_violation(e):
            raise
        logger.info(f"Unique constraint violated: {getattr(e, 'constraint_name', None)}")
        raise ConflictError(message) from e


# =============================================================================
# Handlers
# =============================================================================


def error_response(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code, headers=headers)


def install_error_handlers(app: FastAPI) -> None:
    """Render every error as `{"error": ...}`; 401s also clear the session cookie."""

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        response = error_response(exc.status_code, message, headers=getattr(exc, "headers", None))
        if exc.status_code == 401:
            sessions = getattr(request.app.state, "sessions", None)
            if sessions is not None:
                sessions.clear_cookie(response)
        return response

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        if errors:
            first = errors[0]
            location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
        else:
            message = "Invalid request"
        return error_response(400, message)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
        capture_exception(exc, method=request.method, path=request.url.path)
        return error_response(500, "Internal server error")
