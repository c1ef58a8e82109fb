"""Shared building blocks: errors and small utilities."""

from practice_pulse.core.errors import (
    ApiError,
    BadRequestError,
    NotAuthenticatedError,
    ForbiddenError,
    NotFoundError,
    ConflictError,
    InternalServerError,
    internal_error,
    unique_violation_as_conflict,
)
from practice_pulse.core.utils import generate_session_id

__all__ = [
    "ApiError",
    "BadRequestError",
    "NotAuthenticatedError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "InternalServerError",
    "internal_error",
    "unique_violation_as_conflict",
    "generate_session_id",
]
