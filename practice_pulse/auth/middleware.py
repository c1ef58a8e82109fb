"""
Request identity middleware.

Every request outside the exempt paths must carry a live session cookie.
The resolved user is attached as `request.state.context` before any route
code runs; the session's activity timestamp is refreshed in the background.
"""

from __future__ import annotations

import logging
from typing import Iterable

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from practice_pulse.auth.context import RequestContext
from practice_pulse.core.errors import error_response
from practice_pulse.integrations.sentry import capture_exception, set_user

logger = logging.getLogger(__name__)


def normalize_path(path: str) -> str:
    """Strip trailing slashes and ensure a leading one, keeping a bare `/`."""
    if not path.startswith("/"):
        path = "/" + path
    if len(path) > 1:
        return path.rstrip("/") or "/"
    return path


def is_exempt_path(path: str | None, exempt_paths: Iterable[str]) -> bool:
    """
    True for an exempt path or any path ending in one.

    `/health/`, `/api/auth/login` and `/auth/login` all match `/auth/login`
    or `/health`; `/xauth/login` does not.
    """
    if not path:
        return False
    normalized = normalize_path(path)
    # Exempt paths start with "/", so a suffix match is segment aligned
    return any(
        normalized == exempt or normalized.endswith(exempt)
        for exempt in (normalize_path(e) for e in exempt_paths)
    )


class RequestIdentityMiddleware(BaseHTTPMiddleware):
    """Resolves the session cookie to a user or answers 401."""

    def __init__(self, app: ASGIApp, exempt_paths: Iterable[str]):
        super().__init__(app)
        self.exempt_paths = tuple(normalize_path(p) for p in exempt_paths)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.method == "OPTIONS" or is_exempt_path(request.url.path, self.exempt_paths):
            return await call_next(request)

        sessions = request.app.state.sessions
        session_id = sessions.extract_session_id(request.cookies)
        if not session_id:
            return self._unauthenticated(sessions)

        try:
            user = await sessions.resolve_session(session_id)
        except Exception as e:
            logger.exception(f"Error authenticating {request.method} {request.url.path}")
            capture_exception(e, path=request.url.path)
            return error_response(500, "Internal server error, could not authenticate request")

        if user is None:
            logger.info(f"Rejected unknown or expired session on {request.url.path}")
            return self._unauthenticated(sessions)

        request.state.context = RequestContext(
            user=user,
            session_id=session_id,
            resolver=request.app.state.permissions,
        )
        set_user(user.user_id, user.username)
        sessions.touch_session_later(session_id)
        return await call_next(request)

    @staticmethod
    def _unauthenticated(sessions) -> Response:
        response = error_response(401, "Not authenticated")
        sessions.clear_cookie(response)
        return response
