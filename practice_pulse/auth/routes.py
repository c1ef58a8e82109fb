# =============================================================================
# Auth API Routes
# =============================================================================
#
# Endpoints:
#   POST /auth/login   - Open a session for a user id, set the session cookie
#   POST /auth/logout  - Revoke the session, clear the cookie (always 204)
#   GET  /auth/users   - Users offered on the login screen (no session needed)
#   GET  /auth/me      - The current session's user and permissions
#
# =============================================================================

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Query, Request, Response

from practice_pulse.auth.dependencies import (
    get_auth_service,
    get_database,
    get_permission_resolver,
    get_sessions,
)
from practice_pulse.auth.context import RequestContext, require_context
from practice_pulse.auth.models import USER_STATUSES, UserStatus, login_user_id
from practice_pulse.auth.permissions import PermissionResolver
from practice_pulse.auth.service import AuthService
from practice_pulse.auth.sessions import SessionManager
from practice_pulse.core.errors import ApiError, BadRequestError, internal_error
from practice_pulse.storage.database import Database, Tables

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


LOGIN_USERS_SQL = f"""
    SELECT ua.user_id, ua.username, ua.name, ua.status, r.role_name, r.default_route
    FROM {Tables.USERS} ua
    LEFT JOIN {Tables.ROLES} r ON r.role_id = ua.role_id
    WHERE ua.status = ANY($1::text[])
    ORDER BY
        COALESCE(array_position($1::text[], ua.status), 2147483647),
        ua.name NULLS LAST,
        ua.username ASC
"""


def parse_status_filter(values: list[str] | None) -> list[str]:
    """
    Statuses requested via `?status=a,b` or repeated `?status=`.

    Defaults to active; keeps request order; rejects unknown values.
    """
    requested: list[str] = []
    for value in values or []:
        requested.extend(str(value).split(","))

    requested = [v.strip().lower() for v in requested if v.strip()]
    if not requested:
        requested = [UserStatus.ACTIVE.value]

    invalid = [v for v in requested if v not in USER_STATUSES]
    if invalid:
        raise BadRequestError(f"Invalid status values: {', '.join(invalid)}")

    return list(dict.fromkeys(requested))


# =============================================================================
# Session Endpoints
# =============================================================================


@router.post("/login")
async def login(
    response: Response,
    payload: Any = Body(default=None),
    auth: AuthService = Depends(get_auth_service),
    sessions: SessionManager = Depends(get_sessions),
    resolver: PermissionResolver = Depends(get_permission_resolver),
):
    """
    Log in as a user and receive a session cookie.

    Pending accounts become active on their first login.
    """
    try:
        result = await auth.login(login_user_id(payload))
        sessions.set_cookie(response, result.session_id)
        permissions = await resolver.list_permissions(result.user.user_id)
    except ApiError:
        raise
    except Exception as e:
        raise internal_error("logging in", e) from e

    return {**result.user.to_response(), "permissions": permissions}


@router.post("/logout", status_code=204)
async def logout(
    request: Request,
    auth: AuthService = Depends(get_auth_service),
    sessions: SessionManager = Depends(get_sessions),
):
    """
    End the current session.

    Always 204, whether or not the cookie named a live session.
    """
    try:
        await auth.logout(sessions.extract_session_id(request.cookies))
    except Exception as e:
        raise internal_error("logging out", e) from e

    response = Response(status_code=204)
    sessions.clear_cookie(response)
    return response


@router.get("/users")
async def list_login_users(
    status: list[str] | None = Query(default=None),
    db: Database = Depends(get_database),
):
    """Users selectable on the login screen, active ones by default."""
    statuses = parse_status_filter(status)
    try:
        rows = await db.fetch(LOGIN_USERS_SQL, statuses)
    except Exception as e:
        raise internal_error("listing users for login", e) from e

    return [
        {
            "user_id": row["user_id"],
            "username": row["username"],
            "name": row["name"],
            "status": row["status"],
            "role_name": row["role_name"],
            "default_route": row["default_route"],
        }
        for row in rows
    ]


@router.get("/me")
async def get_current_user(ctx: RequestContext = Depends(require_context)):
    """The user behind the session cookie, with their permissions."""
    try:
        permissions = sorted(await ctx.permissions())
    except Exception as e:
        raise internal_error("fetching current user", e) from e

    return {**ctx.user.to_response(), "permissions": permissions}
