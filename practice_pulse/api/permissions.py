"""
Permission catalog and per-user permission lookup.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from practice_pulse.api.dependencies import get_database
from practice_pulse.core.errors import BadRequestError, internal_error
from practice_pulse.storage.database import Database, Tables

router = APIRouter(tags=["permissions"])
allowed_router = APIRouter(tags=["permissions"])


LIST_PERMISSIONS_SQL = f"""
    SELECT permission_id, permission
    FROM {Tables.PERMISSIONS}
    ORDER BY permission ASC
"""

PERMISSIONS_FOR_USERNAME_SQL = f"""
    SELECT DISTINCT p.permission
    FROM {Tables.USERS} ua
    JOIN {Tables.ROLES} r ON r.role_id = ua.role_id
    JOIN {Tables.ROLE_PERMISSIONS} rp ON rp.role_id = r.role_id
    JOIN {Tables.PERMISSIONS} p ON p.permission_id = rp.permission_id
    WHERE ua.username = $1
    ORDER BY p.permission ASC
"""


@router.get("")
async def list_permissions(db: Database = Depends(get_database)):
    """The global permission catalog."""
    try:
        rows = await db.fetch(LIST_PERMISSIONS_SQL)
    except Exception as e:
        raise internal_error("listing permissions", e) from e
    return [{"permission_id": row["permission_id"], "permission": row["permission"]} for row in rows]


@allowed_router.get("")
async def allowed_permissions(
    username: str | None = Query(default=None),
    db: Database = Depends(get_database),
):
    """Permissions granted to a username through its role."""
    if not username or not username.strip():
        raise BadRequestError("username query parameter is required")

    normalized = username.strip().lower()
    try:
        rows = await db.fetch(PERMISSIONS_FOR_USERNAME_SQL, normalized)
    except Exception as e:
        raise internal_error("fetching allowed permissions", e) from e
    return {"username": normalized, "permissions": [row["permission"] for row in rows]}
