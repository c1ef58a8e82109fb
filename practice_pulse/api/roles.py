"""
Roles and their permission sets.

Creating or editing a role touches `role` and `role_permission`; both
happen in one transaction.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from practice_pulse.api.dependencies import get_database
from practice_pulse.auth.models import is_ascii_digits
from practice_pulse.core.errors import (
    ApiError,
    BadRequestError,
    NotFoundError,
    internal_error,
    unique_violation_as_conflict,
)
from practice_pulse.storage.database import Database, Tables, affected_rows

logger = logging.getLogger(__name__)

router = APIRouter(tags=["roles"])

DUPLICATE_ROLE_MESSAGE = "A role with that name already exists."

# Roles that cannot be deleted
PROTECTED_ROLES = ("admin",)


ROLE_SELECT = f"""
    SELECT
        r.role_id,
        r.role_name,
        r.default_route,
        COALESCE(
            json_agg(
                json_build_object('permission_id', p.permission_id, 'permission', p.permission)
                ORDER BY p.permission
            ) FILTER (WHERE p.permission_id IS NOT NULL),
            '[]'::json
        ) AS permissions
    FROM {Tables.ROLES} r
    LEFT JOIN {Tables.ROLE_PERMISSIONS} rp ON rp.role_id = r.role_id
    LEFT JOIN {Tables.PERMISSIONS} p ON p.permission_id = rp.permission_id
"""

LIST_ROLES_SQL = f"""
    {ROLE_SELECT}
    GROUP BY r.role_id, r.role_name, r.default_route
    ORDER BY r.role_name ASC
"""

ROLE_BY_ID_SQL = f"""
    {ROLE_SELECT}
    WHERE r.role_id = $1
    GROUP BY r.role_id, r.role_name, r.default_route
    LIMIT 1
"""

INSERT_ROLE_SQL = f"""
    INSERT INTO {Tables.ROLES} (role_name, default_route)
    VALUES ($1, $2)
    RETURNING role_id
"""

GRANT_PERMISSIONS_SQL = f"""
    INSERT INTO {Tables.ROLE_PERMISSIONS} (role_id, permission_id)
    SELECT $1, permission_id
    FROM {Tables.PERMISSIONS}
    WHERE permission_id = ANY($2::int[])
      AND NOT EXISTS (
          SELECT 1
          FROM {Tables.ROLE_PERMISSIONS} rp
          WHERE rp.role_id = $1 AND rp.permission_id = {Tables.PERMISSIONS}.permission_id
      )
"""

REVOKE_OTHER_PERMISSIONS_SQL = f"""
    DELETE FROM {Tables.ROLE_PERMISSIONS}
    WHERE role_id = $1
      AND NOT (permission_id = ANY($2::int[]))
"""

RENAME_ROLE_SQL = f"UPDATE {Tables.ROLES} SET role_name = $1 WHERE role_id = $2"

SET_DEFAULT_ROUTE_SQL = f"UPDATE {Tables.ROLES} SET default_route = $1 WHERE role_id = $2"

DELETE_ROLE_SQL = f"""
    DELETE FROM {Tables.ROLES}
    WHERE role_id = $1
      AND NOT (role_name = ANY($2::text[]))
"""


class CreateRoleRequest(BaseModel):
    role_name: Any = None
    default_route: Any = None
    permission_ids: Any = None


class UpdateRoleRequest(BaseModel):
    role_name: Any = None
    default_route: Any = None
    permission_ids: Any = None


def normalize_role_row(row: Mapping[str, Any]) -> dict[str, Any]:
    permissions = row["permissions"]
    if isinstance(permissions, str):
        permissions = json.loads(permissions)
    return {
        "role_id": row["role_id"],
        "role_name": row["role_name"],
        "default_route": row["default_route"],
        "permissions": permissions if isinstance(permissions, list) else [],
    }


def clean_default_route(value: Any) -> str | None:
    if value is None:
        return None
    return str(value).strip() or None


def clean_permission_ids(values: Any) -> list[int]:
    """Positive integer ids, deduplicated, in request order."""
    if not isinstance(values, list):
        return []
    ids: list[int] = []
    for value in values:
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            parsed = value
        elif isinstance(value, str) and is_ascii_digits(value.strip()):
            parsed = int(value.strip())
        else:
            continue
        if parsed > 0:
            ids.append(parsed)
    return list(dict.fromkeys(ids))


async def fetch_role(db: Database, role_id: int) -> dict[str, Any] | None:
    row = await db.fetchrow(ROLE_BY_ID_SQL, role_id)
    return normalize_role_row(row) if row else None


@router.get("")
async def list_roles(db: Database = Depends(get_database)):
    """All roles with their permissions, by name."""
    try:
        rows = await db.fetch(LIST_ROLES_SQL)
    except Exception as e:
        raise internal_error("listing roles", e) from e
    return [normalize_role_row(row) for row in rows]


@router.post("", status_code=201)
async def create_role(data: CreateRoleRequest, db: Database = Depends(get_database)):
    """Create a role and grant it the listed permissions."""
    if not data.role_name or not str(data.role_name).strip():
        raise BadRequestError("role_name is required.")

    role_name = str(data.role_name).strip()
    permission_ids = clean_permission_ids(data.permission_ids)

    try:
        with unique_violation_as_conflict(DUPLICATE_ROLE_MESSAGE):
            async with db.transaction() as conn:
                role_id = await conn.fetchval(INSERT_ROLE_SQL, role_name, clean_default_route(data.default_route))
                if permission_ids:
                    await conn.execute(GRANT_PERMISSIONS_SQL, role_id, permission_ids)

        role = await fetch_role(db, role_id)
    except ApiError:
        raise
    except Exception as e:
        raise internal_error("creating role", e) from e

    logger.info(f"Role {role_id} ({role_name}) created with {len(permission_ids)} permissions")
    return role


@router.patch("/{role_id}")
async def update_role(role_id: int, data: UpdateRoleRequest, db: Database = Depends(get_database)):
    """Rename a role, change its default route, and/or replace its permissions."""
    fields = data.model_fields_set
    if not ({"role_name", "default_route"} & fields) and not isinstance(data.permission_ids, list):
        raise BadRequestError("No updatable fields provided.")

    if "role_name" in fields and (not data.role_name or not str(data.role_name).strip()):
        raise BadRequestError("role_name cannot be empty.")

    try:
        with unique_violation_as_conflict(DUPLICATE_ROLE_MESSAGE):
            async with db.transaction() as conn:
                if "role_name" in fields:
                    await conn.execute(RENAME_ROLE_SQL, str(data.role_name).strip(), role_id)
                if "default_route" in fields:
                    await conn.execute(SET_DEFAULT_ROUTE_SQL, clean_default_route(data.default_route), role_id)
                if isinstance(data.permission_ids, list):
                    permission_ids = clean_permission_ids(data.permission_ids)
                    await conn.execute(REVOKE_OTHER_PERMISSIONS_SQL, role_id, permission_ids)
                    if permission_ids:
                        await conn.execute(GRANT_PERMISSIONS_SQL, role_id, permission_ids)

        role = await fetch_role(db, role_id)
    except ApiError:
        raise
    except Exception as e:
        raise internal_error("updating role", e) from e

    if role is None:
        raise NotFoundError("Role not found")
    return role


@router.delete("/{role_id}", status_code=204)
async def delete_role(role_id: int, db: Database = Depends(get_database)):
    """Delete a role. Protected roles cannot be deleted."""
    try:
        status = await db.execute(DELETE_ROLE_SQL, role_id, list(PROTECTED_ROLES))
    except Exception as e:
        raise internal_error("deleting role", e) from e

    if affected_rows(status) == 0:
        raise NotFoundError("Role not found or cannot be deleted")
    logger.info(f"Role {role_id} deleted")
