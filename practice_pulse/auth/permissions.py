"""
Permission resolution.

A user's permissions are the names reachable from their role through the
role-permission association. Names are compared case-insensitively, so
everything is lowercased on the way out.
"""

from __future__ import annotations

import logging

from practice_pulse.storage.database import Database, Tables

logger = logging.getLogger(__name__)


PERMISSIONS_FOR_USER_SQL = f"""
    SELECT DISTINCT p.permission
    FROM {Tables.USERS} ua
    LEFT JOIN {Tables.ROLE_PERMISSIONS} rp ON rp.role_id = ua.role_id
    LEFT JOIN {Tables.PERMISSIONS} p ON p.permission_id = rp.permission_id
    WHERE ua.user_id = $1
      AND p.permission IS NOT NULL
"""


class PermissionLookupError(Exception):
    """The store could not answer a permission query (not a denial)."""

    def __init__(self, user_id: int, cause: BaseException):
        super().__init__(f"Permission lookup failed for user {user_id}: {cause}")
        self.user_id = user_id
        self.cause = cause


def normalize_permission(name: str | None) -> str | None:
    if name is None:
        return None
    normalized = str(name).strip().lower()
    return normalized or None


class PermissionResolver:
    """
    Resolves user ids to permission sets.

    Holds no cache of its own; per-request memoization lives on
    `RequestContext` so results never outlive the request.
    """

    def __init__(self, db: Database):
        self.db = db

    async def resolve(self, user_id: int) -> frozenset[str]:
        """
        Permissions granted to `user_id` via its role.

        Users without a role (or unknown users) resolve to the empty set.
        Store failures raise PermissionLookupError instead of returning an
        empty set.
        """
        try:
            rows = await self.db.fetch(PERMISSIONS_FOR_USER_SQL, user_id)
        except Exception as e:
            raise PermissionLookupError(user_id, e) from e

        permissions = (normalize_permission(row["permission"]) for row in rows)
        return frozenset(p for p in permissions if p)

    async def list_permissions(self, user_id: int | None) -> list[str]:
        """Deduplicated permission names for response bodies."""
        if not user_id:
            return []
        return sorted(await self.resolve(user_id))
