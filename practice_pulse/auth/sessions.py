"""
Server-side sessions.

A session id is an opaque random token stored in `user_session` and
carried in an HTTP-only cookie. It holds no claims: every request looks
the id up to find the user behind it.

Sessions expire server-side after the same max-age as the cookie, so a
copied id stops working when the cookie would have. Age is measured on the
database clock against `user_session.created_at`, which the insert stamps
with `NOW()`.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import timedelta
from typing import Any, Mapping

import asyncpg
from starlette.responses import Response

from practice_pulse.auth.models import UserRecord
from practice_pulse.config import Settings
from practice_pulse.core.utils import generate_session_id
from practice_pulse.storage.database import Database, Tables, affected_rows

logger = logging.getLogger(__name__)


INSERT_SESSION_SQL = f"""
    INSERT INTO {Tables.SESSIONS} (session_id, user_id, created_at, last_seen_at)
    VALUES ($1, $2, NOW(), NOW())
"""

USER_BY_SESSION_SQL = f"""
    SELECT s.session_id, s.created_at AS session_created_at, ua.*, r.role_name, r.default_route
    FROM {Tables.SESSIONS} s
    JOIN {Tables.USERS} ua ON ua.user_id = s.user_id
    LEFT JOIN {Tables.ROLES} r ON r.role_id = ua.role_id
    WHERE s.session_id = $1
      AND s.created_at > NOW() - make_interval(days => $2)
    LIMIT 1
"""

TOUCH_SESSION_SQL = f"UPDATE {Tables.SESSIONS} SET last_seen_at = NOW() WHERE session_id = $1"

DELETE_SESSION_SQL = f"DELETE FROM {Tables.SESSIONS} WHERE session_id = $1"

PURGE_SESSIONS_SQL = f"""
    DELETE FROM {Tables.SESSIONS}
    WHERE created_at <= NOW() - make_interval(days => $1)
"""


def is_well_formed(session_id: str | None) -> bool:
    """Session ids are UUIDs; anything else cannot name a session."""
    if not session_id:
        return False
    try:
        uuid.UUID(session_id)
    except (ValueError, TypeError, AttributeError):
        return False
    return True


def _short(session_id: str) -> str:
    return f"{session_id[:8]}..."


class SessionManager:
    """
    Issues, resolves, touches and revokes sessions, and owns the cookie.

    Activity touches run as detached tasks; `drain()` waits for the ones
    still pending at shutdown.
    """

    def __init__(
        self,
        db: Database,
        cookie_name: str = "pp_session",
        max_age_days: int = 7,
        secure: bool = True,
    ):
        self.db = db
        self.cookie_name = cookie_name
        self.max_age_days = max_age_days
        self.secure = secure
        self._pending_touches: set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, db: Database, settings: Settings) -> SessionManager:
        return cls(
            db,
            cookie_name=settings.session_cookie_name,
            max_age_days=settings.session_max_age_days,
            secure=settings.session_cookie_secure,
        )

    @property
    def max_age(self) -> timedelta:
        return timedelta(days=self.max_age_days)

    @property
    def max_age_seconds(self) -> int:
        return int(self.max_age.total_seconds())

    # ========================================================================
    # Session Rows
    # ========================================================================

    async def issue_session(self, user_id: int, conn: asyncpg.Connection | None = None) -> str:
        """
        Create a session for `user_id` and return its id.

        Pass `conn` to insert inside an open transaction.
        """
        session_id = generate_session_id()
        executor = conn if conn is not None else self.db
        await executor.execute(INSERT_SESSION_SQL, session_id, user_id)
        logger.info(f"Session {_short(session_id)} issued for user {user_id}")
        return session_id

    async def resolve_session(self, session_id: str | None) -> UserRecord | None:
        """
        The user behind a session, joined with its role.

        None when the id is malformed, unknown, expired, or its user no
        longer exists.
        """
        if not is_well_formed(session_id):
            return None
        row = await self.db.fetchrow(USER_BY_SESSION_SQL, session_id, self.max_age_days)
        if row is None:
            return None
        return UserRecord.from_row(row)

    async def touch_session(self, session_id: str) -> None:
        """Refresh last activity. Failures are logged, never raised."""
        try:
            await self.db.execute(TOUCH_SESSION_SQL, session_id)
        except Exception as e:
            logger.warning(f"Failed to update session activity for {_short(session_id)}: {e}")

    def touch_session_later(self, session_id: str) -> asyncio.Task:
        """Schedule `touch_session` without waiting for it."""
        task = asyncio.create_task(self.touch_session(session_id))
        self._pending_touches.add(task)
        task.add_done_callback(self._pending_touches.discard)
        return task

    async def drain(self) -> None:
        """Wait for pending activity touches (called before the pool closes)."""
        if self._pending_touches:
            await asyncio.gather(*list(self._pending_touches), return_exceptions=True)

    async def revoke_session(self, session_id: str | None) -> bool:
        """
        Delete a session. Idempotent.

        Returns True if a row was deleted.
        """
        if not is_well_formed(session_id):
            return False
        status = await self.db.execute(DELETE_SESSION_SQL, session_id)
        revoked = affected_rows(status) > 0
        if revoked:
            logger.info(f"Session {_short(session_id)} revoked")
        return revoked

    async def purge_expired_sessions(self) -> int:
        """Delete sessions past their max age; returns how many."""
        status = await self.db.execute(PURGE_SESSIONS_SQL, self.max_age_days)
        purged = affected_rows(status)
        if purged:
            logger.info(f"Purged {purged} expired sessions")
        return purged

    # ========================================================================
    # Cookie
    # ========================================================================

    @property
    def cookie_options(self) -> dict[str, Any]:
        return {
            "httponly": True,
            "samesite": "lax",
            "secure": self.secure,
            "path": "/",
        }

    def extract_session_id(self, cookies: Mapping[str, str]) -> str | None:
        value = cookies.get(self.cookie_name)
        return value or None

    def set_cookie(self, response: Response, session_id: str) -> None:
        response.set_cookie(
            self.cookie_name,
            session_id,
            max_age=self.max_age_seconds,
            **self.cookie_options,
        )

    def clear_cookie(self, response: Response) -> None:
        response.delete_cookie(self.cookie_name, **self.cookie_options)
