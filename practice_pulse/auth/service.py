"""
Login and logout.

Login is one transaction on one connection:

    BEGIN
      fetch user            -> 404 if missing
      check status          -> 403 if inactive / unknown
      pending -> active, stamp last_login_at
      insert session
      re-read user
    COMMIT

Any exception inside the block rolls the whole thing back, so a session
row never exists without the status promotion or the other way round.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import asyncpg

from practice_pulse.auth.models import USER_STATUSES, UserRecord, UserStatus, parse_user_id
from practice_pulse.auth.sessions import SessionManager
from practice_pulse.core.errors import ForbiddenError, NotFoundError
from practice_pulse.storage.database import Database, Tables

logger = logging.getLogger(__name__)


USER_WITH_ROLE_SQL = f"""
    SELECT ua.*, r.role_name, r.default_route
    FROM {Tables.USERS} ua
    LEFT JOIN {Tables.ROLES} r ON r.role_id = ua.role_id
    WHERE ua.user_id = $1
    LIMIT 1
"""

RECORD_LOGIN_SQL = f"""
    UPDATE {Tables.USERS}
    SET status = CASE WHEN status = 'pending' THEN 'active' ELSE status END,
        last_login_at = NOW()
    WHERE user_id = $1
"""


async def fetch_user(executor: Database | asyncpg.Connection, user_id: int) -> UserRecord | None:
    """A user joined with its role, through the pool or an open transaction."""
    row = await executor.fetchrow(USER_WITH_ROLE_SQL, user_id)
    return UserRecord.from_row(row) if row else None


@dataclass
class LoginResult:
    user: UserRecord
    session_id: str


class AuthService:
    """The login/logout state transitions."""

    def __init__(self, db: Database, sessions: SessionManager):
        self.db = db
        self.sessions = sessions

    async def login(self, raw_user_id: Any) -> LoginResult:
        """
        Authenticate a user by id and open a session.

        Raises:
            BadRequestError: user_id is not a positive integer
            NotFoundError: no such user
            ForbiddenError: the account's status does not permit login
        """
        user_id = parse_user_id(raw_user_id)

        async with self.db.transaction() as conn:
            user = await fetch_user(conn, user_id)
            if user is None:
                raise NotFoundError("User not found")

            status = user.normalized_status
            if status == UserStatus.INACTIVE.value:
                logger.info(f"Login refused for inactive user {user_id}")
                raise ForbiddenError("User account is inactive")
            if status not in USER_STATUSES:
                logger.warning(f"Login refused for user {user_id} with status {status!r}")
                raise ForbiddenError("User status does not permit login")

            await conn.execute(RECORD_LOGIN_SQL, user.user_id)
            session_id = await self.sessions.issue_session(user.user_id, conn=conn)
            logged_in = await fetch_user(conn, user.user_id)

        if status == UserStatus.PENDING.value:
            logger.info(f"User {user_id} activated on first login")
        logger.info(f"User {user_id} logged in")
        return LoginResult(user=logged_in or user, session_id=session_id)

    async def logout(self, session_id: str | None) -> bool:
        """Revoke the session if there is one. Returns True if a row was deleted."""
        if not session_id:
            return False
        return await self.sessions.revoke_session(session_id)
