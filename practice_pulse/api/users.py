"""
User accounts.

Accounts are provisioned here and sign in through `/auth/login`. The
`last_login_at` stamp belongs to login and cannot be set by clients.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends
from pydantic import EmailStr, TypeAdapter, ValidationError

from practice_pulse.api.dependencies import get_database
from practice_pulse.auth.models import USER_STATUSES, UserRecord, UserStatus, is_ascii_digits, normalize_status
from practice_pulse.auth.service import fetch_user
from practice_pulse.core.errors import (
    ApiError,
    BadRequestError,
    NotFoundError,
    internal_error,
    unique_violation_as_conflict,
)
from practice_pulse.storage.database import Database, Tables

logger = logging.getLogger(__name__)

router = APIRouter(tags=["users"])

DUPLICATE_USER_MESSAGE = "A user with that username already exists."

_email_adapter = TypeAdapter(EmailStr)


LIST_USERS_SQL = f"""
    SELECT ua.*, r.role_name, r.default_route
    FROM {Tables.USERS} ua
    LEFT JOIN {Tables.ROLES} r ON r.role_id = ua.role_id
    ORDER BY ua.created_at DESC, ua.user_id DESC
"""

INSERT_USER_SQL = f"""
    INSERT INTO {Tables.USERS} (username, name, status, profile_image_url, role_id)
    VALUES ($1, $2, $3, $4, $5)
    RETURNING user_id
"""

ROLE_EXISTS_SQL = f"SELECT 1 FROM {Tables.ROLES} WHERE role_id = $1 LIMIT 1"

# Only these columns are ever interpolated into UPDATE statements
UPDATABLE_COLUMNS = ("username", "name", "profile_image_url", "status", "role_id")


# =============================================================================
# Validation
# =============================================================================


def validate_username(value: Any) -> str:
    """Usernames are email addresses, stored lowercased."""
    if not value:
        raise BadRequestError("username (email) is required")
    trimmed = str(value).strip().lower()
    try:
        _email_adapter.validate_python(trimmed)
    except ValidationError:
        raise BadRequestError("username must be a valid email address")
    return trimmed


def validate_status(value: Any) -> str | None:
    if value is None:
        return None
    status = normalize_status(value)
    if status not in USER_STATUSES:
        raise BadRequestError(f"status must be one of: {', '.join(s.value for s in UserStatus)}")
    return status


async def validate_role_id(db: Database, value: Any) -> int | None:
    """A role id that exists, or None for no role (`null`, `""`, `"none"`)."""
    if value is None or value == "":
        return None
    if isinstance(value, str) and value.strip().lower() == "none":
        return None

    parsed: int | None = None
    if isinstance(value, int) and not isinstance(value, bool):
        parsed = value
    elif isinstance(value, str) and is_ascii_digits(value.strip()):
        parsed = int(value.strip())
    if parsed is None or parsed < 1:
        raise BadRequestError("role_id must be a positive integer")

    if await db.fetchval(ROLE_EXISTS_SQL, parsed) is None:
        raise BadRequestError("Referenced role does not exist")
    return parsed


# =============================================================================
# Endpoints
# =============================================================================


@router.get("")
async def list_users(db: Database = Depends(get_database)):
    """All users, newest first."""
    try:
        rows = await db.fetch(LIST_USERS_SQL)
    except Exception as e:
        raise internal_error("listing users", e) from e
    return [UserRecord.from_row(row).to_response() for row in rows]


@router.get("/{user_id}")
async def get_user(user_id: int, db: Database = Depends(get_database)):
    try:
        user = await fetch_user(db, user_id)
    except Exception as e:
        raise internal_error("fetching user", e) from e
    if user is None:
        raise NotFoundError("User not found")
    return user.to_response()


@router.post("", status_code=201)
async def create_user(
    payload: dict[str, Any] = Body(default_factory=dict),
    db: Database = Depends(get_database),
):
    """Provision an account; new accounts start out pending."""
    try:
        username = validate_username(payload.get("username"))
        status = validate_status(payload.get("status")) or UserStatus.PENDING.value
        role_id = await validate_role_id(db, payload.get("role_id"))

        with unique_violation_as_conflict(DUPLICATE_USER_MESSAGE):
            user_id = await db.fetchval(
                INSERT_USER_SQL,
                username,
                payload.get("name"),
                status,
                payload.get("profile_image_url"),
                role_id,
            )
        created = await fetch_user(db, user_id)
    except ApiError:
        raise
    except Exception as e:
        raise internal_error("creating user", e) from e

    logger.info(f"User {user_id} created with status {status}")
    return created.to_response() if created else {"user_id": user_id}


@router.patch("/{user_id}")
async def update_user(
    user_id: int,
    payload: dict[str, Any] = Body(default_factory=dict),
    db: Database = Depends(get_database),
):
    """Partially update an account."""
    if not payload:
        raise BadRequestError("No fields provided for update")
    if "last_login_at" in payload:
        raise BadRequestError("last_login_at is managed by the system and cannot be updated manually")

    try:
        values: list[Any] = []
        set_clauses: list[str] = []
        for column in UPDATABLE_COLUMNS:
            if column not in payload:
                continue
            value = payload[column]
            if column == "username":
                value = validate_username(value)
            elif column == "status":
                value = validate_status(value)
            elif column == "role_id":
                value = await validate_role_id(db, value)
            values.append(value)
            set_clauses.append(f"{column} = ${len(values)}")

        if not set_clauses:
            raise BadRequestError("No updatable fields provided")

        values.append(user_id)
        sql = f"""
            UPDATE {Tables.USERS}
            SET {', '.join(set_clauses)}
            WHERE user_id = ${len(values)}
            RETURNING user_id
        """
        with unique_violation_as_conflict(DUPLICATE_USER_MESSAGE):
            updated_id = await db.fetchval(sql, *values)
        if updated_id is None:
            raise NotFoundError("User not found")
        updated = await fetch_user(db, updated_id)
    except ApiError:
        raise
    except Exception as e:
        raise internal_error("updating user", e) from e

    return updated.to_response() if updated else {"user_id": updated_id}
