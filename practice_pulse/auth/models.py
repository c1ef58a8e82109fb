"""
User and login models.

`UserRecord` is the normalized shape of a user row joined with its role.
It is what session resolution returns and what login/me respond with.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict

from practice_pulse.core.errors import BadRequestError


class UserStatus(str, Enum):
    """Account lifecycle state."""

    PENDING = "pending"      # Provisioned, never logged in
    ACTIVE = "active"
    INACTIVE = "inactive"    # Cannot log in


USER_STATUSES: frozenset[str] = frozenset(s.value for s in UserStatus)


def normalize_status(value: Any) -> str:
    """Trim and lowercase a status value; None becomes the empty string."""
    return str(value if value is not None else "").strip().lower()


class UserRecord(BaseModel):
    """
    A user joined with its role.

    Columns beyond the ones declared here (profile image, timestamps, ...)
    are carried through untouched.
    """

    model_config = ConfigDict(extra="allow")

    user_id: int
    username: str | None = None
    name: str | None = None
    status: str | None = None
    role_id: int | None = None
    role_name: str | None = None
    default_route: str | None = None
    last_login_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> UserRecord:
        data = dict(row)
        # Session join columns are not part of the user
        data.pop("session_id", None)
        data.pop("session_created_at", None)
        return cls.model_validate(data)

    @property
    def role(self) -> str | None:
        return self.role_name

    @property
    def normalized_status(self) -> str:
        return normalize_status(self.status)

    def to_response(self) -> dict[str, Any]:
        """JSON-ready dict; `role` and `app_role` mirror `role_name` for older clients."""
        data = self.model_dump(mode="json")
        data["role"] = self.role_name
        data["app_role"] = self.role_name
        return data


def login_user_id(payload: Any) -> Any:
    """The raw `user_id` from a login body; None unless the body is an object."""
    if isinstance(payload, Mapping):
        return payload.get("user_id")
    return None


def is_ascii_digits(value: str) -> bool:
    """True for a non-empty run of ASCII 0-9 (`isdigit` alone admits "²" and "①")."""
    return value.isascii() and value.isdigit()


def parse_user_id(value: Any) -> int:
    """
    Coerce a client-supplied user id to a positive integer.

    Accepts ints, integral floats and digit strings. Raises BadRequestError
    for anything else.
    """
    parsed: int | None = None
    if isinstance(value, bool):
        parsed = None
    elif isinstance(value, int):
        parsed = value
    elif isinstance(value, float) and value.is_integer():
        parsed = int(value)
    elif isinstance(value, str) and is_ascii_digits(value.strip()):
        parsed = int(value.strip())

    if parsed is None or parsed < 1:
        raise BadRequestError("user_id is required.")
    return parsed
