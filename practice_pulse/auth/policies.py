"""
Authorization gate for resource groups.

Each guarded router is mounted with a read/manage permission pair:

    app.include_router(
        locations.router,
        prefix="/location",
        dependencies=[Depends(require_permissions(read="view locations", manage="manage locations"))],
    )

Safe methods (GET, HEAD) need `read` or `manage`; everything else needs
`manage`. Manage implies read.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from fastapi import Request

from practice_pulse.auth.context import RequestContext, get_request_context
from practice_pulse.auth.permissions import PermissionLookupError, normalize_permission
from practice_pulse.core.errors import ForbiddenError, InternalServerError, NotAuthenticatedError
from practice_pulse.integrations.sentry import capture_exception

logger = logging.getLogger(__name__)

READ_METHODS = frozenset({"GET", "HEAD"})


@dataclass(frozen=True)
class PermissionPair:
    """The read and manage permission names guarding one resource group."""

    read: str | None = None
    manage: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "read", normalize_permission(self.read))
        object.__setattr__(self, "manage", normalize_permission(self.manage))

    def required_for(self, method: str) -> tuple[str, ...]:
        """Permissions any one of which satisfies `method`."""
        if method.upper() in READ_METHODS:
            candidates = (self.read, self.manage)
        else:
            candidates = (self.manage,)
        return tuple(p for p in candidates if p)

    def allows(self, method: str, permissions: frozenset[str] | set[str]) -> bool:
        return any(p in permissions for p in self.required_for(method))


def require_permissions(
    read: str | None = None,
    manage: str | None = None,
) -> Callable[[Request], Awaitable[RequestContext | None]]:
    """
    Build the gate dependency for a resource group.

    Returns a FastAPI dependency that resolves to the caller's
    RequestContext (None for OPTIONS, which always passes).
    """
    pair = PermissionPair(read=read, manage=manage)

    async def permission_gate(request: Request) -> RequestContext | None:
        if request.method == "OPTIONS":
            return None

        ctx = get_request_context(request)
        if ctx is None:
            raise NotAuthenticatedError()

        try:
            permissions = await ctx.permissions()
        except PermissionLookupError as e:
            logger.error(f"Permission lookup failed for user {e.user_id}: {e.cause}")
            capture_exception(e.cause, user_id=e.user_id, path=request.url.path)
            raise InternalServerError("Internal server error, permission lookup failed") from e
        except Exception as e:
            logger.exception(f"Unexpected error checking permissions for user {ctx.user_id}")
            capture_exception(e, user_id=ctx.user_id, path=request.url.path)
            raise InternalServerError("Internal server error, permission check failed") from e

        if pair.allows(request.method, permissions):
            return ctx

        logger.info(
            f"Denied {request.method} {request.url.path} for user {ctx.user_id}: "
            f"requires one of {list(pair.required_for(request.method))}"
        )
        raise ForbiddenError()

    permission_gate.permission_pair = pair
    return permission_gate
