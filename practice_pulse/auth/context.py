"""
Request context - who is calling and what they may do.

The identity middleware attaches one `RequestContext` per authenticated
request. Permissions are loaded lazily on first use and kept for the rest
of that request only.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from fastapi import Request

from practice_pulse.auth.models import UserRecord
from practice_pulse.auth.permissions import PermissionResolver, normalize_permission
from practice_pulse.core.errors import NotAuthenticatedError


@dataclass
class RequestContext:
    """
    Per-request identity.

    Usage in routes:
        async def my_route(ctx: RequestContext = Depends(require_context)):
            if await ctx.can("manage users"):
                ...
    """

    user: UserRecord
    session_id: str
    resolver: PermissionResolver = field(repr=False)

    # Loaded on first call to permissions()
    _permissions: frozenset[str] | None = field(default=None, repr=False)

    @property
    def user_id(self) -> int:
        return self.user.user_id

    @property
    def permissions_loaded(self) -> bool:
        return self._permissions is not None

    async def permissions(self) -> frozenset[str]:
        """The caller's permissions, queried at most once per request."""
        if self._permissions is None:
            self._permissions = await self.resolver.resolve(self.user_id)
        return self._permissions

    async def can(self, permission: str) -> bool:
        normalized = normalize_permission(permission)
        return normalized is not None and normalized in await self.permissions()


def get_request_context(request: Request) -> RequestContext | None:
    """The context attached by the identity middleware, if any."""
    return getattr(request.state, "context", None)


async def get_user_permissions(request: Request) -> frozenset[str]:
    """Permissions of the caller; empty when no identity is attached."""
    ctx = get_request_context(request)
    if ctx is None:
        return frozenset()
    return await ctx.permissions()


def require_context(request: Request) -> RequestContext:
    """FastAPI dependency: the caller's context, or 401."""
    ctx = get_request_context(request)
    if ctx is None:
        raise NotAuthenticatedError()
    return ctx
