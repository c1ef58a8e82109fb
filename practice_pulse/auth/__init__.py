"""
Authentication and authorization.

- Sessions: opaque ids in an HTTP-only cookie, looked up server-side
- Identity middleware: resolves the cookie before any route runs
- Gate: per resource group read/manage permission pair
- Permissions: role-based, resolved once per request
"""

from practice_pulse.auth.context import (
    RequestContext,
    get_request_context,
    get_user_permissions,
    require_context,
)
from practice_pulse.auth.middleware import RequestIdentityMiddleware, is_exempt_path
from practice_pulse.auth.models import UserRecord, UserStatus, login_user_id, parse_user_id
from practice_pulse.auth.permissions import PermissionLookupError, PermissionResolver
from practice_pulse.auth.policies import PermissionPair, require_permissions
from practice_pulse.auth.service import AuthService, LoginResult
from practice_pulse.auth.sessions import SessionManager
from practice_pulse.auth.routes import router as auth_router

__all__ = [
    # Gate
    "require_permissions",
    "PermissionPair",
    # Context
    "RequestContext",
    "get_request_context",
    "get_user_permissions",
    "require_context",
    # Permissions
    "PermissionResolver",
    "PermissionLookupError",
    # Sessions
    "SessionManager",
    "AuthService",
    "LoginResult",
    "RequestIdentityMiddleware",
    "is_exempt_path",
    # Types
    "UserRecord",
    "UserStatus",
    "parse_user_id",
    "login_user_id",
    # Router
    "auth_router",
]
