"""
Dependencies shared by the resource routers.

The accessors live with the auth package, which builds the components they
return; they are re-exported here for the routers under `practice_pulse.api`.
"""

from practice_pulse.auth.dependencies import (
    get_auth_service,
    get_database,
    get_permission_resolver,
    get_sessions,
)

__all__ = [
    "get_auth_service",
    "get_database",
    "get_permission_resolver",
    "get_sessions",
]
