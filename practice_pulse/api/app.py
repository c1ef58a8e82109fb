"""
FastAPI application for Practice Pulse.

`create_app()` wires every component explicitly: the store, permission
resolver and session manager are built here, kept on `app.state`, and
handed to routes through dependencies.

Run with:
    uvicorn practice_pulse.api.app:app --port 3001
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from practice_pulse.api import locations, permissions, roles, users
from practice_pulse.auth import (
    PermissionResolver,
    RequestIdentityMiddleware,
    SessionManager,
    auth_router,
    require_permissions,
)
from practice_pulse.config import Settings, get_settings
from practice_pulse.core.errors import install_error_handlers
from practice_pulse.integrations.sentry import init_sentry
from practice_pulse.storage import Database

logger = logging.getLogger(__name__)


# Resource groups behind the authorization gate: prefix, router, read, manage
GUARDED_ROUTERS = [
    ("/location", locations.router, "view locations", "manage locations"),
    ("/permission", permissions.router, "manage users", "manage users"),
    ("/role", roles.router, "manage users", "manage users"),
    ("/allowed-permissions", permissions.allowed_router, "manage users", "manage users"),
    ("/user", users.router, "view users", "manage users"),
]


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )


# =============================================================================
# Lifespan
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the store at startup; drain background work and close it at shutdown."""
    settings: Settings = app.state.settings
    database: Database = app.state.database
    sessions: SessionManager = app.state.sessions

    init_sentry(settings)

    await database.connect()
    await database.verify()
    await sessions.purge_expired_sessions()

    if not settings.session_cookie_secure:
        logger.warning("Session cookies are not marked Secure; only use this without TLS")
    logger.info(f"Practice Pulse API starting in {settings.environment} mode")

    try:
        yield
    finally:
        await sessions.drain()
        await database.close()
        logger.info("Practice Pulse API shut down")


# =============================================================================
# App Setup
# =============================================================================


def create_app(settings: Settings | None = None, database: Database | None = None) -> FastAPI:
    """
    Build the API.

    Args:
        settings: Defaults to the environment-loaded settings
        database: Store component; built from settings when omitted
    """
    settings = settings or get_settings()
    configure_logging(settings)

    if database is None:
        database = Database(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=settings.db_command_timeout,
            safe_dsn=settings.safe_database_url,
        )

    app = FastAPI(
        title="Practice Pulse API",
        version="0.1.0",
        debug=settings.debug,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.database = database
    app.state.permissions = PermissionResolver(database)
    app.state.sessions = SessionManager.from_settings(database, settings)

    install_error_handlers(app)

    # Added first so CORS (added last) wraps it and answers preflights
    app.add_middleware(RequestIdentityMiddleware, exempt_paths=settings.auth_exempt_paths_list)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"ok": True}

    app.include_router(auth_router)

    for prefix, router, read, manage in GUARDED_ROUTERS:
        app.include_router(
            router,
            prefix=prefix,
            dependencies=[Depends(require_permissions(read=read, manage=manage))],
        )

    return app


app = create_app()
