"""
FastAPI dependencies for app-scoped components.

Components are built once by the app factory and stored on `app.state`;
routes receive them through these functions instead of importing globals.
"""

from __future__ import annotations

from fastapi import Request

from practice_pulse.auth.permissions import PermissionResolver
from practice_pulse.auth.service import AuthService
from practice_pulse.auth.sessions import SessionManager
from practice_pulse.storage.database import Database


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_sessions(request: Request) -> SessionManager:
    return request.app.state.sessions


def get_permission_resolver(request: Request) -> PermissionResolver:
    return request.app.state.permissions


def get_auth_service(request: Request) -> AuthService:
    return AuthService(request.app.state.database, request.app.state.sessions)
