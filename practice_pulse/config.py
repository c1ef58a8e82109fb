"""
Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from __future__ import annotations

import re
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # ==========================================================================
    # Environment
    # ==========================================================================

    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # ==========================================================================
    # API Server
    # ==========================================================================

    api_host: str = "0.0.0.0"
    api_port: int = 3001
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    # ==========================================================================
    # Database
    # ==========================================================================

    database_url: str = ""
    db_pool_min_size: int = 1
    db_pool_max_size: int = 10
    db_command_timeout: float = 30.0

    # ==========================================================================
    # Sessions
    # ==========================================================================

    session_cookie_name: str = "pp_session"
    session_max_age_days: int = 7
    # Opt out only for deployments that are not behind TLS
    session_cookie_secure: bool = True

    # Paths the identity middleware lets through without a session
    auth_exempt_paths: str = "/auth/login,/auth/logout,/auth/users,/health"

    # ==========================================================================
    # Optional Services
    # ==========================================================================

    sentry_dsn: str = ""

    # ==========================================================================
    # Helpers
    # ==========================================================================

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def auth_exempt_paths_list(self) -> list[str]:
        return [p.strip() for p in self.auth_exempt_paths.split(",") if p.strip()]

    @property
    def session_max_age_seconds(self) -> int:
        return self.session_max_age_days * 24 * 60 * 60

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def safe_database_url(self) -> str:
        """The DSN with its password masked, for log lines."""
        if not self.database_url:
            return ""
        return re.sub(
            r"(postgres(?:ql)?://[^:/@]*:)([^@]+)(@)",
            r"\1****\3",
            self.database_url,
            flags=re.IGNORECASE,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
