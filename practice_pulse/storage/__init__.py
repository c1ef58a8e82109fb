"""
Relational store access.

The `Database` component owns the asyncpg pool; everything that talks to
PostgreSQL receives it explicitly.
"""

from practice_pulse.storage.database import Database, DatabaseNotConnectedError, Tables

__all__ = [
    "Database",
    "DatabaseNotConnectedError",
    "Tables",
]
