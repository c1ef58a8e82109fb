"""
Shared utility functions.

This module contains common utilities used across the codebase.
"""

from __future__ import annotations

import uuid


def generate_session_id() -> str:
    """
    Generate an opaque session identifier.

    The id is a random UUID4 and carries no claims; everything it grants
    is looked up server-side.
    """
    return str(uuid.uuid4())
