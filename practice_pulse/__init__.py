"""
Practice Pulse - session-authenticated, permission-gated REST API.
"""

__version__ = "0.1.0"
