"""
Infrastructure: async database engine and sessions.
"""

from softmeta.infrastructure.db import (
    get_engine,
    get_session_factory,
    get_db,
    get_db_context,
    dispose_engine,
)

__all__ = [
    "get_engine",
    "get_session_factory",
    "get_db",
    "get_db_context",
    "dispose_engine",
]
