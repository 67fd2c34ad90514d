"""
Database module.
Contains database connection, models, and repository implementations.
"""

from delayed_jobs.db.connection import (
    close_db,
    create_session_factory,
    get_async_session,
    get_engine,
    get_session_factory,
    init_db,
    session_scope,
)
from delayed_jobs.db.models import Base, DelayedJob

__all__ = [
    "get_async_session",
    "get_session_factory",
    "create_session_factory",
    "session_scope",
    "get_engine",
    "init_db",
    "close_db",
    "DelayedJob",
    "Base",
]
