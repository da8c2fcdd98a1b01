"""Database utilities for the SQLAlchemy remote store."""

from .session import (
    build_engine,
    build_session_factory,
    dispose_engine,
    get_engine,
    get_session_factory,
    init_schema,
    session_scope,
)

__all__ = [
    "build_engine",
    "build_session_factory",
    "dispose_engine",
    "get_engine",
    "get_session_factory",
    "init_schema",
    "session_scope",
]
