"""Database layer root: engine/session management plus ORM models."""

from .engine import (
    init_engine_once,
    get_engine,
    get_session_factory,
    get_scoped_session,
    app_session,
    new_session,
    reset_for_tests,
)

__all__ = [
    "init_engine_once",
    "get_engine",
    "get_session_factory",
    "get_scoped_session",
    "app_session",
    "new_session",
    "reset_for_tests",
]
