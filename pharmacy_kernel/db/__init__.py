"""Database layer - engine, declarative base, append-only guards."""

from pharmacy_kernel.db.base import UUID, Base, UUIDString
from pharmacy_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "UUIDString",
    "UUID",
]
