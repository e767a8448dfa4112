"""Database layer - engine, base classes, column types."""

from giving_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from giving_kernel.db.engine import (
    create_tables,
    enable_sqlite_savepoints,
    get_engine,
    get_session,
    session_scope,
)
from giving_kernel.db.types import Currency, MinorUnits, UTCDateTime

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "enable_sqlite_savepoints",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "MinorUnits",
    "Currency",
    "UTCDateTime",
]
