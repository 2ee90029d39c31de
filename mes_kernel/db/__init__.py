"""Database layer - engine, base classes, column types, immutability listeners."""

from mes_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from mes_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    init_engine_from_config,
    init_engine_from_url,
    session_scope,
)
from mes_kernel.db.types import Quantity

__all__ = [
    "init_engine_from_config",
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "Quantity",
]
