"""Database layer - engine, base class, column types, and immutability."""

from access_kernel.db.base import Base
from access_kernel.db.engine import (
    build_engine,
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    is_postgres,
    reset_engine,
    session_scope,
)
from access_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from access_kernel.db.types import UTCDateTime, UUIDString

__all__ = [
    "build_engine",
    "init_engine_from_url",
    "is_postgres",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "drop_tables",
    "reset_engine",
    "register_immutability_listeners",
    "unregister_immutability_listeners",
    "Base",
    "UUIDString",
    "UTCDateTime",
]
