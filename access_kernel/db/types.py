"""
Module: access_kernel.db.types
Responsibility: Portable column types shared by every model.
Architecture position: Kernel > DB.  May be imported by models/, services/,
    and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - Timestamps round-trip as timezone-aware UTC datetimes on every backend.
      PostgreSQL stores TIMESTAMPTZ natively; SQLite has no timezone
      support, so values are stored as naive UTC and re-tagged on load.
    - UUIDs are stored as 36-character strings and loaded back as ``UUID``.
"""

from datetime import timezone
from uuid import UUID

from sqlalchemy import DateTime, String
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime column.

    Contract:
        Accepts only aware datetimes on bind; always returns aware UTC
        datetimes on load.

    Raises:
        ValueError: On binding a naive datetime.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("UTCDateTime requires a timezone-aware datetime")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class UUIDString(TypeDecorator):
    """UUID stored as ``String(36)``; plain strings are accepted on bind."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


__all__ = ["UTCDateTime", "UUIDString"]
