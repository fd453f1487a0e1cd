"""
Module: access_kernel.db.base
Responsibility: Declarative base class for all SQLAlchemy ORM models.
Architecture position: Kernel > DB.  ALL model files import from here.  This
    module MUST NOT import from models/, services/, selectors/, domain/, or
    outer layers.

Invariants enforced:
    - Every table has a surrogate uuid4 primary key ``id``.  Public ids
      (``request_id``, ``credential_id``, ``record_id``) are separate
      unique columns.
    - ``datetime`` annotations map to UTCDateTime and ``UUID`` annotations
      to UUIDString, so a bare ``Mapped[...]`` gets the portable type.
"""

from datetime import datetime
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from access_kernel.db.types import UTCDateTime, UUIDString


class Base(DeclarativeBase):
    """Declarative base; ``int`` columns are BIGINT so counters never overflow."""

    type_annotation_map: ClassVar[dict] = {
        datetime: UTCDateTime(),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)
