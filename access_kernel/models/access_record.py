"""
Module: access_kernel.models.access_record
Responsibility: ORM persistence for the append-only access record log.

Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Append-only: UPDATE/DELETE blocked by db/immutability listeners.
    - ``seq`` is unique and strictly monotonic (SequenceService).
    - ``record_hash`` chains to the previous record's hash by ``seq``.

Audit relevance:
    Every verification attempt, granted or denied, leaves exactly one row.
    Denied attempts with unknown codes keep the presented code (truncated)
    and no credential link.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from access_kernel.db.base import Base
from access_kernel.db.types import UTCDateTime, UUIDString
from access_kernel.domain.access import METHOD_MAX_LENGTH, PRESENTED_CODE_MAX_LENGTH

if TYPE_CHECKING:
    from access_kernel.domain.access import AccessRecord


class AccessRecordModel(Base):
    """One checkpoint event.  Immutable once flushed."""

    __tablename__ = "access_records"

    __table_args__ = (
        CheckConstraint(
            "event IN ('entry', 'exit')",
            name="ck_access_records_valid_event",
        ),
        CheckConstraint(
            "outcome IN ('granted', 'denied')",
            name="ck_access_records_valid_outcome",
        ),
        CheckConstraint(
            "(outcome = 'denied') = (denial_reason IS NOT NULL)",
            name="ck_access_records_denial_reason_iff_denied",
        ),
        Index("ix_access_records_credential_time", "credential_id", "occurred_at", "seq"),
        Index("ix_access_records_request_time", "request_id", "occurred_at", "seq"),
        Index("ix_access_records_time", "occurred_at"),
    )

    record_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    seq: Mapped[int] = mapped_column(nullable=False, unique=True)
    credential_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("credentials.credential_id"),
        nullable=True,
    )
    request_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    presented_code: Mapped[str | None] = mapped_column(String(PRESENTED_CODE_MAX_LENGTH), nullable=True)
    event: Mapped[str] = mapped_column(String(10), nullable=False)
    method: Mapped[str] = mapped_column(String(METHOD_MAX_LENGTH), nullable=False)
    outcome: Mapped[str] = mapped_column(String(10), nullable=False)
    denial_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    escort_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    paired_entry_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    duration_seconds: Mapped[int | None] = mapped_column(nullable=True)
    anomaly: Mapped[str | None] = mapped_column(String(50), nullable=True)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    record_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def hash_fields(self) -> dict:
        """Fields covered by ``record_hash`` (everything but the hashes)."""
        return {
            "record_id": self.record_id,
            "seq": self.seq,
            "credential_id": self.credential_id,
            "request_id": self.request_id,
            "presented_code": self.presented_code,
            "event": self.event,
            "method": self.method,
            "outcome": self.outcome,
            "denial_reason": self.denial_reason,
            "actor_id": self.actor_id,
            "occurred_at": self.occurred_at,
            "escort_id": self.escort_id,
            "paired_entry_id": self.paired_entry_id,
            "duration_seconds": self.duration_seconds,
            "anomaly": self.anomaly,
        }

    def __repr__(self) -> str:
        return (
            f"<AccessRecord #{self.seq} {self.event} {self.outcome} "
            f"credential={self.credential_id}>"
        )

    def to_dto(self) -> AccessRecord:
        """Convert ORM model to frozen domain DTO."""
        from access_kernel.domain.access import (
            AccessAnomaly,
            AccessEvent,
            AccessOutcome,
            AccessRecord as AccessRecordDTO,
            DenialReason,
        )

        return AccessRecordDTO(
            record_id=self.record_id,
            seq=self.seq,
            event=AccessEvent(self.event),
            method=self.method,
            outcome=AccessOutcome(self.outcome),
            actor_id=self.actor_id,
            occurred_at=self.occurred_at,
            record_hash=self.record_hash,
            credential_id=self.credential_id,
            request_id=self.request_id,
            presented_code=self.presented_code,
            denial_reason=DenialReason(self.denial_reason) if self.denial_reason else None,
            escort_id=self.escort_id,
            paired_entry_id=self.paired_entry_id,
            duration_seconds=self.duration_seconds,
            anomaly=AccessAnomaly(self.anomaly) if self.anomaly else None,
            prev_hash=self.prev_hash,
        )
