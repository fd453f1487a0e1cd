"""
Module: access_kernel.models.request
Responsibility: ORM persistence for visitor and employee access requests.

Architecture position: Kernel > Models.  May import from db/ only (domain
    types are imported lazily inside to_dto()).

Invariants enforced:
    - DB check constraints limit kind and status values; the service layer
      enforces transition rules through domain.request.ensure_transition.
    - Decision metadata (decided_by, decided_at) is set only once the
      request leaves ``pending``.
    - ``version`` increments on every state change (optimistic concurrency).
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from access_kernel.db.base import Base
from access_kernel.db.types import UTCDateTime, UUIDString

if TYPE_CHECKING:
    from access_kernel.domain.request import AccessRequest


class AccessRequestModel(Base):
    """Persistent access request.

    Contract:
        Status transitions are lifecycle-constrained.  Terminal statuses
        (rejected, expired, withdrawn) never change once set.
    """

    __tablename__ = "access_requests"

    __table_args__ = (
        CheckConstraint(
            "kind IN ('visitor', 'employee')",
            name="ck_access_requests_valid_kind",
        ),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'expired', 'withdrawn')",
            name="ck_access_requests_valid_status",
        ),
        # Duplicate detection: same phone at the same merchant
        Index(
            "ix_access_requests_phone_merchant",
            "contact_phone", "merchant_id", "status",
        ),
        # Merchant dashboards and status counts
        Index(
            "ix_access_requests_merchant_status",
            "merchant_id", "status",
        ),
        # expire_lapsed() scan
        Index(
            "ix_access_requests_status_visit_end",
            "status", "visit_end",
        ),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    requester_name: Mapped[str] = mapped_column(String(200), nullable=False)
    contact_phone: Mapped[str] = mapped_column(String(32), nullable=False)
    id_document: Mapped[str | None] = mapped_column(String(64), nullable=True)
    company: Mapped[str | None] = mapped_column(String(200), nullable=True)
    purpose: Mapped[str] = mapped_column(Text, nullable=False)
    merchant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    contact_person: Mapped[str | None] = mapped_column(String(200), nullable=True)
    visit_start: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    visit_end: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    access_level: Mapped[str | None] = mapped_column(String(50), nullable=True)
    escort_required: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    decided_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    decision_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    def __repr__(self) -> str:
        return (
            f"<AccessRequest {self.request_id} {self.kind} "
            f"merchant={self.merchant_id} status={self.status}>"
        )

    def to_dto(self) -> AccessRequest:
        """Convert ORM model to frozen domain DTO."""
        from access_kernel.domain.request import (
            AccessRequest as AccessRequestDTO,
            RequestKind,
            RequestStatus,
        )

        return AccessRequestDTO(
            request_id=self.request_id,
            kind=RequestKind(self.kind),
            requester_name=self.requester_name,
            contact_phone=self.contact_phone,
            purpose=self.purpose,
            merchant_id=self.merchant_id,
            status=RequestStatus(self.status),
            submitted_at=self.submitted_at,
            version=self.version,
            visit_start=self.visit_start,
            visit_end=self.visit_end,
            id_document=self.id_document,
            company=self.company,
            contact_person=self.contact_person,
            access_level=self.access_level,
            escort_required=self.escort_required,
            decided_by=self.decided_by,
            decision_notes=self.decision_notes,
            decided_at=self.decided_at,
        )
