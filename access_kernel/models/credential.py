"""
Module: access_kernel.models.credential
Responsibility: ORM persistence for access credentials.

Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - ``code`` is globally unique.
    - ``usage_count`` never exceeds ``usage_limit`` (NULL = unlimited).  The
      verification gate's conditional UPDATE keeps this true under
      concurrency; the check constraint is the last line of defence.
    - At most one current (non-superseded) credential per request; the
      credential service supersedes the previous one before minting.
    - ``status`` is a cache.  Usability is re-derived from expires_at,
      usage and revocation on every verification.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from access_kernel.db.base import Base
from access_kernel.db.types import UTCDateTime, UUIDString

if TYPE_CHECKING:
    from access_kernel.domain.credential import Credential


class CredentialModel(Base):
    """Persistent access credential."""

    __tablename__ = "credentials"

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'expired', 'revoked')",
            name="ck_credentials_valid_status",
        ),
        CheckConstraint(
            "usage_count >= 0",
            name="ck_credentials_usage_count_non_negative",
        ),
        CheckConstraint(
            "usage_limit IS NULL OR usage_limit >= 0",
            name="ck_credentials_usage_limit_non_negative",
        ),
        CheckConstraint(
            "usage_limit IS NULL OR usage_count <= usage_limit",
            name="ck_credentials_usage_within_limit",
        ),
        Index("ix_credentials_request", "request_id", "superseded_at"),
        Index("ix_credentials_status_expiry", "status", "expires_at"),
    )

    credential_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("access_requests.request_id"),
        nullable=False,
    )
    code: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    issued_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    usage_limit: Mapped[int | None] = mapped_column(nullable=True)
    usage_count: Mapped[int] = mapped_column(nullable=False, default=0)
    permissions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    superseded_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    superseded_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    revoked_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    revoke_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    @property
    def is_current(self) -> bool:
        return self.superseded_at is None

    def __repr__(self) -> str:
        return (
            f"<Credential {self.credential_id} request={self.request_id} "
            f"status={self.status} uses={self.usage_count}/{self.usage_limit}>"
        )

    def to_dto(self) -> Credential:
        """Convert ORM model to frozen domain DTO."""
        from access_kernel.domain.credential import (
            Credential as CredentialDTO,
            CredentialStatus,
        )

        return CredentialDTO(
            credential_id=self.credential_id,
            request_id=self.request_id,
            code=self.code,
            status=CredentialStatus(self.status),
            issued_at=self.issued_at,
            expires_at=self.expires_at,
            usage_limit=self.usage_limit,
            usage_count=self.usage_count,
            version=self.version,
            permissions=frozenset(self.permissions or ()),
            superseded_at=self.superseded_at,
            superseded_by=self.superseded_by,
            revoked_at=self.revoked_at,
            revoked_by=self.revoked_by,
            revoke_reason=self.revoke_reason,
        )
