"""
Module: access_kernel.selectors.audit_trail
Responsibility: Read side of the access log -- per-subject history, entry/exit
    durations, aggregate statistics and hash chain validation.
Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - History is ordered by ``occurred_at`` then ``seq``.
    - A request id covers every credential the request ever had, including
      superseded ones.

Failure modes:
    - NotFoundError when the subject is neither a request nor a credential.
    - InvalidPairError from compute_duration.
    - AuditChainBrokenError from validate_chain.
"""

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func, select

from access_kernel.domain.access import (
    AccessEvent,
    AccessOutcome,
    AccessRecord,
    AccessStats,
    compute_duration,
)
from access_kernel.exceptions import AuditChainBrokenError, NotFoundError
from access_kernel.logging_config import get_logger
from access_kernel.models.access_record import AccessRecordModel
from access_kernel.models.credential import CredentialModel
from access_kernel.models.request import AccessRequestModel
from access_kernel.selectors.base import BaseSelector
from access_kernel.utils.hashing import hash_access_record

logger = get_logger("selectors.audit_trail")


class AuditTrailSelector(BaseSelector[AccessRecordModel]):
    """Queries over the append-only access log."""

    def history_for(
        self,
        subject_id: UUID,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[AccessRecord]:
        """All access records for a request or credential.

        ``since`` is inclusive and ``until`` exclusive.  An empty list is a
        valid answer for a known subject.

        Raises:
            NotFoundError: ``subject_id`` is neither a request nor a credential.
        """
        if self._exists(AccessRequestModel.request_id, subject_id):
            condition = AccessRecordModel.request_id == subject_id
        elif self._exists(CredentialModel.credential_id, subject_id):
            condition = AccessRecordModel.credential_id == subject_id
        else:
            raise NotFoundError("Request or credential", str(subject_id))

        stmt = select(AccessRecordModel).where(condition)
        if since is not None:
            stmt = stmt.where(AccessRecordModel.occurred_at >= since)
        if until is not None:
            stmt = stmt.where(AccessRecordModel.occurred_at < until)
        stmt = stmt.order_by(AccessRecordModel.occurred_at, AccessRecordModel.seq)

        return [m.to_dto() for m in self.session.execute(stmt).scalars().all()]

    def compute_duration(self, entry: AccessRecord, exit: AccessRecord) -> timedelta:
        """``exit.occurred_at - entry.occurred_at`` for a valid pair."""
        return compute_duration(entry, exit)

    def get_record(self, record_id: UUID) -> AccessRecord:
        model = self.session.execute(
            select(AccessRecordModel).where(AccessRecordModel.record_id == record_id)
        ).scalar_one_or_none()
        if model is None:
            raise NotFoundError("AccessRecord", str(record_id))
        return model.to_dto()

    def access_stats(
        self,
        since: datetime | None = None,
        until: datetime | None = None,
        merchant_id: UUID | None = None,
    ) -> AccessStats:
        """Granted/denied counts over a window, optionally for one merchant.

        Records for unknown codes belong to no merchant and are only counted
        when ``merchant_id`` is None.
        """
        stmt = select(
            AccessRecordModel.outcome,
            AccessRecordModel.event,
            AccessRecordModel.denial_reason,
            func.count(),
        )
        if merchant_id is not None:
            stmt = stmt.join(
                AccessRequestModel,
                AccessRequestModel.request_id == AccessRecordModel.request_id,
            ).where(AccessRequestModel.merchant_id == merchant_id)
        if since is not None:
            stmt = stmt.where(AccessRecordModel.occurred_at >= since)
        if until is not None:
            stmt = stmt.where(AccessRecordModel.occurred_at < until)
        stmt = stmt.group_by(
            AccessRecordModel.outcome,
            AccessRecordModel.event,
            AccessRecordModel.denial_reason,
        )

        total = granted = denied = entries = exits = 0
        reasons: dict[str, int] = {}
        for outcome, event, reason, count in self.session.execute(stmt).all():
            total += count
            if outcome == AccessOutcome.GRANTED.value:
                granted += count
            else:
                denied += count
                reasons[reason] = reasons.get(reason, 0) + count
            if event == AccessEvent.ENTRY.value:
                entries += count
            else:
                exits += count

        return AccessStats(
            total=total,
            granted=granted,
            denied=denied,
            entries=entries,
            exits=exits,
            denial_reasons=reasons,
        )

    def validate_chain(self) -> bool:
        """
        Recompute every record hash and check chain linkage.

        Returns:
            True when the whole chain is intact (an empty log is intact).

        Raises:
            AuditChainBrokenError: At the first record that does not verify.
        """
        records = self.session.execute(
            select(AccessRecordModel).order_by(AccessRecordModel.seq)
        ).scalars().all()

        prev_hash: str | None = None
        for record in records:
            if record.prev_hash != prev_hash:
                logger.critical(
                    "audit_chain_broken",
                    extra={"record_id": str(record.record_id), "seq": record.seq},
                )
                raise AuditChainBrokenError(
                    str(record.record_id), prev_hash or "None", record.prev_hash or "None",
                )

            expected = hash_access_record(record.hash_fields(), record.prev_hash)
            if record.record_hash != expected:
                logger.critical(
                    "audit_chain_broken",
                    extra={"record_id": str(record.record_id), "seq": record.seq},
                )
                raise AuditChainBrokenError(
                    str(record.record_id), expected, record.record_hash,
                )
            prev_hash = record.record_hash

        return True

    def _exists(self, column, value: UUID) -> bool:
        return self.session.execute(
            select(column).where(column == value).limit(1)
        ).first() is not None
