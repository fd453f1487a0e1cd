"""
AccessRecorder -- append-only writer for the access log.

Responsibility:
    Persists one ``AccessRecordModel`` per verification attempt, with a
    monotonic ``seq`` and a hash chained to the previous record.

Architecture position:
    Kernel > Services.  Used by VerificationGate only.

Invariants enforced:
    - ``seq`` comes from the locked counter row (SequenceService).
    - ``record_hash = H(fields, prev_hash)`` where ``prev_hash`` is the hash
      of the record with the previous ``seq``.  Taking the sequence lock
      first means the predecessor read is stable.
    - ``method`` and ``presented_code`` are cut to their column widths, so
      free-form input can never make the insert fail.
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from access_kernel.domain.access import (
    METHOD_MAX_LENGTH,
    PRESENTED_CODE_MAX_LENGTH,
    AccessAnomaly,
    AccessEvent,
    AccessOutcome,
    DenialReason,
)
from access_kernel.logging_config import get_logger
from access_kernel.models.access_record import AccessRecordModel
from access_kernel.services.sequence_service import SequenceService
from access_kernel.utils.hashing import hash_access_record

logger = get_logger("services.access_recorder")


class AccessRecorder:
    """Appends hash-chained access records.  Flushes, never commits."""

    def __init__(self, session: Session, sequence: SequenceService | None = None):
        self._session = session
        self._sequence = sequence or SequenceService(session)

    def append(
        self,
        *,
        event: AccessEvent,
        method: str,
        outcome: AccessOutcome,
        actor_id: UUID,
        occurred_at: datetime,
        credential_id: UUID | None = None,
        request_id: UUID | None = None,
        presented_code: str | None = None,
        denial_reason: DenialReason | None = None,
        escort_id: UUID | None = None,
        paired_entry_id: UUID | None = None,
        duration_seconds: int | None = None,
        anomaly: AccessAnomaly | None = None,
    ) -> AccessRecordModel:
        seq = self._sequence.next_value(SequenceService.ACCESS_RECORD)
        prev_hash = self._last_hash()

        record = AccessRecordModel(
            record_id=uuid4(),
            seq=seq,
            credential_id=credential_id,
            request_id=request_id,
            presented_code=(
                presented_code[:PRESENTED_CODE_MAX_LENGTH] if presented_code else None
            ),
            event=AccessEvent(event).value,
            method=str(method)[:METHOD_MAX_LENGTH],
            outcome=AccessOutcome(outcome).value,
            denial_reason=DenialReason(denial_reason).value if denial_reason else None,
            actor_id=actor_id,
            occurred_at=occurred_at,
            escort_id=escort_id,
            paired_entry_id=paired_entry_id,
            duration_seconds=duration_seconds,
            anomaly=AccessAnomaly(anomaly).value if anomaly else None,
            prev_hash=prev_hash,
        )
        record.record_hash = hash_access_record(record.hash_fields(), prev_hash)

        self._session.add(record)
        self._session.flush()

        logger.debug(
            "access_record_appended",
            extra={
                "record_id": str(record.record_id),
                "seq": seq,
                "event": record.event,
                "outcome": record.outcome,
            },
        )
        return record

    def _last_hash(self) -> str | None:
        return self._session.execute(
            select(AccessRecordModel.record_hash)
            .order_by(AccessRecordModel.seq.desc())
            .limit(1)
        ).scalar_one_or_none()
