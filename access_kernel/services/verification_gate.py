"""
access_kernel.services.verification_gate -- Checkpoint verification.

Responsibility:
    Decides whether a presented code may pass a checkpoint, records the
    attempt, and for exits computes how long the holder was inside.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.
    Appends through AccessRecorder.

Invariants enforced:
    - Exactly one access record per ``verify`` call, granted or denied.
    - An entry increments ``usage_count`` by exactly one through a single
      conditional UPDATE that re-checks usability, so ``usage_count`` never
      exceeds ``usage_limit`` however many checkpoints race.
    - Exits never touch usage and are granted whenever the code resolves
      to a current credential.  A superseded code is denied ``revoked``
      for entries and exits alike, and its record still links the old
      credential.
    - A signed QR payload resolves only if its signature holds and its
      credential id matches the stored code.
    - ``verify`` never raises.  Unexpected failures are logged with their
      traceback and reported as ``system-error``.

Failure modes:
    - None surfaced.  A failure while writing the ``system-error`` record
      is logged and the result carries ``record_id=None``.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from access_kernel.domain.access import (
    AccessAnomaly,
    AccessEvent,
    AccessMethod,
    AccessOutcome,
    DenialReason,
    VerificationResult,
)
from access_kernel.domain.clock import Clock, SystemClock
from access_kernel.domain.codes import CodeSigner, is_qr_payload
from access_kernel.domain.credential import (
    ESCORT_REQUIRED,
    CredentialStatus,
    denial_reason,
)
from access_kernel.exceptions import InvalidCodeError
from access_kernel.logging_config import LogContext, get_logger
from access_kernel.models.access_record import AccessRecordModel
from access_kernel.models.credential import CredentialModel
from access_kernel.services.access_recorder import AccessRecorder

logger = get_logger("services.verification")


class VerificationGate:
    """Verifies codes at checkpoints and writes the access log."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        recorder: AccessRecorder | None = None,
        signer: CodeSigner | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._recorder = recorder or AccessRecorder(session)
        self._signer = signer

    def verify(
        self,
        code: str,
        event: AccessEvent | str,
        method: AccessMethod | str,
        actor_id: UUID,
        now: datetime | None = None,
        escort_id: UUID | None = None,
        time_code: str | None = None,
    ) -> VerificationResult:
        """Verify ``code`` for an entry or exit and record the attempt.

        Args:
            code: The scanned or typed credential code, or a signed QR
                payload when the gate has a ``CodeSigner``.
            event: ``entry`` or ``exit``.
            method: How the code was captured (``qr_scan``, ...).
            actor_id: Staff member or device operating the checkpoint.
            now: Time of the attempt; defaults to the injected clock.
            escort_id: Escort present at entry, if any.
            time_code: Rotating code shown beside the QR payload.  When
                given it must match the current or previous window, or
                the attempt is denied ``expired``.
        """
        now = now or self._clock.now()
        method_name = method.value if isinstance(method, AccessMethod) else str(method)

        with LogContext.bind(actor_id=actor_id, checkpoint=method_name):
            try:
                with self._session.begin_nested():
                    return self._verify(
                        code, AccessEvent(event), method_name, actor_id, now, escort_id, time_code,
                    )
            except Exception:
                logger.exception(
                    "verification_system_error",
                    extra={"event": str(event), "method": method_name},
                )
                return self._record_system_error(code, event, method_name, actor_id, now)

    # ------------------------------------------------------------------
    # Decision paths
    # ------------------------------------------------------------------

    def _verify(
        self,
        code: str,
        event: AccessEvent,
        method: str,
        actor_id: UUID,
        now: datetime,
        escort_id: UUID | None,
        time_code: str | None,
    ) -> VerificationResult:
        credential = self._resolve(code)

        if credential is None:
            return self._deny(
                DenialReason.UNKNOWN_CREDENTIAL,
                event=event,
                method=method,
                actor_id=actor_id,
                now=now,
                presented_code=code,
                escort_id=escort_id,
            )

        with LogContext.bind(
            credential_id=credential.credential_id,
            request_id=credential.request_id,
        ):
            reason = None
            if credential.superseded_at is not None:
                reason = DenialReason.REVOKED
            elif time_code is not None and not self._time_code_ok(credential, time_code, now):
                reason = DenialReason.EXPIRED
            if reason is not None:
                return self._deny(
                    reason,
                    event=event,
                    method=method,
                    actor_id=actor_id,
                    now=now,
                    credential=credential,
                    presented_code=code,
                    escort_id=escort_id,
                )

            if event == AccessEvent.ENTRY:
                return self._entry(credential, method, actor_id, now, escort_id)
            return self._exit(credential, method, actor_id, now, escort_id)

    def _entry(
        self,
        credential: CredentialModel,
        method: str,
        actor_id: UUID,
        now: datetime,
        escort_id: UUID | None,
    ) -> VerificationResult:
        reason = denial_reason(credential, now)
        if (
            reason is None
            and ESCORT_REQUIRED in (credential.permissions or ())
            and escort_id is None
        ):
            reason = DenialReason.ESCORT_REQUIRED

        if reason is None and not self._consume_use(credential, now):
            # Lost the race for the last use (or a concurrent revoke)
            self._session.refresh(credential)
            reason = denial_reason(credential, now) or DenialReason.USAGE_EXHAUSTED

        if reason is not None:
            return self._deny(
                reason,
                event=AccessEvent.ENTRY,
                method=method,
                actor_id=actor_id,
                now=now,
                credential=credential,
                presented_code=credential.code,
                escort_id=escort_id,
            )

        self._session.refresh(credential)
        record = self._recorder.append(
            event=AccessEvent.ENTRY,
            method=method,
            outcome=AccessOutcome.GRANTED,
            actor_id=actor_id,
            occurred_at=now,
            credential_id=credential.credential_id,
            request_id=credential.request_id,
            presented_code=credential.code,
            escort_id=escort_id,
        )
        logger.info(
            "verification_granted",
            extra={
                "event": AccessEvent.ENTRY.value,
                "record_id": str(record.record_id),
                "usage_count": credential.usage_count,
                "usage_limit": credential.usage_limit,
            },
        )
        return VerificationResult(
            outcome=AccessOutcome.GRANTED,
            record_id=record.record_id,
            credential=credential.to_dto(),
        )

    def _exit(
        self,
        credential: CredentialModel,
        method: str,
        actor_id: UUID,
        now: datetime,
        escort_id: UUID | None,
    ) -> VerificationResult:
        last = self._session.execute(
            select(AccessRecordModel)
            .where(
                AccessRecordModel.credential_id == credential.credential_id,
                AccessRecordModel.outcome == AccessOutcome.GRANTED.value,
            )
            .order_by(AccessRecordModel.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

        duration: timedelta | None = None
        anomaly: AccessAnomaly | None = None
        paired_entry_id: UUID | None = None

        if (
            last is not None
            and last.event == AccessEvent.ENTRY.value
            and last.occurred_at <= now
        ):
            duration = now - last.occurred_at
            paired_entry_id = last.record_id
        else:
            anomaly = AccessAnomaly.UNMATCHED_EXIT

        record = self._recorder.append(
            event=AccessEvent.EXIT,
            method=method,
            outcome=AccessOutcome.GRANTED,
            actor_id=actor_id,
            occurred_at=now,
            credential_id=credential.credential_id,
            request_id=credential.request_id,
            presented_code=credential.code,
            escort_id=escort_id,
            paired_entry_id=paired_entry_id,
            duration_seconds=int(duration.total_seconds()) if duration is not None else None,
            anomaly=anomaly,
        )

        if anomaly is not None:
            logger.warning(
                "unmatched_exit",
                extra={
                    "record_id": str(record.record_id),
                    "credential_id": str(credential.credential_id),
                },
            )
        else:
            logger.info(
                "verification_granted",
                extra={
                    "event": AccessEvent.EXIT.value,
                    "record_id": str(record.record_id),
                    "duration_seconds": duration.total_seconds(),
                },
            )

        return VerificationResult(
            outcome=AccessOutcome.GRANTED,
            record_id=record.record_id,
            credential=credential.to_dto(),
            duration=duration,
            anomaly=anomaly,
        )

    def _deny(
        self,
        reason: DenialReason,
        *,
        event: AccessEvent,
        method: str,
        actor_id: UUID,
        now: datetime,
        credential: CredentialModel | None = None,
        presented_code: str | None = None,
        escort_id: UUID | None = None,
    ) -> VerificationResult:
        record = self._recorder.append(
            event=event,
            method=method,
            outcome=AccessOutcome.DENIED,
            actor_id=actor_id,
            occurred_at=now,
            credential_id=credential.credential_id if credential is not None else None,
            request_id=credential.request_id if credential is not None else None,
            presented_code=presented_code,
            denial_reason=reason,
            escort_id=escort_id,
        )
        logger.info(
            "verification_denied",
            extra={
                "event": event.value,
                "reason": reason.value,
                "record_id": str(record.record_id),
            },
        )
        return VerificationResult(
            outcome=AccessOutcome.DENIED,
            record_id=record.record_id,
            reason=reason,
            credential=credential.to_dto() if credential is not None else None,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve(self, presented: str) -> CredentialModel | None:
        """Find the credential for a plain code or a signed QR payload."""
        if not presented:
            return None

        if self._signer is not None and is_qr_payload(presented):
            try:
                payload = self._signer.decode_qr(presented)
            except InvalidCodeError as exc:
                logger.warning("qr_payload_rejected", extra={"detail": exc.detail})
                return None
            credential = self._by_code(payload.code)
            if credential is None or credential.credential_id != payload.credential_id:
                return None
            return credential

        return self._by_code(presented)

    def _by_code(self, code: str) -> CredentialModel | None:
        return self._session.execute(
            select(CredentialModel).where(CredentialModel.code == code)
        ).scalar_one_or_none()

    def _time_code_ok(self, credential: CredentialModel, time_code: str, now: datetime) -> bool:
        if self._signer is None:
            logger.warning("time_code_without_signer")
            return False
        return self._signer.check_time_code(credential.code, time_code, now)

    def _consume_use(self, credential: CredentialModel, now: datetime) -> bool:
        """Atomically take one use.  False when the credential stopped being usable."""
        result = self._session.execute(
            update(CredentialModel)
            .where(
                CredentialModel.id == credential.id,
                CredentialModel.status == CredentialStatus.ACTIVE.value,
                CredentialModel.superseded_at.is_(None),
                CredentialModel.expires_at > now,
                or_(
                    CredentialModel.usage_limit.is_(None),
                    CredentialModel.usage_count < CredentialModel.usage_limit,
                ),
            )
            .values(usage_count=CredentialModel.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _record_system_error(
        self,
        code: str,
        event: AccessEvent | str,
        method: str,
        actor_id: UUID,
        now: datetime,
    ) -> VerificationResult:
        try:
            with self._session.begin_nested():
                record = self._recorder.append(
                    event=AccessEvent(event),
                    method=method,
                    outcome=AccessOutcome.DENIED,
                    actor_id=actor_id,
                    occurred_at=now,
                    presented_code=code if isinstance(code, str) else None,
                    denial_reason=DenialReason.SYSTEM_ERROR,
                )
            record_id = record.record_id
        except Exception:
            logger.exception("system_error_record_failed")
            record_id = None

        return VerificationResult(
            outcome=AccessOutcome.DENIED,
            record_id=record_id,
            reason=DenialReason.SYSTEM_ERROR,
        )
