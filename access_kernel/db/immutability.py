"""
Module: access_kernel.db.immutability
Responsibility: ORM event listeners that make access records append-only.
Architecture position: Kernel > DB.  Imports models lazily inside
    register/unregister so this module stays importable from db/.

Invariants enforced:
    - AccessRecord rows are never UPDATEd or DELETEd through the ORM.
      The hash chain (selectors/audit_trail.validate_chain) detects changes
      made around the ORM.

Failure modes:
    - ImmutabilityViolationError raised from the flush; the session must be
      rolled back by the caller.
"""

from sqlalchemy import event

from access_kernel.exceptions import ImmutabilityViolationError
from access_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(target, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "AccessRecord",
            "entity_id": str(target.record_id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type="AccessRecord",
        entity_id=str(target.record_id),
        reason=reason,
    )


def _check_access_record_update(mapper, connection, target):
    """Prevent any updates to AccessRecord rows."""
    _block(target, "UPDATE", "Access records are append-only and cannot be modified")


def _check_access_record_delete(mapper, connection, target):
    """Prevent deletion of AccessRecord rows."""
    _block(target, "DELETE", "Access records cannot be deleted")


def register_immutability_listeners() -> None:
    """
    Register immutability enforcement event listeners.

    Call once during application initialization, after models are imported.
    Calling it again is harmless.
    """
    from access_kernel.models.access_record import AccessRecordModel

    if not event.contains(AccessRecordModel, "before_update", _check_access_record_update):
        event.listen(AccessRecordModel, "before_update", _check_access_record_update)
    if not event.contains(AccessRecordModel, "before_delete", _check_access_record_delete):
        event.listen(AccessRecordModel, "before_delete", _check_access_record_delete)


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that intentionally tamper with records
    to verify detection.
    """
    from access_kernel.models.access_record import AccessRecordModel

    _safe_remove_listener(AccessRecordModel, "before_update", _check_access_record_update)
    _safe_remove_listener(AccessRecordModel, "before_delete", _check_access_record_delete)
