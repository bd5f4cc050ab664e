"""Lock guard: the last check before a form instance is locked.

The guard re-reads lifecycle flags inside the same transaction that writes the
lock, so two concurrent lock requests cannot both see prerequisites met, and
it never relies on a status computed earlier by the caller.
"""

import logging

from crfengine.audit import AuditEvent, AuditSink, LoggingAuditSink
from crfengine.errors import PersistenceError
from crfengine.workflow.state import LifecycleStore, phase_reached
from crfengine.workflow.types import (
    CompletionStatus,
    LifecycleFlags,
    LockResult,
    Phase,
    WorkflowConfig,
)

logger = logging.getLogger(__name__)


def lock_prerequisites(flags: LifecycleFlags, config: WorkflowConfig) -> list[str]:
    """Every mandatory phase still missing, phrased for the end user."""
    missing: list[str] = []

    if not phase_reached(Phase.COMPLETE, flags, config):
        if config.requires_dde and flags.completion_status == CompletionStatus.INITIAL_ENTRY_COMPLETE:
            missing.append("double data entry is not complete")
        else:
            missing.append("data entry is not complete")

    if config.requires_sdv and not flags.sdv_status:
        missing.append("SDV is not complete")

    if config.requires_signature and not flags.signature_status:
        missing.append("electronic signature has not been applied")

    return missing


class LockGuard:
    """Locks and unlocks form instances.

    Example:
        guard = LockGuard(store)
        result = guard.lock_record(7, actor_id=1)
        if not result.success:
            print(result.message)   # e.g. "Cannot lock record: SDV is not complete"
    """

    def __init__(self, store: LifecycleStore, audit_sink: AuditSink | None = None):
        self.store = store
        self.audit_sink = audit_sink or LoggingAuditSink()

    def lock_record(self, form_instance_id: int, actor_id: int | None = None) -> LockResult:
        """Lock an instance once every mandatory phase is complete."""
        try:
            with self.store.lock_transaction(form_instance_id) as txn:
                if txn is None:
                    return LockResult(False, f"Form instance {form_instance_id} not found")

                if txn.flags.lock_status:
                    return LockResult(False, "Record is already locked")

                missing = lock_prerequisites(txn.flags, txn.config)
                if missing:
                    message = "Cannot lock record: " + "; ".join(missing)
                    logger.info("Lock of form instance %s refused: %s", form_instance_id, message)
                    return LockResult(False, message, tuple(missing))

                if not txn.set_lock(True):
                    return LockResult(False, "Record is already locked")
        except PersistenceError as e:
            logger.error("Lock of form instance %s failed: %s", form_instance_id, e)
            return LockResult(False, f"Lock failed: {e}")

        logger.info("Form instance %s locked by %s", form_instance_id, actor_id)
        self.audit_sink.record(
            AuditEvent(
                action="lock",
                entity_kind="form_instance",
                entity_id=form_instance_id,
                actor_id=actor_id,
            )
        )
        return LockResult(True, "Record locked")

    def unlock_record(self, form_instance_id: int, actor_id: int | None = None) -> LockResult:
        """Administrative unlock: clear the lock flag."""
        try:
            with self.store.lock_transaction(form_instance_id) as txn:
                if txn is None:
                    return LockResult(False, f"Form instance {form_instance_id} not found")
                if not txn.flags.lock_status or not txn.set_lock(False):
                    return LockResult(False, "Record is not locked")
        except PersistenceError as e:
            logger.error("Unlock of form instance %s failed: %s", form_instance_id, e)
            return LockResult(False, f"Unlock failed: {e}")

        logger.info("Form instance %s unlocked by %s", form_instance_id, actor_id)
        self.audit_sink.record(
            AuditEvent(
                action="unlock",
                entity_kind="form_instance",
                entity_id=form_instance_id,
                actor_id=actor_id,
            )
        )
        return LockResult(True, "Record unlocked")
