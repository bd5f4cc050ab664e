"""Lifecycle state machine for form instances.

Phases run ``data_entry -> complete -> sdv_complete -> signed -> locked``.
SDV and signature are only mandatory when the form's WorkflowConfig says so;
an instance moves one mandatory phase at a time and never skips ahead.
"""

import logging

from crfengine.audit import AuditEvent, AuditSink, LoggingAuditSink
from crfengine.errors import PersistenceError
from crfengine.workflow.locks import LockGuard
from crfengine.workflow.state import LifecycleStore, compute_lifecycle_status
from crfengine.workflow.types import CrfLifecycleStatus, Phase, TransitionResult

logger = logging.getLogger(__name__)

# Entity kinds that address a form instance
FORM_INSTANCE_KINDS = frozenset({"crf", "event_crf", "form_instance"})


class LifecycleService:
    """Reads and advances form instance lifecycles.

    Example:
        service = LifecycleService(store)
        status = service.get_crf_lifecycle_status(7)
        service.transition(7, Phase.COMPLETE, actor_id=1)
    """

    def __init__(
        self,
        store: LifecycleStore,
        lock_guard: LockGuard | None = None,
        audit_sink: AuditSink | None = None,
    ):
        self.store = store
        self.audit_sink = audit_sink or LoggingAuditSink()
        self.lock_guard = lock_guard or LockGuard(store, self.audit_sink)

    def get_crf_lifecycle_status(self, form_instance_id: int) -> CrfLifecycleStatus | None:
        """Current lifecycle status, or None if the instance does not exist."""
        flags = self.store.read_lifecycle_flags(form_instance_id)
        if flags is None:
            return None
        config = self.store.read_workflow_config(flags.form_id, flags.study_id)
        return compute_lifecycle_status(flags, config)

    def get_available_transitions(self, entity_kind: str, entity_id: int) -> set[Phase]:
        """Phases reachable in one step; empty for locked or unknown entities."""
        if entity_kind not in FORM_INSTANCE_KINDS:
            logger.warning("No lifecycle for entity kind %r", entity_kind)
            return set()

        status = self.get_crf_lifecycle_status(entity_id)
        if status is None or status.next_phase is None:
            return set()
        return {status.next_phase}

    def transition(
        self, form_instance_id: int, target: Phase, actor_id: int | None = None
    ) -> TransitionResult:
        """Advance an instance by exactly one mandatory phase."""
        status = self.get_crf_lifecycle_status(form_instance_id)
        if status is None:
            return TransitionResult(False, f"Form instance {form_instance_id} not found")

        if target != status.next_phase:
            return TransitionResult(
                False,
                f"Cannot move from {status.current_phase.value} to {target.value}",
                status.current_phase,
            )

        if target == Phase.LOCKED:
            lock = self.lock_guard.lock_record(form_instance_id, actor_id)
            return TransitionResult(
                lock.success,
                lock.message,
                Phase.LOCKED if lock.success else status.current_phase,
            )

        try:
            self.store.write_phase_flag(form_instance_id, target)
        except PersistenceError as e:
            logger.error("Transition of form instance %s to %s failed: %s", form_instance_id, target.value, e)
            return TransitionResult(False, str(e), status.current_phase)

        self.audit_sink.record(
            AuditEvent(
                action="transition",
                entity_kind="form_instance",
                entity_id=form_instance_id,
                actor_id=actor_id,
                details={"from": status.current_phase.value, "to": target.value},
            )
        )
        return TransitionResult(True, f"Moved to {target.value}", target)
