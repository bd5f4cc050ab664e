"""Lifecycle state derived from stored flags, and the store contracts.

Shared by the lifecycle service and the lock guard.
"""

from contextlib import AbstractContextManager
from typing import Protocol

from crfengine.workflow.types import (
    PHASE_ORDER,
    CompletionStatus,
    CrfLifecycleStatus,
    LifecycleFlags,
    Phase,
    WorkflowConfig,
)


class FlagsTransaction(Protocol):
    """Lifecycle flags read inside a transaction, with the lock flag writable."""

    flags: LifecycleFlags
    config: WorkflowConfig

    def set_lock(self, locked: bool) -> bool:
        """Change the lock flag if it still has the opposite value.

        Returns:
            True if a row was updated
        """
        ...


class LifecycleStore(Protocol):
    """Persistence for lifecycle flags and workflow configuration."""

    def read_lifecycle_flags(self, form_instance_id: int) -> LifecycleFlags | None:
        ...

    def read_workflow_config(self, form_id: int | None, study_id: int | None) -> WorkflowConfig:
        ...

    def write_phase_flag(self, form_instance_id: int, phase: Phase) -> None:
        ...

    def lock_transaction(
        self, form_instance_id: int
    ) -> AbstractContextManager[FlagsTransaction | None]:
        """Open a transaction holding the instance's row; yields None if absent."""
        ...


def phase_reached(phase: Phase, flags: LifecycleFlags, config: WorkflowConfig) -> bool:
    """Whether the stored flags show ``phase`` as done."""
    if phase == Phase.DATA_ENTRY:
        return True
    if phase == Phase.COMPLETE:
        if flags.completion_status == CompletionStatus.COMPLETE:
            return True
        # Without double data entry the first pass is the only pass
        return (
            not config.requires_dde
            and flags.completion_status == CompletionStatus.INITIAL_ENTRY_COMPLETE
        )
    if phase == Phase.SDV_COMPLETE:
        return flags.sdv_status
    if phase == Phase.SIGNED:
        return flags.signature_status
    return flags.lock_status


def compute_lifecycle_status(
    flags: LifecycleFlags, config: WorkflowConfig
) -> CrfLifecycleStatus:
    """Derive where an instance stands from its flags and workflow config.

    The current phase is the last mandatory phase reached without a gap;
    a locked instance is locked regardless of the other flags.
    """
    mandatory = config.mandatory_phases()

    if flags.lock_status:
        current = Phase.LOCKED
    else:
        current = Phase.DATA_ENTRY
        for phase in mandatory[1:-1]:
            if not phase_reached(phase, flags, config):
                break
            current = phase

    position = mandatory.index(current)
    passed = set(mandatory[:position])

    completed: list[Phase] = []
    skipped: list[Phase] = []
    for phase in PHASE_ORDER:
        if phase == current:
            continue
        if phase in mandatory:
            if phase in passed:
                completed.append(phase)
        elif phase_reached(phase, flags, config):
            completed.append(phase)
        else:
            skipped.append(phase)

    return CrfLifecycleStatus(
        form_instance_id=flags.form_instance_id,
        current_phase=current,
        completed_phases=completed,
        pending_phases=mandatory[position + 1:],
        skipped_phases=skipped,
        workflow_config=config,
    )

