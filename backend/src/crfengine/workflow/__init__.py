"""Form instance lifecycle: phases, transitions and the lock guard."""

from crfengine.workflow.lifecycle import FORM_INSTANCE_KINDS, LifecycleService
from crfengine.workflow.locks import LockGuard, lock_prerequisites
from crfengine.workflow.state import (
    FlagsTransaction,
    LifecycleStore,
    compute_lifecycle_status,
    phase_reached,
)
from crfengine.workflow.types import (
    PHASE_ORDER,
    CompletionStatus,
    CrfLifecycleStatus,
    LifecycleFlags,
    LockResult,
    Phase,
    TransitionResult,
    WorkflowConfig,
)

__all__ = [
    "FORM_INSTANCE_KINDS",
    "LifecycleService",
    "LockGuard",
    "lock_prerequisites",
    "FlagsTransaction",
    "LifecycleStore",
    "compute_lifecycle_status",
    "phase_reached",
    "PHASE_ORDER",
    "CompletionStatus",
    "CrfLifecycleStatus",
    "LifecycleFlags",
    "LockResult",
    "Phase",
    "TransitionResult",
    "WorkflowConfig",
]
