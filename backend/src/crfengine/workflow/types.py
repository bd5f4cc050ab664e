"""Core types for the form instance lifecycle.

- Phase: the ordered lifecycle phases
- LifecycleFlags: what is stored on a form instance
- WorkflowConfig: which optional phases a form requires
- CrfLifecycleStatus: the derived view of where an instance stands
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Phase(Enum):
    """Lifecycle phases, in canonical order."""

    DATA_ENTRY = "data_entry"
    COMPLETE = "complete"
    SDV_COMPLETE = "sdv_complete"
    SIGNED = "signed"
    LOCKED = "locked"


PHASE_ORDER: tuple[Phase, ...] = tuple(Phase)


class CompletionStatus(Enum):
    """Data entry progress stored on a form instance."""

    NOT_STARTED = "not_started"
    DATA_ENTRY = "data_entry"
    INITIAL_ENTRY_COMPLETE = "initial_entry_complete"  # first pass of double data entry
    COMPLETE = "complete"

    @classmethod
    def parse(cls, value: "str | CompletionStatus | None") -> "CompletionStatus":
        if isinstance(value, CompletionStatus):
            return value
        try:
            return cls((value or "not_started").lower())
        except ValueError:
            return cls.NOT_STARTED


@dataclass(frozen=True)
class WorkflowConfig:
    """Per-form workflow requirements.

    Attributes:
        requires_sdv: Source data verification must happen before lock
        requires_signature: An electronic signature must be applied before lock
        requires_dde: Data must be entered twice before it counts as complete
    """

    requires_sdv: bool = False
    requires_signature: bool = False
    requires_dde: bool = False

    def mandatory_phases(self) -> list[Phase]:
        phases = [Phase.DATA_ENTRY, Phase.COMPLETE]
        if self.requires_sdv:
            phases.append(Phase.SDV_COMPLETE)
        if self.requires_signature:
            phases.append(Phase.SIGNED)
        phases.append(Phase.LOCKED)
        return phases

    def to_dict(self) -> dict[str, Any]:
        return {
            "requiresSDV": self.requires_sdv,
            "requiresSignature": self.requires_signature,
            "requiresDDE": self.requires_dde,
        }


@dataclass(frozen=True)
class LifecycleFlags:
    """Lifecycle state stored on a form instance."""

    form_instance_id: int
    form_id: int | None = None
    study_id: int | None = None
    completion_status: CompletionStatus = CompletionStatus.NOT_STARTED
    sdv_status: bool = False
    signature_status: bool = False
    lock_status: bool = False


@dataclass
class CrfLifecycleStatus:
    """Where a form instance stands, computed from its flags and config.

    ``current_phase`` appears in neither ``completed_phases`` nor
    ``pending_phases``. ``skipped_phases`` are phases the config does not
    require and that were not done anyway.
    """

    form_instance_id: int
    current_phase: Phase
    completed_phases: list[Phase] = field(default_factory=list)
    pending_phases: list[Phase] = field(default_factory=list)
    skipped_phases: list[Phase] = field(default_factory=list)
    workflow_config: WorkflowConfig = field(default_factory=WorkflowConfig)

    @property
    def next_phase(self) -> Phase | None:
        return self.pending_phases[0] if self.pending_phases else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "formInstanceId": self.form_instance_id,
            "currentPhase": self.current_phase.value,
            "completedPhases": [p.value for p in self.completed_phases],
            "pendingPhases": [p.value for p in self.pending_phases],
            "skippedPhases": [p.value for p in self.skipped_phases],
            "workflowConfig": self.workflow_config.to_dict(),
        }


@dataclass(frozen=True)
class LockResult:
    """Result of a lock or unlock request.

    Attributes:
        success: True if the flag was changed
        message: Human-readable outcome, shown to the user verbatim
        missing: Prerequisites that blocked a lock
    """

    success: bool
    message: str
    missing: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.missing:
            result["missing"] = list(self.missing)
        return result


@dataclass(frozen=True)
class TransitionResult:
    """Result of advancing a form instance by one phase."""

    success: bool
    message: str
    phase: Phase | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "phase": self.phase.value if self.phase else None,
        }
