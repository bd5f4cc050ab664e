"""Audit facts emitted by the lifecycle and lock operations.

The engine records *that* something happened; storing the trail belongs to
whatever sink the host wires in.
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditEvent:
    """A state change applied to a form instance.

    Attributes:
        action: What happened ("transition", "lock", "unlock")
        entity_kind: Kind of entity changed ("form_instance")
        entity_id: Id of the entity changed
        actor_id: User who made the change, if known
        details: Action-specific data (e.g. the phase reached)
        occurred_at: When the change was applied (UTC)
    """

    action: str
    entity_kind: str
    entity_id: int
    actor_id: int | None = None
    details: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "entityKind": self.entity_kind,
            "entityId": self.entity_id,
            "actorId": self.actor_id,
            "details": self.details,
            "occurredAt": self.occurred_at.isoformat(),
        }


class AuditSink(Protocol):
    """Receives audit events."""

    def record(self, event: AuditEvent) -> None:
        ...


class LoggingAuditSink:
    """Default sink: writes each event to the ``crfengine.audit`` logger."""

    def record(self, event: AuditEvent) -> None:
        logger.info(
            "audit %s %s=%s actor=%s %s",
            event.action, event.entity_kind, event.entity_id, event.actor_id, event.details,
        )
