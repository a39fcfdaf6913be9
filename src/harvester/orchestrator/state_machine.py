"""State machine validation for the task lifecycle.

Every change to ``IngestionTaskDefinition.current_status`` goes through
``StateMachineValidator.validate_transition`` so that a task can never be
left in a state the lifecycle does not define (for example RUNNING with
no invocation in flight).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from .exceptions import InvalidStateTransitionError
from .models import TaskStatus

logger = logging.getLogger(__name__)


VALID_TRANSITIONS: Dict[TaskStatus, Set[TaskStatus]] = {
    TaskStatus.SCHEDULED: {
        TaskStatus.RUNNING,  # Trigger fired
        TaskStatus.FAILED,  # Pre-execution configuration failure
        TaskStatus.DISABLED,
    },
    TaskStatus.RUNNING: {
        TaskStatus.COMPLETED,
        TaskStatus.FAILED,
        TaskStatus.DISABLED,
    },
    TaskStatus.COMPLETED: {
        TaskStatus.RUNNING,  # Next invocation
        TaskStatus.FAILED,  # Next invocation failed before running
        TaskStatus.SCHEDULED,
        TaskStatus.DISABLED,
    },
    TaskStatus.FAILED: {
        TaskStatus.RUNNING,
        TaskStatus.COMPLETED,  # Overlapping run finished later
        TaskStatus.SCHEDULED,
        TaskStatus.DISABLED,
    },
    TaskStatus.DISABLED: {
        TaskStatus.SCHEDULED,  # Re-enabled
    },
}


@dataclass
class StateTransition:
    """Records a state transition attempt."""

    task_id: str
    from_status: Optional[TaskStatus]
    to_status: TaskStatus
    timestamp: datetime
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def is_valid(self) -> bool:
        # A task entering the store has no prior status
        if self.from_status is None:
            return self.to_status in {TaskStatus.SCHEDULED, TaskStatus.DISABLED}
        return self.to_status in VALID_TRANSITIONS.get(self.from_status, set())

    def is_idempotent(self) -> bool:
        return self.from_status == self.to_status


class StateMachineValidator:
    """Validates task status transitions and keeps their history.

    Idempotent (same-state) transitions are always allowed.
    """

    def __init__(self, *, history_limit: int = 1000) -> None:
        self._history: List[StateTransition] = []
        self._history_limit = history_limit

    def validate_transition(
        self,
        task_id: str,
        from_status: Optional[TaskStatus],
        to_status: TaskStatus,
        *,
        reason: Optional[str] = None,
    ) -> StateTransition:
        """Validate a transition before it is applied.

        Args:
            task_id: Task identifier
            from_status: Current status (None for a task entering the store)
            to_status: Desired status
            reason: Optional reason recorded in the history

        Returns:
            The recorded StateTransition

        Raises:
            InvalidStateTransitionError: If the transition is not allowed
        """
        transition = StateTransition(
            task_id=task_id,
            from_status=from_status,
            to_status=to_status,
            timestamp=datetime.now(timezone.utc),
            reason=reason,
        )

        if not transition.is_valid() and not transition.is_idempotent():
            from_label = from_status.value if from_status else "NEW"
            logger.error(
                "Invalid state transition",
                extra={
                    "ingestion_task_id": task_id,
                    "from_status": from_label,
                    "to_status": to_status.value,
                },
            )
            raise InvalidStateTransitionError(
                f"Invalid transition for task '{task_id}': {from_label} -> {to_status.value}"
            )

        if transition.is_idempotent():
            logger.debug(
                "Idempotent state transition",
                extra={"ingestion_task_id": task_id, "status": to_status.value},
            )

        self._history.append(transition)
        if len(self._history) > self._history_limit:
            del self._history[: len(self._history) - self._history_limit]
        return transition

    def history(self, task_id: Optional[str] = None) -> List[StateTransition]:
        if task_id is None:
            return list(self._history)
        return [t for t in self._history if t.task_id == task_id]


__all__ = ["VALID_TRANSITIONS", "StateTransition", "StateMachineValidator"]
