"""Tests for task status transition validation."""

import pytest

from harvester.orchestrator.exceptions import InvalidStateTransitionError
from harvester.orchestrator.models import TaskStatus
from harvester.orchestrator.state_machine import VALID_TRANSITIONS, StateMachineValidator, StateTransition


@pytest.mark.parametrize(
    "from_status, to_status",
    [
        (None, TaskStatus.SCHEDULED),
        (None, TaskStatus.DISABLED),
        (TaskStatus.SCHEDULED, TaskStatus.RUNNING),
        (TaskStatus.RUNNING, TaskStatus.COMPLETED),
        (TaskStatus.RUNNING, TaskStatus.FAILED),
        (TaskStatus.COMPLETED, TaskStatus.RUNNING),
        (TaskStatus.FAILED, TaskStatus.RUNNING),
        (TaskStatus.FAILED, TaskStatus.COMPLETED),
        (TaskStatus.SCHEDULED, TaskStatus.FAILED),
        (TaskStatus.DISABLED, TaskStatus.SCHEDULED),
        (TaskStatus.RUNNING, TaskStatus.DISABLED),
    ],
)
def test_valid_transitions(from_status, to_status):
    validator = StateMachineValidator()
    transition = validator.validate_transition("t1", from_status, to_status)

    assert transition.is_valid()
    assert transition.to_status == to_status


@pytest.mark.parametrize(
    "from_status, to_status",
    [
        (None, TaskStatus.RUNNING),
        (TaskStatus.DISABLED, TaskStatus.RUNNING),
        (TaskStatus.DISABLED, TaskStatus.COMPLETED),
        (TaskStatus.SCHEDULED, TaskStatus.COMPLETED),
        (TaskStatus.RUNNING, TaskStatus.SCHEDULED),
    ],
)
def test_invalid_transitions_raise(from_status, to_status):
    validator = StateMachineValidator()

    with pytest.raises(InvalidStateTransitionError):
        validator.validate_transition("t1", from_status, to_status)
    assert validator.history() == []


def test_idempotent_transition_allowed():
    validator = StateMachineValidator()
    transition = validator.validate_transition("t1", TaskStatus.FAILED, TaskStatus.FAILED)

    assert transition.is_idempotent()


def test_every_status_can_be_disabled_except_disabled_itself():
    for status, targets in VALID_TRANSITIONS.items():
        if status is TaskStatus.DISABLED:
            assert targets == {TaskStatus.SCHEDULED}
        else:
            assert TaskStatus.DISABLED in targets


def test_history_is_filtered_and_bounded():
    validator = StateMachineValidator(history_limit=3)
    validator.validate_transition("a", None, TaskStatus.SCHEDULED)
    validator.validate_transition("b", None, TaskStatus.SCHEDULED)
    validator.validate_transition("a", TaskStatus.SCHEDULED, TaskStatus.RUNNING)
    validator.validate_transition("a", TaskStatus.RUNNING, TaskStatus.COMPLETED, reason="ok")

    history = validator.history()
    assert len(history) == 3
    assert [t.to_status for t in validator.history("a")] == [TaskStatus.RUNNING, TaskStatus.COMPLETED]
    assert validator.history("a")[-1].reason == "ok"
    assert isinstance(history[0], StateTransition)
