"""Unit tests for the explicit run state machine and checkpoints.

Illegal transitions must fail loudly.
"""

from __future__ import annotations

import pytest

from agent_workflow_engine.workflow.state_machine import (
    Checkpoint,
    IllegalTransitionError,
    RunStateMachine,
    RunStatus,
)


def test_happy_path_runs_every_phase_once() -> None:
    machine = RunStateMachine(["analyze", "plan"])
    machine.start()

    for name in ("analyze", "plan"):
        machine.enter_phase(name)
        assert machine.phase == name
        machine.complete_phase(name)
    machine.complete()

    snap = machine.snapshot()
    assert snap.status is RunStatus.COMPLETE
    assert snap.completed_phases == ("analyze", "plan")
    assert machine.is_terminal


def test_unknown_phase_is_rejected() -> None:
    machine = RunStateMachine(["analyze"])
    machine.start()

    with pytest.raises(IllegalTransitionError, match="Unknown phase"):
        machine.enter_phase("deploy")


def test_completed_phase_cannot_be_reentered() -> None:
    machine = RunStateMachine(["analyze", "plan"], completed=["analyze"])
    machine.start()

    with pytest.raises(IllegalTransitionError, match="already completed"):
        machine.enter_phase("analyze")


def test_terminal_states_reject_further_transitions() -> None:
    machine = RunStateMachine(["analyze"])
    machine.start()
    machine.enter_phase("analyze")
    machine.pause("loop exhausted")

    assert machine.snapshot().to_json() == {
        "status": "paused",
        "completedPhases": [],
        "phase": "analyze",
        "reason": "loop exhausted",
    }
    with pytest.raises(IllegalTransitionError):
        machine.complete()
    with pytest.raises(IllegalTransitionError):
        machine.enter_phase("analyze")


def test_complete_phase_requires_running_phase() -> None:
    machine = RunStateMachine(["analyze", "plan"])
    machine.start()
    machine.enter_phase("analyze")

    with pytest.raises(IllegalTransitionError):
        machine.complete_phase("plan")


def test_checkpoint_json_uses_camel_case_and_omits_empty_optionals() -> None:
    checkpoint = Checkpoint(
        variables={"analysis": {"tasks": []}},
        completed_phases=["analyze"],
        changed_files=["a.py"],
    )

    raw = checkpoint.to_json()

    assert raw == {
        "variables": {"analysis": {"tasks": []}},
        "completedPhases": ["analyze"],
        "changedFiles": ["a.py"],
    }
    assert Checkpoint.from_json(raw) == checkpoint
