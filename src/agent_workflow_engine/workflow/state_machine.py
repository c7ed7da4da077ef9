from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class RunStatus(str, Enum):
    INIT = "init"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"
    PAUSED = "paused"


ALLOWED_TRANSITIONS: dict[RunStatus, set[RunStatus]] = {
    RunStatus.INIT: {RunStatus.RUNNING, RunStatus.COMPLETE, RunStatus.FAILED, RunStatus.PAUSED},
    RunStatus.RUNNING: {
        RunStatus.RUNNING,
        RunStatus.COMPLETE,
        RunStatus.FAILED,
        RunStatus.PAUSED,
    },
    RunStatus.COMPLETE: set(),
    RunStatus.FAILED: set(),
    RunStatus.PAUSED: set(),
}


class IllegalTransitionError(ValueError):
    pass


class Checkpoint(BaseModel):
    """Persisted progress of one run.

    `variables`, `completedPhases` and `changedFiles` are the authoritative
    resume record. The remaining fields are optional and only used to rebuild
    the execution summary of a resumed run.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    variables: dict[str, Any] = Field(default_factory=dict)
    completed_phases: list[str] = Field(default_factory=list)
    changed_files: list[str] = Field(default_factory=list)
    current_phase: str | None = None
    step_records: list[dict[str, Any]] | None = None
    loop_details: list[dict[str, Any]] | None = None

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @staticmethod
    def from_json(obj: dict[str, Any]) -> Checkpoint:
        return Checkpoint.model_validate(obj)


class CheckpointStore(Protocol):
    """External collaborator that persists checkpoints."""

    def save_checkpoint(self, checkpoint: Checkpoint) -> None: ...

    def load_checkpoint(self, session_id: str) -> Checkpoint | None: ...


@dataclass(frozen=True, slots=True)
class RunSnapshot:
    status: RunStatus
    phase: str | None
    completed_phases: tuple[str, ...]
    reason: str | None = None

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {
            "status": self.status.value,
            "completedPhases": list(self.completed_phases),
        }
        if self.phase is not None:
            out["phase"] = self.phase
        if self.reason is not None:
            out["reason"] = self.reason
        return out


class RunStateMachine:
    """Explicit lifecycle of one run.

    INIT -> RUNNING(phase) ... -> COMPLETE, with FAILED and PAUSED as terminal
    alternates. Phases can only be entered once and only if they are defined.
    """

    def __init__(self, phases: Sequence[str], *, completed: Sequence[str] = ()) -> None:
        self._phases = list(phases)
        self._completed: list[str] = list(completed)
        self._status = RunStatus.INIT
        self._phase: str | None = None
        self._reason: str | None = None

    @property
    def status(self) -> RunStatus:
        return self._status

    @property
    def phase(self) -> str | None:
        return self._phase

    @property
    def completed_phases(self) -> list[str]:
        return list(self._completed)

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self._status]

    def _transition(self, to: RunStatus) -> None:
        if to not in ALLOWED_TRANSITIONS[self._status]:
            raise IllegalTransitionError(
                f"Illegal transition: {self._status.value} -> {to.value}"
            )
        self._status = to

    def start(self) -> None:
        if self._status is not RunStatus.INIT:
            raise IllegalTransitionError(f"Run already started ({self._status.value})")

    def enter_phase(self, name: str) -> None:
        if name not in self._phases:
            raise IllegalTransitionError(f"Unknown phase: {name}")
        if name in self._completed:
            raise IllegalTransitionError(f"Phase already completed: {name}")
        self._transition(RunStatus.RUNNING)
        self._phase = name

    def complete_phase(self, name: str) -> None:
        if self._status is not RunStatus.RUNNING or self._phase != name:
            raise IllegalTransitionError(f"Phase {name} is not running")
        self._completed.append(name)

    def complete(self) -> None:
        self._transition(RunStatus.COMPLETE)
        self._phase = None

    def fail(self, reason: str) -> None:
        self._transition(RunStatus.FAILED)
        self._reason = reason

    def pause(self, reason: str) -> None:
        self._transition(RunStatus.PAUSED)
        self._reason = reason

    def snapshot(self) -> RunSnapshot:
        return RunSnapshot(
            status=self._status,
            phase=self._phase,
            completed_phases=tuple(self._completed),
            reason=self._reason,
        )
