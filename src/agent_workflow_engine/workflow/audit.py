"""Audit entries and the end-of-run execution summary."""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class AuditStatus(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


def utc_timestamp() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class WorkflowAuditEntry:
    """One step-status transition. Never mutated after creation."""

    step: str
    status: AuditStatus
    timestamp: str = field(default_factory=utc_timestamp)
    metadata: Mapping[str, Any] | None = None

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {
            "step": self.step,
            "status": self.status.value,
            "timestamp": self.timestamp,
        }
        if self.metadata:
            out["metadata"] = dict(self.metadata)
        return out

    @staticmethod
    def from_json(obj: Mapping[str, Any]) -> WorkflowAuditEntry:
        metadata = obj.get("metadata")
        return WorkflowAuditEntry(
            step=str(obj["step"]),
            status=AuditStatus(obj["status"]),
            timestamp=str(obj.get("timestamp") or utc_timestamp()),
            metadata=dict(metadata) if isinstance(metadata, Mapping) else None,
        )


@dataclass(frozen=True, slots=True)
class StepRecord:
    name: str
    status: AuditStatus
    duration_ms: int = 0

    def to_json(self) -> dict[str, object]:
        return {"name": self.name, "status": self.status.value, "durationMs": self.duration_ms}

    @staticmethod
    def from_json(obj: Mapping[str, Any]) -> StepRecord:
        return StepRecord(
            name=str(obj["name"]),
            status=AuditStatus(obj["status"]),
            duration_ms=int(obj.get("durationMs", 0)),
        )


@dataclass(frozen=True, slots=True)
class LoopDetail:
    name: str
    iterations: int
    max_retries: int
    exhausted: bool
    on_exhausted: str

    def to_json(self) -> dict[str, object]:
        return {
            "name": self.name,
            "iterations": self.iterations,
            "maxRetries": self.max_retries,
            "exhausted": self.exhausted,
            "onExhausted": self.on_exhausted,
        }

    @staticmethod
    def from_json(obj: Mapping[str, Any]) -> LoopDetail:
        return LoopDetail(
            name=str(obj["name"]),
            iterations=int(obj["iterations"]),
            max_retries=int(obj["maxRetries"]),
            exhausted=bool(obj["exhausted"]),
            on_exhausted=str(obj["onExhausted"]),
        )


@dataclass(frozen=True, slots=True)
class ExecutionSummary:
    total_duration_ms: int
    steps: tuple[StepRecord, ...]
    loop_details: tuple[LoopDetail, ...] = ()

    @property
    def counts(self) -> dict[str, int]:
        return {
            "total": len(self.steps),
            "completed": sum(1 for s in self.steps if s.status is AuditStatus.COMPLETED),
            "failed": sum(1 for s in self.steps if s.status is AuditStatus.FAILED),
            "skipped": sum(1 for s in self.steps if s.status is AuditStatus.SKIPPED),
        }

    @property
    def skipped_steps(self) -> list[str]:
        return [s.name for s in self.steps if s.status is AuditStatus.SKIPPED]

    def to_json(self) -> dict[str, object]:
        return {
            "totalDurationMs": self.total_duration_ms,
            "steps": [s.to_json() for s in self.steps],
            "counts": self.counts,
            "skippedSteps": self.skipped_steps,
            "loopDetails": [d.to_json() for d in self.loop_details],
        }


class SummaryTracker:
    """Accumulates top-level step records and loop details during a run.

    Records are keyed by step name; a repeated name replaces the earlier record.
    """

    def __init__(self) -> None:
        self._started_at = time.monotonic()
        self._running: dict[str, float] = {}
        self._records: dict[str, StepRecord] = {}
        self._loops: dict[str, LoopDetail] = {}

    def seed(
        self,
        step_records: Iterable[Mapping[str, Any]] | None,
        loop_details: Iterable[Mapping[str, Any]] | None,
    ) -> None:
        for raw in step_records or ():
            record = StepRecord.from_json(raw)
            self._records[record.name] = record
        for raw in loop_details or ():
            detail = LoopDetail.from_json(raw)
            self._loops[detail.name] = detail

    def step_started(self, name: str) -> None:
        self._running[name] = time.monotonic()

    def step_finished(self, name: str, status: AuditStatus) -> None:
        started = self._running.pop(name, None)
        duration_ms = int((time.monotonic() - started) * 1000) if started is not None else 0
        self._records[name] = StepRecord(name=name, status=status, duration_ms=duration_ms)

    def step_skipped(self, name: str) -> None:
        self._running.pop(name, None)
        self._records[name] = StepRecord(name=name, status=AuditStatus.SKIPPED)

    def loop_finished(self, detail: LoopDetail) -> None:
        self._loops[detail.name] = detail

    def step_records_json(self) -> list[dict[str, object]]:
        return [r.to_json() for r in self._records.values()]

    def loop_details_json(self) -> list[dict[str, object]]:
        return [d.to_json() for d in self._loops.values()]

    def build(self) -> ExecutionSummary:
        return ExecutionSummary(
            total_duration_ms=int((time.monotonic() - self._started_at) * 1000),
            steps=tuple(self._records.values()),
            loop_details=tuple(self._loops.values()),
        )
