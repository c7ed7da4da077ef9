from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from agent_workflow_engine.workflow.audit import ExecutionSummary, WorkflowAuditEntry

StepVisibility = Literal["visible", "silent", "summary"]


@dataclass(frozen=True, slots=True)
class StepVisibilityEntry:
    name: str
    visibility: StepVisibility


@dataclass(frozen=True, slots=True)
class ReporterContext:
    """Run metadata handed to every reporter at initialisation.

    `steps` is the flattened, pre-resolved visibility of every step.
    """

    session_id: str
    spec_file: str = ""
    branch_name: str = ""
    worktree_path: str = ""
    steps: tuple[StepVisibilityEntry, ...] = field(default_factory=tuple)
    pr_number: int | None = None
    pr_url: str | None = None

    def template_namespace(self) -> dict[str, Any]:
        """Values exposed to reporter config templates as `context.*`."""

        out: dict[str, Any] = {
            "sessionId": self.session_id,
            "specFile": self.spec_file,
            "branchName": self.branch_name,
            "worktreePath": self.worktree_path,
        }
        if self.pr_number is not None:
            out["prNumber"] = self.pr_number
        if self.pr_url is not None:
            out["prUrl"] = self.pr_url
        return out


class WorkflowReporter(Protocol):
    """A live progress surface for one run.

    Implementations must not let exceptions escape their own external calls;
    the manager still guards every call.
    """

    type: str

    async def initialize(self, context: ReporterContext) -> None: ...

    async def on_audit_entry(self, entry: WorkflowAuditEntry) -> None: ...

    async def on_complete(self, summary: ExecutionSummary) -> None: ...

    async def on_error(self, error: BaseException) -> None: ...

    async def dispose(self) -> None: ...


ReporterFactory = Callable[[Mapping[str, Any]], WorkflowReporter]
