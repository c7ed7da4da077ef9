"""File-backed session storage.

One directory per session under the sessions path::

    <sessions>/<session-id>/context.json     session metadata and status
    <sessions>/<session-id>/audit.jsonl      append-only audit log
    <sessions>/<session-id>/checkpoint.json  latest resume checkpoint
    <sessions>/<session-id>/blocker.json     written when a run pauses

This makes long-running execution restartable and inspectable.
"""

from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from agent_workflow_engine.workflow.audit import AuditStatus, WorkflowAuditEntry, utc_timestamp
from agent_workflow_engine.workflow.engine import WorkflowResult
from agent_workflow_engine.workflow.state_machine import Checkpoint

logger = logging.getLogger(__name__)


def generate_session_id() -> str:
    date = datetime.now(tz=UTC).strftime("%Y-%m-%d")
    return f"wf-{date}-{secrets.token_hex(4)}"


@dataclass(frozen=True, slots=True)
class SessionInfo:
    spec_file: str = ""
    worktree_path: str = ""
    branch_name: str = ""


def _write_json(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False, default=str) + "\n", encoding="utf-8")


def _read_json(path: Path) -> dict[str, Any] | None:
    if not path.exists():
        return None
    raw = json.loads(path.read_text(encoding="utf-8"))
    return raw if isinstance(raw, dict) else None


class WorkflowSessionStore:
    """Persist one workflow session as plain JSON files."""

    def __init__(self, sessions_path: Path, info: SessionInfo | None = None) -> None:
        self._sessions_path = sessions_path
        self._info = info or SessionInfo()
        self._session_id: str | None = None

    @property
    def session_id(self) -> str | None:
        return self._session_id

    def _dir(self, session_id: str | None = None) -> Path:
        sid = session_id or self._session_id
        if sid is None:
            raise RuntimeError("No active session")
        return self._sessions_path / sid

    def _update_context(self, **fields: Any) -> None:
        path = self._dir() / "context.json"
        context = _read_json(path)
        if context is None:
            return
        context.update(fields)
        context["updatedAt"] = utc_timestamp()
        _write_json(path, context)

    def create_session(self) -> str:
        session_id = generate_session_id()
        self._session_id = session_id
        now = utc_timestamp()
        _write_json(
            self._dir() / "context.json",
            {
                "id": session_id,
                "specFile": self._info.spec_file,
                "status": "running",
                "currentPhase": "init",
                "worktreePath": self._info.worktree_path,
                "branchName": self._info.branch_name,
                "phasesCompleted": [],
                "tasksCompleted": [],
                "tasksPending": [],
                "startedAt": now,
                "updatedAt": now,
            },
        )
        self.append_audit_entry(
            WorkflowAuditEntry(
                step="init",
                status=AuditStatus.COMPLETED,
                metadata={
                    "session_id": session_id,
                    "worktree": self._info.worktree_path,
                    "branch": self._info.branch_name,
                    "spec_file": self._info.spec_file,
                },
            )
        )
        logger.info("Created workflow session", extra={"session_id": session_id})
        return session_id

    def open_session(self, session_id: str) -> dict[str, Any]:
        """Attach to an existing session (for resume) and return its context."""

        context = _read_json(self._dir(session_id) / "context.json")
        if context is None:
            raise FileNotFoundError(f"Session not found: {session_id}")
        self._session_id = session_id
        self._update_context(status="running")
        return context

    def append_audit_entry(self, entry: WorkflowAuditEntry) -> None:
        if self._session_id is None:
            return
        path = self._dir() / "audit.jsonl"
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_json(), ensure_ascii=False, default=str) + "\n")

    def save_checkpoint(self, checkpoint: Checkpoint) -> None:
        if self._session_id is None:
            return
        data = checkpoint.to_json()
        data["sessionId"] = self._session_id
        data["checkpointId"] = f"chk-{secrets.token_hex(4)}"
        data["createdAt"] = utc_timestamp()
        _write_json(self._dir() / "checkpoint.json", data)

        variables = checkpoint.variables
        self._update_context(
            currentPhase=checkpoint.current_phase,
            phasesCompleted=list(checkpoint.completed_phases),
            tasksCompleted=list(variables.get("tasksCompleted") or []),
            tasksPending=list(variables.get("tasksPending") or []),
        )

    def load_checkpoint(self, session_id: str) -> Checkpoint | None:
        raw = _read_json(self._dir(session_id) / "checkpoint.json")
        if raw is None:
            return None
        return Checkpoint.from_json(raw)

    def complete_session(self, result: WorkflowResult) -> None:
        if self._session_id is None:
            return
        status = "completed" if result.status == "completed" else result.status
        self._update_context(
            status=status,
            phasesCompleted=list(result.completed_phases),
            completedAt=utc_timestamp(),
        )
        metadata: dict[str, Any] = {"completedPhases": list(result.completed_phases)}
        if result.error is not None:
            metadata["error"] = result.error
        self.append_audit_entry(
            WorkflowAuditEntry(
                step="complete",
                status=AuditStatus.COMPLETED if result.status == "completed" else AuditStatus.FAILED,
                metadata=metadata,
            )
        )

    def write_blocker(
        self,
        details: str,
        *,
        step: str | None = None,
        retries: int | None = None,
        last_output: Any = None,
    ) -> None:
        if self._session_id is None:
            return
        blocker: dict[str, Any] = {
            "sessionId": self._session_id,
            "timestamp": utc_timestamp(),
            "details": details,
        }
        if step is not None:
            blocker["step"] = step
        if retries is not None:
            blocker["retries"] = retries
        if last_output is not None:
            blocker["lastOutput"] = last_output
        _write_json(self._dir() / "blocker.json", blocker)
        self._update_context(status="paused")

    def get_audit_entries(self, session_id: str | None = None) -> list[WorkflowAuditEntry]:
        sid = session_id or self._session_id
        if sid is None:
            return []
        path = self._sessions_path / sid / "audit.jsonl"
        if not path.exists():
            return []
        entries: list[WorkflowAuditEntry] = []
        for line in path.read_text(encoding="utf-8").splitlines():
            if line.strip():
                entries.append(WorkflowAuditEntry.from_json(json.loads(line)))
        return entries
