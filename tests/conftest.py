"""Test configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from agent_workflow_engine.config import EngineSettings
from agent_workflow_engine.workflow.executor import AgentRequest
from agent_workflow_engine.workflow.schema import WorkflowDefinition, parse_workflow


class ScriptedExecutor:
    """AgentExecutor double that answers by step name.

    A list value is consumed one item per call; a callable is invoked with
    the request; anything else is returned as is.
    """

    def __init__(self, responses: dict[str, Any] | None = None) -> None:
        self.responses: dict[str, Any] = dict(responses or {})
        self.requests: list[AgentRequest] = []

    async def __call__(self, request: AgentRequest) -> Any:
        self.requests.append(request)
        value = self.responses.get(request.step_name)
        if isinstance(value, list):
            return value.pop(0) if value else None
        if callable(value):
            return value(request)
        return value

    @property
    def calls(self) -> list[str]:
        return [r.step_name for r in self.requests]


@pytest.fixture
def settings(tmp_path: Path) -> EngineSettings:
    """Provide settings isolated from the developer's environment."""
    return EngineSettings(
        _env_file=None,
        log_level="DEBUG",
        sessions_path=tmp_path / "sessions",
        working_directory=tmp_path,
        github_token="",
        github_repository="",
    )


@pytest.fixture
def executor() -> ScriptedExecutor:
    return ScriptedExecutor()


@pytest.fixture
def make_definition() -> Callable[..., WorkflowDefinition]:
    """Build a definition from phases with sensible defaults for the rest."""

    def _make(phases: list[dict[str, Any]], **extra: Any) -> WorkflowDefinition:
        raw: dict[str, Any] = {"name": "test-workflow", "version": 1, "phases": phases}
        raw.update(extra)
        return parse_workflow(raw)

    return _make


class RecordingReporter:
    """WorkflowReporter double that records every lifecycle call."""

    type = "recording"

    def __init__(self, config: dict[str, Any] | None = None, *, fail_on: str | None = None) -> None:
        self.config = dict(config or {})
        self.fail_on = fail_on
        self.calls: list[str] = []
        self.entries: list[Any] = []
        self.context: Any = None
        self.summary: Any = None
        self.errors: list[BaseException] = []

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_on == name:
            raise RuntimeError(f"{name} exploded")

    async def initialize(self, context: Any) -> None:
        self.context = context
        self._record("initialize")

    async def on_audit_entry(self, entry: Any) -> None:
        self.entries.append(entry)
        self._record("on_audit_entry")

    async def on_complete(self, summary: Any) -> None:
        self.summary = summary
        self._record("on_complete")

    async def on_error(self, error: BaseException) -> None:
        self.errors.append(error)
        self._record("on_error")

    async def dispose(self) -> None:
        self._record("dispose")
