"""Code-step handlers.

Handlers are plain functions (sync or async) looked up by name in an explicit
registry. They receive the run context, the resolved step input and the
engine's dependencies; a non-None return value is bound to the step `output`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union

from github import GithubException

from .context import WorkflowContext
from .errors import UnknownHandlerError
from .schema import WorkflowDefaults

if TYPE_CHECKING:
    from agent_workflow_engine.config import EngineSettings
    from agent_workflow_engine.github.client import GitHubRepositoryClient

    from .executor import AgentExecutor

logger = logging.getLogger(__name__)

ISSUE_LABELS = ["workflow-engine", "auto-created"]


@dataclass(frozen=True, slots=True)
class HandlerDeps:
    """Engine-internal collaborators made available to handlers."""

    executor: AgentExecutor | None
    settings: EngineSettings
    defaults: WorkflowDefaults
    github: GitHubRepositoryClient | None = None


HandlerFunction = Callable[
    [WorkflowContext, Any, HandlerDeps], Union[Any, Awaitable[Any]]
]


class HandlerRegistry:
    """Explicit name -> handler table, built once and passed to the engine."""

    def __init__(self) -> None:
        self._handlers: dict[str, HandlerFunction] = {}

    def register(self, name: str, handler: HandlerFunction) -> None:
        if not name:
            raise ValueError("Handler name must be non-empty")
        self._handlers[name] = handler

    def has(self, name: str) -> bool:
        return name in self._handlers

    def get(self, name: str) -> HandlerFunction:
        try:
            return self._handlers[name]
        except KeyError:
            raise UnknownHandlerError(name, self.names()) from None

    def names(self) -> list[str]:
        return sorted(self._handlers)


def _task_title(task: Mapping[str, Any]) -> str:
    title = task.get("title")
    if isinstance(title, str) and title.strip():
        return title.strip()
    return str(task["id"])


def _task_body(task: Mapping[str, Any]) -> str:
    lines: list[str] = []
    description = task.get("description")
    if isinstance(description, str) and description.strip():
        lines.append(description.strip())
    requirements = task.get("requirements")
    if isinstance(requirements, list) and requirements:
        lines.append("")
        lines.append("Requirements:")
        lines.extend(f"- {r}" for r in requirements)
    complexity = task.get("estimatedComplexity")
    if isinstance(complexity, str) and complexity:
        lines.append("")
        lines.append(f"Estimated complexity: {complexity}")
    lines.append("")
    lines.append(f"<!-- workflow-task: {task['id']} -->")
    return "\n".join(lines)


async def create_issues_handler(ctx: WorkflowContext, _input: Any, deps: HandlerDeps) -> None:
    """Normalise `analysis.tasks` and prepare the per-task bookkeeping.

    When a GitHub repository client is available, one issue is filed per task.
    """

    analysis = ctx.get("analysis")
    if not isinstance(analysis, Mapping) or not isinstance(analysis.get("tasks"), list):
        raise ValueError('create-issues handler requires "analysis" with a "tasks" list in context')

    tasks: list[dict[str, Any]] = []
    for index, raw in enumerate(analysis["tasks"], start=1):
        task = dict(raw) if isinstance(raw, Mapping) else {"title": str(raw)}
        if not task.get("id"):
            task["id"] = f"task-{index:03d}"
        tasks.append(task)

    ctx.set("analysis", {**analysis, "tasks": tasks})
    ctx.set("taskIds", [t["id"] for t in tasks])
    ctx.set("tasksCompleted", [])
    ctx.set("tasksPending", [t["id"] for t in tasks])

    if deps.github is None:
        return

    issue_numbers: dict[str, int] = {}
    for task in tasks:
        try:
            created = await asyncio.to_thread(
                deps.github.create_issue,
                title=_task_title(task),
                body=_task_body(task),
                labels=list(ISSUE_LABELS),
            )
        except (GithubException, ValueError) as e:
            logger.warning(
                "Failed to create issue for task",
                extra={"task_id": task["id"], "error_type": type(e).__name__},
            )
            continue
        issue_numbers[task["id"]] = created.number
        logger.info(
            "Created issue for task",
            extra={"task_id": task["id"], "issue_number": created.number},
        )

    if issue_numbers:
        ctx.set("issueNumbers", issue_numbers)


def mark_task_complete_handler(ctx: WorkflowContext, _input: Any, _deps: HandlerDeps) -> None:
    """Move the current task from `tasksPending` to `tasksCompleted`."""

    task_id = ctx.get("taskId")
    if task_id is None:
        raise ValueError("mark-task-complete must run inside a per-task step")

    pending = [t for t in ctx.get("tasksPending") or [] if t != task_id]
    completed = list(ctx.get("tasksCompleted") or [])
    if task_id not in completed:
        completed.append(task_id)

    ctx.set("tasksPending", pending)
    ctx.set("tasksCompleted", completed)


def create_default_handler_registry() -> HandlerRegistry:
    """Create a handler registry with all built-in handlers registered."""

    registry = HandlerRegistry()
    registry.register("create-issues", create_issues_handler)
    registry.register("mark-task-complete", mark_task_complete_handler)
    return registry
