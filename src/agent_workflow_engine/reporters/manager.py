"""Reporter lifecycle, step visibility and audit fan-out.

Debouncing is owned by individual reporters; the manager forwards every
non-silent audit entry immediately and in arrival order.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from agent_workflow_engine.logging import redact, register_secret
from agent_workflow_engine.workflow.audit import ExecutionSummary, WorkflowAuditEntry
from agent_workflow_engine.workflow.context import coerce_integer, render_template
from agent_workflow_engine.workflow.schema import WorkflowDefinition

from .registry import ReporterRegistry
from .types import ReporterContext, StepVisibility, StepVisibilityEntry, WorkflowReporter

logger = logging.getLogger(__name__)

_SECRET_KEY_HINTS = ("token", "secret", "password", "apikey", "api_key", "credential")


def build_visibility_map(steps: Sequence[Any], parent_silent: bool = False) -> dict[str, StepVisibility]:
    """Flatten a step tree into `name -> effective visibility`.

    Only a `silent` ancestor constrains its descendants. A repeated step name
    takes the visibility of its last occurrence in depth-first order.
    """

    out: dict[str, StepVisibility] = {}
    for step in steps:
        effective: StepVisibility = "silent" if parent_silent else step.report_as
        out[step.name] = effective
        children = getattr(step, "steps", None)
        if children:
            out.update(build_visibility_map(children, effective == "silent"))
    return out


@dataclass(frozen=True, slots=True)
class ReporterInitOptions:
    session_id: str
    spec_file: str = ""
    branch_name: str = ""
    worktree_path: str = ""
    pr_number: int | None = None
    pr_url: str | None = None


def _secret_values(config: Mapping[str, Any]) -> list[str]:
    return [
        value
        for key, value in config.items()
        if isinstance(value, str) and value and any(h in key.lower() for h in _SECRET_KEY_HINTS)
    ]


class ReporterManager:
    """Owns the reporters of one run and isolates their failures."""

    def __init__(
        self,
        definition: WorkflowDefinition,
        registry: ReporterRegistry,
        *,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._definition = definition
        self._registry = registry
        self._env = env if env is not None else os.environ
        self._visibility_map = build_visibility_map(definition.phases)
        self._reporters: list[WorkflowReporter] = []
        self._secrets: dict[int, list[str]] = {}

    @property
    def visibility_map(self) -> dict[str, StepVisibility]:
        return dict(self._visibility_map)

    @property
    def reporters(self) -> list[WorkflowReporter]:
        return list(self._reporters)

    def resolve_reporter_config(
        self, config: Mapping[str, Any], context: ReporterContext
    ) -> dict[str, Any]:
        """Resolve `{{ env.X }}` / `{{ context.X }}` in top-level string values."""

        namespace = {"env": self._env, "context": context.template_namespace()}
        resolved: dict[str, Any] = {}
        for key, value in config.items():
            if isinstance(value, str):
                resolved[key] = coerce_integer(render_template(value, namespace))
            else:
                resolved[key] = value
        return resolved

    async def initialize_reporters(self, options: ReporterInitOptions) -> None:
        context = ReporterContext(
            session_id=options.session_id,
            spec_file=options.spec_file,
            branch_name=options.branch_name,
            worktree_path=options.worktree_path,
            pr_number=options.pr_number,
            pr_url=options.pr_url,
            steps=tuple(
                StepVisibilityEntry(name=name, visibility=visibility)
                for name, visibility in self._visibility_map.items()
            ),
        )

        for rc in self._definition.reporters:
            if not self._registry.has(rc.type):
                logger.warning(
                    "Unknown reporter type; skipping",
                    extra={"reporter": rc.type, "available": self._registry.registered_types()},
                )
                continue

            secrets: list[str] = []
            try:
                resolved = self.resolve_reporter_config(rc.config, context)
                secrets = _secret_values(resolved)
                for secret in secrets:
                    register_secret(secret)
                reporter = self._registry.create(rc.type, resolved)
            except Exception as e:
                logger.warning(
                    "Failed to create reporter; skipping",
                    extra={"reporter": rc.type, "error": redact(str(e), secrets)},
                )
                continue

            try:
                await reporter.initialize(context)
            except Exception as e:
                logger.warning(
                    "Reporter failed to initialize; skipping",
                    extra={"reporter": rc.type, "error": redact(str(e), secrets)},
                )
                try:
                    await reporter.dispose()
                except Exception as dispose_error:
                    logger.warning(
                        "Reporter failed to dispose after failed initialization",
                        extra={"reporter": rc.type, "error": redact(str(dispose_error), secrets)},
                    )
                continue

            self._reporters.append(reporter)
            self._secrets[id(reporter)] = secrets
            logger.info("Reporter initialized", extra={"reporter": rc.type})

    async def on_audit_entry(self, entry: WorkflowAuditEntry) -> None:
        if self._visibility_map.get(entry.step, "visible") == "silent":
            return
        await self._fan_out(lambda r: r.on_audit_entry(entry), "on_audit_entry")

    async def on_complete(self, summary: ExecutionSummary) -> None:
        await self._fan_out(lambda r: r.on_complete(summary), "on_complete")

    async def on_error(self, error: BaseException) -> None:
        await self._fan_out(lambda r: r.on_error(error), "on_error")

    async def dispose(self) -> None:
        await self._fan_out(lambda r: r.dispose(), "dispose")
        self._reporters = []
        self._secrets = {}

    async def _fan_out(
        self, call: Callable[[WorkflowReporter], Awaitable[None]], method: str
    ) -> None:
        for reporter in list(self._reporters):
            try:
                await call(reporter)
            except Exception as e:
                logger.warning(
                    "Reporter call failed",
                    extra={
                        "reporter": getattr(reporter, "type", type(reporter).__name__),
                        "method": method,
                        "error": redact(str(e), self._secrets.get(id(reporter), [])),
                    },
                )
