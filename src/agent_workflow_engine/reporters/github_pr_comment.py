"""Live workflow progress rendered into a pull request comment.

The reporter creates one new comment per run (identified by a hidden session
marker) and keeps it updated as audit entries arrive. Updates are debounced:
entries that arrive within the debounce window collapse into one outbound
update.

Failure policy:
- 401/403/404 on any call disables the reporter for the rest of the run
- 5xx, other statuses and network errors are logged; the next update is
  attempted normally
- the configured token is redacted from every log line and rendered message
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError
from pydantic.alias_generators import to_camel

from agent_workflow_engine.github.comments import (
    GitHubAPIError,
    GitHubAuthError,
    GitHubNotFoundError,
    IssueCommentClient,
)
from agent_workflow_engine.logging import redact
from agent_workflow_engine.workflow.audit import AuditStatus, ExecutionSummary, WorkflowAuditEntry

from .types import ReporterContext, StepVisibility

logger = logging.getLogger(__name__)

REPORTER_TYPE = "github-pr-comment"
MARKER_PREFIX = "agent-workflow"

StepStatus = Literal["pending", "running", "completed", "failed", "skipped"]

_STATUS_FROM_AUDIT: dict[AuditStatus, StepStatus] = {
    AuditStatus.STARTED: "running",
    AuditStatus.COMPLETED: "completed",
    AuditStatus.FAILED: "failed",
    AuditStatus.SKIPPED: "skipped",
}


class GitHubPRCommentConfig(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    token: SecretStr | None = None
    owner: str | None = None
    repo: str | None = None
    pr_number: int | None = None
    spinner: bool = True
    debounce_ms: int = Field(default=2000, ge=0)
    api_base_url: str = "https://api.github.com"

    def missing_fields(self) -> list[str]:
        missing: list[str] = []
        if self.token is None or not self.token.get_secret_value():
            missing.append("token")
        if not self.owner:
            missing.append("owner")
        if not self.repo:
            missing.append("repo")
        if not self.pr_number:
            missing.append("prNumber")
        return missing


class ScheduleState(enum.Enum):
    IDLE = "idle"
    PENDING = "pending"
    DISPOSED = "disposed"


@dataclass(slots=True)
class _StepState:
    name: str
    visibility: StepVisibility
    status: StepStatus = "pending"
    started_at: float | None = None
    duration_ms: int | None = None
    task_index: int | None = None
    task_count: int | None = None


def format_ms(ms: int) -> str:
    if ms < 1000:
        return f"{ms}ms"
    seconds = round(ms / 1000)
    if seconds < 60:
        return f"{seconds}s"
    minutes, remaining = divmod(seconds, 60)
    return f"{minutes}m {remaining}s" if remaining else f"{minutes}m"


def format_completion(total_ms: int, steps_completed: int) -> str:
    minutes, seconds = divmod(round(total_ms / 1000), 60)
    if minutes and seconds:
        duration = f"{minutes} minutes {seconds} seconds"
    elif minutes:
        duration = f"{minutes} minutes"
    else:
        duration = f"{seconds} seconds"
    return f"**Completed** in {duration} | {steps_completed} steps executed"


def _cell(text: str) -> str:
    return text.replace("|", "\\|").replace("\n", " ")


class GitHubPRCommentReporter:
    """Posts and updates a pull request comment with workflow progress."""

    type = REPORTER_TYPE

    def __init__(
        self,
        config: Mapping[str, Any],
        *,
        client: IssueCommentClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        try:
            self._config = GitHubPRCommentConfig.model_validate(dict(config))
        except ValidationError as e:
            # Field locations only: the offending input may be a credential.
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
            raise ValueError(f"Invalid {REPORTER_TYPE} config fields: {', '.join(fields)}") from None

        self._token = self._config.token.get_secret_value() if self._config.token else ""
        self._client = client
        self._clock = clock

        self._disabled = False
        self._initialized = False
        self._comment_id: int | None = None
        self._session_id = ""
        self._steps: dict[str, _StepState] = {}
        self._error_message: str | None = None
        self._completion_line: str | None = None
        self._final = False

        self._state = ScheduleState.IDLE
        self._timer: asyncio.Task[None] | None = None

        missing = self._config.missing_fields()
        if missing:
            logger.warning(
                "Missing required reporter config fields; reporter disabled",
                extra={"reporter": REPORTER_TYPE, "missing": missing},
            )
            self._disabled = True

    # --- introspection (used by tests and the manager) ---

    @property
    def disabled(self) -> bool:
        return self._disabled

    @property
    def state(self) -> ScheduleState:
        return self._state

    @property
    def comment_id(self) -> int | None:
        return self._comment_id

    @property
    def _active(self) -> bool:
        return self._initialized and not self._disabled and self._state is not ScheduleState.DISPOSED

    # --- lifecycle ---

    async def initialize(self, context: ReporterContext) -> None:
        if self._disabled or self._state is ScheduleState.DISPOSED:
            return

        self._session_id = context.session_id
        self._steps = {s.name: _StepState(name=s.name, visibility=s.visibility) for s in context.steps}

        if self._client is None:
            try:
                self._client = IssueCommentClient(
                    token=self._token,
                    owner=str(self._config.owner),
                    repo=str(self._config.repo),
                    pr_number=int(self._config.pr_number or 0),
                    base_url=self._config.api_base_url,
                )
            except ValueError as e:
                self._disable(str(e))
                return

        self._initialized = True
        await self._push()

    async def on_audit_entry(self, entry: WorkflowAuditEntry) -> None:
        if not self._active:
            return

        self._apply(entry)

        if self._config.debounce_ms == 0:
            await self._push()
        else:
            self._schedule()

    async def on_complete(self, summary: ExecutionSummary) -> None:
        if not self._active:
            return

        for record in summary.steps:
            step = self._steps.get(record.name)
            if step is not None:
                step.status = _STATUS_FROM_AUDIT.get(record.status, step.status)
                step.duration_ms = record.duration_ms

        self._completion_line = format_completion(
            summary.total_duration_ms, summary.counts["completed"]
        )
        self._final = True
        self._cancel_timer()
        await self._push()

    async def on_error(self, error: BaseException) -> None:
        if not self._active:
            return

        self._error_message = self._redact(str(error))
        self._cancel_timer()
        await self._push()

    async def dispose(self) -> None:
        if self._state is ScheduleState.DISPOSED:
            return

        was_pending = self._cancel_timer()
        self._state = ScheduleState.DISPOSED
        if was_pending and self._initialized and not self._disabled:
            await self._push()

    # --- state ---

    def _apply(self, entry: WorkflowAuditEntry) -> None:
        step = self._steps.get(entry.step)
        if step is None:
            return

        step.status = _STATUS_FROM_AUDIT[entry.status]
        if entry.status is AuditStatus.STARTED:
            step.started_at = self._clock()
            step.duration_ms = None
            metadata = entry.metadata or {}
            if isinstance(metadata.get("taskIndex"), int):
                step.task_index = metadata["taskIndex"]
            if isinstance(metadata.get("taskCount"), int):
                step.task_count = metadata["taskCount"]
        elif entry.status is AuditStatus.COMPLETED and step.started_at is not None:
            step.duration_ms = int((self._clock() - step.started_at) * 1000)

    # --- rendering ---

    def render(self) -> str:
        lines = [
            f"<!-- {MARKER_PREFIX}: {self._session_id} -->",
            "## Workflow Progress",
            "",
            "| Step | Status |",
            "|------|--------|",
        ]
        for step in self._steps.values():
            if step.visibility == "silent":
                continue
            if step.visibility == "summary" and not self._final:
                continue
            lines.append(f"| {_cell(step.name)} | {self._render_status(step)} |")

        if self._error_message:
            lines.append("")
            lines.append(f"> :x: **Error**: `{self._error_message}`")

        if self._completion_line:
            lines.append("")
            lines.append("---")
            lines.append(self._completion_line)

        return "\n".join(lines)

    def _render_status(self, step: _StepState) -> str:
        match step.status:
            case "pending":
                return ":white_circle: Pending"
            case "running":
                if self._final:
                    return ":white_check_mark: Done"
                text = ":hourglass_flowing_sand: Running..." if self._config.spinner else "Running..."
                if step.task_index is not None and step.task_count is not None:
                    text += f" ({step.task_index}/{step.task_count} tasks)"
                return text
            case "completed":
                if step.duration_ms is not None:
                    return f":white_check_mark: Done ({format_ms(step.duration_ms)})"
                return ":white_check_mark: Done"
            case "failed":
                return ":x: Failed"
            case "skipped":
                return ":fast_forward: Skipped"

    # --- scheduling ---

    def _schedule(self) -> None:
        self._cancel_timer()
        self._state = ScheduleState.PENDING
        self._timer = asyncio.create_task(self._flush_after(self._config.debounce_ms / 1000))

    async def _flush_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # Past this point a cancel no longer applies: the flush is in flight.
        self._timer = None
        if self._state is ScheduleState.PENDING:
            self._state = ScheduleState.IDLE
        await self._push()

    def _cancel_timer(self) -> bool:
        """Cancel the pending debounced update without flushing it."""

        was_pending = self._state is ScheduleState.PENDING
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if was_pending:
            self._state = ScheduleState.IDLE
        return was_pending

    # --- external calls ---

    async def _push(self) -> None:
        if self._disabled or self._client is None:
            return

        body = self.render()
        if self._comment_id is None:
            comment_id = await self._call(self._client.create_comment, body)
            if isinstance(comment_id, int):
                self._comment_id = comment_id
            return
        await self._call(self._client.update_comment, self._comment_id, body)

    async def _call(self, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except (GitHubAuthError, GitHubNotFoundError) as e:
            self._disable(f"GitHub API returned HTTP {e.status_code}")
        except GitHubAPIError as e:
            logger.warning(
                "GitHub API request failed; will retry on next update",
                extra={
                    "reporter": REPORTER_TYPE,
                    "status_code": e.status_code,
                    "error": self._redact(str(e)),
                },
            )
        except Exception as e:
            logger.warning(
                "GitHub API request failed; will retry on next update",
                extra={
                    "reporter": REPORTER_TYPE,
                    "error_type": type(e).__name__,
                    "error": self._redact(str(e)),
                },
            )
        return None

    def _disable(self, reason: str) -> None:
        self._disabled = True
        self._cancel_timer()
        logger.warning(
            "Reporter disabled",
            extra={"reporter": REPORTER_TYPE, "reason": self._redact(reason)},
        )

    def _redact(self, text: str) -> str:
        return redact(text, [self._token])
