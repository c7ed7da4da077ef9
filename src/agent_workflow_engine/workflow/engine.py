"""Recursive interpreter for workflow definitions.

Executes the five step kinds:

- agent:     one AgentExecutor dispatch with a rendered instruction
- code:      a registered handler function
- parallel:  children run concurrently and are joined
- loop:      children repeat while a condition holds, up to maxRetries
- per-task:  children run once per item of a context sequence

Every step transition produces a `WorkflowAuditEntry` which is delivered to
each configured audit sink independently.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, assert_never

from agent_workflow_engine.config import EngineSettings

from .audit import AuditStatus, ExecutionSummary, LoopDetail, SummaryTracker, WorkflowAuditEntry
from .conditions import ConditionEvaluator
from .context import MISSING, WorkflowContext
from .errors import StepExecutionError, WorkflowFailure, WorkflowPaused
from .executor import AgentExecutor, AgentRequest, AgentResult
from .handlers import HandlerDeps, HandlerRegistry, create_default_handler_registry
from .schema import (
    AgentStep,
    CodeStep,
    LoopStep,
    ParallelStep,
    PerTaskStep,
    WorkflowDefinition,
    iter_steps,
)
from .state_machine import Checkpoint, CheckpointStore, RunStateMachine

logger = logging.getLogger(__name__)

AuditSink = Callable[[WorkflowAuditEntry], Awaitable[None] | None]
PhaseCompleteHook = Callable[[str, WorkflowContext], Awaitable[None] | None]

DRY_RUN_STOP_PHASE = "execute"


@dataclass(slots=True)
class WorkflowResult:
    status: Literal["completed", "failed", "paused"]
    outputs: dict[str, Any]
    completed_phases: list[str]
    changed_files: list[str] = field(default_factory=list)
    error: str | None = None
    failed_step: str | None = None
    blocker_details: str | None = None
    retries: int | None = None
    last_output: Any = None
    summary: ExecutionSummary | None = None

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {
            "status": self.status,
            "outputs": self.outputs,
            "completedPhases": list(self.completed_phases),
            "changedFiles": list(self.changed_files),
        }
        if self.error is not None:
            out["error"] = self.error
        if self.failed_step is not None:
            out["failedStep"] = self.failed_step
        if self.blocker_details is not None:
            out["blockerDetails"] = self.blocker_details
        if self.retries is not None:
            out["retries"] = self.retries
        if self.last_output is not None:
            out["lastOutput"] = self.last_output
        if self.summary is not None:
            out["summary"] = self.summary.to_json()
        return out


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class WorkflowEngine:
    """Runs one workflow definition. Create a new engine (or call `run`) per run."""

    def __init__(
        self,
        definition: WorkflowDefinition,
        *,
        executor: AgentExecutor | None = None,
        handlers: HandlerRegistry | None = None,
        settings: EngineSettings | None = None,
        audit_sinks: Sequence[AuditSink] = (),
        on_phase_complete: PhaseCompleteHook | None = None,
        checkpoint_store: CheckpointStore | None = None,
        github: Any = None,
        env: Mapping[str, str] | None = None,
        dry_run: bool = False,
    ) -> None:
        self._definition = definition
        self._executor = executor
        self._handlers = handlers or create_default_handler_registry()
        self._settings = settings or EngineSettings()
        self._audit_sinks = list(audit_sinks)
        self._on_phase_complete = on_phase_complete
        self._checkpoint_store = checkpoint_store
        self._env = env
        self._dry_run = dry_run
        self._conditions = ConditionEvaluator()
        self._deps = HandlerDeps(
            executor=executor,
            settings=self._settings,
            defaults=definition.defaults,
            github=github,
        )
        self._audit_log: list[WorkflowAuditEntry] = []
        self._tracker = SummaryTracker()

    @property
    def definition(self) -> WorkflowDefinition:
        return self._definition

    @property
    def audit_log(self) -> list[WorkflowAuditEntry]:
        return list(self._audit_log)

    @property
    def default_model(self) -> str:
        if "defaults" in self._definition.model_fields_set:
            return self._definition.defaults.model
        return self._settings.default_model

    # --- entry points ---

    async def run(
        self,
        initial_variables: Mapping[str, Any] | None = None,
        *,
        ambient: Mapping[str, Any] | None = None,
    ) -> WorkflowResult:
        ctx = WorkflowContext(initial_variables, ambient=ambient, env=self._env)
        self._tracker = SummaryTracker()
        return await self._run_phases(ctx)

    async def resume(
        self,
        checkpoint: Checkpoint,
        *,
        ambient: Mapping[str, Any] | None = None,
    ) -> WorkflowResult:
        """Continue a run from `checkpoint`; completed phases are never re-executed."""

        ctx = WorkflowContext.from_checkpoint(checkpoint, ambient=ambient, env=self._env)
        self._tracker = SummaryTracker()
        self._tracker.seed(checkpoint.step_records, checkpoint.loop_details)
        logger.info(
            "Resuming workflow",
            extra={"workflow": self._definition.name, "completed_phases": ctx.completed_phases},
        )
        return await self._run_phases(ctx)

    # --- phases ---

    async def _run_phases(self, ctx: WorkflowContext) -> WorkflowResult:
        phases = self._definition.phases
        machine = RunStateMachine(
            [p.name for p in phases],
            completed=[name for name in ctx.completed_phases if name in self._definition.phase_names],
        )
        machine.start()

        try:
            for index, phase in enumerate(phases):
                if phase.name in ctx.completed_phases:
                    logger.debug("Skipping completed phase", extra={"phase": phase.name})
                    continue

                if self._dry_run and phase.name == DRY_RUN_STOP_PHASE:
                    logger.info("Dry run: stopping before phase", extra={"phase": phase.name})
                    for remaining in phases[index:]:
                        if remaining.name not in ctx.completed_phases:
                            await self._emit(remaining.name, AuditStatus.SKIPPED, {"reason": "dry-run"})
                            self._tracker.step_skipped(remaining.name)
                    break

                machine.enter_phase(phase.name)
                ctx.current_phase = phase.name
                await self._execute_step(phase, ctx, depth=0)
                ctx.mark_phase_completed(phase.name)
                machine.complete_phase(phase.name)
                await self._save_checkpoint(ctx)

                if self._on_phase_complete is not None:
                    await _maybe_await(self._on_phase_complete(phase.name, ctx))

            machine.complete()
            ctx.current_phase = None
            summary = self._tracker.build()
            logger.info(
                "Workflow completed",
                extra={"workflow": self._definition.name, "counts": summary.counts},
            )
            return WorkflowResult(
                status="completed",
                outputs=ctx.template_vars(),
                completed_phases=ctx.completed_phases,
                changed_files=ctx.changed_files,
                summary=summary,
            )
        except WorkflowPaused as e:
            machine.pause(e.blocker_details)
            logger.warning(
                "Workflow paused",
                extra={"workflow": self._definition.name, "step": e.step_name, "retries": e.retries},
            )
            return WorkflowResult(
                status="paused",
                outputs=ctx.template_vars(),
                completed_phases=ctx.completed_phases,
                changed_files=ctx.changed_files,
                error=str(e),
                failed_step=e.step_name,
                blocker_details=e.blocker_details,
                retries=e.retries,
                last_output=e.last_output,
            )
        except WorkflowFailure as e:
            machine.fail(str(e))
            logger.error(
                "Workflow failed",
                extra={"workflow": self._definition.name, "step": e.step_name, "error": str(e)},
            )
            return WorkflowResult(
                status="failed",
                outputs=ctx.template_vars(),
                completed_phases=ctx.completed_phases,
                changed_files=ctx.changed_files,
                error=str(e),
                failed_step=e.step_name,
            )

    async def _save_checkpoint(self, ctx: WorkflowContext) -> None:
        if self._checkpoint_store is None:
            return
        checkpoint = ctx.to_checkpoint()
        checkpoint.step_records = self._tracker.step_records_json()
        checkpoint.loop_details = self._tracker.loop_details_json()
        await _maybe_await(self._checkpoint_store.save_checkpoint(checkpoint))

    # --- audit ---

    async def _emit(
        self, step: str, status: AuditStatus, metadata: Mapping[str, Any] | None = None
    ) -> None:
        entry = WorkflowAuditEntry(step=step, status=status, metadata=metadata or None)
        self._audit_log.append(entry)
        for sink in self._audit_sinks:
            try:
                await _maybe_await(sink(entry))
            except Exception:
                logger.exception(
                    "Audit sink failed", extra={"step": step, "status": status.value}
                )

    # --- steps ---

    async def _execute_step(
        self,
        step: Any,
        ctx: WorkflowContext,
        *,
        depth: int,
        task_meta: Mapping[str, Any] | None = None,
    ) -> None:
        top_level = depth == 0

        if not step.enabled:
            await self._emit(step.name, AuditStatus.SKIPPED, {"reason": "disabled"})
            if top_level:
                self._tracker.step_skipped(step.name)
            return

        await self._emit(step.name, AuditStatus.STARTED, task_meta)
        if top_level:
            self._tracker.step_started(step.name)

        try:
            completed_meta = await self._dispatch(step, ctx, depth=depth, task_meta=task_meta)
            if step.fail_when and self._conditions.evaluate(step.fail_when, ctx):
                raise WorkflowFailure(step.name, step.fail_when)
        except (WorkflowFailure, WorkflowPaused) as e:
            await self._emit(step.name, AuditStatus.FAILED, {"error": str(e)})
            if top_level:
                self._tracker.step_finished(step.name, AuditStatus.FAILED)
            raise
        except Exception as e:
            message = str(e) if isinstance(e, StepExecutionError) else f"Step {step.name!r} failed: {e}"
            await self._emit(step.name, AuditStatus.FAILED, {"error": message})
            if top_level:
                self._tracker.step_finished(step.name, AuditStatus.FAILED)
            raise WorkflowFailure(step.name, message=message) from e

        await self._emit(step.name, AuditStatus.COMPLETED, completed_meta)
        if top_level:
            self._tracker.step_finished(step.name, AuditStatus.COMPLETED)

    async def _dispatch(
        self,
        step: Any,
        ctx: WorkflowContext,
        *,
        depth: int,
        task_meta: Mapping[str, Any] | None,
    ) -> dict[str, Any] | None:
        match step:
            case AgentStep():
                self._bind_output(step, ctx, await self._run_agent(step, ctx))
            case CodeStep():
                self._bind_output(step, ctx, await self._run_code(step, ctx))
            case ParallelStep():
                await self._run_parallel(step, ctx, depth=depth, task_meta=task_meta)
            case LoopStep():
                return await self._run_loop(step, ctx, depth=depth, task_meta=task_meta)
            case PerTaskStep():
                await self._run_per_task(step, ctx, depth=depth)
            case _:
                assert_never(step)
        return None

    @staticmethod
    def _bind_output(step: Any, ctx: WorkflowContext, result: Any) -> None:
        if step.output and result is not None:
            ctx.set(step.output, result)
            ctx.add_changed_files_from_result(result)

    def _resolve_input(self, path: str | None, ctx: WorkflowContext) -> Any:
        if not path:
            return None
        value = ctx.resolve(path)
        return None if value is MISSING else value

    async def _run_agent(self, step: AgentStep, ctx: WorkflowContext) -> Any:
        if self._executor is None:
            raise StepExecutionError(step.name, "no agent executor configured")

        extra: dict[str, Any] = {}
        input_value = self._resolve_input(step.input, ctx)
        if step.input and input_value is not None:
            extra["input"] = input_value
            extra[step.input.rsplit(".", 1)[-1]] = input_value

        defaults = self._definition.defaults
        request = AgentRequest(
            step_name=step.name,
            agent=step.agent,
            instruction=ctx.render(step.prompt, extra) if step.prompt else "",
            model=step.model or self.default_model,
            working_directory=Path(ctx.get("worktreePath") or self._settings.working_directory),
            permission_mode=defaults.permission_mode,
            setting_sources=tuple(defaults.setting_sources),
            input=input_value,
            metadata={"taskId": ctx.current_task_id} if ctx.current_task_id else {},
        )
        logger.info("Dispatching agent", extra={"step": step.name, "agent": step.agent})

        response = await _maybe_await(self._executor(request))
        if hasattr(response, "__aiter__"):
            last: Any = None
            async for item in response:
                if item is None:
                    continue
                self._check_agent_result(step, item)
                last = item
            response = last

        self._check_agent_result(step, response)
        if isinstance(response, AgentResult):
            return response.output
        return response

    @staticmethod
    def _check_agent_result(step: AgentStep, result: Any) -> None:
        if isinstance(result, AgentResult) and not result.ok:
            raise StepExecutionError(step.name, result.message or "agent reported failure")

    async def _run_code(self, step: CodeStep, ctx: WorkflowContext) -> Any:
        handler = self._handlers.get(step.handler)
        input_value = self._resolve_input(step.input, ctx)
        logger.debug("Running handler", extra={"step": step.name, "handler": step.handler})
        return await _maybe_await(handler(ctx, input_value, self._deps))

    async def _run_parallel(
        self,
        step: ParallelStep,
        ctx: WorkflowContext,
        *,
        depth: int,
        task_meta: Mapping[str, Any] | None,
    ) -> None:
        results = await asyncio.gather(
            *(
                self._execute_step(child, ctx, depth=depth + 1, task_meta=task_meta)
                for child in step.steps
            ),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

    async def _run_loop(
        self,
        step: LoopStep,
        ctx: WorkflowContext,
        *,
        depth: int,
        task_meta: Mapping[str, Any] | None,
    ) -> dict[str, Any] | None:
        iterations = 0
        exhausted = False
        while self._conditions.evaluate(step.condition, ctx):
            if iterations >= step.max_retries:
                exhausted = True
                break
            iterations += 1
            logger.debug("Loop iteration", extra={"step": step.name, "iteration": iterations})
            for child in step.steps:
                await self._execute_step(child, ctx, depth=depth + 1, task_meta=task_meta)

        self._tracker.loop_finished(
            LoopDetail(
                name=step.name,
                iterations=iterations,
                max_retries=step.max_retries,
                exhausted=exhausted,
                on_exhausted=step.on_exhausted,
            )
        )
        if not exhausted:
            return None

        last_output = self._last_loop_output(step, ctx)
        detail = (
            f"Loop {step.name!r} exhausted {iterations} retries; "
            f"condition {step.condition!r} is still true"
        )
        match step.on_exhausted:
            case "escalate":
                if last_output is not None:
                    rendered = json.dumps(last_output, ensure_ascii=False, default=str)
                    detail += f"; last output: {rendered}"
                raise WorkflowPaused(
                    step.name, detail, retries=iterations, last_output=last_output
                )
            case "fail":
                raise WorkflowFailure(step.name, step.condition, message=detail)
            case "warn":
                logger.warning(detail, extra={"step": step.name, "retries": iterations})
                return {
                    "warning": f"Loop exhausted {step.max_retries} retries, continuing",
                    "iterations": iterations,
                }
            case _:
                assert_never(step.on_exhausted)

    @staticmethod
    def _last_loop_output(step: LoopStep, ctx: WorkflowContext) -> Any:
        bound = [child.output for child in iter_steps(step.steps) if child.output]
        for name in reversed(bound):
            value = ctx.get(name)
            if value is not None:
                return value
        return None

    async def _run_per_task(self, step: PerTaskStep, ctx: WorkflowContext, *, depth: int) -> None:
        items = ctx.resolve(step.source)
        if not isinstance(items, (list, tuple)):
            raise StepExecutionError(
                step.name, f"per-task source {step.source!r} did not resolve to a list"
            )

        count = len(items)
        for index, item in enumerate(items, start=1):
            task_ctx = ctx.with_task(item, index=index, count=count)
            meta = {"taskIndex": index, "taskCount": count, "taskId": task_ctx.current_task_id}
            for child in step.steps:
                await self._execute_step(child, task_ctx, depth=depth + 1, task_meta=meta)
            ctx.merge_task_results(task_ctx)
