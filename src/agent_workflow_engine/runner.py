"""Wires one workflow run: session, reporters, engine and terminal delivery."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from agent_workflow_engine.config import EngineSettings
from agent_workflow_engine.github.client import GitHubRepositoryClient
from agent_workflow_engine.reporters.manager import ReporterInitOptions, ReporterManager
from agent_workflow_engine.reporters.registry import (
    ReporterRegistry,
    create_default_reporter_registry,
)
from agent_workflow_engine.session import SessionInfo, WorkflowSessionStore
from agent_workflow_engine.workflow.engine import WorkflowEngine, WorkflowResult
from agent_workflow_engine.workflow.errors import WorkflowFailure, WorkflowPaused
from agent_workflow_engine.workflow.executor import AgentExecutor
from agent_workflow_engine.workflow.handlers import HandlerRegistry
from agent_workflow_engine.workflow.schema import WorkflowDefinition
from agent_workflow_engine.workflow.state_machine import Checkpoint

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RunOptions:
    spec_file: str = ""
    branch_name: str = ""
    worktree_path: str = ""
    base_branch: str = "main"
    pr_number: int | None = None
    pr_url: str | None = None
    open_draft_pr: bool = False
    dry_run: bool = False


@dataclass(frozen=True, slots=True)
class RunOutcome:
    session_id: str
    result: WorkflowResult


def _terminal_error(result: WorkflowResult) -> Exception:
    step = result.failed_step or ""
    if result.status == "paused":
        return WorkflowPaused(step, result.blocker_details or result.error or "paused")
    return WorkflowFailure(step, message=result.error or "Workflow failed")


class WorkflowRunner:
    """Runs a workflow definition end to end.

    Each call to `run`/`resume` owns a fresh session store binding, reporter
    manager and engine. Reporters receive `on_complete` or `on_error` once,
    and `dispose` exactly once, whatever the outcome.
    """

    def __init__(
        self,
        definition: WorkflowDefinition,
        *,
        executor: AgentExecutor | None,
        settings: EngineSettings,
        handlers: HandlerRegistry | None = None,
        reporter_registry: ReporterRegistry | None = None,
        github: GitHubRepositoryClient | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._definition = definition
        self._executor = executor
        self._settings = settings
        self._handlers = handlers
        self._reporter_registry = reporter_registry or create_default_reporter_registry()
        self._github = github
        self._env = env

    def _store(self, options: RunOptions) -> WorkflowSessionStore:
        return WorkflowSessionStore(
            self._settings.sessions_path,
            SessionInfo(
                spec_file=options.spec_file,
                worktree_path=options.worktree_path,
                branch_name=options.branch_name,
            ),
        )

    async def run(
        self,
        options: RunOptions | None = None,
        initial_variables: Mapping[str, Any] | None = None,
    ) -> RunOutcome:
        options = options or RunOptions()
        store = self._store(options)
        session_id = store.create_session()

        pr_number, pr_url = options.pr_number, options.pr_url
        if options.open_draft_pr and pr_number is None and self._github is not None and options.branch_name:
            info = await asyncio.to_thread(
                self._github.open_draft_pull_request,
                title=f"Workflow: {self._definition.name}",
                head=options.branch_name,
                base=options.base_branch,
                body=f"Automated workflow run `{session_id}`.",
            )
            if info is not None:
                pr_number, pr_url = info.number, info.url

        ambient = {
            "sessionId": session_id,
            "specFile": options.spec_file,
            "branchName": options.branch_name,
            "worktreePath": options.worktree_path,
            "prNumber": pr_number,
            "prUrl": pr_url,
        }
        variables = dict(initial_variables or {})
        if options.spec_file:
            variables.setdefault("specPath", options.spec_file)

        result = await self._drive(
            store,
            ambient,
            options,
            lambda engine: engine.run(variables, ambient=ambient),
        )
        return RunOutcome(session_id=session_id, result=result)

    async def resume(self, session_id: str, options: RunOptions | None = None) -> RunOutcome:
        """Resume `session_id` from its checkpoint, loaded unmodified."""

        options = options or RunOptions()
        store = self._store(options)
        context = store.open_session(session_id)
        checkpoint: Checkpoint | None = store.load_checkpoint(session_id)
        if checkpoint is None:
            raise FileNotFoundError(f"No checkpoint found for session {session_id}")

        ambient = {
            "sessionId": session_id,
            "specFile": options.spec_file or context.get("specFile") or "",
            "branchName": options.branch_name or context.get("branchName") or "",
            "worktreePath": options.worktree_path or context.get("worktreePath") or "",
            "prNumber": options.pr_number,
            "prUrl": options.pr_url,
        }
        result = await self._drive(
            store,
            ambient,
            options,
            lambda engine: engine.resume(checkpoint, ambient=ambient),
        )
        return RunOutcome(session_id=session_id, result=result)

    async def _drive(
        self,
        store: WorkflowSessionStore,
        ambient: Mapping[str, Any],
        options: RunOptions,
        start: Any,
    ) -> WorkflowResult:
        manager = ReporterManager(self._definition, self._reporter_registry, env=self._env)
        try:
            await manager.initialize_reporters(
                ReporterInitOptions(
                    session_id=str(ambient["sessionId"]),
                    spec_file=str(ambient.get("specFile") or ""),
                    branch_name=str(ambient.get("branchName") or ""),
                    worktree_path=str(ambient.get("worktreePath") or ""),
                    pr_number=ambient.get("prNumber"),
                    pr_url=ambient.get("prUrl"),
                )
            )
            engine = WorkflowEngine(
                self._definition,
                executor=self._executor,
                handlers=self._handlers,
                settings=self._settings,
                audit_sinks=[store.append_audit_entry, manager.on_audit_entry],
                checkpoint_store=store,
                github=self._github,
                env=self._env,
                dry_run=options.dry_run,
            )
            try:
                result = await start(engine)
            except Exception as e:
                logger.exception("Workflow run crashed", extra={"session_id": ambient["sessionId"]})
                await manager.on_error(e)
                raise

            if result.status == "paused" and result.blocker_details:
                store.write_blocker(
                    result.blocker_details,
                    step=result.failed_step,
                    retries=result.retries,
                    last_output=result.last_output,
                )
            store.complete_session(result)

            if result.status == "completed" and result.summary is not None:
                await manager.on_complete(result.summary)
            else:
                await manager.on_error(_terminal_error(result))
            return result
        finally:
            await manager.dispose()
