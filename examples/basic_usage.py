#!/usr/bin/env python3
"""Programmatic workflow run example.

This demonstrates using the engine components directly:

* load settings from `.env`
* load and validate a workflow definition
* run it with a stand-in agent executor
* persist the session under `.workflow/sessions/<session-id>/`

The executor here answers every step with canned data. A real executor would
dispatch `request.instruction` to an agent running in `request.working_directory`.
"""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import Any, Sequence

from agent_workflow_engine.config import EngineSettings
from agent_workflow_engine.logging import configure_logging
from agent_workflow_engine.runner import RunOptions, WorkflowRunner
from agent_workflow_engine.workflow import load_workflow
from agent_workflow_engine.workflow.executor import AgentRequest, AgentResult
from agent_workflow_engine.workflow.handlers import create_default_handler_registry


class CannedExecutor:
    """Returns a fixed answer per step name."""

    def __init__(self) -> None:
        self._answers: dict[str, Any] = {
            "analyze": {
                "tasks": [
                    {"title": "Add response cache", "description": "LRU with TTL"},
                    {"title": "Expose cache metrics"},
                ]
            },
            "review": {"hasIssues": False, "issues": []},
            "tests": {"failed": 0},
            "lint": {"warnings": 0},
        }

    async def __call__(self, request: AgentRequest) -> AgentResult:
        print(f"[{request.agent}] {request.step_name}")
        return AgentResult(ok=True, output=self._answers.get(request.step_name))


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a workflow (programmatic example).")
    parser.add_argument(
        "--workflow",
        default=str(Path(__file__).with_name("spec-implementation.yaml")),
        help="Workflow YAML file",
    )
    parser.add_argument("--spec", default="specs/cache.md", help="Specification file")
    parser.add_argument("--dry-run", action="store_true", help="Stop before the execute phase")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = EngineSettings()
    configure_logging(settings.log_level, secrets=[settings.github_token])

    handlers = create_default_handler_registry()
    definition = load_workflow(args.workflow, handlers=handlers)

    runner = WorkflowRunner(
        definition,
        executor=CannedExecutor(),
        settings=settings,
        handlers=handlers,
    )
    outcome = asyncio.run(runner.run(RunOptions(spec_file=args.spec, dry_run=args.dry_run)))

    result = outcome.result
    print(f"Session {outcome.session_id}: {result.status}")
    print(f"Completed phases: {', '.join(result.completed_phases)}")
    if result.summary is not None:
        print(f"Steps: {result.summary.counts}")
    print(f"Persisted to: {settings.sessions_path / outcome.session_id}")
    return 0 if result.status == "completed" else 1


if __name__ == "__main__":
    raise SystemExit(main())
