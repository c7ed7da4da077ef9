"""CLI entrypoint for the workflow engine.

Commands:
- validate: load a workflow definition and print resolved step visibility
- run:      execute a workflow in a new session
- resume:   continue a paused or interrupted session from its checkpoint
"""

from __future__ import annotations

import argparse
import asyncio
import importlib
import json
import logging
import sys
from typing import Any

from pydantic import ValidationError

from agent_workflow_engine import __version__
from agent_workflow_engine.config import EngineSettings
from agent_workflow_engine.github.client import GitHubRepositoryClient
from agent_workflow_engine.logging import configure_logging
from agent_workflow_engine.reporters.manager import build_visibility_map
from agent_workflow_engine.runner import RunOptions, WorkflowRunner
from agent_workflow_engine.workflow.errors import DefinitionError
from agent_workflow_engine.workflow.handlers import create_default_handler_registry
from agent_workflow_engine.workflow.schema import load_workflow

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_PAUSED = 2


def load_executor(spec: str) -> Any:
    """Import an executor from 'package.module:attribute'.

    A class is instantiated with no arguments; any other callable is used as is.
    """

    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Executor must be given as 'module:attribute', got {spec!r}")
    module = importlib.import_module(module_name)
    target = getattr(module, attr)
    if isinstance(target, type):
        target = target()
    if not callable(target):
        raise TypeError(f"Executor {spec!r} is not callable")
    return target


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agent-workflow",
        description="Deterministic interpreter for declarative agent workflows",
    )
    parser.add_argument(
        "--version", action="version", version=f"agent-workflow-engine {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser("validate", help="Validate a workflow definition")
    validate.add_argument("workflow", help="Path to the workflow YAML file")

    run = subparsers.add_parser("run", help="Run a workflow in a new session")
    run.add_argument("workflow", help="Path to the workflow YAML file")
    run.add_argument("--spec", required=True, help="Specification file the workflow implements")
    run.add_argument(
        "--executor",
        required=True,
        help="Agent executor to use, as 'package.module:attribute'",
    )
    run.add_argument("--branch", default="", help="Git branch the run works on")
    run.add_argument("--worktree", default="", help="Working tree path handed to agents")
    run.add_argument("--base-branch", default="main", help="Base branch for the draft PR")
    run.add_argument("--pr-number", type=int, default=None, help="Existing pull request number")
    run.add_argument(
        "--open-draft-pr",
        action="store_true",
        help="Open a draft pull request for --branch before the run starts",
    )
    run.add_argument(
        "--dry-run",
        action="store_true",
        help="Stop before the 'execute' phase",
    )

    resume = subparsers.add_parser("resume", help="Resume a session from its checkpoint")
    resume.add_argument("workflow", help="Path to the workflow YAML file")
    resume.add_argument("--session-id", required=True, help="Session to resume")
    resume.add_argument(
        "--executor",
        required=True,
        help="Agent executor to use, as 'package.module:attribute'",
    )
    resume.add_argument("--pr-number", type=int, default=None, help="Existing pull request number")

    return parser


def _github_client(settings: EngineSettings) -> GitHubRepositoryClient | None:
    if not settings.github_enabled:
        return None
    return GitHubRepositoryClient(
        token=settings.github_token,
        repository=settings.github_repository,
        base_url=settings.github_base_url,
    )


def _exit_code(status: str) -> int:
    if status == "completed":
        return EXIT_OK
    if status == "paused":
        return EXIT_PAUSED
    return EXIT_FAILED


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = EngineSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return EXIT_FAILED

    configure_logging(settings.log_level, secrets=[settings.github_token])

    handlers = create_default_handler_registry()
    try:
        definition = load_workflow(args.workflow, handlers=handlers)
    except DefinitionError as e:
        logger.error("Invalid workflow definition", extra={"path": args.workflow})
        print(f"Invalid workflow: {e}", file=sys.stderr)
        return EXIT_FAILED

    if args.command == "validate":
        visibility = build_visibility_map(definition.phases)
        print(json.dumps({"workflow": definition.name, "steps": visibility}, indent=2))
        return EXIT_OK

    github = None
    try:
        executor = load_executor(args.executor)
        github = _github_client(settings)
        runner = WorkflowRunner(
            definition,
            executor=executor,
            settings=settings,
            handlers=handlers,
            github=github,
        )

        if args.command == "run":
            options = RunOptions(
                spec_file=args.spec,
                branch_name=args.branch,
                worktree_path=args.worktree,
                base_branch=args.base_branch,
                pr_number=args.pr_number,
                open_draft_pr=args.open_draft_pr,
                dry_run=args.dry_run,
            )
            outcome = asyncio.run(runner.run(options))
        elif args.command == "resume":
            outcome = asyncio.run(
                runner.resume(args.session_id, RunOptions(pr_number=args.pr_number))
            )
        else:
            logger.error("Unknown command", extra={"command": args.command})
            return EXIT_FAILED

        result = outcome.result
        print(f"Session {outcome.session_id}: {result.status}")
        if result.error:
            print(result.error, file=sys.stderr)
        if result.blocker_details:
            print(f"Blocker: {result.blocker_details}", file=sys.stderr)
        return _exit_code(result.status)

    except Exception:
        logger.exception("Command failed")
        return EXIT_FAILED

    finally:
        if github is not None:
            github.close()


if __name__ == "__main__":
    raise SystemExit(main())
