"""Unit tests for end-to-end run wiring: session, engine and reporters."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any
from unittest.mock import Mock

import pytest

from agent_workflow_engine.config import EngineSettings
from agent_workflow_engine.github.client import GitHubRepositoryClient, PullRequestInfo
from agent_workflow_engine.github.comments import IssueCommentClient
from agent_workflow_engine.reporters.github_pr_comment import GitHubPRCommentReporter
from agent_workflow_engine.reporters.registry import ReporterRegistry
from agent_workflow_engine.runner import RunOptions, WorkflowRunner
from agent_workflow_engine.workflow.schema import WorkflowDefinition

from conftest import RecordingReporter, ScriptedExecutor

MakeDefinition = Callable[..., WorkflowDefinition]

PR_COMMENT_REPORTER = {
    "type": "github-pr-comment",
    "config": {
        "token": "{{ env.GH_TOKEN }}",
        "owner": "octo-org",
        "repo": "octo-repo",
        "prNumber": "{{ context.prNumber }}",
        "debounceMs": 0,
    },
}


def _recording_registry(reporter: RecordingReporter) -> ReporterRegistry:
    registry = ReporterRegistry()
    registry.register("recording", lambda config: reporter)
    return registry


@pytest.mark.asyncio
async def test_three_step_run_ends_with_final_comment(
    make_definition: MakeDefinition, settings: EngineSettings
) -> None:
    client = Mock(spec=IssueCommentClient)
    client.create_comment.return_value = 555
    registry = ReporterRegistry()
    registry.register("github-pr-comment", lambda config: GitHubPRCommentReporter(config, client=client))

    definition = make_definition(
        [{"name": "A", "agent": "a"}, {"name": "B", "agent": "b"}, {"name": "C", "agent": "c"}],
        reporters=[PR_COMMENT_REPORTER],
    )
    runner = WorkflowRunner(
        definition,
        executor=ScriptedExecutor(),
        settings=settings,
        reporter_registry=registry,
        env={"GH_TOKEN": "ghp_runner_token"},
    )

    outcome = await runner.run(RunOptions(spec_file="specs/x.md", pr_number=7))

    assert outcome.result.status == "completed"
    client.create_comment.assert_called_once()
    final = client.update_comment.call_args.args[1]
    assert final.startswith(f"<!-- agent-workflow: {outcome.session_id} -->")
    for name in ("A", "B", "C"):
        row = next(line for line in final.splitlines() if line.startswith(f"| {name} |"))
        assert ":white_check_mark: Done" in row
    assert final.splitlines()[-1].endswith("| 3 steps executed")
    assert "ghp_runner_token" not in final


@pytest.mark.asyncio
async def test_run_persists_session_and_audit(
    make_definition: MakeDefinition, settings: EngineSettings
) -> None:
    definition = make_definition([{"name": "analyze", "agent": "analyzer", "output": "analysis"}])
    executor = ScriptedExecutor({"analyze": {"tasks": []}})
    runner = WorkflowRunner(definition, executor=executor, settings=settings, env={})

    outcome = await runner.run(RunOptions(spec_file="specs/x.md", branch_name="feature/x"))

    session_dir = settings.sessions_path / outcome.session_id
    context = json.loads((session_dir / "context.json").read_text())
    assert context["status"] == "completed"
    assert context["phasesCompleted"] == ["analyze"]
    steps = [json.loads(line)["step"] for line in (session_dir / "audit.jsonl").read_text().splitlines()]
    assert steps == ["init", "analyze", "analyze", "complete"]
    checkpoint = json.loads((session_dir / "checkpoint.json").read_text())
    assert checkpoint["variables"]["specPath"] == "specs/x.md"


@pytest.mark.asyncio
async def test_paused_run_writes_blocker_and_reports_error(
    make_definition: MakeDefinition, settings: EngineSettings
) -> None:
    reporter = RecordingReporter()
    definition = make_definition(
        [
            {"name": "review", "agent": "reviewer", "output": "review"},
            {
                "name": "fix-loop",
                "type": "loop",
                "condition": "review.hasIssues",
                "maxRetries": 1,
                "steps": [{"name": "review", "agent": "reviewer", "output": "review"}],
            },
        ],
        reporters=[{"type": "recording"}],
    )
    runner = WorkflowRunner(
        definition,
        executor=ScriptedExecutor({"review": {"hasIssues": True, "issue": "null deref"}}),
        settings=settings,
        reporter_registry=_recording_registry(reporter),
        env={},
    )

    outcome = await runner.run()

    assert outcome.result.status == "paused"
    blocker = json.loads((settings.sessions_path / outcome.session_id / "blocker.json").read_text())
    assert "fix-loop" in blocker["details"]
    assert "null deref" in blocker["details"]
    assert blocker["step"] == "fix-loop"
    assert blocker["retries"] == 1
    assert blocker["lastOutput"] == {"hasIssues": True, "issue": "null deref"}
    assert reporter.calls.count("on_error") == 1
    assert reporter.calls.count("dispose") == 1
    assert "on_complete" not in reporter.calls
    assert reporter.calls[-1] == "dispose"


@pytest.mark.asyncio
async def test_failed_run_reports_error_once(
    make_definition: MakeDefinition, settings: EngineSettings
) -> None:
    reporter = RecordingReporter()
    definition = make_definition(
        [{"name": "a", "agent": "x", "output": "a", "failWhen": "a.blocked"}],
        reporters=[{"type": "recording"}],
    )
    runner = WorkflowRunner(
        definition,
        executor=ScriptedExecutor({"a": {"blocked": True}}),
        settings=settings,
        reporter_registry=_recording_registry(reporter),
        env={},
    )

    outcome = await runner.run()

    assert outcome.result.status == "failed"
    (error,) = reporter.errors
    assert "a.blocked" in str(error)
    assert reporter.calls.count("dispose") == 1


@pytest.mark.asyncio
async def test_reporter_failures_never_fail_the_run(
    make_definition: MakeDefinition, settings: EngineSettings
) -> None:
    reporter = RecordingReporter(fail_on="on_audit_entry")
    definition = make_definition([{"name": "a", "agent": "x"}], reporters=[{"type": "recording"}])
    runner = WorkflowRunner(
        definition,
        executor=ScriptedExecutor(),
        settings=settings,
        reporter_registry=_recording_registry(reporter),
        env={},
    )

    outcome = await runner.run()

    assert outcome.result.status == "completed"
    assert reporter.calls[-2:] == ["on_complete", "dispose"]


@pytest.mark.asyncio
async def test_resume_continues_from_checkpoint(
    make_definition: MakeDefinition, settings: EngineSettings
) -> None:
    definition = make_definition(
        [
            {"name": "analyze", "agent": "analyzer", "output": "analysis"},
            {"name": "implement", "agent": "implementer", "output": "impl", "failWhen": "impl.broken"},
        ]
    )
    first = ScriptedExecutor({"analyze": {"tasks": []}, "implement": {"broken": True}})
    failed = await WorkflowRunner(definition, executor=first, settings=settings, env={}).run()
    assert failed.result.status == "failed"

    second = ScriptedExecutor({"implement": {"broken": False}})
    resumed = await WorkflowRunner(definition, executor=second, settings=settings, env={}).resume(
        failed.session_id
    )

    assert resumed.session_id == failed.session_id
    assert resumed.result.status == "completed"
    assert second.calls == ["implement"]
    assert resumed.result.completed_phases == ["analyze", "implement"]


@pytest.mark.asyncio
async def test_resume_without_checkpoint_raises(
    make_definition: MakeDefinition, settings: EngineSettings
) -> None:
    runner = WorkflowRunner(
        make_definition([{"name": "a", "agent": "x"}]),
        executor=ScriptedExecutor(),
        settings=settings,
        env={},
    )

    with pytest.raises(FileNotFoundError):
        await runner.resume("wf-2025-01-01-00000000")


@pytest.mark.asyncio
async def test_open_draft_pr_feeds_reporter_context(
    make_definition: MakeDefinition, settings: EngineSettings
) -> None:
    reporter = RecordingReporter()
    github = Mock(spec=GitHubRepositoryClient)
    github.open_draft_pull_request.return_value = PullRequestInfo(
        number=99, url="https://github.com/octo-org/octo-repo/pull/99"
    )
    definition = make_definition([{"name": "a", "agent": "x"}], reporters=[{"type": "recording"}])
    runner = WorkflowRunner(
        definition,
        executor=ScriptedExecutor(),
        settings=settings,
        reporter_registry=_recording_registry(reporter),
        github=github,
        env={},
    )

    await runner.run(RunOptions(branch_name="feature/x", open_draft_pr=True))

    assert github.open_draft_pull_request.call_args.kwargs["head"] == "feature/x"
    assert reporter.context.pr_number == 99
    assert reporter.context.pr_url.endswith("/pull/99")
