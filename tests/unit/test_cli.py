"""Unit tests for the command line entrypoint."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from agent_workflow_engine import main as cli

from conftest import ScriptedExecutor

WORKFLOW = """\
name: cli-workflow
version: 1
phases:
  - name: review
    agent: reviewer
    output: review
  - name: fix-loop
    type: loop
    condition: review.hasIssues
    maxRetries: 1
    steps:
      - name: fix
        agent: fixer
        reportAs: silent
      - name: review
        agent: reviewer
        output: review
"""


@pytest.fixture
def workflow_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    for name in ("WORKFLOW_GITHUB_TOKEN", "WORKFLOW_GITHUB_REPOSITORY", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("WORKFLOW_SESSIONS_PATH", str(tmp_path / "sessions"))
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(cli, "configure_logging", lambda level, **kwargs: None)

    path = tmp_path / "workflow.yaml"
    path.write_text(WORKFLOW, encoding="utf-8")
    return path


def _use_executor(monkeypatch: pytest.MonkeyPatch, executor: ScriptedExecutor) -> None:
    monkeypatch.setattr(cli, "load_executor", lambda spec: executor)


def test_validate_prints_visibility(workflow_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["validate", str(workflow_file)]) == cli.EXIT_OK

    out = json.loads(capsys.readouterr().out)
    assert out == {
        "workflow": "cli-workflow",
        "steps": {"review": "visible", "fix-loop": "visible", "fix": "silent"},
    }


def test_validate_rejects_invalid_definition(
    workflow_file: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    workflow_file.write_text(WORKFLOW.replace("review.hasIssues", "review.hasIssues &&"), encoding="utf-8")

    assert cli.main(["validate", str(workflow_file)]) == cli.EXIT_FAILED
    assert "Invalid workflow" in capsys.readouterr().err


def test_run_completes(
    workflow_file: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    executor = ScriptedExecutor({"review": {"hasIssues": False}})
    _use_executor(monkeypatch, executor)

    code = cli.main(["run", str(workflow_file), "--spec", "specs/x.md", "--executor", "pkg:Exec"])

    assert code == cli.EXIT_OK
    assert executor.calls == ["review"]
    assert ": completed" in capsys.readouterr().out


def test_run_paused_exits_with_distinct_code(
    workflow_file: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    _use_executor(monkeypatch, ScriptedExecutor({"review": {"hasIssues": True}}))

    code = cli.main(["run", str(workflow_file), "--spec", "specs/x.md", "--executor", "pkg:Exec"])

    assert code == cli.EXIT_PAUSED
    assert "Blocker:" in capsys.readouterr().err


def test_resume_unknown_session_fails(workflow_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _use_executor(monkeypatch, ScriptedExecutor())

    code = cli.main(
        ["resume", str(workflow_file), "--session-id", "wf-nope", "--executor", "pkg:Exec"]
    )

    assert code == cli.EXIT_FAILED


def test_load_executor() -> None:
    assert cli.load_executor("json:dumps") is json.dumps
    with pytest.raises(ValueError):
        cli.load_executor("json.dumps")
    with pytest.raises(TypeError):
        cli.load_executor("collections:OrderedDict")
