"""Unit tests for workflow definition loading and load-time checks."""

from __future__ import annotations

from pathlib import Path

import pytest

from agent_workflow_engine.workflow.errors import DefinitionError, UnknownHandlerError
from agent_workflow_engine.workflow.handlers import create_default_handler_registry
from agent_workflow_engine.workflow.schema import (
    AgentStep,
    CodeStep,
    LoopStep,
    ParallelStep,
    PerTaskStep,
    iter_steps,
    load_workflow,
    parse_workflow,
)

WORKFLOW_YAML = """\
name: spec-implementation
version: 1
defaults:
  model: sonnet
phases:
  - name: analyze
    agent: analyzer
    prompt: "Analyse {{ specPath }}"
    output: analysis
  - name: plan
    type: code
    handler: create-issues
  - name: execute
    type: per-task
    source: analysis.tasks
    steps:
      - name: implement
        agent: implementer
        prompt: "Implement {{ task.title }}"
        output: implementation
      - name: review-fix
        type: loop
        condition: review.hasIssues
        maxRetries: 2
        onExhausted: warn
        steps:
          - name: review
            agent: reviewer
            output: review
            reportAs: summary
  - name: verify
    type: parallel
    reportAs: silent
    steps:
      - name: tests
        agent: tester
      - name: lint
        agent: linter
reporters:
  - type: github-pr-comment
    config:
      token: "{{ env.GITHUB_TOKEN }}"
      prNumber: "{{ context.prNumber }}"
"""


def test_load_workflow_from_yaml(tmp_path: Path) -> None:
    path = tmp_path / "workflow.yaml"
    path.write_text(WORKFLOW_YAML, encoding="utf-8")

    definition = load_workflow(path, handlers=create_default_handler_registry())

    assert definition.name == "spec-implementation"
    assert definition.defaults.model == "sonnet"
    assert definition.phase_names == ["analyze", "plan", "execute", "verify"]
    assert isinstance(definition.phases[0], AgentStep)
    assert isinstance(definition.phases[1], CodeStep)
    assert isinstance(definition.phases[2], PerTaskStep)
    assert isinstance(definition.phases[3], ParallelStep)

    loop = definition.phases[2].steps[1]
    assert isinstance(loop, LoopStep)
    assert loop.max_retries == 2
    assert loop.on_exhausted == "warn"
    assert loop.steps[0].report_as == "summary"

    assert definition.reporters[0].type == "github-pr-comment"
    assert definition.reporters[0].config["token"] == "{{ env.GITHUB_TOKEN }}"


def test_step_type_defaults_to_agent() -> None:
    definition = parse_workflow(
        {"name": "w", "version": 1, "phases": [{"name": "a", "agent": "x"}]}
    )

    step = definition.phases[0]
    assert isinstance(step, AgentStep)
    assert step.type == "agent"
    assert step.report_as == "visible"
    assert step.enabled is True


def test_loop_on_exhausted_defaults_to_escalate() -> None:
    definition = parse_workflow(
        {
            "name": "w",
            "version": 1,
            "phases": [
                {
                    "name": "fix",
                    "type": "loop",
                    "condition": "review.hasIssues",
                    "maxRetries": 3,
                    "steps": [{"name": "r", "agent": "x"}],
                }
            ],
        }
    )

    assert definition.phases[0].on_exhausted == "escalate"


def test_iter_steps_is_depth_first(tmp_path: Path) -> None:
    path = tmp_path / "workflow.yaml"
    path.write_text(WORKFLOW_YAML, encoding="utf-8")
    definition = load_workflow(path)

    names = [s.name for s in iter_steps(definition.phases)]

    assert names == [
        "analyze",
        "plan",
        "execute",
        "implement",
        "review-fix",
        "review",
        "verify",
        "tests",
        "lint",
    ]


@pytest.mark.parametrize(
    ("phases", "message"),
    [
        (
            [
                {
                    "name": "fix",
                    "type": "loop",
                    "condition": "review.hasIssues &&",
                    "maxRetries": 1,
                    "steps": [{"name": "r", "agent": "x"}],
                }
            ],
            "Step 'fix': invalid condition 'review.hasIssues &&'",
        ),
        (
            [{"name": "a", "agent": "x", "failWhen": "result ="}],
            "Step 'a': invalid failWhen 'result ='",
        ),
        (
            [{"name": "a", "agent": "x", "prompt": "{% if %}"}],
            "prompt of step 'a'",
        ),
        (
            [{"name": "a", "agent": "x", "input": "not a path!"}],
            "Step 'a': invalid input path 'not a path!'",
        ),
        (
            [
                {
                    "name": "each",
                    "type": "per-task",
                    "source": "tasks..bad",
                    "steps": [{"name": "r", "agent": "x"}],
                }
            ],
            "Step 'each': invalid source path",
        ),
    ],
)
def test_load_time_checks_name_the_step(phases: list[dict[str, object]], message: str) -> None:
    with pytest.raises(DefinitionError) as exc_info:
        parse_workflow({"name": "w", "version": 1, "phases": phases})

    assert message in str(exc_info.value)


def test_unknown_handler_is_rejected_when_registry_supplied() -> None:
    raw = {"name": "w", "version": 1, "phases": [{"name": "c", "type": "code", "handler": "nope"}]}

    with pytest.raises(UnknownHandlerError, match="nope"):
        parse_workflow(raw, handlers=create_default_handler_registry())

    # Without a registry the handler name is not checked.
    assert parse_workflow(raw).phases[0].handler == "nope"


@pytest.mark.parametrize(
    "raw",
    [
        {"name": "w", "version": 1, "phases": []},
        {"name": "w", "version": 0, "phases": [{"name": "a", "agent": "x"}]},
        {"name": "w", "version": 1, "phases": [{"name": "a", "type": "teleport"}]},
        {"name": "w", "version": 1, "phases": [{"name": "p", "type": "parallel", "steps": []}]},
        {
            "name": "w",
            "version": 1,
            "phases": [
                {
                    "name": "l",
                    "type": "loop",
                    "condition": "x",
                    "maxRetries": 0,
                    "steps": [{"name": "a", "agent": "x"}],
                }
            ],
        },
        {"name": "w", "version": 1, "phases": [{"name": "a", "agent": "x", "reportAs": "loud"}]},
    ],
)
def test_invalid_definitions_are_rejected(raw: dict[str, object]) -> None:
    with pytest.raises(DefinitionError):
        parse_workflow(raw)


def test_invalid_yaml_is_wrapped(tmp_path: Path) -> None:
    path = tmp_path / "broken.yaml"
    path.write_text("name: [unclosed\n", encoding="utf-8")

    with pytest.raises(DefinitionError, match="Invalid YAML"):
        load_workflow(path)


def test_duplicate_phase_names_are_rejected() -> None:
    with pytest.raises(DefinitionError, match="Duplicate phase name 'build'"):
        parse_workflow(
            {
                "name": "w",
                "version": 1,
                "phases": [
                    {"name": "build", "agent": "x", "output": "a"},
                    {"name": "build", "agent": "y", "output": "b"},
                ],
            }
        )


def test_duplicate_nested_step_names_are_accepted() -> None:
    definition = parse_workflow(
        {
            "name": "w",
            "version": 1,
            "phases": [
                {"name": "one", "type": "parallel", "steps": [{"name": "same", "agent": "x"}]},
                {"name": "two", "type": "parallel", "steps": [{"name": "same", "agent": "y"}]},
            ],
        }
    )

    assert [s.name for s in iter_steps(definition.phases)] == ["one", "same", "two", "same"]

