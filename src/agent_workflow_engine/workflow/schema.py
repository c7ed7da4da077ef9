"""Workflow definition models and the YAML loader.

A workflow is a tree of typed steps. The five step kinds form a tagged union
on `type`; a step without a `type` is an `agent` step.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from pathlib import Path
from typing import Annotated, Any, Literal, Protocol, Union

import yaml
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .conditions import parse_condition
from .context import is_valid_path, validate_template
from .errors import ConditionSyntaxError, DefinitionError, UnknownHandlerError

ReportAs = Literal["visible", "silent", "summary"]
OnExhausted = Literal["escalate", "warn", "fail"]


class _Model(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class _StepBase(_Model):
    name: str = Field(min_length=1)
    report_as: ReportAs = "visible"
    output: str | None = None
    fail_when: str | None = None
    enabled: bool = True


class AgentStep(_StepBase):
    type: Literal["agent"] = "agent"
    agent: str = Field(min_length=1)
    prompt: str | None = None
    input: str | None = None
    model: str | None = None


class CodeStep(_StepBase):
    type: Literal["code"]
    handler: str = Field(min_length=1)
    input: str | None = None


class ParallelStep(_StepBase):
    type: Literal["parallel"]
    steps: list[Step] = Field(min_length=1)


class LoopStep(_StepBase):
    type: Literal["loop"]
    condition: str = Field(min_length=1)
    max_retries: int = Field(ge=1)
    on_exhausted: OnExhausted = "escalate"
    steps: list[Step] = Field(min_length=1)


class PerTaskStep(_StepBase):
    type: Literal["per-task"]
    source: str = Field(min_length=1)
    steps: list[Step] = Field(min_length=1)


def _default_step_type(value: Any) -> Any:
    if isinstance(value, Mapping) and "type" not in value:
        return {**value, "type": "agent"}
    return value


Step = Annotated[
    Annotated[
        Union[AgentStep, CodeStep, ParallelStep, LoopStep, PerTaskStep],
        Field(discriminator="type"),
    ],
    BeforeValidator(_default_step_type),
]

ContainerStep = Union[ParallelStep, LoopStep, PerTaskStep]


class WorkflowDefaults(_Model):
    model: str = "opus"
    permission_mode: str = "bypassPermissions"
    setting_sources: list[str] = Field(default_factory=lambda: ["project"])


class ReporterConfig(_Model):
    type: str = Field(min_length=1)
    config: dict[str, Any] = Field(default_factory=dict)


class WorkflowDefinition(_Model):
    name: str = Field(min_length=1)
    version: int = Field(gt=0)
    defaults: WorkflowDefaults = Field(default_factory=WorkflowDefaults)
    phases: list[Step] = Field(min_length=1)
    reporters: list[ReporterConfig] = Field(default_factory=list)

    @property
    def phase_names(self) -> list[str]:
        return [p.name for p in self.phases]


ParallelStep.model_rebuild()
LoopStep.model_rebuild()
PerTaskStep.model_rebuild()
WorkflowDefinition.model_rebuild()


class HandlerLookup(Protocol):
    def has(self, name: str) -> bool: ...

    def names(self) -> list[str]: ...


def iter_steps(steps: Sequence[Any]) -> Iterator[Any]:
    """Depth-first, pre-order walk over a step tree."""

    for step in steps:
        yield step
        children = getattr(step, "steps", None)
        if children:
            yield from iter_steps(children)


def _check_condition(step: Any, field: str, text: str) -> None:
    try:
        parse_condition(text)
    except ConditionSyntaxError as e:
        raise DefinitionError(f"Step {step.name!r}: invalid {field} {text!r}: {e.reason}") from e


def _check_path(step: Any, field: str, path: str) -> None:
    if not is_valid_path(path):
        raise DefinitionError(f"Step {step.name!r}: invalid {field} path {path!r}")


def validate_definition(
    definition: WorkflowDefinition, *, handlers: HandlerLookup | None = None
) -> None:
    """Run the checks that pydantic validation cannot express."""

    # Completed phases are tracked by name; nested step names may repeat.
    seen: set[str] = set()
    for phase in definition.phases:
        if phase.name in seen:
            raise DefinitionError(f"Duplicate phase name {phase.name!r}")
        seen.add(phase.name)

    for step in iter_steps(definition.phases):
        if step.fail_when is not None:
            _check_condition(step, "failWhen", step.fail_when)

        match step:
            case AgentStep():
                if step.prompt is not None:
                    validate_template(step.prompt, where=f"prompt of step {step.name!r}")
                if step.input is not None:
                    _check_path(step, "input", step.input)
            case CodeStep():
                if step.input is not None:
                    _check_path(step, "input", step.input)
                if handlers is not None and not handlers.has(step.handler):
                    raise UnknownHandlerError(step.handler, handlers.names())
            case LoopStep():
                _check_condition(step, "condition", step.condition)
            case PerTaskStep():
                _check_path(step, "source", step.source)
            case ParallelStep():
                pass


def parse_workflow(
    raw: Mapping[str, Any], *, handlers: HandlerLookup | None = None
) -> WorkflowDefinition:
    """Validate a raw mapping (e.g. parsed YAML) into a `WorkflowDefinition`."""

    if not isinstance(raw, Mapping):
        raise DefinitionError("Workflow definition must be a mapping")
    try:
        definition = WorkflowDefinition.model_validate(raw)
    except ValidationError as e:
        raise DefinitionError(f"Invalid workflow definition: {e}") from e
    validate_definition(definition, handlers=handlers)
    return definition


def load_workflow(path: Path | str, *, handlers: HandlerLookup | None = None) -> WorkflowDefinition:
    """Load and validate a workflow definition from a YAML file."""

    path = Path(path)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise DefinitionError(f"Cannot read workflow file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise DefinitionError(f"Invalid YAML in {path}: {e}") from e
    return parse_workflow(raw, handlers=handlers)
