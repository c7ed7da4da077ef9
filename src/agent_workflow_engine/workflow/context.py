"""Run-scoped variable store, dot-path resolution and template rendering.

Templates are rendered with a sandboxed Jinja2 environment. Three namespaces
are visible to a template:

- bare names: step outputs and ambient run values (`{{ review.summary }}`)
- `env.*`: environment-style configuration (`{{ env.GITHUB_TOKEN }}`)
- `context.*`: ambient run values only (`{{ context.sessionId }}`)

Anything that does not resolve renders as an empty string.
"""

from __future__ import annotations

import json
import os
import re
from collections import ChainMap
from collections.abc import Mapping, Sequence
from functools import lru_cache
from typing import Any

from jinja2 import ChainableUndefined, Template, TemplateSyntaxError, Undefined
from jinja2.sandbox import SandboxedEnvironment

from .errors import DefinitionError
from .state_machine import Checkpoint

_PATH_RE = re.compile(r"^[A-Za-z_$][\w$-]*(\.[\w$-]+)*$")
_INTEGER_RE = re.compile(r"^\d+$")

# Bindings that only exist for the duration of one per-task iteration.
TASK_BINDINGS: frozenset[str] = frozenset({"task", "taskIndex", "taskCount", "taskId"})


class _Missing:
    """Sentinel for a path that does not resolve."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


def is_valid_path(path: str) -> bool:
    return bool(_PATH_RE.match(path))


def resolve_path(path: str, root: Mapping[str, Any]) -> Any:
    """Resolve a dot-notation path against nested mappings and sequences.

    Returns `MISSING` when any segment is absent or an intermediate value is
    `None`; never raises. Numeric segments index into lists.
    """

    current: Any = root
    for part in path.split("."):
        if current is None or current is MISSING:
            return MISSING
        if part.startswith("__"):
            return MISSING
        if isinstance(current, Mapping):
            if part not in current:
                return MISSING
            current = current[part]
        elif isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
            if not part.isdigit():
                return MISSING
            index = int(part)
            if index >= len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


class _TemplateEnvironment(SandboxedEnvironment):
    """Sandboxed environment where mapping keys win over attribute names.

    Without this, `{{ review.items }}` would resolve to `dict.items`.
    """

    def getattr(self, obj: Any, attribute: str) -> Any:
        if isinstance(obj, Mapping):
            try:
                return obj[attribute]
            except (KeyError, TypeError):
                return self.undefined(obj=obj, name=attribute)
        return super().getattr(obj, attribute)


def _finalize(value: Any) -> Any:
    if value is None or value is MISSING or isinstance(value, Undefined):
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return value


_ENVIRONMENT = _TemplateEnvironment(
    undefined=ChainableUndefined,
    finalize=_finalize,
    autoescape=False,
    keep_trailing_newline=True,
)


@lru_cache(maxsize=256)
def _compile(template: str) -> Template:
    return _ENVIRONMENT.from_string(template)


def validate_template(template: str, *, where: str = "template") -> None:
    """Raise `DefinitionError` if `template` is not valid template syntax."""

    try:
        _ENVIRONMENT.parse(template)
    except TemplateSyntaxError as e:
        raise DefinitionError(f"Invalid {where} {template!r}: {e.message} (line {e.lineno})") from e


def render_template(template: str, namespace: Mapping[str, Any]) -> str:
    """Render `template` against `namespace`; unresolved placeholders become ''."""

    return _compile(template).render(dict(namespace))


def coerce_integer(value: str) -> int | str:
    """Return `int(value)` when the whole string is an unsigned integer."""

    return int(value) if _INTEGER_RE.match(value) else value


class WorkflowContext:
    """All mutable state of one workflow run.

    Holds named step outputs and ambient run metadata, and provides dot-path
    resolution, template rendering, per-task forking and checkpointing.
    """

    def __init__(
        self,
        variables: Mapping[str, Any] | None = None,
        *,
        ambient: Mapping[str, Any] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._variables: dict[str, Any] = dict(variables or {})
        self._ambient: dict[str, Any] = {
            k: v for k, v in (ambient or {}).items() if v is not None
        }
        self._env: Mapping[str, str] = env if env is not None else os.environ
        self._completed_phases: list[str] = []
        self._changed_files: list[str] = []
        self._current_task_id: str | None = None
        self._current_phase: str | None = None

    # --- variables ---

    def set(self, name: str, value: Any) -> None:
        self._variables[name] = value

    def get(self, name: str, default: Any = None) -> Any:
        if name in self._variables:
            return self._variables[name]
        return self._ambient.get(name, default)

    def resolve(self, path: str) -> Any:
        """Resolve a dot path; step outputs shadow ambient values of the same name."""

        return resolve_path(path, ChainMap(self._variables, self._ambient))

    @property
    def ambient(self) -> dict[str, Any]:
        return dict(self._ambient)

    def template_vars(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self._ambient)
        out.update(self._variables)
        return out

    def render(self, template: str, extra: Mapping[str, Any] | None = None) -> str:
        namespace = self.template_vars()
        if extra:
            namespace.update(extra)
        namespace["env"] = self._env
        namespace["context"] = dict(self._ambient)
        return render_template(template, namespace)

    def resolve_config(self, config: Mapping[str, Any]) -> dict[str, Any]:
        """Render top-level string values of a config block, coercing integers."""

        resolved: dict[str, Any] = {}
        for key, value in config.items():
            if isinstance(value, str):
                resolved[key] = coerce_integer(self.render(value))
            else:
                resolved[key] = value
        return resolved

    # --- per-task iteration ---

    def with_task(self, task: Any, *, index: int, count: int) -> WorkflowContext:
        """Fork a child context for one per-task iteration (`index` is 1-based)."""

        child = WorkflowContext(self._variables, ambient=self._ambient, env=self._env)
        child.set("task", task)
        child.set("taskIndex", index)
        child.set("taskCount", count)
        task_id = task.get("id") if isinstance(task, Mapping) else None
        child._current_task_id = str(task_id) if task_id is not None else f"task-{index:03d}"
        child.set("taskId", child._current_task_id)
        child._completed_phases = list(self._completed_phases)
        child._changed_files = list(self._changed_files)
        child._current_phase = self._current_phase
        return child

    def merge_task_results(self, child: WorkflowContext) -> None:
        """Propagate values the child bound or rebound back into this context."""

        for key, value in child._variables.items():
            if key in TASK_BINDINGS:
                continue
            if key not in self._variables or self._variables[key] is not value:
                self._variables[key] = value
        for path in child._changed_files:
            self.add_changed_file(path)
        for phase in child._completed_phases:
            self.mark_phase_completed(phase)

    @property
    def current_task_id(self) -> str | None:
        return self._current_task_id

    # --- changed files ---

    def add_changed_file(self, path: str) -> None:
        if path not in self._changed_files:
            self._changed_files.append(path)

    def add_changed_files_from_result(self, result: Any) -> None:
        if not isinstance(result, Mapping):
            return
        files = result.get("filesChanged")
        if not isinstance(files, list):
            return
        for item in files:
            if isinstance(item, Mapping) and isinstance(item.get("path"), str):
                self.add_changed_file(item["path"])

    @property
    def changed_files(self) -> list[str]:
        return list(self._changed_files)

    # --- phases ---

    @property
    def current_phase(self) -> str | None:
        return self._current_phase

    @current_phase.setter
    def current_phase(self, name: str | None) -> None:
        self._current_phase = name

    def mark_phase_completed(self, name: str) -> None:
        if name not in self._completed_phases:
            self._completed_phases.append(name)

    @property
    def completed_phases(self) -> list[str]:
        return list(self._completed_phases)

    # --- checkpointing ---

    def to_checkpoint(self) -> Checkpoint:
        return Checkpoint(
            variables=dict(self._variables),
            completed_phases=list(self._completed_phases),
            changed_files=list(self._changed_files),
            current_phase=self._current_phase,
        )

    @classmethod
    def from_checkpoint(
        cls,
        checkpoint: Checkpoint,
        *,
        ambient: Mapping[str, Any] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> WorkflowContext:
        ctx = cls(checkpoint.variables, ambient=ambient, env=env)
        # Taken verbatim: regenerating this list would silently discard progress.
        ctx._completed_phases = list(checkpoint.completed_phases)
        ctx._changed_files = list(checkpoint.changed_files)
        ctx._current_phase = checkpoint.current_phase
        return ctx
