"""Exception taxonomy for definition loading and step execution."""

from __future__ import annotations

from typing import Any


class DefinitionError(ValueError):
    """A workflow definition was rejected at load time."""


class ConditionSyntaxError(DefinitionError):
    """A condition expression could not be parsed."""

    def __init__(self, expression: str, position: int, reason: str) -> None:
        self.expression = expression
        self.position = position
        self.reason = reason
        super().__init__(f"Invalid condition {expression!r} at offset {position}: {reason}")


class UnknownHandlerError(DefinitionError, LookupError):
    """A code step names a handler that is not registered."""

    def __init__(self, name: str, available: list[str]) -> None:
        self.name = name
        self.available = available
        names = ", ".join(available) or "none"
        super().__init__(f"No handler registered with name {name!r}. Available handlers: {names}")


class StepExecutionError(RuntimeError):
    """An agent dispatch or code handler failed."""

    def __init__(self, step_name: str, message: str) -> None:
        self.step_name = step_name
        super().__init__(f"Step {step_name!r} failed: {message}")


class WorkflowFailure(Exception):
    """Terminal failure: a `failWhen` condition held, or a step failed unrecovered."""

    def __init__(self, step_name: str, condition: str | None = None, message: str | None = None):
        self.step_name = step_name
        self.condition = condition
        if message is None:
            message = f"Step {step_name!r} failed: condition {condition!r} evaluated to true"
        super().__init__(message)


class WorkflowPaused(Exception):
    """Terminal pause: a loop escalated after exhausting its retries."""

    def __init__(
        self,
        step_name: str,
        blocker_details: str,
        *,
        retries: int | None = None,
        last_output: Any = None,
    ) -> None:
        self.step_name = step_name
        self.blocker_details = blocker_details
        self.retries = retries
        self.last_output = last_output
        super().__init__(f"Workflow paused at step {step_name!r}: {blocker_details}")
