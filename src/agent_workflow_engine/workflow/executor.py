from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, Union


@dataclass(frozen=True, slots=True)
class AgentRequest:
    """Fully materialised inputs for one agent dispatch.

    Keep this explicit. The executor never sees the workflow context.
    """

    step_name: str
    agent: str
    instruction: str
    model: str
    working_directory: Path
    permission_mode: str = "bypassPermissions"
    setting_sources: tuple[str, ...] = ("project",)
    input: Any = None
    metadata: dict[str, object] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class AgentResult:
    ok: bool
    output: Any = None
    message: str = ""


AgentResponse = Union[AgentResult, Any, None]


class AgentExecutor(Protocol):
    """Performs the work named by an `agent` step.

    Executors are passive: they do not decide workflow transitions. A call may
    return an `AgentResult`, a plain structured value, `None`, or an async
    iterator of those; for an iterator the last non-None item wins.
    """

    async def __call__(
        self, request: AgentRequest
    ) -> AgentResponse | AsyncIterator[AgentResponse]: ...
