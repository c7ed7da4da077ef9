from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .github_pr_comment import GitHubPRCommentReporter
from .types import ReporterFactory, WorkflowReporter


class ReporterRegistry:
    """Explicit type -> factory table, built once and passed to the manager."""

    def __init__(self) -> None:
        self._factories: dict[str, ReporterFactory] = {}

    def register(self, reporter_type: str, factory: ReporterFactory) -> None:
        if not reporter_type:
            raise ValueError("Reporter type must be non-empty")
        self._factories[reporter_type] = factory

    def has(self, reporter_type: str) -> bool:
        return reporter_type in self._factories

    def create(self, reporter_type: str, config: Mapping[str, Any]) -> WorkflowReporter:
        try:
            factory = self._factories[reporter_type]
        except KeyError:
            raise LookupError(f"Unknown reporter type: {reporter_type}") from None
        return factory(config)

    def registered_types(self) -> list[str]:
        return sorted(self._factories)


def create_default_reporter_registry() -> ReporterRegistry:
    """Create a reporter registry with all built-in reporters registered."""

    registry = ReporterRegistry()
    registry.register(GitHubPRCommentReporter.type, GitHubPRCommentReporter)
    return registry
