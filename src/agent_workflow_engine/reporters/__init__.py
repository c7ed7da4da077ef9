"""Reporters package initialization."""

from agent_workflow_engine.reporters.manager import ReporterManager, build_visibility_map
from agent_workflow_engine.reporters.registry import (
    ReporterRegistry,
    create_default_reporter_registry,
)

__all__ = [
    "ReporterManager",
    "ReporterRegistry",
    "build_visibility_map",
    "create_default_reporter_registry",
]
