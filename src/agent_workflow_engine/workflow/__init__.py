"""Workflow definition, interpretation and run state.

This package provides first-class types for:
- Step definitions (agent, code, parallel, loop, per-task)
- The run context and template rendering
- Condition expressions validated at load time
- An explicit run state machine with resumable checkpoints
"""

from agent_workflow_engine.workflow.context import WorkflowContext
from agent_workflow_engine.workflow.engine import WorkflowEngine, WorkflowResult
from agent_workflow_engine.workflow.errors import (
    DefinitionError,
    WorkflowFailure,
    WorkflowPaused,
)
from agent_workflow_engine.workflow.schema import WorkflowDefinition, load_workflow, parse_workflow

__all__ = [
    "DefinitionError",
    "WorkflowContext",
    "WorkflowDefinition",
    "WorkflowEngine",
    "WorkflowFailure",
    "WorkflowPaused",
    "WorkflowResult",
    "load_workflow",
    "parse_workflow",
]
