"""Agent Workflow Engine.

A deterministic interpreter for declarative workflow definitions:
- a YAML step tree (agent, code, parallel, loop, per-task)
- checkpointed, resumable runs
- live progress fan-out to reporters (e.g. a pull request comment)
"""

__version__ = "0.1.0"

from agent_workflow_engine.config import EngineSettings

__all__ = ["__version__", "EngineSettings"]
