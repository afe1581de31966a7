"""Agent Workflow Engine.

Drives an AI coding agent through a multi-phase development workflow:
- workflow definitions (YAML) with role-scoped transitions
- deterministic transition resolution and instruction rendering
- a plugin registry with typed lifecycle hooks
- per-conversation state persisted to local JSON files
"""

__version__ = "0.1.0"

from workflow_engine.config import EngineSettings

__all__ = ["__version__", "EngineSettings"]
