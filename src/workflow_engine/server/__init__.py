"""FastAPI server adapter for the workflow engine.

Design intent:
- Keep workflow logic in `workflow_engine.session` / `workflow_engine.workflow`
- Keep server-specific concerns (routing, HTTP error mapping) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from workflow_engine.server.app import create_app
