"""Development plan documents.

Each conversation gets one markdown plan file under the plan directory. The agent keeps it
up to date; the engine only creates it, once, from the workflow's phases.
"""

from __future__ import annotations

import logging
from pathlib import Path
from urllib.parse import quote

from workflow_engine.workflow.model import State, WorkflowDefinition

logger = logging.getLogger(__name__)


class PlanDocuments:
    def __init__(self, plan_dir: Path) -> None:
        self._plan_dir = Path(plan_dir)

    @property
    def plan_dir(self) -> Path:
        return self._plan_dir

    def path_for(self, conversation_id: str) -> Path:
        return self._plan_dir / f"development-plan-{quote(conversation_id, safe='')}.md"

    def initial_content(self, workflow: WorkflowDefinition, *, goal: str | None = None) -> str:
        """Markdown skeleton: goal, one section per phase, decisions and notes."""
        subtitle = f"*Workflow: {workflow.name}*"
        if workflow.description:
            subtitle = f"{subtitle} - {workflow.description.strip()}"
        lines = [
            f"# Development Plan: {workflow.name}",
            "",
            subtitle,
            "",
            "## Goal",
            goal or "*Define what you're building or fixing*",
            "",
        ]
        for state in _ordered_states(workflow):
            lines.extend(
                [
                    f"## {state.title}",
                    "",
                    "### Tasks",
                    "",
                    "### Completed",
                    "",
                ]
            )
        lines.extend(
            [
                "## Key Decisions",
                "*Important decisions will be documented here as they are made*",
                "",
                "## Notes",
                "*Additional context and observations*",
                "",
            ]
        )
        return "\n".join(lines)

    def write_if_missing(self, path: Path, content: str) -> bool:
        """Write `content` to `path` unless the file already exists. Returns whether it wrote."""
        if path.exists():
            logger.info("Plan file already exists, keeping it", extra={"path": str(path)})
            return False
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        logger.info("Created plan file", extra={"path": str(path)})
        return True


def _ordered_states(workflow: WorkflowDefinition) -> list[State]:
    """States in walk order from the initial state, then any unreachable ones."""
    seen: list[str] = []
    pending = [workflow.initial_state]
    while pending:
        name = pending.pop(0)
        if name in seen:
            continue
        seen.append(name)
        pending.extend(t.to for t in workflow.states[name].transitions)
    seen.extend(name for name in workflow.states if name not in seen)
    return [workflow.states[name] for name in seen]
