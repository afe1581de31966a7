"""Commit automation plugin.

Behaviours (`COMMIT_BEHAVIOR`):
- step / phase: WIP commit before every phase transition, squashed at the end
- end: a single final commit, added as the last task of the plan
- none: registered, but does nothing

Git problems are logged and never block a transition.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from pathlib import Path

from workflow_engine.config import CommitBehavior
from workflow_engine.git import GitRepository

from .interfaces import (
    PluginHookContext,
    PluginHooks,
    StartDevelopmentArgs,
    StartDevelopmentResult,
)

logger = logging.getLogger(__name__)

INITIAL_HASH_KEY = "commit.initial_hash"

DEFAULT_COMMIT_MESSAGE = (
    "Create a conventional commit. In the message, first summarize the intentions and key "
    "decisions from the development plan. Then, add a brief summary of the key changes and "
    "their side effects and dependencies"
)

SQUASH_PLACEHOLDER = "<first commit of this branch>"

_VALID_BEHAVIORS = ("step", "phase", "end", "none")
_EXCLUDED_SECTIONS = ("Notes", "Key Decisions")


class CommitPlugin:
    def __init__(
        self,
        behavior: CommitBehavior | str | None,
        *,
        message_template: str | None = None,
        timeout_seconds: float = 15.0,
        repository_factory: Callable[[Path], GitRepository] | None = None,
    ) -> None:
        self._behavior = behavior
        self._message = message_template or DEFAULT_COMMIT_MESSAGE
        self._repository_factory = repository_factory or (
            lambda path: GitRepository(path, timeout_seconds=timeout_seconds)
        )

    @property
    def behavior(self) -> str | None:
        return self._behavior

    def name(self) -> str:
        return "CommitPlugin"

    def priority(self) -> int:
        return 50

    def enabled(self) -> bool:
        return self._behavior in _VALID_BEHAVIORS

    def hooks(self) -> PluginHooks:
        return PluginHooks(
            after_start_development=self.after_start_development,
            before_phase_transition=self.before_phase_transition,
            after_plan_file_created=self.after_plan_file_created,
        )

    # -- hooks ---------------------------------------------------------------

    def after_start_development(
        self,
        context: PluginHookContext,
        args: StartDevelopmentArgs,
        result: StartDevelopmentResult,
    ) -> Mapping[str, str] | None:
        """Remember where development started, for squashing WIP commits later."""
        repo = self._repository_factory(context.project_path)
        if not repo.is_repository():
            logger.debug("Not a git repository, no initial commit recorded")
            return None
        initial = repo.current_commit_hash()
        if initial is None:
            return None
        logger.info(
            "Recorded initial commit",
            extra={"conversation_id": context.conversation_id, "commit": initial},
        )
        if self._behavior in ("step", "phase") and result.plan_file_path is not None:
            _fill_squash_target(result.plan_file_path, initial)
        return {INITIAL_HASH_KEY: initial}

    def before_phase_transition(
        self, context: PluginHookContext, current_state: str, target_state: str
    ) -> None:
        if self._behavior not in ("step", "phase"):
            return

        repo = self._repository_factory(context.project_path)
        if not repo.is_repository():
            logger.debug("Not a git repository, skipping WIP commit")
            return
        if not repo.has_uncommitted_changes():
            logger.debug("No uncommitted changes, skipping WIP commit")
            return

        message = f"WIP: transition to {target_state}"
        if not repo.create_commit(message):
            logger.warning(
                "Failed to create WIP commit",
                extra={"conversation_id": context.conversation_id, "from_state": current_state},
            )

    def after_plan_file_created(
        self, context: PluginHookContext, plan_file_path: Path, content: str
    ) -> str | None:
        """Add the final commit task to the last phase of the plan."""
        if self._behavior in (None, "none"):
            return None

        lines = content.split("\n")
        phase_index = _final_phase_index(lines)
        if phase_index is None:
            logger.warning("Could not find a final phase for the commit task")
            return None

        if self._behavior == "end":
            task = f"- [ ] {self._message}"
        else:
            initial = context.metadata.get(INITIAL_HASH_KEY, SQUASH_PLACEHOLDER)
            task = f"- [ ] Squash WIP commits: `git reset --soft {initial}`. Then, {self._message}"

        tasks_index: int | None = None
        for i in range(phase_index + 1, len(lines)):
            if lines[i].startswith("## "):
                break
            if lines[i].strip() == "### Tasks":
                tasks_index = i
                break
        if tasks_index is not None:
            lines.insert(tasks_index + 1, task)
        else:
            lines[phase_index + 1 : phase_index + 1] = ["", "### Tasks", task]

        logger.info(
            "Added final commit task to plan",
            extra={"conversation_id": context.conversation_id, "behavior": self._behavior},
        )
        return "\n".join(lines)


def _final_phase_index(lines: list[str]) -> int | None:
    for i, line in enumerate(lines):
        if line.strip() == "## Commit":
            return i
    for i in range(len(lines) - 1, -1, -1):
        line = lines[i]
        if line.startswith("## ") and not any(s in line for s in _EXCLUDED_SECTIONS):
            return i
    return None


def _fill_squash_target(plan_file_path: Path, initial: str) -> None:
    """The plan is written before the initial commit is known; put the hash in now."""
    try:
        content = plan_file_path.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning(
            "Could not read plan file to record initial commit",
            extra={"path": str(plan_file_path), "error": str(e)},
        )
        return

    placeholder = f"git reset --soft {SQUASH_PLACEHOLDER}"
    if placeholder not in content:
        return
    try:
        plan_file_path.write_text(
            content.replace(placeholder, f"git reset --soft {initial}", 1), encoding="utf-8"
        )
    except OSError as e:
        logger.warning(
            "Could not write initial commit to plan file",
            extra={"path": str(plan_file_path), "error": str(e)},
        )
