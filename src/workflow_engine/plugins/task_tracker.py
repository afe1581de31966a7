"""Task tracker plugin backed by the `bd` (beads) CLI.

On start it creates an epic plus one task per workflow phase and hands the ids back to the
session as conversation metadata (`tracker.epic_id`, `tracker.phase.<state>`). Before each
phase transition it refuses to leave a phase while that phase's task still has open
children.

Tracker ids are always read from `--json` output and conversation metadata, never parsed
out of human-readable text.
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from workflow_engine.errors import ValidationError, WorkflowEngineError
from workflow_engine.workflow.model import WorkflowDefinition

from .interfaces import (
    PluginHookContext,
    PluginHooks,
    StartDevelopmentArgs,
    StartDevelopmentResult,
)

logger = logging.getLogger(__name__)

EPIC_ID_KEY = "tracker.epic_id"
PHASE_KEY_PREFIX = "tracker.phase."
PLACEHOLDER = "<!-- tracker-phase-id: TBD -->"


def phase_key(state: str) -> str:
    return f"{PHASE_KEY_PREFIX}{state}"


class TrackerCommandError(WorkflowEngineError):
    """A `bd` invocation failed or returned output we cannot use."""


@dataclass(frozen=True, slots=True)
class TrackerIssue:
    id: str
    title: str = ""
    status: str = ""


class BeadsClient:
    """Thin wrapper over the `bd` CLI. Every call is bounded by `timeout_seconds`."""

    def __init__(
        self, project_path: Path, *, timeout_seconds: float = 15.0, executable: str = "bd"
    ) -> None:
        self.project_path = Path(project_path)
        self._timeout = timeout_seconds
        self._executable = executable

    def available(self) -> bool:
        return shutil.which(self._executable) is not None

    def _run(self, *args: str) -> Any:
        command = [self._executable, *args, "--json"]
        shown = " ".join(command)
        try:
            completed = subprocess.run(
                command,
                cwd=self.project_path,
                capture_output=True,
                text=True,
                check=True,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise TrackerCommandError(f"{shown} timed out after {self._timeout:g}s") from e
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or e.stdout or "").strip()
            raise TrackerCommandError(f"{shown} failed: {detail}") from e
        except OSError as e:
            raise TrackerCommandError(f"Could not run {self._executable}: {e}") from e

        try:
            return json.loads(completed.stdout or "null")
        except json.JSONDecodeError as e:
            raise TrackerCommandError(
                f"{shown} returned invalid JSON: {completed.stdout[:100]!r}"
            ) from e

    def create_issue(
        self,
        title: str,
        *,
        description: str = "",
        parent: str | None = None,
        priority: int = 2,
    ) -> str:
        args = ["create", title, "--description", description, "--priority", str(priority)]
        if parent is not None:
            args.extend(["--parent", parent])
        payload = self._run(*args)
        if isinstance(payload, list):
            payload = payload[0] if payload else None
        issue_id = payload.get("id") if isinstance(payload, dict) else None
        if not isinstance(issue_id, str) or not issue_id:
            raise TrackerCommandError(f"bd create returned no issue id for {title!r}")
        return issue_id

    def list_open_children(self, parent: str) -> list[TrackerIssue]:
        payload = self._run("list", "--parent", parent, "--status", "open")
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise TrackerCommandError("bd list returned a non-list payload")
        return [
            TrackerIssue(
                id=str(item.get("id", "")),
                title=str(item.get("title") or ""),
                status=str(item.get("status") or ""),
            )
            for item in payload
            if isinstance(item, dict)
        ]


class TaskTrackerPlugin:
    def __init__(
        self,
        backend: str | None,
        *,
        timeout_seconds: float = 15.0,
        time_budget_seconds: float | None = None,
        client_factory: Callable[[Path], BeadsClient] | None = None,
    ) -> None:
        self._backend = backend
        self._call_timeout = timeout_seconds
        # Upper bound for one hook call; matches the registry's hook timeout.
        self._time_budget = time_budget_seconds
        self._client_factory = client_factory or (
            lambda path: BeadsClient(path, timeout_seconds=timeout_seconds)
        )

    def name(self) -> str:
        return "TaskTrackerPlugin"

    def priority(self) -> int:
        return 100

    def enabled(self) -> bool:
        return self._backend == "beads"

    def hooks(self) -> PluginHooks:
        return PluginHooks(
            after_start_development=self.after_start_development,
            after_plan_file_created=self.after_plan_file_created,
            before_phase_transition=self.before_phase_transition,
            after_instructions_generated=self.after_instructions_generated,
        )

    def _client(self, context: PluginHookContext) -> BeadsClient | None:
        client = self._client_factory(context.project_path)
        if not client.available():
            logger.warning(
                "bd CLI not available; task tracking disabled for this call",
                extra={"conversation_id": context.conversation_id},
            )
            return None
        return client

    # -- hooks ---------------------------------------------------------------

    def after_plan_file_created(
        self, context: PluginHookContext, plan_file_path: Path, content: str
    ) -> str | None:
        """Put a placeholder under every phase header; filled in once tasks exist."""
        headers = {f"## {state.title}" for state in context.workflow.states.values()}
        out: list[str] = []
        for line in content.split("\n"):
            out.append(line)
            if line.strip() in headers:
                out.append(PLACEHOLDER)
        return "\n".join(out)

    def after_start_development(
        self,
        context: PluginHookContext,
        args: StartDevelopmentArgs,
        result: StartDevelopmentResult,
    ) -> Mapping[str, str] | None:
        started = time.monotonic()
        client = self._client(context)
        if client is None:
            return None
        if not self._can_afford_call(started):
            logger.warning(
                "Hook time budget is shorter than one tracker call; task tracking disabled",
                extra={"conversation_id": context.conversation_id},
            )
            return None

        project = context.project_path.resolve().name or "project"
        workflow = context.workflow
        try:
            epic_id = client.create_issue(
                f"Development: {project}",
                description=f"Development session using {workflow.name} workflow for {project}",
            )
        except TrackerCommandError as e:
            logger.warning(
                "Could not create tracker epic; continuing without task tracking",
                extra={"conversation_id": context.conversation_id, "error": str(e)},
            )
            return None

        metadata = {EPIC_ID_KEY: epic_id}
        phase_ids: dict[str, str] = {}
        for state in workflow.states.values():
            if not self._can_afford_call(started):
                logger.warning(
                    "Tracker is too slow; stopping phase task creation",
                    extra={
                        "conversation_id": context.conversation_id,
                        "epic_id": epic_id,
                        "created": len(phase_ids),
                        "phases": len(workflow.states),
                    },
                )
                break
            try:
                phase_ids[state.name] = client.create_issue(
                    state.title,
                    description=f"{workflow.name} workflow {state.name} phase tasks",
                    parent=epic_id,
                )
            except TrackerCommandError as e:
                logger.warning(
                    "Could not create phase task",
                    extra={"phase": state.name, "epic_id": epic_id, "error": str(e)},
                )
        metadata.update({phase_key(name): task_id for name, task_id in phase_ids.items()})

        if result.plan_file_path is not None:
            _fill_placeholders(result.plan_file_path, workflow, phase_ids)

        logger.info(
            "Task tracking set up",
            extra={
                "conversation_id": context.conversation_id,
                "epic_id": epic_id,
                "phases": len(phase_ids),
            },
        )
        return metadata

    def _can_afford_call(self, started: float) -> bool:
        """Whether one more bounded `bd` call still finishes inside the hook's time budget."""
        if self._time_budget is None:
            return True
        return time.monotonic() - started + self._call_timeout < self._time_budget

    def before_phase_transition(
        self, context: PluginHookContext, current_state: str, target_state: str
    ) -> None:
        phase_task = context.metadata.get(phase_key(current_state))
        if phase_task is None:
            logger.debug(
                "No tracker task for phase, skipping validation",
                extra={"conversation_id": context.conversation_id, "phase": current_state},
            )
            return
        client = self._client(context)
        if client is None:
            return

        try:
            open_tasks = client.list_open_children(phase_task)
        except TrackerCommandError as e:
            # The tracker being down must not lock the agent inside a phase.
            logger.warning(
                "Could not query open tasks; allowing transition",
                extra={"conversation_id": context.conversation_id, "error": str(e)},
            )
            return

        if open_tasks:
            raise ValidationError(
                _incomplete_tasks_message(current_state, target_state, phase_task, open_tasks)
            )

    def after_instructions_generated(
        self, context: PluginHookContext, instructions: str
    ) -> str | None:
        phase = context.target_state or context.current_state
        phase_task = context.metadata.get(phase_key(phase))
        if phase_task is None:
            return None
        return (
            f"{instructions}\n\n"
            f"**Task tracking ({phase}):** create work items with "
            f"`bd create '<description>' --parent {phase_task} -p 2`, list open ones with "
            f"`bd list --parent {phase_task} --status open` and close them with "
            "`bd close <task-id>`."
        )


def _incomplete_tasks_message(
    current_state: str, target_state: str, phase_task: str, open_tasks: list[TrackerIssue]
) -> str:
    details = "\n".join(f"  - {t.id} - {t.title or 'Untitled task'}" for t in open_tasks)
    return (
        f"Cannot proceed to {target_state} - {len(open_tasks)} incomplete task(s) in current "
        f'phase "{current_state}":\n\n{details}\n\n'
        "To proceed, check the in-progress tasks using:\n\n"
        f"   bd list --parent {phase_task} --status open\n\n"
        "You can also defer tasks if they're no longer needed:\n"
        "   bd defer <task-id> --until tomorrow"
    )


def _fill_placeholders(
    plan_file_path: Path, workflow: WorkflowDefinition, phase_ids: Mapping[str, str]
) -> None:
    try:
        content = plan_file_path.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning(
            "Could not read plan file to record tracker ids",
            extra={"path": str(plan_file_path), "error": str(e)},
        )
        return

    for name, task_id in phase_ids.items():
        header = f"## {workflow.states[name].title}"
        content = content.replace(
            f"{header}\n{PLACEHOLDER}", f"{header}\n<!-- tracker-phase-id: {task_id} -->", 1
        )

    remaining = content.count(PLACEHOLDER)
    if remaining:
        logger.warning(
            "Some tracker placeholders were not filled",
            extra={"path": str(plan_file_path), "unfilled": remaining},
        )
    try:
        plan_file_path.write_text(content, encoding="utf-8")
    except OSError as e:
        logger.warning(
            "Could not write tracker ids to plan file",
            extra={"path": str(plan_file_path), "error": str(e)},
        )
