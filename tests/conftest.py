"""Test configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from workflow_engine.config import EngineSettings
from workflow_engine.plugins.interfaces import PluginHooks
from workflow_engine.plugins.registry import PluginRegistry
from workflow_engine.session.conversation import ConversationSession
from workflow_engine.session.store import InMemoryStateStore
from workflow_engine.workflow.model import WorkflowDefinition
from workflow_engine.workflow.sources import InMemoryWorkflowSource

_ENGINE_ENV_VARS = (
    "LOG_LEVEL",
    "VIBE_ROLE",
    "COMMIT_BEHAVIOR",
    "COMMIT_MESSAGE_TEMPLATE",
    "TASK_BACKEND",
    "WORKFLOW_ENGINE_STATE_PATH",
    "WORKFLOW_ENGINE_PROJECT_PATH",
    "WORKFLOW_ENGINE_WORKFLOWS_DIR",
    "WORKFLOW_ENGINE_DEFAULT_WORKFLOW",
    "WORKFLOW_ENGINE_REQUIRE_REVIEWS",
    "WORKFLOW_ENGINE_HOOK_TIMEOUT_SECONDS",
    "WORKFLOW_ENGINE_SUBPROCESS_TIMEOUT_SECONDS",
)


@pytest.fixture(autouse=True)
def clean_engine_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's environment out of the tests."""
    for name in _ENGINE_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class FakePlugin:
    """Configurable plugin for registry and session tests."""

    def __init__(
        self,
        name: str,
        *,
        priority: int = 100,
        enabled: bool = True,
        **hooks: Any,
    ) -> None:
        self._name = name
        self._priority = priority
        self._enabled = enabled
        self._hooks = PluginHooks(**hooks)

    def name(self) -> str:
        return self._name

    def priority(self) -> int:
        return self._priority

    def enabled(self) -> bool:
        return self._enabled

    def hooks(self) -> PluginHooks:
        return self._hooks


@pytest.fixture
def make_plugin() -> Callable[..., FakePlugin]:
    return FakePlugin


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    project = tmp_path / "project"
    project.mkdir()
    return project


@pytest.fixture
def settings(tmp_path: Path, project_dir: Path) -> EngineSettings:
    """Settings pointing at a throwaway project, ignoring any local .env file."""
    return EngineSettings(
        _env_file=None,
        project_path=project_dir,
        state_path=tmp_path / "state",
        hook_timeout_seconds=2.0,
    )


@pytest.fixture
def epcc_data() -> dict[str, Any]:
    return {
        "name": "epcc",
        "description": "Explore, plan, code, commit",
        "initial_state": "explore",
        "states": {
            "explore": {
                "description": "Understand the problem",
                "default_instructions": "Explore $PROJECT_PATH and note findings in $PLAN_FILE.",
                "transitions": [
                    {
                        "trigger": "explore_done",
                        "to": "plan",
                        "transition_reason": "Exploration complete",
                    }
                ],
            },
            "plan": {
                "default_instructions": "Plan the work in $PLAN_FILE.",
                "transitions": [
                    {"trigger": "plan_done", "to": "code", "transition_reason": "Plan ready"},
                    {"trigger": "need_more_exploration", "to": "explore"},
                ],
            },
            "code": {
                "default_instructions": "Implement the plan for $WORKFLOW.",
                "transitions": [{"trigger": "code_done", "to": "commit"}],
            },
            "commit": {
                "default_instructions": "Commit the work.",
                "transitions": [{"trigger": "commit_done", "to": "explore"}],
            },
        },
    }


@pytest.fixture
def epcc(epcc_data: dict[str, Any]) -> WorkflowDefinition:
    return WorkflowDefinition.from_mapping(epcc_data)


@pytest.fixture
def collab() -> WorkflowDefinition:
    """Two-role workflow: only the architect may approve the design."""
    return WorkflowDefinition.from_mapping(
        {
            "name": "collab",
            "initial_state": "design",
            "metadata": {"collaboration": True, "requiredRoles": ["architect", "developer"]},
            "states": {
                "design": {
                    "default_instructions": "Design as $VIBE_ROLE.",
                    "transitions": [
                        {"trigger": "approve", "to": "build", "role": "architect"},
                        {"trigger": "ask_question", "to": "design", "role": "developer"},
                    ],
                },
                "build": {
                    "default_instructions": "Build it.",
                    "transitions": [
                        {
                            "trigger": "build_done",
                            "to": "done",
                            "review_perspectives": [
                                {"perspective": "architect", "prompt": "Review $PHASE output"}
                            ],
                        }
                    ],
                },
                "done": {"default_instructions": "All done."},
            },
        }
    )


@pytest.fixture
def workflows(epcc: WorkflowDefinition, collab: WorkflowDefinition) -> InMemoryWorkflowSource:
    return InMemoryWorkflowSource([epcc, collab])


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def make_session(
    workflows: InMemoryWorkflowSource, store: InMemoryStateStore, settings: EngineSettings
) -> Callable[..., ConversationSession]:
    def build(*plugins: FakePlugin, **overrides: Any) -> ConversationSession:
        session_settings = settings.model_copy(update=overrides) if overrides else settings
        registry = PluginRegistry(
            plugins, hook_timeout_seconds=session_settings.hook_timeout_seconds
        )
        return ConversationSession(workflows, store, registry, session_settings)

    return build
