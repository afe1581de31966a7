"""Plugin contracts.

Plugins receive only read-only context data and cannot reach into core components.
They influence the workflow in exactly two ways: returning values that the registry
feeds back into the pipeline (content chaining, metadata), or raising from
`beforePhaseTransition` to veto a transition.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Protocol, assert_never

from workflow_engine.workflow.model import WorkflowDefinition


class HookName(str, Enum):
    BEFORE_START_DEVELOPMENT = "beforeStartDevelopment"
    AFTER_START_DEVELOPMENT = "afterStartDevelopment"
    AFTER_PLAN_FILE_CREATED = "afterPlanFileCreated"
    BEFORE_PHASE_TRANSITION = "beforePhaseTransition"
    AFTER_INSTRUCTIONS_GENERATED = "afterInstructionsGenerated"

    @property
    def is_validation(self) -> bool:
        """Validation hooks block on failure; every other hook is advisory."""
        return self is HookName.BEFORE_PHASE_TRANSITION

    @property
    def is_content_chaining(self) -> bool:
        return self in (HookName.AFTER_PLAN_FILE_CREATED, HookName.AFTER_INSTRUCTIONS_GENERATED)


def _empty_metadata() -> Mapping[str, str]:
    return MappingProxyType({})


@dataclass(frozen=True, slots=True)
class PluginHookContext:
    """Read-only snapshot handed to every hook.

    Holds no reference to the store, engine, renderer or registry.
    """

    conversation_id: str
    current_state: str
    workflow: WorkflowDefinition
    project_path: Path
    actor_role: str | None = None
    target_state: str | None = None
    plan_file_path: Path | None = None
    metadata: Mapping[str, str] = field(default_factory=_empty_metadata)


@dataclass(frozen=True, slots=True)
class StartDevelopmentArgs:
    workflow: str
    project_path: Path
    commit_behavior: str | None = None
    require_reviews: bool = False


@dataclass(frozen=True, slots=True)
class StartDevelopmentResult:
    conversation_id: str
    phase: str
    workflow: str
    plan_file_path: Path | None = None


BeforeStartDevelopmentHook = Callable[[PluginHookContext, StartDevelopmentArgs], None]

# May return conversation metadata updates (e.g. external tracker ids).
AfterStartDevelopmentHook = Callable[
    [PluginHookContext, StartDevelopmentArgs, StartDevelopmentResult], Mapping[str, str] | None
]

# Content-chaining: return the new content, or None to leave it unchanged.
AfterPlanFileCreatedHook = Callable[[PluginHookContext, Path, str], str | None]

# Raise to block. Arguments: context, current state, target state.
BeforePhaseTransitionHook = Callable[[PluginHookContext, str, str], None]

# Content-chaining: return the new instructions, or None to leave them unchanged.
AfterInstructionsGeneratedHook = Callable[[PluginHookContext, str], str | None]


@dataclass(frozen=True, slots=True)
class PluginHooks:
    """The lifecycle callbacks a plugin provides. Every hook is optional."""

    before_start_development: BeforeStartDevelopmentHook | None = None
    after_start_development: AfterStartDevelopmentHook | None = None
    after_plan_file_created: AfterPlanFileCreatedHook | None = None
    before_phase_transition: BeforePhaseTransitionHook | None = None
    after_instructions_generated: AfterInstructionsGeneratedHook | None = None

    def implements(self, hook: HookName) -> bool:
        if hook is HookName.BEFORE_START_DEVELOPMENT:
            return self.before_start_development is not None
        if hook is HookName.AFTER_START_DEVELOPMENT:
            return self.after_start_development is not None
        if hook is HookName.AFTER_PLAN_FILE_CREATED:
            return self.after_plan_file_created is not None
        if hook is HookName.BEFORE_PHASE_TRANSITION:
            return self.before_phase_transition is not None
        if hook is HookName.AFTER_INSTRUCTIONS_GENERATED:
            return self.after_instructions_generated is not None
        assert_never(hook)


class Plugin(Protocol):
    """A stateless plugin descriptor."""

    def name(self) -> str: ...

    def priority(self) -> int:
        """Lower runs first."""
        ...

    def enabled(self) -> bool:
        """Evaluated once, when the plugin is registered."""
        ...

    def hooks(self) -> PluginHooks: ...
