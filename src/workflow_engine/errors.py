"""Error taxonomy for the workflow engine.

Errors fall into a few classes that callers treat differently:
- DefinitionError: malformed or ambiguous workflow (operator problem, fatal)
- TransitionError: the agent asked for something the workflow does not allow
- ValidationError: a plugin vetoed a phase transition
- PluginAdvisoryError: a non-validation hook failed (logged, never propagated)
- PersistenceError: the store failed; the resolved transition was NOT committed
"""

from __future__ import annotations

from collections.abc import Sequence


class WorkflowEngineError(Exception):
    """Base class for all engine errors."""


class PluginConfigurationError(WorkflowEngineError):
    """Plugin registry misconfiguration (e.g. duplicate names)."""


class DefinitionError(WorkflowEngineError):
    """A workflow definition is malformed or ambiguous."""

    def __init__(self, message: str, *, workflow: str | None = None) -> None:
        super().__init__(message)
        self.workflow = workflow


class UnknownWorkflowError(DefinitionError):
    def __init__(self, name: str, *, available: Sequence[str] = ()) -> None:
        listing = ", ".join(available) if available else "none"
        super().__init__(f"Unknown workflow {name!r} (available: {listing})", workflow=name)
        self.available = tuple(available)


class TransitionError(WorkflowEngineError):
    """The requested move is not legal for this workflow/state/role."""


class UnknownStateError(TransitionError):
    def __init__(self, state: str, *, workflow: str) -> None:
        super().__init__(f"Unknown state {state!r} in workflow {workflow!r}")
        self.state = state
        self.workflow = workflow


class NoSuchTransitionError(TransitionError):
    def __init__(
        self,
        *,
        state: str,
        trigger: str,
        role: str | None,
        available_triggers: Sequence[str],
    ) -> None:
        self.state = state
        self.trigger = trigger
        self.role = role
        self.available_triggers = tuple(available_triggers)

        who = f" for role {role!r}" if role else ""
        if self.available_triggers:
            options = ", ".join(self.available_triggers)
            hint = f"Valid triggers{who}: {options}"
        else:
            hint = f"No transitions are available{who} from this state"
        super().__init__(f"No transition {trigger!r} from state {state!r}{who}. {hint}")


class AmbiguousTransitionError(TransitionError):
    def __init__(
        self, *, state: str, trigger: str, role: str | None, targets: Sequence[str]
    ) -> None:
        self.state = state
        self.trigger = trigger
        self.role = role
        self.targets = tuple(targets)
        who = f" for role {role!r}" if role else ""
        super().__init__(
            f"Trigger {trigger!r} from state {state!r} is ambiguous{who}: "
            f"matches transitions to {', '.join(self.targets)}"
        )


class ConversationNotFoundError(TransitionError):
    def __init__(self, conversation_id: str, *, start_trigger: str) -> None:
        super().__init__(
            f"Conversation {conversation_id!r} has not started yet. "
            f"Call {start_trigger!r} first."
        )
        self.conversation_id = conversation_id
        self.start_trigger = start_trigger


class ReviewRequiredError(TransitionError):
    def __init__(self, *, state: str, target: str, perspectives: Sequence[str]) -> None:
        super().__init__(
            f"Review is required before proceeding from {state!r} to {target!r} "
            f"(perspectives: {', '.join(perspectives)}). Conduct the review, then retry."
        )
        self.state = state
        self.target = target
        self.perspectives = tuple(perspectives)


class ValidationError(WorkflowEngineError):
    """Raised by a beforePhaseTransition plugin to block a transition.

    The message is surfaced to the agent verbatim.
    """

    def __init__(self, message: str, *, plugin_name: str | None = None) -> None:
        super().__init__(message)
        self.plugin_name = plugin_name


class HookTimeoutError(ValidationError):
    def __init__(self, *, plugin_name: str, hook: str, timeout_seconds: float) -> None:
        super().__init__(
            f"Plugin {plugin_name!r} did not finish {hook} within {timeout_seconds:g}s; "
            "transition blocked",
            plugin_name=plugin_name,
        )
        self.hook = hook
        self.timeout_seconds = timeout_seconds


class PluginAdvisoryError(WorkflowEngineError):
    """Wraps a failure of an advisory hook. Logged by the registry, never raised past it."""

    def __init__(self, *, plugin_name: str, hook: str, cause: BaseException) -> None:
        super().__init__(f"Plugin {plugin_name!r} hook {hook} failed: {cause}")
        self.plugin_name = plugin_name
        self.hook = hook
        self.cause = cause


class PersistenceError(WorkflowEngineError):
    """The state store failed. The transition was resolved but not committed."""

    committed = False

    def __init__(
        self, message: str, *, conversation_id: str, to_state: str | None = None
    ) -> None:
        super().__init__(message)
        self.conversation_id = conversation_id
        self.to_state = to_state
