"""Transition resolution.

The engine is a pure function over (definition, state, trigger, role). It never touches
storage and never calls plugins, which keeps resolution deterministic: the same inputs
always produce the same outcome for a given definition.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from workflow_engine.errors import (
    AmbiguousTransitionError,
    NoSuchTransitionError,
    UnknownStateError,
)

from .model import State, Transition, WorkflowDefinition

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ResolvedTransition:
    """Outcome of a successful `resolve`."""

    from_state: State
    to_state: State
    transition: Transition

    @property
    def to(self) -> str:
        return self.to_state.name

    @property
    def instructions(self) -> str:
        """Unrendered base text: override if present, else the target's defaults."""
        if self.transition.instructions_override is not None:
            return self.transition.instructions_override
        return self.to_state.default_instructions


class TransitionEngine:
    """Resolves triggers to target states and computes role-scoped views."""

    def state(self, definition: WorkflowDefinition, name: str) -> State:
        state = definition.state(name)
        if state is None:
            raise UnknownStateError(name, workflow=definition.name)
        return state

    def available_transitions(
        self, definition: WorkflowDefinition, state: str, role: str | None = None
    ) -> list[Transition]:
        """Transitions out of `state` that an actor with `role` may take."""
        return [t for t in self.state(definition, state).transitions if t.visible_to(role)]

    def available_triggers(
        self, definition: WorkflowDefinition, state: str, role: str | None = None
    ) -> list[str]:
        triggers: dict[str, None] = {}
        for transition in self.available_transitions(definition, state, role):
            triggers.setdefault(transition.trigger, None)
        return list(triggers)

    def resolve(
        self,
        definition: WorkflowDefinition,
        from_state: str,
        trigger: str,
        role: str | None = None,
    ) -> ResolvedTransition:
        """Resolve `trigger` from `from_state` for an actor with `role`.

        Raises:
            UnknownStateError: `from_state` is not part of the definition.
            NoSuchTransitionError: no visible transition has this trigger.
            AmbiguousTransitionError: more than one visible transition has this trigger.
        """

        current = self.state(definition, from_state)
        visible = [t for t in current.transitions if t.visible_to(role)]
        matches = [t for t in visible if t.trigger == trigger]

        if not matches:
            available: dict[str, None] = dict.fromkeys(t.trigger for t in visible)
            logger.info(
                "Rejected unknown trigger",
                extra={
                    "workflow": definition.name,
                    "state": from_state,
                    "trigger": trigger,
                    "role": role,
                },
            )
            raise NoSuchTransitionError(
                state=from_state, trigger=trigger, role=role, available_triggers=list(available)
            )

        if len(matches) > 1:
            raise AmbiguousTransitionError(
                state=from_state, trigger=trigger, role=role, targets=[t.to for t in matches]
            )

        transition = matches[0]
        return ResolvedTransition(
            from_state=current,
            to_state=self.state(definition, transition.to),
            transition=transition,
        )
