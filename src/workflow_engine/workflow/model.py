"""In-memory workflow definitions.

A workflow is a named finite state machine of development phases. Definitions are
frozen once constructed; the structural invariants (initial state exists, every
transition target exists) are enforced on construction so an invalid definition
cannot exist in memory.

`check_workflow` adds the authoring checks that sources run before handing a
definition to the engine (per-role ambiguity, role coverage).
"""

from __future__ import annotations

from collections import Counter
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from workflow_engine.errors import DefinitionError

_MODEL_CONFIG = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class ReviewPerspective(BaseModel):
    """A secondary-review prompt attached to a transition. Never changes state."""

    model_config = _MODEL_CONFIG

    role: str = Field(validation_alias="perspective")
    prompt_template: str = Field(validation_alias="prompt")

    @model_validator(mode="before")
    @classmethod
    def _accept_field_names(cls, data: Any) -> Any:
        # Both the YAML spelling (perspective/prompt) and the field names are accepted.
        if isinstance(data, dict):
            data = dict(data)
            if "role" in data and "perspective" not in data:
                data["perspective"] = data.pop("role")
            if "prompt_template" in data and "prompt" not in data:
                data["prompt"] = data.pop("prompt_template")
        return data


class Transition(BaseModel):
    model_config = _MODEL_CONFIG

    trigger: str = Field(min_length=1)
    to: str = Field(min_length=1)
    instructions_override: str | None = Field(default=None, alias="instructions")
    additional_instructions: str | None = None
    reason_template: str = Field(default="", alias="transition_reason")
    role: str | None = None
    review_perspectives: tuple[ReviewPerspective, ...] = ()

    def visible_to(self, role: str | None) -> bool:
        """Unrestricted transitions are visible to everyone; restricted ones only to their role."""
        return self.role is None or self.role == role


class State(BaseModel):
    model_config = _MODEL_CONFIG

    name: str = ""
    description: str = ""
    entrance_criteria: tuple[str, ...] = ()
    default_instructions: str = ""
    transitions: tuple[Transition, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return not self.transitions

    @property
    def title(self) -> str:
        return " ".join(word.capitalize() for word in self.name.replace("-", "_").split("_"))


class WorkflowMetadata(BaseModel):
    model_config = _MODEL_CONFIG

    domain: str | None = None
    collaboration: bool = False
    required_roles: tuple[str, ...] = Field(default=(), alias="requiredRoles")


class WorkflowDefinition(BaseModel):
    """A complete, immutable workflow definition.

    `states` is keyed by state name and must not be mutated after loading.
    """

    model_config = _MODEL_CONFIG

    name: str = Field(min_length=1)
    description: str = ""
    initial_state: str = Field(min_length=1)
    states: dict[str, State]
    metadata: WorkflowMetadata = Field(default_factory=WorkflowMetadata)

    @model_validator(mode="before")
    @classmethod
    def _name_states(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        states = data.get("states")
        if not isinstance(states, dict):
            return data

        named: dict[str, Any] = {}
        for key, value in states.items():
            if isinstance(value, State):
                named[key] = value if value.name else value.model_copy(update={"name": key})
            elif isinstance(value, dict):
                named[key] = {"name": key, **value}
            else:
                named[key] = value
        return {**data, "states": named}

    @model_validator(mode="after")
    def _check_references(self) -> WorkflowDefinition:
        if not self.states:
            raise ValueError(f"Workflow {self.name!r} defines no states")
        if self.initial_state not in self.states:
            raise ValueError(
                f"Initial state {self.initial_state!r} is not defined in workflow {self.name!r}"
            )
        for key, state in self.states.items():
            if state.name != key:
                raise ValueError(f"State keyed {key!r} is named {state.name!r}")
            for transition in state.transitions:
                if transition.to not in self.states:
                    raise ValueError(
                        f"State {key!r} has transition {transition.trigger!r} "
                        f"to unknown state {transition.to!r}"
                    )
        return self

    @property
    def roles(self) -> tuple[str, ...]:
        """Every role the workflow mentions, in first-seen order."""
        seen: dict[str, None] = dict.fromkeys(self.metadata.required_roles)
        for state in self.states.values():
            for transition in state.transitions:
                if transition.role is not None:
                    seen.setdefault(transition.role, None)
        return tuple(seen)

    def state(self, name: str) -> State | None:
        return self.states.get(name)

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> WorkflowDefinition:
        """Build and check a definition from parsed YAML/JSON data.

        Raises:
            DefinitionError: if the data is malformed or fails `check_workflow`.
        """
        name = data.get("name") if isinstance(data, dict) else None
        try:
            definition = cls.model_validate(data)
        except ValueError as e:
            # pydantic.ValidationError is a ValueError subclass.
            raise DefinitionError(
                f"Invalid workflow definition {name or '<unnamed>'}: {e}",
                workflow=name if isinstance(name, str) else None,
            ) from e
        check_workflow(definition)
        return definition


def check_workflow(definition: WorkflowDefinition) -> None:
    """Authoring checks beyond referential integrity.

    - a trigger may be visible at most once to any single actor role per state
    - when `required_roles` is declared, every non-terminal state must offer at least
      one transition to at least one of those roles

    Raises:
        DefinitionError: describing the first problem found.
    """

    actors: tuple[str | None, ...] = (None, *definition.roles)

    for state in definition.states.values():
        for actor in actors:
            counts = Counter(t.trigger for t in state.transitions if t.visible_to(actor))
            duplicated = sorted(trigger for trigger, count in counts.items() if count > 1)
            if duplicated:
                who = f"role {actor!r}" if actor else "actors without a role"
                raise DefinitionError(
                    f"State {state.name!r} of workflow {definition.name!r} has ambiguous "
                    f"trigger(s) for {who}: {', '.join(duplicated)}",
                    workflow=definition.name,
                )

        required = definition.metadata.required_roles
        if required and not state.is_terminal:
            if not any(t.visible_to(role) for role in required for t in state.transitions):
                raise DefinitionError(
                    f"State {state.name!r} of workflow {definition.name!r} offers no transition "
                    f"to any required role ({', '.join(required)})",
                    workflow=definition.name,
                )
