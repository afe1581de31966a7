"""Instruction rendering.

Builds the text an agent receives for a state: base instructions (transition override or
state default), `$VARIABLE` substitution, then the `afterInstructionsGenerated` plugin
chain. Decoration by plugins can never make rendering fail.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from workflow_engine.plugins.interfaces import PluginHookContext
from workflow_engine.plugins.registry import PluginRegistry

from .model import ReviewPerspective, State, Transition

logger = logging.getLogger(__name__)

_VARIABLE_RE = re.compile(r"\$([A-Z][A-Z0-9_]*)")


def substitute_variables(text: str, substitutions: Mapping[str, str]) -> str:
    """Replace `$NAME` tokens. Keys may be given with or without the leading `$`.

    Unknown tokens are left verbatim so a missing substitution stays visible.
    """

    values = {key.lstrip("$"): value for key, value in substitutions.items()}
    unresolved: set[str] = set()

    def replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in values:
            return values[name]
        unresolved.add(name)
        return match.group(0)

    result = _VARIABLE_RE.sub(replace, text)
    if unresolved:
        logger.debug("Unresolved instruction variables", extra={"variables": sorted(unresolved)})
    return result


@dataclass(frozen=True, slots=True)
class TransitionContext:
    """What the renderer needs to know about how we arrived at a state.

    `transition` is None when rendering a state without moving (start, whats-next).
    `hook_context` is None when no plugin decoration should happen.
    """

    transition: Transition | None = None
    hook_context: PluginHookContext | None = None
    available_triggers: Sequence[str] = ()
    deadline: float | None = None

    @property
    def instructions_override(self) -> str | None:
        return self.transition.instructions_override if self.transition else None


@dataclass(frozen=True, slots=True)
class RenderedReview:
    role: str
    prompt: str


class InstructionRenderer:
    def __init__(self, registry: PluginRegistry | None = None) -> None:
        self._registry = registry

    def render(
        self,
        state: State,
        transition_ctx: TransitionContext,
        substitutions: Mapping[str, str] | None = None,
    ) -> str:
        substitutions = substitutions or {}
        transition = transition_ctx.transition

        if transition_ctx.instructions_override is not None:
            text = transition_ctx.instructions_override.strip()
        else:
            text = state.default_instructions.strip()

        if transition is not None and transition.additional_instructions:
            text = f"{text}\n\n**Additional Context:**\n{transition.additional_instructions.strip()}"

        if transition is not None and transition.reason_template:
            text = f"{text}\n\n**Phase Context:**\n- {transition.reason_template.strip()}"

        if transition_ctx.available_triggers:
            listing = "\n".join(f"- `{t}`" for t in transition_ctx.available_triggers)
            text = f"{text}\n\n**Allowed next triggers ({state.title}):**\n{listing}"

        text = substitute_variables(text, substitutions)

        if self._registry is None or transition_ctx.hook_context is None:
            return text
        return self._registry.after_instructions_generated(
            transition_ctx.hook_context, text, deadline=transition_ctx.deadline
        )

    def render_reason(self, transition: Transition, substitutions: Mapping[str, str]) -> str:
        return substitute_variables(transition.reason_template, substitutions)

    def render_reviews(
        self,
        perspectives: Sequence[ReviewPerspective],
        substitutions: Mapping[str, str] | None = None,
    ) -> list[RenderedReview]:
        return [
            RenderedReview(
                role=p.role, prompt=substitute_variables(p.prompt_template, substitutions or {})
            )
            for p in perspectives
        ]
