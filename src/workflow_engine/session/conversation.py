"""Conversation orchestration: one advance-the-workflow operation at a time.

`ConversationSession.advance` is the only place where the engine, renderer, plugins and
store meet. For one conversation, calls are strictly serialized by `ConversationLocks`;
different conversations advance independently.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any

from workflow_engine.config import EngineSettings
from workflow_engine.errors import (
    ConversationNotFoundError,
    PersistenceError,
    ReviewRequiredError,
)
from workflow_engine.plugins.interfaces import (
    PluginHookContext,
    StartDevelopmentArgs,
    StartDevelopmentResult,
)
from workflow_engine.plugins.registry import PluginRegistry
from workflow_engine.workflow.engine import TransitionEngine
from workflow_engine.workflow.model import WorkflowDefinition
from workflow_engine.workflow.renderer import InstructionRenderer, RenderedReview, TransitionContext
from workflow_engine.workflow.sources import WorkflowSource

from .locks import ConversationLocks
from .plan import PlanDocuments
from .store import ConversationState, StateStore, utc_iso_now

logger = logging.getLogger(__name__)

START_TRIGGER = "start"


@dataclass(frozen=True, slots=True)
class AdvanceResult:
    conversation_id: str
    from_state: str | None
    to_state: str
    trigger: str | None
    instructions: str
    transition_reason: str
    plan_file_path: str | None
    available_triggers: tuple[str, ...]
    review_perspectives: tuple[RenderedReview, ...] = ()
    started: bool = False

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["available_triggers"] = list(self.available_triggers)
        data["review_perspectives"] = [asdict(r) for r in self.review_perspectives]
        return data


class ConversationSession:
    def __init__(
        self,
        workflows: WorkflowSource,
        store: StateStore,
        registry: PluginRegistry | None = None,
        settings: EngineSettings | None = None,
        *,
        renderer: InstructionRenderer | None = None,
        engine: TransitionEngine | None = None,
        plans: PlanDocuments | None = None,
        locks: ConversationLocks | None = None,
    ) -> None:
        self._settings = settings or EngineSettings()
        self._workflows = workflows
        self._store = store
        self._registry = registry or PluginRegistry(
            hook_timeout_seconds=self._settings.hook_timeout_seconds
        )
        self._renderer = renderer or InstructionRenderer(self._registry)
        self._engine = engine or TransitionEngine()
        self._plans = plans or PlanDocuments(self._settings.plan_dir)
        self._locks = locks or ConversationLocks()

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def workflows(self) -> WorkflowSource:
        return self._workflows

    @property
    def registry(self) -> PluginRegistry:
        return self._registry

    @property
    def engine(self) -> TransitionEngine:
        return self._engine

    def get_conversation(self, conversation_id: str) -> ConversationState:
        """Raises ConversationNotFoundError if the conversation was never started."""
        state = self._store.get(conversation_id)
        if state is None:
            raise ConversationNotFoundError(conversation_id, start_trigger=START_TRIGGER)
        return state

    def advance(
        self,
        conversation_id: str,
        trigger: str,
        actor_role: str | None = None,
        *,
        workflow_name: str | None = None,
        substitutions: Mapping[str, str] | None = None,
        review_performed: bool = False,
        deadline_seconds: float | None = None,
    ) -> AdvanceResult:
        """Move `conversation_id` along `trigger` and return the new instructions.

        `start` on an unknown conversation creates it at the workflow's initial state.
        `deadline_seconds` bounds the advisory (decoration) hooks of this call only.

        Raises:
            TransitionError: the trigger is not legal here (nothing was changed).
            ValidationError: a plugin vetoed the transition (nothing was changed).
            DefinitionError: the workflow could not be loaded.
            PersistenceError: the transition was resolved but not stored; safe to retry.
        """
        deadline = time.monotonic() + deadline_seconds if deadline_seconds is not None else None

        with self._locks.hold(conversation_id):
            current = self._store.get(conversation_id)
            if current is None:
                if trigger != START_TRIGGER:
                    logger.info(
                        "Advance on unknown conversation",
                        extra={"conversation_id": conversation_id, "trigger": trigger},
                    )
                    raise ConversationNotFoundError(conversation_id, start_trigger=START_TRIGGER)
                role = actor_role if actor_role is not None else self._settings.actor_role
                return self._start(
                    conversation_id,
                    workflow_name or self._settings.default_workflow,
                    role,
                    substitutions,
                    deadline,
                )

            if workflow_name is not None and workflow_name != current.workflow_name:
                logger.warning(
                    "Ignoring workflow name for an existing conversation",
                    extra={
                        "conversation_id": conversation_id,
                        "requested": workflow_name,
                        "workflow": current.workflow_name,
                    },
                )
            role = self._role_for(actor_role, current)
            return self._transition(
                current, trigger, role, substitutions, review_performed, deadline
            )

    def whats_next(
        self,
        conversation_id: str,
        actor_role: str | None = None,
        substitutions: Mapping[str, str] | None = None,
    ) -> AdvanceResult:
        """Render the current state's instructions without changing state."""
        current = self.get_conversation(conversation_id)
        definition = self._workflows.load_workflow(current.workflow_name)
        role = self._role_for(actor_role, current)
        state = self._engine.state(definition, current.current_state)
        plan_path = Path(current.plan_file_path) if current.plan_file_path else None

        ctx = self._hook_context(current, definition, role, plan_path)
        available = self._engine.available_triggers(definition, state.name, role)
        values = self._substitutions(definition, state.name, role, plan_path, substitutions)
        instructions = self._renderer.render(
            state,
            TransitionContext(hook_context=ctx, available_triggers=available),
            values,
        )
        return AdvanceResult(
            conversation_id=conversation_id,
            from_state=state.name,
            to_state=state.name,
            trigger=None,
            instructions=instructions,
            transition_reason="",
            plan_file_path=current.plan_file_path,
            available_triggers=tuple(available),
        )

    # -- internals -----------------------------------------------------------

    def _start(
        self,
        conversation_id: str,
        workflow_name: str,
        role: str | None,
        substitutions: Mapping[str, str] | None,
        deadline: float | None,
    ) -> AdvanceResult:
        definition = self._workflows.load_workflow(workflow_name)
        initial = self._engine.state(definition, definition.initial_state)
        plan_path = self._plans.path_for(conversation_id)
        project_path = self._settings.project_path

        ctx = PluginHookContext(
            conversation_id=conversation_id,
            current_state=initial.name,
            workflow=definition,
            project_path=project_path,
            actor_role=role,
            plan_file_path=plan_path,
        )
        args = StartDevelopmentArgs(
            workflow=definition.name,
            project_path=project_path,
            commit_behavior=self._settings.commit_behavior,
            require_reviews=self._settings.require_reviews,
        )

        self._registry.before_start_development(ctx, args, deadline=deadline)

        content = self._registry.after_plan_file_created(
            ctx, plan_path, self._plans.initial_content(definition), deadline=deadline
        )
        try:
            self._plans.write_if_missing(plan_path, content)
        except OSError as e:
            logger.error(
                "Failed to write plan file",
                extra={"conversation_id": conversation_id, "path": str(plan_path)},
            )
            raise PersistenceError(
                f"Could not write plan file {plan_path}: {e}",
                conversation_id=conversation_id,
                to_state=initial.name,
            ) from e

        available = self._engine.available_triggers(definition, initial.name, role)
        values = self._substitutions(definition, initial.name, role, plan_path, substitutions)
        instructions = self._renderer.render(
            initial,
            TransitionContext(hook_context=ctx, available_triggers=available, deadline=deadline),
            values,
        )

        state = ConversationState(
            conversation_id=conversation_id,
            current_state=initial.name,
            workflow_name=definition.name,
            actor_role=role,
            plan_file_path=str(plan_path),
        )
        self._store.put(state)
        logger.info(
            "Conversation started",
            extra={
                "conversation_id": conversation_id,
                "workflow": definition.name,
                "state": initial.name,
                "role": role,
            },
        )

        result = StartDevelopmentResult(
            conversation_id=conversation_id,
            phase=initial.name,
            workflow=definition.name,
            plan_file_path=plan_path,
        )
        metadata = self._registry.after_start_development(ctx, args, result, deadline=deadline)
        if metadata:
            self._store_metadata(state, metadata)

        return AdvanceResult(
            conversation_id=conversation_id,
            from_state=None,
            to_state=initial.name,
            trigger=START_TRIGGER,
            instructions=instructions,
            transition_reason="",
            plan_file_path=str(plan_path),
            available_triggers=tuple(available),
            started=True,
        )

    def _store_metadata(self, state: ConversationState, metadata: Mapping[str, str]) -> None:
        # The conversation already exists at this point; losing plugin bookkeeping must
        # not turn a successful start into a failure.
        updated = state.model_copy(
            update={"metadata": {**state.metadata, **metadata}, "updated_at": utc_iso_now()}
        )
        try:
            self._store.put(updated)
        except PersistenceError:
            logger.error(
                "Failed to store plugin metadata",
                extra={"conversation_id": state.conversation_id, "keys": sorted(metadata)},
                exc_info=True,
            )

    def _transition(
        self,
        current: ConversationState,
        trigger: str,
        role: str | None,
        substitutions: Mapping[str, str] | None,
        review_performed: bool,
        deadline: float | None,
    ) -> AdvanceResult:
        definition = self._workflows.load_workflow(current.workflow_name)
        resolved = self._engine.resolve(definition, current.current_state, trigger, role)
        transition = resolved.transition

        if (
            self._settings.require_reviews
            and transition.review_perspectives
            and not review_performed
        ):
            perspectives = [p.role for p in transition.review_perspectives]
            logger.info(
                "Transition requires review",
                extra={
                    "conversation_id": current.conversation_id,
                    "from_state": current.current_state,
                    "to_state": resolved.to,
                },
            )
            raise ReviewRequiredError(
                state=current.current_state, target=resolved.to, perspectives=perspectives
            )

        plan_path = Path(current.plan_file_path) if current.plan_file_path else None
        ctx = self._hook_context(current, definition, role, plan_path, target_state=resolved.to)
        self._registry.before_phase_transition(ctx, current.current_state, resolved.to)

        available = self._engine.available_triggers(definition, resolved.to, role)
        values = self._substitutions(definition, resolved.to, role, plan_path, substitutions)
        instructions = self._renderer.render(
            resolved.to_state,
            TransitionContext(
                transition=transition,
                hook_context=ctx,
                available_triggers=available,
                deadline=deadline,
            ),
            values,
        )
        reason = self._renderer.render_reason(transition, values)
        reviews = self._renderer.render_reviews(transition.review_perspectives, values)

        self._store.put(
            current.model_copy(update={"current_state": resolved.to, "updated_at": utc_iso_now()})
        )
        logger.info(
            "Conversation advanced",
            extra={
                "conversation_id": current.conversation_id,
                "workflow": definition.name,
                "trigger": trigger,
                "from_state": current.current_state,
                "to_state": resolved.to,
                "role": role,
            },
        )

        return AdvanceResult(
            conversation_id=current.conversation_id,
            from_state=current.current_state,
            to_state=resolved.to,
            trigger=trigger,
            instructions=instructions,
            transition_reason=reason,
            plan_file_path=current.plan_file_path,
            available_triggers=tuple(available),
            review_perspectives=tuple(reviews),
        )

    def _role_for(self, actor_role: str | None, current: ConversationState) -> str | None:
        if actor_role is not None:
            return actor_role
        if current.actor_role is not None:
            return current.actor_role
        return self._settings.actor_role

    def _hook_context(
        self,
        current: ConversationState,
        definition: WorkflowDefinition,
        role: str | None,
        plan_path: Path | None,
        *,
        target_state: str | None = None,
    ) -> PluginHookContext:
        return PluginHookContext(
            conversation_id=current.conversation_id,
            current_state=current.current_state,
            workflow=definition,
            project_path=self._settings.project_path,
            actor_role=role,
            target_state=target_state,
            plan_file_path=plan_path,
            metadata=MappingProxyType(dict(current.metadata)),
        )

    def _substitutions(
        self,
        definition: WorkflowDefinition,
        phase: str,
        role: str | None,
        plan_path: Path | None,
        overrides: Mapping[str, str] | None,
    ) -> dict[str, str]:
        docs = self._settings.docs_dir
        values = {
            "PROJECT_PATH": str(self._settings.project_path),
            "PLAN_FILE": str(plan_path) if plan_path else "",
            "WORKFLOW": definition.name,
            "PHASE": phase,
            "VIBE_ROLE": role or "",
            "ARCHITECTURE_DOC": str(docs / "architecture.md"),
            "REQUIREMENTS_DOC": str(docs / "requirements.md"),
            "DESIGN_DOC": str(docs / "design.md"),
        }
        for key, value in (overrides or {}).items():
            values[key.lstrip("$")] = value
        return values
