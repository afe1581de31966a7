"""Unit tests for plugin registration and hook dispatch."""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from workflow_engine.errors import HookTimeoutError, PluginConfigurationError, ValidationError
from workflow_engine.plugins.interfaces import (
    HookName,
    PluginHookContext,
    StartDevelopmentArgs,
    StartDevelopmentResult,
)
from workflow_engine.plugins.registry import PluginRegistry
from workflow_engine.workflow.model import WorkflowDefinition


@pytest.fixture
def ctx(epcc: WorkflowDefinition) -> PluginHookContext:
    return PluginHookContext(
        conversation_id="c1",
        current_state="explore",
        workflow=epcc,
        project_path=Path("/work"),
    )


@pytest.fixture
def start_args() -> StartDevelopmentArgs:
    return StartDevelopmentArgs(workflow="epcc", project_path=Path("/work"))


@pytest.fixture
def start_result() -> StartDevelopmentResult:
    return StartDevelopmentResult(conversation_id="c1", phase="explore", workflow="epcc")


def test_enabled_plugins_sorted_by_priority_then_registration(make_plugin) -> None:
    registry = PluginRegistry(
        [
            make_plugin("late", priority=10),
            make_plugin("tie-a", priority=5),
            make_plugin("early", priority=1),
            make_plugin("tie-b", priority=5),
        ]
    )
    assert registry.plugin_names() == ["early", "tie-a", "tie-b", "late"]


def test_disabled_plugins_are_not_stored(make_plugin) -> None:
    registry = PluginRegistry()
    assert registry.register(make_plugin("off", enabled=False)) is False
    assert registry.enabled_plugins() == []


def test_duplicate_names_fail_fast(make_plugin) -> None:
    registry = PluginRegistry([make_plugin("dup")])
    with pytest.raises(PluginConfigurationError, match="dup"):
        registry.register(make_plugin("dup", priority=1))


def test_registration_after_dispatch_is_rejected(make_plugin, ctx: PluginHookContext) -> None:
    registry = PluginRegistry([make_plugin("a")])
    registry.after_instructions_generated(ctx, "text")

    with pytest.raises(PluginConfigurationError):
        registry.register(make_plugin("b"))


def test_content_chain_order_is_independent_of_registration_order(
    make_plugin, ctx: PluginHookContext
) -> None:
    a = make_plugin("A", priority=1, after_plan_file_created=lambda c, p, t: t + "A")
    b = make_plugin("B", priority=2, after_plan_file_created=lambda c, p, t: t + "B")

    for plugins in ([a, b], [b, a]):
        registry = PluginRegistry(plugins)
        assert registry.after_plan_file_created(ctx, Path("plan.md"), ">") == ">AB"


def test_none_result_leaves_content_unchanged(make_plugin, ctx: PluginHookContext) -> None:
    registry = PluginRegistry(
        [
            make_plugin("noop", priority=1, after_instructions_generated=lambda c, t: None),
            make_plugin("upper", priority=2, after_instructions_generated=lambda c, t: t.upper()),
        ]
    )
    assert registry.after_instructions_generated(ctx, "go") == "GO"


def test_advisory_failure_does_not_stop_other_plugins(
    make_plugin,
    ctx: PluginHookContext,
    start_args: StartDevelopmentArgs,
    start_result: StartDevelopmentResult,
) -> None:
    calls: list[str] = []

    def broken(*_args: object) -> None:
        calls.append("broken")
        raise RuntimeError("tracker offline")

    def healthy(*_args: object) -> dict[str, str]:
        calls.append("healthy")
        return {"healthy.id": "42"}

    registry = PluginRegistry(
        [
            make_plugin("broken", priority=1, after_start_development=broken),
            make_plugin("healthy", priority=2, after_start_development=healthy),
        ]
    )

    metadata = registry.after_start_development(ctx, start_args, start_result)

    assert calls == ["broken", "healthy"]
    assert metadata == {"healthy.id": "42"}


def test_non_string_metadata_is_dropped(
    make_plugin,
    ctx: PluginHookContext,
    start_args: StartDevelopmentArgs,
    start_result: StartDevelopmentResult,
) -> None:
    registry = PluginRegistry(
        [make_plugin("p", after_start_development=lambda *a: {"ok": "1", "bad": 2})]
    )
    assert registry.after_start_development(ctx, start_args, start_result) == {"ok": "1"}


def test_validation_failure_blocks_and_stops_the_loop(
    make_plugin, ctx: PluginHookContext
) -> None:
    seen: list[str] = []

    def veto(_ctx: PluginHookContext, current: str, target: str) -> None:
        seen.append("veto")
        raise ValidationError(f"Cannot proceed to {target}: 2 open tasks")

    def never(*_args: object) -> None:
        seen.append("never")

    registry = PluginRegistry(
        [
            make_plugin("tracker", priority=1, before_phase_transition=veto),
            make_plugin("later", priority=2, before_phase_transition=never),
        ]
    )

    with pytest.raises(ValidationError) as excinfo:
        registry.before_phase_transition(ctx, "explore", "plan")

    assert str(excinfo.value) == "Cannot proceed to plan: 2 open tasks"
    assert excinfo.value.plugin_name == "tracker"
    assert seen == ["veto"]


def test_validation_verdict_is_idempotent(make_plugin, ctx: PluginHookContext) -> None:
    def veto(*_args: object) -> None:
        raise ValidationError("not yet")

    registry = PluginRegistry([make_plugin("v", before_phase_transition=veto)])

    messages = []
    for _ in range(3):
        with pytest.raises(ValidationError) as excinfo:
            registry.before_phase_transition(ctx, "explore", "plan")
        messages.append(str(excinfo.value))
    assert messages == ["not yet"] * 3


def test_unexpected_validation_exception_is_wrapped(make_plugin, ctx: PluginHookContext) -> None:
    def crash(*_args: object) -> None:
        raise KeyError("phase")

    registry = PluginRegistry([make_plugin("crashy", before_phase_transition=crash)])

    with pytest.raises(ValidationError) as excinfo:
        registry.before_phase_transition(ctx, "explore", "plan")
    assert excinfo.value.plugin_name == "crashy"
    assert isinstance(excinfo.value.__cause__, KeyError)


def test_validation_timeout_fails_closed(make_plugin, ctx: PluginHookContext) -> None:
    release = threading.Event()
    registry = PluginRegistry(
        [make_plugin("slow", before_phase_transition=lambda *a: release.wait(5))],
        hook_timeout_seconds=0.1,
    )
    try:
        with pytest.raises(HookTimeoutError) as excinfo:
            registry.before_phase_transition(ctx, "explore", "plan")
    finally:
        release.set()

    assert excinfo.value.plugin_name == "slow"
    assert isinstance(excinfo.value, ValidationError)


def test_advisory_timeout_degrades_gracefully(make_plugin, ctx: PluginHookContext) -> None:
    release = threading.Event()

    def slow(_ctx: PluginHookContext, text: str) -> str:
        release.wait(5)
        return text + " slow"

    registry = PluginRegistry(
        [
            make_plugin("slow", priority=1, after_instructions_generated=slow),
            make_plugin("fast", priority=2, after_instructions_generated=lambda c, t: t + " fast"),
        ],
        hook_timeout_seconds=0.1,
    )
    try:
        assert registry.after_instructions_generated(ctx, "base") == "base fast"
    finally:
        release.set()


def test_expired_deadline_skips_remaining_plugins(make_plugin, ctx: PluginHookContext) -> None:
    called: list[str] = []

    def record(_ctx: PluginHookContext, text: str) -> str:
        called.append("p")
        return text + "!"

    registry = PluginRegistry([make_plugin("p", after_instructions_generated=record)])

    text = registry.after_instructions_generated(ctx, "base", deadline=time.monotonic() - 1)

    assert text == "base"
    assert called == []


def test_execute_hook_dispatches_by_name(make_plugin, ctx: PluginHookContext) -> None:
    registry = PluginRegistry(
        [make_plugin("p", after_instructions_generated=lambda c, t: f"[{t}]")]
    )

    assert registry.execute_hook(HookName.AFTER_INSTRUCTIONS_GENERATED, ctx, "x") == "[x]"
    assert registry.has_hook(HookName.AFTER_INSTRUCTIONS_GENERATED)
    assert not registry.has_hook(HookName.BEFORE_PHASE_TRANSITION)


def test_hook_name_policies() -> None:
    assert HookName.BEFORE_PHASE_TRANSITION.is_validation
    assert not HookName.AFTER_START_DEVELOPMENT.is_validation
    assert HookName.AFTER_PLAN_FILE_CREATED.is_content_chaining
    assert not HookName.BEFORE_START_DEVELOPMENT.is_content_chaining


def test_zero_plugins_pass_everything_through(
    ctx: PluginHookContext, start_args: StartDevelopmentArgs, start_result: StartDevelopmentResult
) -> None:
    registry = PluginRegistry()

    registry.before_phase_transition(ctx, "explore", "plan")
    registry.before_start_development(ctx, start_args)
    assert registry.after_start_development(ctx, start_args, start_result) == {}
    assert registry.after_instructions_generated(ctx, "same") == "same"
