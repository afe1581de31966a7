"""Plugin registry: holds enabled plugins and dispatches lifecycle hooks.

Error handling strategy:
- Validation hook (beforePhaseTransition): the first failure aborts the loop and
  propagates, blocking the transition. A timeout fails closed.
- Advisory hooks (everything else): a failure or timeout is logged and the loop
  continues with the next plugin and the last good result.

Each hook invocation runs on a daemon worker thread so that a hung plugin cannot stall
the caller past `hook_timeout_seconds`.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Iterator, Mapping
from functools import partial
from pathlib import Path
from typing import Any, Literal, TypeVar, assert_never, overload

from workflow_engine.errors import (
    HookTimeoutError,
    PluginAdvisoryError,
    PluginConfigurationError,
    ValidationError,
)

from .interfaces import (
    HookName,
    Plugin,
    PluginHookContext,
    PluginHooks,
    StartDevelopmentArgs,
    StartDevelopmentResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
C = TypeVar("C")


class _HookTimedOut(Exception):
    pass


class PluginRegistry:
    """Registry of enabled plugins, sorted by priority (ties: registration order).

    The plugin list is fixed once the first hook has been dispatched; registering
    afterwards is a configuration error.
    """

    def __init__(
        self, plugins: Iterable[Plugin] = (), *, hook_timeout_seconds: float = 30.0
    ) -> None:
        if hook_timeout_seconds <= 0:
            raise ValueError("hook_timeout_seconds must be positive")
        self._hook_timeout = hook_timeout_seconds
        self._plugins: list[Plugin] = []
        self._sealed = False
        for plugin in plugins:
            self.register(plugin)

    def register(self, plugin: Plugin) -> bool:
        """Store `plugin` if it is enabled right now. Returns whether it was stored.

        Raises:
            PluginConfigurationError: duplicate name, or registration after dispatch began.
        """
        if self._sealed:
            raise PluginConfigurationError(
                f"Cannot register plugin {plugin.name()!r}: registry is already in use"
            )
        if not plugin.enabled():
            logger.debug("Plugin disabled, not registering", extra={"plugin": plugin.name()})
            return False

        name = plugin.name()
        if name in self.plugin_names():
            raise PluginConfigurationError(f"Plugin with name {name!r} is already registered")

        self._plugins.append(plugin)
        # sorted() is stable, so equal priorities keep registration order.
        self._plugins = sorted(self._plugins, key=lambda p: p.priority())
        logger.info(
            "Registered plugin", extra={"plugin": name, "priority": plugin.priority()}
        )
        return True

    def enabled_plugins(self) -> list[Plugin]:
        return list(self._plugins)

    def plugin_names(self) -> list[str]:
        return [p.name() for p in self._plugins]

    def has_hook(self, hook: HookName) -> bool:
        return any(p.hooks().implements(hook) for p in self._plugins)

    # -- generic entry point -------------------------------------------------

    @overload
    def execute_hook(
        self,
        hook: Literal[HookName.BEFORE_START_DEVELOPMENT],
        context: PluginHookContext,
        args: StartDevelopmentArgs,
        /,
        *,
        deadline: float | None = None,
    ) -> None: ...

    @overload
    def execute_hook(
        self,
        hook: Literal[HookName.AFTER_START_DEVELOPMENT],
        context: PluginHookContext,
        args: StartDevelopmentArgs,
        result: StartDevelopmentResult,
        /,
        *,
        deadline: float | None = None,
    ) -> dict[str, str]: ...

    @overload
    def execute_hook(
        self,
        hook: Literal[HookName.AFTER_PLAN_FILE_CREATED],
        context: PluginHookContext,
        plan_file_path: Path,
        content: str,
        /,
        *,
        deadline: float | None = None,
    ) -> str: ...

    @overload
    def execute_hook(
        self,
        hook: Literal[HookName.BEFORE_PHASE_TRANSITION],
        context: PluginHookContext,
        current_state: str,
        target_state: str,
        /,
        *,
        deadline: float | None = None,
    ) -> None: ...

    @overload
    def execute_hook(
        self,
        hook: Literal[HookName.AFTER_INSTRUCTIONS_GENERATED],
        context: PluginHookContext,
        instructions: str,
        /,
        *,
        deadline: float | None = None,
    ) -> str: ...

    def execute_hook(self, hook: HookName, *args: Any, deadline: float | None = None) -> Any:
        """Dispatch `hook` to every enabled plugin implementing it, in priority order.

        `deadline` (a `time.monotonic()` value) only applies to advisory hooks.
        """
        if hook is HookName.BEFORE_START_DEVELOPMENT:
            return self.before_start_development(*args, deadline=deadline)
        if hook is HookName.AFTER_START_DEVELOPMENT:
            return self.after_start_development(*args, deadline=deadline)
        if hook is HookName.AFTER_PLAN_FILE_CREATED:
            return self.after_plan_file_created(*args, deadline=deadline)
        if hook is HookName.BEFORE_PHASE_TRANSITION:
            return self.before_phase_transition(*args)
        if hook is HookName.AFTER_INSTRUCTIONS_GENERATED:
            return self.after_instructions_generated(*args, deadline=deadline)
        assert_never(hook)

    # -- typed hooks ---------------------------------------------------------

    def before_start_development(
        self,
        context: PluginHookContext,
        args: StartDevelopmentArgs,
        *,
        deadline: float | None = None,
    ) -> None:
        hook = HookName.BEFORE_START_DEVELOPMENT
        for plugin, callback in self._implementations(
            hook, lambda h: h.before_start_development, deadline
        ):
            self._invoke_advisory(plugin, hook, partial(callback, context, args), deadline)

    def after_start_development(
        self,
        context: PluginHookContext,
        args: StartDevelopmentArgs,
        result: StartDevelopmentResult,
        *,
        deadline: float | None = None,
    ) -> dict[str, str]:
        """Run the hook on every plugin; returns the merged metadata updates."""
        hook = HookName.AFTER_START_DEVELOPMENT
        merged: dict[str, str] = {}
        for plugin, callback in self._implementations(
            hook, lambda h: h.after_start_development, deadline
        ):
            ok, updates = self._invoke_advisory(
                plugin, hook, partial(callback, context, args, result), deadline
            )
            if ok and updates:
                merged.update(_string_mapping(updates, plugin=plugin.name()))
        return merged

    def after_plan_file_created(
        self,
        context: PluginHookContext,
        plan_file_path: Path,
        content: str,
        *,
        deadline: float | None = None,
    ) -> str:
        hook = HookName.AFTER_PLAN_FILE_CREATED
        for plugin, callback in self._implementations(
            hook, lambda h: h.after_plan_file_created, deadline
        ):
            ok, updated = self._invoke_advisory(
                plugin, hook, partial(callback, context, plan_file_path, content), deadline
            )
            if ok and updated is not None:
                content = updated
        return content

    def after_instructions_generated(
        self,
        context: PluginHookContext,
        instructions: str,
        *,
        deadline: float | None = None,
    ) -> str:
        hook = HookName.AFTER_INSTRUCTIONS_GENERATED
        for plugin, callback in self._implementations(
            hook, lambda h: h.after_instructions_generated, deadline
        ):
            ok, updated = self._invoke_advisory(
                plugin, hook, partial(callback, context, instructions), deadline
            )
            if ok and updated is not None:
                instructions = updated
        return instructions

    def before_phase_transition(
        self, context: PluginHookContext, current_state: str, target_state: str
    ) -> None:
        """Validation hook: the first plugin failure blocks the transition.

        Raises:
            ValidationError: a plugin vetoed the transition (message surfaced verbatim).
            HookTimeoutError: a plugin did not answer within the hook timeout.
        """
        hook = HookName.BEFORE_PHASE_TRANSITION
        for plugin, callback in self._implementations(
            hook, lambda h: h.before_phase_transition, None
        ):
            name = plugin.name()
            try:
                self._run_bounded(
                    name,
                    hook,
                    partial(callback, context, current_state, target_state),
                    self._hook_timeout,
                )
            except _HookTimedOut as e:
                logger.warning(
                    "Validation hook timed out; blocking transition",
                    extra={"plugin": name, "hook": hook.value, "timeout": self._hook_timeout},
                )
                raise HookTimeoutError(
                    plugin_name=name, hook=hook.value, timeout_seconds=self._hook_timeout
                ) from e
            except ValidationError as e:
                if e.plugin_name is None:
                    e.plugin_name = name
                logger.info(
                    "Plugin blocked phase transition",
                    extra={
                        "plugin": name,
                        "conversation_id": context.conversation_id,
                        "from_state": current_state,
                        "to_state": target_state,
                    },
                )
                raise
            except Exception as e:
                logger.info(
                    "Plugin validation failed; blocking phase transition",
                    extra={"plugin": name, "error": str(e)},
                )
                raise ValidationError(str(e), plugin_name=name) from e

    # -- internals -----------------------------------------------------------

    def _implementations(
        self,
        hook: HookName,
        select: Callable[[PluginHooks], C | None],
        deadline: float | None,
    ) -> Iterator[tuple[Plugin, C]]:
        self._sealed = True
        for plugin in self._plugins:
            callback = select(plugin.hooks())
            if callback is None:
                continue
            if deadline is not None and time.monotonic() >= deadline:
                logger.info(
                    "Hook deadline reached; skipping remaining plugins",
                    extra={"hook": hook.value, "next_plugin": plugin.name()},
                )
                return
            yield plugin, callback

    def _invoke_advisory(
        self,
        plugin: Plugin,
        hook: HookName,
        call: Callable[[], T],
        deadline: float | None,
    ) -> tuple[bool, T | None]:
        name = plugin.name()
        timeout = self._hook_timeout
        if deadline is not None:
            timeout = max(0.0, min(timeout, deadline - time.monotonic()))
        try:
            return True, self._run_bounded(name, hook, call, timeout)
        except _HookTimedOut:
            logger.warning(
                "Advisory hook timed out; continuing with remaining plugins",
                extra={"plugin": name, "hook": hook.value, "timeout": timeout},
            )
        except Exception as e:
            error = PluginAdvisoryError(plugin_name=name, hook=hook.value, cause=e)
            logger.warning(
                str(error),
                extra={"plugin": name, "hook": hook.value},
                exc_info=(type(e), e, e.__traceback__),
            )
        return False, None

    @staticmethod
    def _run_bounded(plugin_name: str, hook: HookName, call: Callable[[], T], timeout: float) -> T:
        outcome: dict[str, Any] = {}

        def target() -> None:
            try:
                outcome["value"] = call()
            except Exception as e:
                outcome["error"] = e

        worker = threading.Thread(
            target=target, name=f"hook-{plugin_name}-{hook.value}", daemon=True
        )
        worker.start()
        worker.join(timeout)
        if worker.is_alive():
            raise _HookTimedOut()
        if "error" in outcome:
            raise outcome["error"]
        return outcome.get("value")  # type: ignore[return-value]


def _string_mapping(updates: Mapping[Any, Any], *, plugin: str) -> dict[str, str]:
    out: dict[str, str] = {}
    for key, value in updates.items():
        if not isinstance(key, str) or not isinstance(value, str):
            logger.warning(
                "Ignoring non-string metadata entry from plugin",
                extra={"plugin": plugin, "key": repr(key)},
            )
            continue
        out[key] = value
    return out
