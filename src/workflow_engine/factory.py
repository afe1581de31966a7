"""Composition root: builds the session and its collaborators from settings.

Plugins read their activation settings here, once. Nothing registers plugins after
this point.
"""

from __future__ import annotations

import logging

from workflow_engine.config import EngineSettings
from workflow_engine.plugins.commit import CommitPlugin
from workflow_engine.plugins.interfaces import Plugin
from workflow_engine.plugins.registry import PluginRegistry
from workflow_engine.plugins.task_tracker import TaskTrackerPlugin
from workflow_engine.session.conversation import ConversationSession
from workflow_engine.session.store import JsonFileStateStore, StateStore
from workflow_engine.workflow.sources import WorkflowSource, bundled_workflow_source

logger = logging.getLogger(__name__)


def default_plugins(settings: EngineSettings) -> list[Plugin]:
    return [
        CommitPlugin(
            settings.commit_behavior,
            message_template=settings.commit_message_template,
            timeout_seconds=settings.subprocess_timeout_seconds,
        ),
        TaskTrackerPlugin(
            settings.task_backend,
            timeout_seconds=settings.subprocess_timeout_seconds,
            time_budget_seconds=settings.hook_timeout_seconds,
        ),
    ]


def build_plugin_registry(
    settings: EngineSettings, plugins: list[Plugin] | None = None
) -> PluginRegistry:
    registry = PluginRegistry(
        default_plugins(settings) if plugins is None else plugins,
        hook_timeout_seconds=settings.hook_timeout_seconds,
    )
    logger.info("Plugin registry ready", extra={"plugins": registry.plugin_names()})
    return registry


def build_session(
    settings: EngineSettings | None = None,
    *,
    workflows: WorkflowSource | None = None,
    store: StateStore | None = None,
    plugins: list[Plugin] | None = None,
) -> ConversationSession:
    settings = settings or EngineSettings()
    return ConversationSession(
        workflows=workflows or bundled_workflow_source(settings.workflows_dir),
        store=store or JsonFileStateStore(settings.conversations_dir),
        registry=build_plugin_registry(settings, plugins),
        settings=settings,
    )
