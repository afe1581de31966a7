"""Configuration for the workflow engine.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Plugin activation is environment-derived too (`COMMIT_BEHAVIOR`, `TASK_BACKEND`), but it is
read once, when the plugin registry is built, never during request processing.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from workflow_engine.logging import configure_logging

CommitBehavior = Literal["step", "phase", "end", "none"]


class EngineSettings(BaseSettings):
    """Settings for the workflow engine.

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `EngineSettings(_env_file=path_to_env)`. Fields can also be passed by name.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    state_path: Path | None = Field(
        default=None,
        validation_alias="WORKFLOW_ENGINE_STATE_PATH",
        description="Conversation state directory (default: <project>/.vibe/conversations)",
    )
    project_path: Path = Field(
        default=Path("."),
        validation_alias="WORKFLOW_ENGINE_PROJECT_PATH",
        description="Project directory the agent is working in",
    )
    workflows_dir: Path | None = Field(
        default=None,
        validation_alias="WORKFLOW_ENGINE_WORKFLOWS_DIR",
        description="Optional directory of YAML workflow definitions (shadows bundled ones)",
    )
    default_workflow: str = Field(
        default="epcc",
        validation_alias="WORKFLOW_ENGINE_DEFAULT_WORKFLOW",
        description="Workflow used when a conversation is started without naming one",
    )

    actor_role: str | None = Field(
        default=None,
        validation_alias="VIBE_ROLE",
        description="Default actor role for multi-agent workflows",
    )
    require_reviews: bool = Field(
        default=False,
        validation_alias="WORKFLOW_ENGINE_REQUIRE_REVIEWS",
        description="Require a review before transitions that declare review perspectives",
    )

    hook_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        validation_alias="WORKFLOW_ENGINE_HOOK_TIMEOUT_SECONDS",
        description="Upper bound for a single plugin hook invocation",
    )
    subprocess_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        validation_alias="WORKFLOW_ENGINE_SUBPROCESS_TIMEOUT_SECONDS",
        description="Upper bound for git / tracker CLI calls made by plugins",
    )

    commit_behavior: CommitBehavior | None = Field(
        default=None,
        validation_alias="COMMIT_BEHAVIOR",
        description="Enables the commit plugin: step | phase | end | none",
    )
    commit_message_template: str | None = Field(
        default=None,
        validation_alias="COMMIT_MESSAGE_TEMPLATE",
        description="Overrides the final-commit task text",
    )
    task_backend: str | None = Field(
        default=None,
        validation_alias="TASK_BACKEND",
        description="External task backend; 'beads' enables the task tracker plugin",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("actor_role", "task_backend", "commit_behavior", mode="before")
    @classmethod
    def _blank_is_unset(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def vibe_dir(self) -> Path:
        return self.project_path / ".vibe"

    @property
    def conversations_dir(self) -> Path:
        return self.state_path or self.vibe_dir / "conversations"

    @property
    def plan_dir(self) -> Path:
        return self.vibe_dir

    @property
    def docs_dir(self) -> Path:
        return self.vibe_dir / "docs"

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        configure_logging(self.log_level)
