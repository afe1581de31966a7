"""Pydantic models for the REST server."""

from __future__ import annotations

from pydantic import BaseModel, Field


class AdvanceRequest(BaseModel):
    trigger: str = Field(min_length=1)
    role: str | None = None
    workflow: str | None = None
    variables: dict[str, str] = Field(default_factory=dict)
    review_performed: bool = False
    deadline_seconds: float | None = Field(default=None, gt=0)


class ApiReview(BaseModel):
    role: str
    prompt: str


class ApiAdvanceResult(BaseModel):
    conversation_id: str
    from_state: str | None
    to_state: str
    trigger: str | None
    instructions: str
    transition_reason: str
    plan_file_path: str | None
    available_triggers: list[str]
    review_perspectives: list[ApiReview] = Field(default_factory=list)
    started: bool = False


class ApiConversation(BaseModel):
    conversation_id: str
    current_state: str
    workflow_name: str
    actor_role: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    plan_file_path: str | None = None
    created_at: str
    updated_at: str


class ApiWorkflowSummary(BaseModel):
    name: str
    description: str
    initial_state: str
    states: list[str]
