"""FastAPI app factory.

Endpoints are thin wrappers over `ConversationSession`. Engine errors map to HTTP status
codes so an agent (or any other client) can tell "try something else" (409/422) from
"try again later" (503).
"""

from __future__ import annotations

import logging
from typing import NoReturn

from fastapi import FastAPI, HTTPException

from workflow_engine import __version__
from workflow_engine.config import EngineSettings
from workflow_engine.errors import (
    ConversationNotFoundError,
    DefinitionError,
    NoSuchTransitionError,
    PersistenceError,
    TransitionError,
    UnknownWorkflowError,
    ValidationError,
    WorkflowEngineError,
)
from workflow_engine.factory import build_session
from workflow_engine.server.models import (
    AdvanceRequest,
    ApiAdvanceResult,
    ApiConversation,
    ApiWorkflowSummary,
)
from workflow_engine.session.conversation import AdvanceResult, ConversationSession

logger = logging.getLogger(__name__)


def _raise_http(error: WorkflowEngineError) -> NoReturn:
    detail: dict[str, object] = {"error": type(error).__name__, "message": str(error)}

    if isinstance(error, (UnknownWorkflowError, ConversationNotFoundError)):
        raise HTTPException(status_code=404, detail=detail) from error
    if isinstance(error, TransitionError):
        if isinstance(error, NoSuchTransitionError):
            detail["available_triggers"] = list(error.available_triggers)
        raise HTTPException(status_code=409, detail=detail) from error
    if isinstance(error, ValidationError):
        detail["plugin"] = error.plugin_name
        raise HTTPException(status_code=422, detail=detail) from error
    if isinstance(error, PersistenceError):
        detail["to_state"] = error.to_state
        raise HTTPException(status_code=503, detail=detail) from error
    if isinstance(error, DefinitionError):
        logger.error(str(error), extra={"workflow": error.workflow})
        raise HTTPException(status_code=500, detail=detail) from error
    raise HTTPException(status_code=500, detail=detail) from error


def _to_api_result(result: AdvanceResult) -> ApiAdvanceResult:
    return ApiAdvanceResult.model_validate(result.to_dict())


def create_app(
    settings: EngineSettings | None = None, *, session: ConversationSession | None = None
) -> FastAPI:
    settings = settings or (session.settings if session is not None else EngineSettings())
    conversations = session or build_session(settings)

    app = FastAPI(
        title="Agent Workflow Engine",
        version=__version__,
        description="REST API over the conversation workflow engine.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    # Expose settings and session for request handlers that want to read them.
    app.state.settings = settings
    app.state.session = conversations

    @app.get("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/workflows", response_model=list[ApiWorkflowSummary])
    def list_workflows() -> list[ApiWorkflowSummary]:
        summaries: list[ApiWorkflowSummary] = []
        try:
            for name in conversations.workflows.list_workflows():
                definition = conversations.workflows.load_workflow(name)
                summaries.append(
                    ApiWorkflowSummary(
                        name=definition.name,
                        description=definition.description,
                        initial_state=definition.initial_state,
                        states=list(definition.states),
                    )
                )
        except WorkflowEngineError as e:
            _raise_http(e)
        return summaries

    @app.get("/api/workflows/{name}")
    def get_workflow(name: str) -> dict[str, object]:
        try:
            definition = conversations.workflows.load_workflow(name)
        except WorkflowEngineError as e:
            _raise_http(e)
        return definition.model_dump(mode="json")

    @app.get("/api/conversations/{conversation_id}", response_model=ApiConversation)
    def get_conversation(conversation_id: str) -> ApiConversation:
        try:
            state = conversations.get_conversation(conversation_id)
        except WorkflowEngineError as e:
            _raise_http(e)
        return ApiConversation.model_validate(state.model_dump(mode="json"))

    @app.post("/api/conversations/{conversation_id}/advance", response_model=ApiAdvanceResult)
    def advance(conversation_id: str, req: AdvanceRequest) -> ApiAdvanceResult:
        try:
            result = conversations.advance(
                conversation_id,
                req.trigger,
                req.role,
                workflow_name=req.workflow,
                substitutions=req.variables,
                review_performed=req.review_performed,
                deadline_seconds=req.deadline_seconds,
            )
        except WorkflowEngineError as e:
            _raise_http(e)
        return _to_api_result(result)

    @app.get(
        "/api/conversations/{conversation_id}/whats-next", response_model=ApiAdvanceResult
    )
    def whats_next(conversation_id: str, role: str | None = None) -> ApiAdvanceResult:
        try:
            result = conversations.whats_next(conversation_id, role)
        except WorkflowEngineError as e:
            _raise_http(e)
        return _to_api_result(result)

    return app
