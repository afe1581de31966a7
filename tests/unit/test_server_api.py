from __future__ import annotations

from collections.abc import Callable

import pytest
from fastapi.testclient import TestClient

from workflow_engine.errors import PersistenceError, ValidationError
from workflow_engine.plugins.interfaces import PluginHookContext
from workflow_engine.server.app import create_app
from workflow_engine.session.conversation import ConversationSession


@pytest.fixture
def client(make_session: Callable[..., ConversationSession]) -> TestClient:
    return TestClient(create_app(session=make_session()))


def _start(client: TestClient, conversation_id: str = "c1", **body: object) -> dict:
    response = client.post(
        f"/api/conversations/{conversation_id}/advance", json={"trigger": "start", **body}
    )
    assert response.status_code == 200, response.text
    return response.json()


def test_health_and_docs(client: TestClient) -> None:
    assert client.get("/api/health").json() == {"status": "ok"}
    assert client.get("/api/docs").status_code == 200


def test_list_and_get_workflows(client: TestClient) -> None:
    summaries = client.get("/api/workflows").json()
    assert [s["name"] for s in summaries] == ["collab", "epcc"]
    assert summaries[1]["states"] == ["explore", "plan", "code", "commit"]

    detail = client.get("/api/workflows/epcc").json()
    assert detail["initial_state"] == "explore"

    missing = client.get("/api/workflows/waterfall")
    assert missing.status_code == 404
    assert missing.json()["detail"]["error"] == "UnknownWorkflowError"


def test_start_and_advance(client: TestClient) -> None:
    started = _start(client, workflow="epcc")
    assert started["started"] is True
    assert started["to_state"] == "explore"

    response = client.post(
        "/api/conversations/c1/advance",
        json={"trigger": "explore_done", "variables": {"PLAN_FILE": "/tmp/plan.md"}},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["from_state"] == "explore"
    assert body["to_state"] == "plan"
    assert "Plan the work in /tmp/plan.md." in body["instructions"]

    conversation = client.get("/api/conversations/c1").json()
    assert conversation["current_state"] == "plan"
    assert conversation["workflow_name"] == "epcc"


def test_unknown_trigger_is_409_with_available_triggers(client: TestClient) -> None:
    _start(client)

    response = client.post("/api/conversations/c1/advance", json={"trigger": "nope"})

    assert response.status_code == 409
    assert response.json()["detail"]["available_triggers"] == ["explore_done"]


def test_unknown_conversation_is_404(client: TestClient) -> None:
    assert client.get("/api/conversations/ghost").status_code == 404
    response = client.post("/api/conversations/ghost/advance", json={"trigger": "explore_done"})
    assert response.status_code == 404
    assert client.get("/api/conversations/ghost/whats-next").status_code == 404


def test_review_required_is_409(make_session: Callable[..., ConversationSession]) -> None:
    client = TestClient(create_app(session=make_session(require_reviews=True)))
    _start(client, workflow="collab", role="architect")
    client.post("/api/conversations/c1/advance", json={"trigger": "approve"})

    blocked = client.post("/api/conversations/c1/advance", json={"trigger": "build_done"})
    assert blocked.status_code == 409
    assert blocked.json()["detail"]["error"] == "ReviewRequiredError"

    done = client.post(
        "/api/conversations/c1/advance", json={"trigger": "build_done", "review_performed": True}
    )
    assert done.status_code == 200
    assert done.json()["review_perspectives"] == [
        {"role": "architect", "prompt": "Review done output"}
    ]


def test_plugin_veto_is_422(make_session, make_plugin) -> None:
    def veto(_ctx: PluginHookContext, current: str, target: str) -> None:
        raise ValidationError(f"Cannot proceed to {target} - 1 incomplete task(s)")

    client = TestClient(
        create_app(session=make_session(make_plugin("tracker", before_phase_transition=veto)))
    )
    _start(client)

    response = client.post("/api/conversations/c1/advance", json={"trigger": "explore_done"})

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["plugin"] == "tracker"
    assert detail["message"].startswith("Cannot proceed to plan")


def test_persistence_failure_is_503(
    make_session: Callable[..., ConversationSession], monkeypatch: pytest.MonkeyPatch
) -> None:
    session = make_session()
    client = TestClient(create_app(session=session))
    _start(client)

    def fail(*_args: object, **_kwargs: object) -> None:
        raise PersistenceError("disk full", conversation_id="c1", to_state="plan")

    monkeypatch.setattr(session, "advance", fail)

    response = client.post("/api/conversations/c1/advance", json={"trigger": "explore_done"})
    assert response.status_code == 503
    assert response.json()["detail"]["to_state"] == "plan"


def test_invalid_request_body_is_rejected(client: TestClient) -> None:
    response = client.post("/api/conversations/c1/advance", json={"trigger": ""})
    assert response.status_code == 422


def test_whats_next_with_role(client: TestClient) -> None:
    _start(client, workflow="collab", role="developer")

    body = client.get("/api/conversations/c1/whats-next", params={"role": "architect"}).json()

    assert body["to_state"] == "design"
    assert body["available_triggers"] == ["approve"]
    assert "Design as architect." in body["instructions"]
