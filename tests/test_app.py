"""Tests for the HTTP API."""

import pytest
from fastapi.testclient import TestClient

from markov_machines.app.dependencies import get_machine_service
from markov_machines.app.main import app
from markov_machines.execution.engine import MachineEngine
from markov_machines.services.machine import MachineService

from conftest import reply, transition_to


@pytest.fixture
def client(demo_charter, repository):
    service = MachineService(
        charter=demo_charter,
        repository=repository,
        engine=MachineEngine(max_steps=10),
        initial_node_id="name_gate",
    )
    app.dependency_overrides[get_machine_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_session_lifecycle(client):
    created = client.post("/sessions")
    assert created.status_code == 201
    body = created.json()
    assert body["node_id"] == "name_gate"

    session = client.get(f"/sessions/{body['session_id']}").json()
    assert session["status"] == "IN_PROGRESS"
    assert session["current_node"] == "name_gate"
    assert session["history"] == []

    assert client.delete(f"/sessions/{body['session_id']}").status_code == 204
    assert client.get(f"/sessions/{body['session_id']}").status_code == 404


def test_message_round_trip(client, executor):
    sid = client.post("/sessions").json()["session_id"]
    executor.queue(transition_to("toGuide", {"name": "Ada"}), reply("Hello from Ada"))

    response = client.post(f"/sessions/{sid}/messages", json={"text": "Ada"})

    assert response.status_code == 200
    body = response.json()
    assert body["reply"] == "Hello from Ada"
    assert body["node_id"] == "guide"
    assert len(body["debug"]["steps"]) == 2

    messages = client.get(f"/sessions/{sid}/messages").json()
    assert messages[0] == {"role": "user", "content": "Ada", "kind": None}


def test_commands_endpoint(client, executor):
    sid = client.post("/sessions").json()["session_id"]
    executor.queue(transition_to("toGuide", {"name": "Ada"}), reply("Hi"))
    client.post(f"/sessions/{sid}/messages", json={"text": "Ada"})

    commands = client.get(f"/sessions/{sid}/commands").json()
    assert [c["name"] for c in commands] == ["countMemories"]

    result = client.post(f"/sessions/{sid}/commands", json={"name": "countMemories"}).json()
    assert result["success"]
    assert result["value"] == 0

    missing = client.post(f"/sessions/{sid}/commands", json={"name": "nope"}).json()
    assert not missing["success"]
    assert "nope" in missing["error"]


def test_inference_failure_is_bad_gateway(client):
    sid = client.post("/sessions").json()["session_id"]

    response = client.post(f"/sessions/{sid}/messages", json={"text": "hi"})

    assert response.status_code == 502


def test_unknown_session_is_404(client):
    assert client.post("/sessions/missing/messages", json={"text": "hi"}).status_code == 404
    assert client.get("/sessions/missing/commands").status_code == 404
    assert client.delete("/sessions/missing").status_code == 404


def test_message_after_goodbye_is_conflict(client, executor):
    sid = client.post("/sessions").json()["session_id"]
    executor.queue(transition_to("toGuide", {"name": "Ada"}), reply("Hi"), transition_to("sayGoodbye"))
    client.post(f"/sessions/{sid}/messages", json={"text": "Ada"})
    assert client.post(f"/sessions/{sid}/messages", json={"text": "bye"}).json()["status"] == "COMPLETED"

    response = client.post(f"/sessions/{sid}/messages", json={"text": "hello again"})

    assert response.status_code == 409
    assert client.get(f"/sessions/{sid}").json()["status"] == "COMPLETED"
