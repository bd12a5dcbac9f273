"""
Tests for the HTTP API.
Each test gets a fresh app with an in-memory store and a fake agent behind the relay.
"""

import pytest
from fastapi.testclient import TestClient

from weatherchat.main import create_app
from weatherchat.relay import AgentRelay
from weatherchat.storage import MemoryStore


@pytest.fixture
def agent(fake_agent):
    return fake_agent(["It is ", "sunny ", "in Tokyo."])


@pytest.fixture
def app(cfg, agent):
    relay = AgentRelay.from_config(cfg, transport=agent.transport)
    return create_app(cfg=cfg, store=MemoryStore(), relay=relay)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def new_conversation(client, title="Weather in Tokyo", thread_id="thread-1"):
    resp = client.post("/api/conversations", json={"title": title, "threadId": thread_id})
    assert resp.status_code == 200
    return resp.json()


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------

def test_empty_list(client):
    resp = client.get("/api/conversations")
    assert resp.status_code == 200
    assert resp.json() == []


def test_create_conversation(client):
    conv = new_conversation(client)
    assert conv["title"] == "Weather in Tokyo"
    assert conv["threadId"] == "thread-1"
    assert conv["userId"] == "demo-user"
    assert conv["createdAt"] == conv["updatedAt"]

    listed = client.get("/api/conversations").json()
    assert [c["id"] for c in listed] == [conv["id"]]


@pytest.mark.parametrize("body", [
    {"title": "no thread"},
    {"threadId": "no title"},
    {"title": 5, "threadId": "t"},
])
def test_create_conversation_invalid(client, body):
    resp = client.post("/api/conversations", json=body)
    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid conversation data"}


def test_create_conversation_not_json(client):
    resp = client.post(
        "/api/conversations", content=b"{not json", headers={"content-type": "application/json"}
    )
    assert resp.status_code == 400


def test_get_and_rename_conversation(client):
    conv = new_conversation(client)
    assert client.get(f"/api/conversations/{conv['id']}").json()["title"] == "Weather in Tokyo"

    resp = client.patch(f"/api/conversations/{conv['id']}", json={"title": "Tokyo trip"})
    assert resp.status_code == 200
    renamed = resp.json()
    assert renamed["title"] == "Tokyo trip"
    assert renamed["threadId"] == "thread-1"
    assert renamed["updatedAt"] >= conv["updatedAt"]


def test_missing_conversation(client):
    for method in ("get", "delete"):
        resp = getattr(client, method)("/api/conversations/nope")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Conversation not found"}
    resp = client.patch("/api/conversations/nope", json={"title": "x"})
    assert resp.status_code == 404


def test_list_orders_by_last_update(client):
    a = new_conversation(client, "A", "t-a")
    b = new_conversation(client, "B", "t-b")
    assert [c["id"] for c in client.get("/api/conversations").json()] == [b["id"], a["id"]]

    client.patch(f"/api/conversations/{a['id']}", json={"title": "A again"})
    assert [c["id"] for c in client.get("/api/conversations").json()] == [a["id"], b["id"]]


def test_delete_conversation_removes_messages(client):
    conv = new_conversation(client)
    client.post(f"/api/conversations/{conv['id']}/messages", json={"role": "user", "content": "hi"})

    resp = client.delete(f"/api/conversations/{conv['id']}")
    assert resp.status_code == 200
    assert resp.json() == {"success": True}
    assert client.get("/api/conversations").json() == []
    assert client.get(f"/api/conversations/{conv['id']}/messages").json() == []


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

def test_messages_round_trip_in_order(client):
    conv = new_conversation(client)
    url = f"/api/conversations/{conv['id']}/messages"

    first = client.post(url, json={"role": "user", "content": "Weather in Tokyo?"}).json()
    client.post(url, json={
        "role": "assistant",
        "content": "Sunny.",
        "metadata": {"timestamp": "2026-01-01T00:00:00+00:00"},
    })

    assert first["conversationId"] == conv["id"]
    assert first["metadata"] is None

    msgs = client.get(url).json()
    assert [(m["role"], m["content"]) for m in msgs] == [
        ("user", "Weather in Tokyo?"),
        ("assistant", "Sunny."),
    ]
    assert msgs[1]["metadata"] == {"timestamp": "2026-01-01T00:00:00+00:00"}


def test_message_does_not_reorder_conversations(client):
    a = new_conversation(client, "A", "t-a")
    b = new_conversation(client, "B", "t-b")
    client.post(f"/api/conversations/{a['id']}/messages", json={"role": "user", "content": "hi"})
    assert [c["id"] for c in client.get("/api/conversations").json()] == [b["id"], a["id"]]


@pytest.mark.parametrize("body", [
    {"role": "system", "content": "nope"},
    {"role": "user"},
    {"content": "no role"},
])
def test_message_invalid(client, body):
    conv = new_conversation(client)
    resp = client.post(f"/api/conversations/{conv['id']}/messages", json=body)
    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid message data"}


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

def test_settings_created_with_defaults(client):
    resp = client.get("/api/settings")
    assert resp.status_code == 200
    s = resp.json()
    assert s["userId"] == "demo-user"
    assert s["theme"] == "auto"
    assert s["language"] == "en"
    assert s["weatherAlerts"] is True
    assert s["soundEnabled"] is False
    assert s["location"] is None
    assert client.get("/api/settings").json()["id"] == s["id"]


def test_settings_patch_is_partial(client):
    client.get("/api/settings")
    resp = client.patch("/api/settings", json={"theme": "dark", "soundEnabled": True})
    assert resp.status_code == 200
    s = resp.json()
    assert s["theme"] == "dark"
    assert s["soundEnabled"] is True
    assert s["language"] == "en"
    assert s["weatherAlerts"] is True


def test_settings_patch_before_read(client):
    resp = client.patch("/api/settings", json={"theme": "dark"})
    assert resp.status_code == 404
    assert resp.json() == {"error": "Settings not found"}


@pytest.mark.parametrize("body", [{"theme": "purple"}, {"weatherAlerts": "often"}])
def test_settings_patch_invalid(client, body):
    client.get("/api/settings")
    resp = client.patch("/api/settings", json=body)
    assert resp.status_code == 400
    assert client.get("/api/settings").json()["theme"] == "auto"


# ---------------------------------------------------------------------------
# Relay endpoint
# ---------------------------------------------------------------------------

def test_stream_passes_body_through(client, agent):
    payload = {"messages": [{"role": "user", "content": "Weather in Tokyo"}], "threadId": "thread-9"}
    with client.stream("POST", "/api/weather-agent/stream", json=payload) as resp:
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.headers["cache-control"] == "no-cache"
        body = b"".join(resp.iter_bytes())

    assert body == b"It is sunny in Tokyo."
    sent = agent.requests[0]
    assert sent["threadId"] == "thread-9"
    assert sent["messages"] == payload["messages"]
    assert sent["runId"] == "weatherAgent"


def test_stream_default_thread(client, agent):
    resp = client.post("/api/weather-agent/stream", json={"messages": [{"role": "user", "content": "hi"}]})
    assert resp.status_code == 200
    assert agent.requests[0]["threadId"] == "demo-thread"


def test_stream_forwards_caller_options(client, agent):
    client.post("/api/weather-agent/stream", json={
        "messages": [{"role": "user", "content": "hi"}],
        "temperature": 0.1,
        "maxSteps": 2,
    })
    assert agent.requests[0]["temperature"] == 0.1
    assert agent.requests[0]["maxSteps"] == 2


@pytest.mark.parametrize("body", [
    {},
    {"messages": "hi"},
    {"messages": [{"role": "user"}]},
])
def test_stream_invalid_request(client, agent, body):
    resp = client.post("/api/weather-agent/stream", json=body)
    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid chat request"}
    assert agent.requests == []


def test_stream_upstream_failure(cfg, fake_agent):
    relay = AgentRelay.from_config(cfg, transport=fake_agent(status=500).transport)
    app = create_app(cfg=cfg, store=MemoryStore(), relay=relay)
    with TestClient(app) as client:
        resp = client.post(
            "/api/weather-agent/stream",
            json={"messages": [{"role": "user", "content": "hi"}]},
        )
        assert resp.status_code == 502
        assert resp.json() == {"error": "Failed to communicate with weather agent"}
        assert client.get("/api/health").json()["relay_in_flight"] == 0


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["store"] == "memory"
    assert data["relay_in_flight"] == 0
