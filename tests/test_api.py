import httpx
import pytest

import config
from api import routes
from api.app import create_app
from api.streaming import EventBroadcaster
from attache import downloads
from attache.core import Assistant
from attache.event_bus import AGENT_COMPLETED, AGENT_MESSAGE, AGENT_STARTED, QUEUE_CHANGED
from attache.llm.base import TextDelta
from tests.conftest import resolve_provider


@pytest.fixture
async def api(adapter, settings):
    assistant = Assistant(
        adapter_factory=lambda provider: adapter,
        provider_resolver=resolve_provider,
        settings_factory=lambda: settings,
    )
    routes.assistant = assistant
    routes.broadcaster = EventBroadcaster(assistant.bus)
    transport = httpx.ASGITransport(app=create_app())
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client, assistant
    routes.broadcaster.close()
    await assistant.stop()


async def test_status(api):
    client, _ = api
    response = await client.get("/api/status")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["agents"] == 0
    assert body["mcp"] == []


async def test_chat_and_context(api, adapter):
    client, assistant = api
    adapter.main_script = [[TextDelta("Hello back")]]

    assert (await client.post("/api/chat", json={"message": ""})).status_code == 422
    response = await client.post("/api/chat", json={"message": "hello"})
    assert response.status_code == 202
    assert response.json()["status"] == "queued"

    await assistant.coordinator.wait_idle()
    context = (await client.get("/api/context")).json()
    assert [m["content"] for m in context["messages"]] == ["hello", "Hello back"]

    assert (await client.post("/api/context/clear")).json() == {"status": "cleared"}
    assert (await client.get("/api/context")).json()["messages"] == []
    assert (await client.post("/api/context/compact")).json() == {"status": "skipped"}


async def test_queue_endpoints(api):
    client, _ = api
    assert (await client.get("/api/queue")).json() == {"queued_messages": []}
    assert (await client.delete("/api/queue/123")).status_code == 404


async def test_agent_endpoints(api):
    client, assistant = api
    agent_id = assistant.runtime.start_agent("check the weather")
    await assistant.supervisor.wait_idle(timeout=5)

    listed = (await client.get("/api/agents")).json()["agents"]
    assert listed == [{"id": agent_id, "task": "check the weather", "status": "completed"}]

    detail = (await client.get(f"/api/agents/{agent_id}")).json()
    assert detail["displayMessages"][0]["content"] == "done"
    assert (await client.get("/api/agents/agent_missing")).status_code == 404

    resumed = await client.post(f"/api/agents/{agent_id}/messages", json={"message": "and tomorrow?"})
    assert resumed.status_code == 202
    assert resumed.json() == {"status": "resumed"}
    await assistant.supervisor.wait_idle(timeout=5)
    missing = await client.post("/api/agents/agent_missing/messages", json={"message": "hi"})
    assert missing.status_code == 404

    cleared = (await client.delete("/api/agents")).json()
    assert cleared == {"status": "cleared", "removed": 1}


async def test_initial_events_replay_agents(api):
    _, assistant = api
    agent_id = assistant.runtime.start_agent("summarize inbox")
    await assistant.supervisor.wait_idle(timeout=5)

    events = routes._initial_events()
    assert events[0]["type"] == QUEUE_CHANGED
    agent_types = [e["type"] for e in events if e["agent"] == agent_id]
    assert agent_types[0] == AGENT_STARTED
    assert AGENT_MESSAGE in agent_types
    assert agent_types[-1] == AGENT_COMPLETED


async def test_mcp_and_downloads(api):
    client, _ = api
    assert (await client.get("/api/mcp")).json() == {"servers": []}

    created = downloads.create_download("notes.txt", content="remember the milk")
    response = await client.get(created["url"])
    assert response.status_code == 200
    assert response.text == "remember the milk"
    assert (await client.get("/api/downloads/abcd1234/none.txt")).status_code == 404


async def test_config_is_redacted(api, monkeypatch):
    client, _ = api
    monkeypatch.setattr(config, "_user_config", {
        "models": {"default": "x", "providers": {"x": {"type": "openai", "api_key": "sk-live"}}},
    })
    body = (await client.get("/api/config")).json()
    assert body["models"]["providers"]["x"]["api_key"] == "***"


async def test_bearer_token(api, monkeypatch):
    client, _ = api
    monkeypatch.setattr(config, "_user_config", {"server": {"auth_token": "s3cret"}})
    assert (await client.get("/api/status")).status_code == 401
    assert (await client.get("/api/status", headers={"Authorization": "Bearer wrong"})).status_code == 401
    ok = await client.get("/api/status", headers={"Authorization": "Bearer s3cret"})
    assert ok.status_code == 200
