import json

import httpx
import pytest

from eventhub import assistant
from eventhub.config import settings


@pytest.fixture()
def configured_assistant(monkeypatch):
    monkeypatch.setattr(settings, "assistant_api_url", "https://llm.test/v1/chat/completions")
    monkeypatch.setattr(settings, "assistant_api_key", "sk-test")
    monkeypatch.setattr(settings, "assistant_system_prompt", "You help event admins.")


def _mock_provider(monkeypatch, handler):
    monkeypatch.setattr(
        assistant, "_http_client", lambda: httpx.Client(transport=httpx.MockTransport(handler))
    )


def test_chat_requires_admin(helpers):
    client = helpers["client"]
    token = helpers["register_user"]("chat@test.ro")
    resp = client.post(
        "/api/admin/assistant/chat",
        json={"messages": [{"role": "user", "content": "hi"}]},
        headers=helpers["auth_header"](token),
    )
    assert resp.status_code == 403


def test_chat_not_configured_returns_503(helpers, monkeypatch):
    monkeypatch.setattr(settings, "assistant_api_url", None)
    client = helpers["client"]
    admin = helpers["admin_token"]()
    resp = client.post(
        "/api/admin/assistant/chat",
        json={"messages": [{"role": "user", "content": "hi"}]},
        headers=helpers["auth_header"](admin),
    )
    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "http_503"


def test_chat_sends_statistics_context(helpers, monkeypatch, configured_assistant):
    client = helpers["client"]
    admin = helpers["admin_token"]()
    helpers["create_event"](admin, title="Robotics Fair", category="Tech")
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["auth"] = request.headers["Authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": " There is 1 event. "}}]})

    _mock_provider(monkeypatch, handler)
    resp = client.post(
        "/api/admin/assistant/chat",
        json={"messages": [{"role": "user", "content": "How many events?"}]},
        headers=helpers["auth_header"](admin),
    )
    assert resp.status_code == 200
    assert resp.json() == {"reply": "There is 1 event."}

    body = captured["body"]
    assert captured["auth"] == "Bearer sk-test"
    assert body["model"] == settings.assistant_model
    assert body["temperature"] == 0.7
    assert body["max_tokens"] == 500
    system, user = body["messages"]
    assert system["role"] == "system"
    assert system["content"].startswith("You help event admins.")
    assert "Total events: 1" in system["content"]
    assert "Robotics Fair" in system["content"]
    assert user == {"role": "user", "content": "How many events?"}


def test_chat_provider_failure_returns_502(helpers, monkeypatch, configured_assistant):
    client = helpers["client"]
    admin = helpers["admin_token"]()
    _mock_provider(monkeypatch, lambda request: httpx.Response(500, json={"error": "boom"}))

    resp = client.post(
        "/api/admin/assistant/chat",
        json={"messages": [{"role": "user", "content": "hi"}]},
        headers=helpers["auth_header"](admin),
    )
    assert resp.status_code == 502


def test_chat_rejects_empty_history(helpers):
    client = helpers["client"]
    admin = helpers["admin_token"]()
    resp = client.post("/api/admin/assistant/chat", json={"messages": []}, headers=helpers["auth_header"](admin))
    assert resp.status_code == 422
