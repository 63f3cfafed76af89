"""Tests for routers/chat.py, routers/ollama.py and the app wiring in main.py."""

import json

import httpx

from main import create_app
from tests.conftest import ChunkedStream, anthropic_body, openai_body

SSE = {"Accept": "text/event-stream"}


def upstream_json(upstream) -> dict:
    return json.loads(upstream.requests[-1].content)


def sse_events(text: str):
    return [block for block in text.split("\n\n") if block]


# -------------------------
# validation -> 400
# -------------------------
def test_invalid_current_turn(client, chat_payload):
    chat_payload["currentTurn"] = "moderator"
    resp = client.post("/api/chat", json=chat_payload)
    assert resp.status_code == 400
    assert "currentTurn" in resp.json()["error"]


def test_missing_provider_config(client, chat_payload):
    chat_payload["providers"].pop("defender")
    resp = client.post("/api/chat", json=chat_payload)
    assert resp.status_code == 400
    assert resp.json() == {"error": "Provider configuration missing for defender"}


def test_unknown_provider(client, chat_payload):
    chat_payload["providers"]["defender"]["provider"] = "gemini"
    resp = client.post("/api/chat", json=chat_payload)
    assert resp.status_code == 400
    assert resp.json()["error"] == "Unknown provider: gemini"


def test_missing_api_key(client, settings, chat_payload, upstream):
    settings.api_keys.clear()
    resp = client.post("/api/chat", json=chat_payload)
    assert resp.status_code == 400
    assert resp.json()["error"] == "API key not found for openai"
    assert upstream.requests == []


# -------------------------
# streaming / non-streaming
# -------------------------
def test_sse_relay_end_to_end(client, chat_payload, upstream):
    upstream.reply(body=openai_body(["Hel", "lo", " world"]))
    resp = client.post("/api/chat", json=chat_payload, headers=SSE)

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    assert resp.headers["cache-control"].startswith("no-cache")
    assert resp.headers["x-accel-buffering"] == "no"
    assert sse_events(resp.text) == [
        'data: {"content": "Hel"}',
        'data: {"content": "lo"}',
        'data: {"content": " world"}',
        "data: [DONE]",
    ]


def test_json_fallback(client, chat_payload, upstream):
    chat_payload["currentTurn"] = "critic"
    upstream.reply(body=anthropic_body(["Hi", " there"]))
    resp = client.post("/api/chat", json=chat_payload)
    assert resp.status_code == 200
    assert resp.json() == {"content": "Hi there"}
    assert str(upstream.requests[-1].url) == "https://api.anthropic.com/v1/messages"


def test_request_key_overrides_env(client, chat_payload, upstream):
    chat_payload["providers"]["defender"]["apiKey"] = "sk-from-request"
    upstream.reply(body=openai_body(["ok"]))
    client.post("/api/chat", json=chat_payload)
    assert upstream.requests[-1].headers["Authorization"] == "Bearer sk-from-request"


def test_upstream_refusal_is_502_before_stream(client, chat_payload, upstream):
    upstream.reply(status=401, body=b'{"error":{"message":"Incorrect API key"}}')
    resp = client.post("/api/chat", json=chat_payload, headers=SSE)
    assert resp.status_code == 502
    body = resp.json()
    assert body["status"] == 401
    assert body["error"].startswith("openai API error: 401")


def test_stream_error_becomes_error_event(client, chat_payload, upstream):
    upstream.reply(body=b'data: {"choices":[{"delta":{"content":"par"}}]}\n\ndata: {"error":{"message":"overloaded"}}\n\n')
    resp = client.post("/api/chat", json=chat_payload, headers=SSE)
    events = sse_events(resp.text)
    assert events[0] == 'data: {"content": "par"}'
    assert json.loads(events[-1][len("data: "):]) == {"error": "openai stream error: overloaded"}
    assert "data: [DONE]" not in events


def test_prompt_sent_upstream_respects_whispers_and_window(client, chat_payload, upstream):
    chat_payload["messages"] = [
        {"content": f"m{i}", "sender": "user"} for i in range(8)
    ] + [{"content": "for sage only", "sender": "user", "isWhisper": True, "targetAI": "Sage"}]
    upstream.reply(body=openai_body(["ok"]))
    client.post("/api/chat", json=chat_payload)

    sent = upstream_json(upstream)["messages"]
    contents = [m["content"] for m in sent[2:]]
    assert contents == [f"m{i}" for i in range(2, 8)]
    assert sent[0]["role"] == "system"
    assert sent[1]["content"] == "Topic for debate: Remote work"


def test_defaults_for_generation_params(client, chat_payload, upstream, settings):
    upstream.reply(body=openai_body(["ok"]))
    client.post("/api/chat", json=chat_payload)
    sent = upstream_json(upstream)
    assert sent["temperature"] == settings.default_temperature
    assert sent["max_tokens"] == settings.default_max_tokens


# -------------------------
# storing finished turns
# -------------------------
def test_completed_turn_is_stored(client, chat_payload, conversation_payload, upstream):
    conv_id = client.post("/api/conversations", json=conversation_payload).json()["conversation"]["id"]
    chat_payload["conversationId"] = conv_id
    upstream.reply(body=openai_body(["Hel", "lo"]))

    resp = client.post("/api/chat", json=chat_payload, headers=SSE)
    assert "data: [DONE]" in resp.text

    messages = client.get(f"/api/conversations/{conv_id}").json()["conversation"]["messages"]
    assert [(m["sender"], m["content"]) for m in messages] == [("defender", "Hello")]


def test_failed_turn_is_not_stored(client, chat_payload, conversation_payload, upstream):
    conv_id = client.post("/api/conversations", json=conversation_payload).json()["conversation"]["id"]
    chat_payload["conversationId"] = conv_id
    upstream.reply(status=500, body=b"internal error")

    resp = client.post("/api/chat", json=chat_payload, headers=SSE)
    assert resp.status_code == 502
    assert client.get(f"/api/conversations/{conv_id}").json()["conversation"]["messages"] == []


def test_unknown_conversation_is_404(client, chat_payload, upstream):
    chat_payload["conversationId"] = "does-not-exist"
    resp = client.post("/api/chat", json=chat_payload)
    assert resp.status_code == 404
    assert upstream.requests == []


# -------------------------
# catalogue / health
# -------------------------
def test_providers_catalogue(client, settings):
    settings.api_keys.pop("anthropic")
    providers = {p["name"]: p for p in client.get("/api/providers").json()["providers"]}
    assert providers["openai"]["configured"] is True
    assert providers["anthropic"]["configured"] is False
    assert providers["ollama"]["configured"] is True
    assert "gpt-4o" in providers["openai"]["models"]


def test_healthz(client):
    assert client.get("/healthz").json() == {"ok": True}


# -------------------------
# ollama model management
# -------------------------
def test_ollama_status_online(client, upstream):
    upstream.reply(json={"models": [{"name": "llama3:latest", "size": 1}, {"name": "mistral:7b"}]})
    body = client.get("/api/ollama/status").json()
    assert body["status"] == "online"
    assert body["totalModels"] == 2
    assert body["serverUrl"] == "http://localhost:11434"


def test_ollama_status_offline(client, upstream):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    upstream.handler = refuse
    resp = client.get("/api/ollama/status")
    assert resp.status_code == 200
    assert resp.json()["status"] == "offline"
    assert resp.json()["models"] == []


def test_ollama_pull_follows_progress(client, upstream):
    upstream.reply(chunks=[b'{"status":"pulling manifest"}\n', b'{"status":"success"}\n'])
    resp = client.post("/api/ollama/pull", json={"model": "llama3"})
    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert json.loads(upstream.requests[-1].content) == {"name": "llama3"}


def test_ollama_pull_refused(client, upstream):
    upstream.reply(status=404, body=b'{"error":"pull model manifest: file does not exist"}')
    resp = client.post("/api/ollama/pull", json={"model": "nope"})
    assert resp.status_code == 502
    assert resp.json()["status"] == 404


def test_ollama_delete(client, upstream):
    upstream.reply(status=200)
    resp = client.request("DELETE", "/api/ollama/delete", json={"model": "llama3"})
    assert resp.status_code == 200
    assert resp.json()["message"] == "Successfully deleted model: llama3"
    assert upstream.requests[-1].method == "DELETE"


def test_providers_lists_personalities(client):
    personalities = client.get("/api/providers").json()["personalities"]
    assert set(personalities) == {"defender", "critic"}


def test_validate_provider(client, upstream):
    upstream.reply(status=200, json={"models": []})
    resp = client.post("/api/providers/validate", json={"provider": "ollama", "model": "llama3"})
    assert resp.json() == {"valid": True}
    assert str(upstream.requests[-1].url) == "http://localhost:11434/api/tags"


def test_validate_provider_missing_key(client, settings):
    settings.api_keys.clear()
    resp = client.post("/api/providers/validate", json={"provider": "anthropic", "model": "claude"})
    assert resp.status_code == 400


async def test_upstream_released_when_client_leaves_before_body(settings, http_client, upstream, chat_payload):
    body = ChunkedStream([openai_body(["never", "read"])])
    upstream.handler = lambda request: httpx.Response(200, stream=body)
    app = create_app(settings, http_client=http_client)

    incoming = [{"type": "http.request", "body": json.dumps(chat_payload).encode(), "more_body": False}]
    sent = []

    async def receive():
        if incoming:
            return incoming.pop(0)
        return {"type": "http.disconnect"}

    async def send(message):
        sent.append(message)

    scope = {
        "type": "http",
        "asgi": {"version": "3.0", "spec_version": "2.3"},
        "http_version": "1.1",
        "method": "POST",
        "scheme": "http",
        "path": "/api/chat",
        "raw_path": b"/api/chat",
        "root_path": "",
        "query_string": b"",
        "headers": [(b"content-type", b"application/json"), (b"accept", b"text/event-stream")],
        "client": ("testclient", 50000),
        "server": ("testserver", 80),
    }
    async with app.router.lifespan_context(app):
        await app(scope, receive, send)

    assert len(upstream.requests) == 1
    assert body.closed
