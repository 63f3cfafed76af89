"""Shared pytest fixtures."""

import json
from typing import Callable, Iterable, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from main import create_app
from utils.config import Settings


class ChunkedStream(httpx.AsyncByteStream):
    """Response body delivered in exactly the given network chunks."""

    def __init__(self, chunks: Iterable[bytes]):
        self.chunks = list(chunks)
        self.reads = 0
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            self.reads += 1
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


def openai_body(fragments: List[str]) -> bytes:
    lines = [
        "data: " + json.dumps({"choices": [{"delta": {"content": f}}]}) + "\n\n" for f in fragments
    ]
    return ("".join(lines) + "data: [DONE]\n\n").encode()


def anthropic_body(fragments: List[str]) -> bytes:
    events = [{"type": "message_start", "message": {"id": "msg_1"}}]
    events += [{"type": "content_block_delta", "delta": {"type": "text_delta", "text": f}} for f in fragments]
    events.append({"type": "message_stop"})
    return "".join(f"event: {e['type']}\ndata: {json.dumps(e)}\n\n" for e in events).encode()


def ollama_body(fragments: List[str]) -> bytes:
    lines = [json.dumps({"response": f, "done": False}) for f in fragments]
    lines.append(json.dumps({"response": "", "done": True}))
    return ("\n".join(lines) + "\n").encode()


class FakeUpstream:
    """MockTransport handler: records requests, answers with `handler` (or a default)."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.handler: Optional[Callable[[httpx.Request], httpx.Response]] = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.handler is None:
            return httpx.Response(404, text="no handler")
        return self.handler(request)

    def reply(self, status: int = 200, body: Optional[bytes] = None, chunks: Optional[List[bytes]] = None, **kwargs):
        def handler(request: httpx.Request) -> httpx.Response:
            if chunks is not None:
                return httpx.Response(status, stream=ChunkedStream(chunks), **kwargs)
            if body is not None:
                kwargs["content"] = body
            return httpx.Response(status, **kwargs)

        self.handler = handler


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        api_keys={"openai": "sk-test", "anthropic": "ak-test"},
        log_level="DEBUG",
    )


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def http_client(upstream: FakeUpstream) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(upstream))


@pytest.fixture
def client(settings: Settings, http_client: httpx.AsyncClient):
    app = create_app(settings, http_client=http_client)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def chat_payload() -> dict:
    return {
        "messages": [
            {"id": "1", "content": "Is remote work better?", "sender": "user"},
        ],
        "currentTurn": "defender",
        "topic": "Remote work",
        "providers": {
            "defender": {"provider": "openai", "model": "gpt-4o-mini"},
            "critic": {"provider": "anthropic", "model": "claude-3-5-haiku-20241022"},
        },
    }


@pytest.fixture
def conversation_payload() -> dict:
    return {
        "title": "Remote work",
        "topic": "Is remote work better?",
        "defenderModel": "gpt-4o-mini",
        "defenderProvider": "openai",
        "criticModel": "llama3",
        "criticProvider": "ollama",
    }
