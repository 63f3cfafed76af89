"""Tests for services/relay_client.py: the consumer side of the relay."""

import asyncio
import json

import httpx
import pytest

from services.relay_client import (
    RelayCancelled,
    RelayClient,
    RelayRequestError,
    RelayStreamError,
    consume_event_stream,
)

SSE_HEADERS = {"content-type": "text/event-stream"}


async def lines_of(*lines):
    for line in lines:
        yield line


def sse(*payloads) -> bytes:
    out = []
    for p in payloads:
        out.append("data: " + (p if isinstance(p, str) else json.dumps(p)) + "\n\n")
    return "".join(out).encode()


class SlowStream(httpx.AsyncByteStream):
    def __init__(self, first: bytes):
        self.first = first
        self.closed = False

    async def __aiter__(self):
        yield self.first
        await asyncio.sleep(30)
        yield b""

    async def aclose(self):
        self.closed = True


def relay_client(handler, **kwargs) -> RelayClient:
    http = httpx.AsyncClient(base_url="http://relay", transport=httpx.MockTransport(handler))
    return RelayClient(client=http, **kwargs)


# -------------------------
# consume_event_stream
# -------------------------
async def test_consume_accumulates_until_done():
    seen = []
    text = await consume_event_stream(
        lines_of('data: {"content": "Hel"}', "", 'data: {"content": "lo"}', "data: [DONE]", 'data: {"content": "!"}'),
        on_fragment=seen.append,
    )
    assert text == "Hello"
    assert seen == ["Hel", "lo"]


async def test_consume_skips_unparseable_records():
    text = await consume_event_stream(
        lines_of("data: {broken", ": comment", 'data: {"content": "ok"}', "data: [DONE]")
    )
    assert text == "ok"


async def test_consume_error_event_keeps_partial_text():
    with pytest.raises(RelayStreamError) as exc_info:
        await consume_event_stream(lines_of('data: {"content": "par"}', 'data: {"error": "upstream died"}'))
    assert exc_info.value.message == "upstream died"
    assert exc_info.value.partial == "par"


async def test_consume_without_terminal_returns_what_arrived():
    assert await consume_event_stream(lines_of('data: {"content": "cut"}')) == "cut"


# -------------------------
# RelayClient.generate_turn
# -------------------------
async def test_generate_turn_streams(chat_payload):
    seen_requests = []

    def handler(request):
        seen_requests.append(request)
        body = sse({"content": "Hel"}, {"content": "lo"}, "[DONE]")
        return httpx.Response(200, content=body, headers=SSE_HEADERS)

    fragments = []
    async with relay_client(handler) as client:
        text = await client.generate_turn(chat_payload, on_fragment=fragments.append)

    assert text == "Hello"
    assert fragments == ["Hel", "lo"]
    assert seen_requests[0].url.path == "/api/chat"
    assert seen_requests[0].headers["accept"] == "text/event-stream"
    assert json.loads(seen_requests[0].content)["currentTurn"] == "defender"


async def test_generate_turn_json_fallback(chat_payload):
    def handler(request):
        return httpx.Response(200, json={"content": "whole reply"})

    fragments = []
    async with relay_client(handler) as client:
        text = await client.generate_turn(chat_payload, on_fragment=fragments.append, stream=False)
    assert text == "whole reply"
    assert fragments == ["whole reply"]


async def test_generate_turn_request_error(chat_payload):
    def handler(request):
        return httpx.Response(400, json={"error": "API key not found for openai"})

    async with relay_client(handler) as client:
        with pytest.raises(RelayRequestError) as exc_info:
            await client.generate_turn(chat_payload)
    assert exc_info.value.status == 400
    assert exc_info.value.message == "API key not found for openai"


async def test_generate_turn_accepts_pydantic_request(chat_payload):
    from schemas import ChatRequest

    captured = {}

    def handler(request):
        captured.update(json.loads(request.content))
        return httpx.Response(200, content=sse("[DONE]"), headers=SSE_HEADERS)

    async with relay_client(handler) as client:
        await client.generate_turn(ChatRequest.model_validate(chat_payload))
    assert captured["currentTurn"] == "defender"
    assert captured["providers"]["defender"]["model"] == "gpt-4o-mini"


async def test_generate_turn_timeout_keeps_partial(chat_payload):
    body = SlowStream(sse({"content": "Hel"}))

    def handler(request):
        return httpx.Response(200, stream=body, headers=SSE_HEADERS)

    async with relay_client(handler, timeout_sec=0.2) as client:
        with pytest.raises(RelayCancelled) as exc_info:
            await client.generate_turn(chat_payload)
    assert exc_info.value.partial == "Hel"
    assert "timed out" in exc_info.value.message
    assert body.closed


async def test_generate_turn_stop_event(chat_payload):
    stop = asyncio.Event()
    body = SlowStream(sse({"content": "partial"}))

    def handler(request):
        return httpx.Response(200, stream=body, headers=SSE_HEADERS)

    async with relay_client(handler) as client:
        turn = asyncio.ensure_future(client.generate_turn(chat_payload, on_fragment=lambda _: stop.set(), stop=stop))
        with pytest.raises(RelayCancelled) as exc_info:
            await turn
    assert exc_info.value.partial == "partial"
    assert exc_info.value.message == "stopped by caller"


async def test_cancelling_the_caller_releases_the_stream(chat_payload):
    body = SlowStream(sse({"content": "a"}))
    first = asyncio.Event()
    fragments = []

    def handler(request):
        return httpx.Response(200, stream=body, headers=SSE_HEADERS)

    def on_fragment(text):
        fragments.append(text)
        first.set()

    async with relay_client(handler) as client:
        turn = asyncio.ensure_future(client.generate_turn(chat_payload, on_fragment=on_fragment))
        await first.wait()
        turn.cancel()
        with pytest.raises(asyncio.CancelledError):
            await turn
        assert body.closed
    assert fragments == ["a"]


async def test_generate_turn_json_body_that_is_not_an_object(chat_payload):
    def handler(request):
        return httpx.Response(200, json=["not", "an", "object"])

    fragments = []
    async with relay_client(handler) as client:
        text = await client.generate_turn(chat_payload, on_fragment=fragments.append, stream=False)
    assert text == ""
    assert fragments == []
