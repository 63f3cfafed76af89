# services/ai_providers.py
"""
Upstream adapters: one HTTP request per completion, decoded into fragments.

The provider name picks a WireFormat (services.wire_formats); the request
shape and the decoder both follow from that single choice. A CompletionStream
is lazy, finite and not restartable: `open()` sends the request and fails with
UpstreamRequestError on a non-success status before any fragment exists;
`fragments()` then yields text until the terminal record, and the consumer may
abandon it at any point with `aclose()`.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import httpx

from core.errors import ConfigurationError, UpstreamRequestError, UpstreamStreamError
from services.wire_formats import StreamDecoder, WireFormat, wire_format_for
from utils.config import Settings

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"

MODEL_CATALOGUE: Dict[str, List[str]] = {
    "openai": ["gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-4", "gpt-3.5-turbo"],
    "anthropic": [
        "claude-3-5-sonnet-20241022",
        "claude-3-5-haiku-20241022",
        "claude-3-opus-20240229",
        "claude-3-sonnet-20240229",
        "claude-3-haiku-20240307",
    ],
    # installed models are discovered at runtime via /api/tags
    "ollama": [],
}


@dataclass(frozen=True)
class PromptMessage:
    role: str  # "system" | "user" | "assistant"
    content: str

    def as_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class GenerationParams:
    temperature: float = 0.7
    max_tokens: int = 1000


@dataclass(frozen=True)
class ProviderTarget:
    provider: str
    model: str
    base_url: str
    api_key: str = ""

    @property
    def wire_format(self) -> WireFormat:
        return wire_format_for(self.provider)


def resolve_target(settings: Settings, provider: str, model: str, api_key: Optional[str] = None) -> ProviderTarget:
    """Validate a provider config against settings; ConfigurationError on any gap."""
    provider = (provider or "").strip().lower()
    wire_format_for(provider)
    if not (model or "").strip():
        raise ConfigurationError(f"Model not specified for {provider}")
    return ProviderTarget(
        provider=provider,
        model=model.strip(),
        base_url=settings.base_url_for(provider),
        api_key=settings.resolve_api_key(provider, api_key),
    )


def messages_to_prompt(messages: Sequence[PromptMessage]) -> str:
    """Flatten chat messages into the single prompt /api/generate expects."""
    labels = {"system": "System", "user": "Human", "assistant": "Assistant"}
    parts = [f"{labels.get(m.role, 'Human')}: {m.content}\n\n" for m in messages]
    return "".join(parts) + "Assistant: "


def build_request(
    client: httpx.AsyncClient,
    target: ProviderTarget,
    messages: Sequence[PromptMessage],
    params: GenerationParams,
    stream: bool = True,
) -> httpx.Request:
    wire_format = target.wire_format

    if wire_format is WireFormat.CLOUD_SSE:
        return client.build_request(
            "POST",
            f"{target.base_url}/chat/completions",
            headers={"Authorization": f"Bearer {target.api_key}"},
            json={
                "model": target.model,
                "messages": [m.as_dict() for m in messages],
                "temperature": params.temperature,
                "max_tokens": params.max_tokens,
                "stream": stream,
            },
        )

    if wire_format is WireFormat.ANTHROPIC_SSE:
        # Anthropic takes the system prompt as a top-level field
        system = next((m.content for m in messages if m.role == "system"), None)
        body: Dict[str, Any] = {
            "model": target.model,
            "max_tokens": params.max_tokens,
            "temperature": params.temperature,
            "messages": [m.as_dict() for m in messages if m.role != "system"],
            "stream": stream,
        }
        if system:
            body["system"] = system
        return client.build_request(
            "POST",
            f"{target.base_url}/messages",
            headers={"x-api-key": target.api_key, "anthropic-version": ANTHROPIC_VERSION},
            json=body,
        )

    return client.build_request(
        "POST",
        f"{target.base_url}/api/generate",
        json={
            "model": target.model,
            "prompt": messages_to_prompt(messages),
            "stream": stream,
            "options": {"temperature": params.temperature, "num_predict": params.max_tokens},
        },
    )


class CompletionStream:
    """One in-flight upstream completion, exclusively owned by its relay session."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        target: ProviderTarget,
        messages: Sequence[PromptMessage],
        params: GenerationParams,
    ):
        self.client = client
        self.target = target
        self.messages = list(messages)
        self.params = params
        self.skipped_records = 0
        self._response: Optional[httpx.Response] = None
        self._started = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> None:
        """Send the request and check the status. Safe to call more than once."""
        if self._response is not None:
            return
        if self._closed:
            raise RuntimeError("CompletionStream already closed")

        request = build_request(self.client, self.target, self.messages, self.params, stream=True)
        logger.info("Opening %s stream for model %s", self.target.provider, self.target.model)
        try:
            response = await self.client.send(request, stream=True)
        except httpx.HTTPError as exc:
            # no HTTP status at all: connection refused, DNS, connect timeout
            raise UpstreamRequestError(self.target.provider, 0, f"{type(exc).__name__}: {exc}") from exc

        if not response.is_success:
            try:
                body = (await response.aread()).decode("utf-8", errors="replace")
            finally:
                await response.aclose()
            self._closed = True
            logger.warning("%s returned %d before streaming: %.200s", self.target.provider, response.status_code, body)
            raise UpstreamRequestError(self.target.provider, response.status_code, body)

        self._response = response

    async def fragments(self) -> AsyncIterator[str]:
        if self._started:
            raise RuntimeError("CompletionStream is not restartable")
        self._started = True
        await self.open()

        decoder = StreamDecoder(self.target.wire_format)
        try:
            try:
                async for chunk in self._response.aiter_bytes():
                    for fragment in decoder.feed(chunk):
                        yield fragment
                    if decoder.finished:
                        break
                else:
                    for fragment in decoder.flush():
                        yield fragment
                decoder.raise_for_error()
            except httpx.HTTPError as exc:
                raise UpstreamStreamError(self.target.provider, str(exc) or type(exc).__name__) from exc
        finally:
            self.skipped_records = decoder.skipped
            await self.aclose()

    async def aclose(self) -> None:
        """Release the upstream connection. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._response is not None:
            await self._response.aclose()

    async def __aenter__(self) -> "CompletionStream":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


# -------------------------
# Connection checks / Ollama model management
# -------------------------
async def validate_connection(client: httpx.AsyncClient, target: ProviderTarget) -> bool:
    """Cheap reachability probe; never raises."""
    try:
        if target.wire_format is WireFormat.CLOUD_SSE:
            resp = await client.get(
                f"{target.base_url}/models", headers={"Authorization": f"Bearer {target.api_key}"}
            )
        elif target.wire_format is WireFormat.ANTHROPIC_SSE:
            # no health endpoint; a minimal completion does the job
            resp = await client.post(
                f"{target.base_url}/messages",
                headers={"x-api-key": target.api_key, "anthropic-version": ANTHROPIC_VERSION},
                json={"model": target.model, "max_tokens": 10, "messages": [{"role": "user", "content": "Hi"}]},
            )
        else:
            resp = await client.get(f"{target.base_url}/api/tags")
        return resp.is_success
    except httpx.HTTPError as exc:
        logger.info("Connection check for %s failed: %s", target.provider, exc)
        return False


async def list_ollama_models(client: httpx.AsyncClient, base_url: str) -> List[Dict[str, Any]]:
    resp = await client.get(f"{base_url}/api/tags")
    if not resp.is_success:
        raise UpstreamRequestError("ollama", resp.status_code, resp.text)
    return [
        {
            "name": m.get("name"),
            "size": m.get("size"),
            "modified_at": m.get("modified_at"),
            "digest": m.get("digest"),
            "details": m.get("details"),
        }
        for m in (resp.json().get("models") or [])
    ]


async def pull_ollama_model(client: httpx.AsyncClient, base_url: str, model: str) -> httpx.Response:
    """
    Start a pull and return the open progress stream once Ollama accepted it.
    The caller must hand the response to `follow_pull_progress` (or close it);
    dropping the connection early aborts the download.
    """
    request = client.build_request("POST", f"{base_url}/api/pull", json={"name": model})
    resp = await client.send(request, stream=True)
    if not resp.is_success:
        try:
            body = (await resp.aread()).decode("utf-8", errors="replace")
        finally:
            await resp.aclose()
        raise UpstreamRequestError("ollama", resp.status_code, body)
    return resp


async def follow_pull_progress(resp: httpx.Response, model: str) -> None:
    """Read a pull's NDJSON progress to the end, logging status changes."""
    last_status = None
    try:
        async for line in resp.aiter_lines():
            if not line.strip():
                continue
            try:
                status = json.loads(line).get("status")
            except (json.JSONDecodeError, AttributeError):
                continue
            if status and status != last_status:
                logger.info("Pull %s: %s", model, status)
                last_status = status
    except httpx.HTTPError as exc:
        logger.warning("Pull %s interrupted: %s", model, exc)
    finally:
        await resp.aclose()


async def delete_ollama_model(client: httpx.AsyncClient, base_url: str, model: str) -> None:
    resp = await client.request("DELETE", f"{base_url}/api/delete", json={"name": model})
    if not resp.is_success:
        raise UpstreamRequestError("ollama", resp.status_code, resp.text)
