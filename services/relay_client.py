# services/relay_client.py
"""
Consumer side of the relay: reads the `/api/chat` event stream, accumulates
the message and reports each fragment as it arrives.

This is the Python counterpart of the browser loop, used by scripts and tests.
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Union

import httpx
from pydantic import BaseModel

from services.relay import SSE_MEDIA_TYPE

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SEC = 60.0

OnFragment = Callable[[str], Any]


class RelayClientError(Exception):
    """Base for consumer-side failures. `partial` holds any text already shown."""

    def __init__(self, message: str, partial: str = ""):
        self.message = message
        self.partial = partial
        super().__init__(message)


class RelayRequestError(RelayClientError):
    """The relay refused the turn (4xx/5xx) before any output."""

    def __init__(self, status: int, message: str):
        self.status = status
        super().__init__(message)


class RelayStreamError(RelayClientError):
    """The relay sent an error event; partial text stays valid."""


class RelayCancelled(RelayClientError):
    """Stopped by the caller or by the session timeout; partial text kept."""


async def consume_event_stream(
    lines: AsyncIterator[str],
    on_fragment: Optional[OnFragment] = None,
    parts: Optional[List[str]] = None,
) -> str:
    """
    Read SSE lines until `data: [DONE]` and return the accumulated text.
    An error event raises RelayStreamError; records that do not parse are skipped.
    `parts`, when given, collects fragments so a caller can recover partial text.
    """
    parts = parts if parts is not None else []
    async for raw in lines:
        line = raw.strip()
        if not line or not line.startswith("data:"):
            continue
        payload = line[len("data:"):].strip()
        if payload == "[DONE]":
            return "".join(parts)

        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            logger.debug("Skipping unparseable event: %.120s", payload)
            continue
        if not isinstance(data, dict):
            continue

        if data.get("error"):
            raise RelayStreamError(str(data["error"]), "".join(parts))
        content = data.get("content")
        if isinstance(content, str) and content:
            parts.append(content)
            if on_fragment is not None:
                on_fragment(content)

    # stream ended without a terminal marker: keep what arrived
    return "".join(parts)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("error") or body.get("detail") or body)
    return str(body)


class RelayClient:
    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.timeout_sec = timeout_sec
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url, timeout=httpx.Timeout(timeout_sec, connect=10.0)
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "RelayClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def _request_turn(
        self,
        payload: Dict[str, Any],
        on_fragment: Optional[OnFragment],
        stream: bool,
        parts: List[str],
    ) -> str:
        headers = {"Accept": SSE_MEDIA_TYPE} if stream else {"Accept": "application/json"}
        async with self._client.stream("POST", "/api/chat", json=payload, headers=headers) as response:
            if not response.is_success:
                await response.aread()
                raise RelayRequestError(response.status_code, _error_message(response))

            if response.headers.get("content-type", "").startswith(SSE_MEDIA_TYPE):
                return await consume_event_stream(response.aiter_lines(), on_fragment, parts)

            # server answered without streaming: whole text in one JSON body
            await response.aread()
            body = response.json()
            text = str(body.get("content") or "") if isinstance(body, dict) else ""
            if text:
                parts.append(text)
                if on_fragment is not None:
                    on_fragment(text)
            return text

    @staticmethod
    async def _abandon(turn: asyncio.Future) -> None:
        # cancelling the read exits the stream context, which releases the response
        turn.cancel()
        await asyncio.wait({turn})
        if not turn.cancelled() and turn.exception() is not None:
            logger.debug("Abandoned turn ended with %r", turn.exception())

    async def generate_turn(
        self,
        request: Union[BaseModel, Dict[str, Any]],
        on_fragment: Optional[OnFragment] = None,
        stream: bool = True,
        stop: Optional[asyncio.Event] = None,
    ) -> str:
        """
        Request one debate turn and return the full message text.

        Raises RelayRequestError before any output, RelayStreamError on an
        error event, and RelayCancelled when `stop` is set or the session
        timeout expires. The last two carry the partial text.
        """
        if isinstance(request, BaseModel):
            payload = request.model_dump(by_alias=True, exclude_none=True, mode="json")
        else:
            payload = request

        parts: List[str] = []
        turn = asyncio.ensure_future(self._request_turn(payload, on_fragment, stream, parts))
        waiters = {turn}
        stopper = None
        if stop is not None:
            stopper = asyncio.ensure_future(stop.wait())
            waiters.add(stopper)

        try:
            await asyncio.wait(waiters, timeout=self.timeout_sec, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            # the caller itself was cancelled: the read must not outlive it
            await self._abandon(turn)
            raise
        finally:
            if stopper is not None:
                stopper.cancel()

        if turn.done():
            return turn.result()

        await self._abandon(turn)
        reason = "stopped by caller" if stop is not None and stop.is_set() else f"timed out after {self.timeout_sec:g}s"
        logger.info("Turn %s with %d fragments received", reason, len(parts))
        raise RelayCancelled(reason, "".join(parts))
