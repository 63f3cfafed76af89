# services/relay.py
"""
Relay controller: binds one upstream completion to one outbound SSE channel.

Outbound protocol (one event per fragment, order preserved):

    data: {"content": "<fragment>"}\\n\\n     for every fragment
    data: [DONE]\\n\\n                        once, on clean completion
    data: {"error": "<message>"}\\n\\n        once, instead of [DONE], on failure

A RelaySession moves pending -> streaming -> completed | failed | cancelled
and never backwards. Cancellation (the consumer went away) is not a failure:
the controller stops reading upstream, releases the connection and reports
nothing. The finished text is handed to `on_complete` only after a clean
completion.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from core.errors import ClientDisconnected, InvalidTransition
from services.ai_providers import GenerationParams, PromptMessage

logger = logging.getLogger(__name__)

SSE_MEDIA_TYPE = "text/event-stream"
SSE_DONE = "data: [DONE]\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

OnComplete = Callable[[str], Awaitable[Any]]
DisconnectCheck = Callable[[], Awaitable[bool]]


def format_event(payload: Dict[str, Any]) -> str:
    """Serialize a dict as one SSE `data:` event."""
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


class SessionState(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({SessionState.COMPLETED, SessionState.FAILED, SessionState.CANCELLED})

_ALLOWED = {
    SessionState.PENDING: {SessionState.STREAMING} | TERMINAL_STATES,
    SessionState.STREAMING: {SessionState.STREAMING} | TERMINAL_STATES,
}


@dataclass
class RelaySession:
    provider: str
    model: str
    prompt: List[PromptMessage]
    params: GenerationParams = field(default_factory=GenerationParams)
    sequence: int = 0
    state: SessionState = SessionState.PENDING
    error: Optional[str] = None
    parts: List[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(self.parts)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def _move(self, new_state: SessionState) -> None:
        if new_state not in _ALLOWED.get(self.state, ()):
            raise InvalidTransition(f"{self.state.value} -> {new_state.value}")
        self.state = new_state

    def record_fragment(self, fragment: str) -> int:
        self._move(SessionState.STREAMING)
        self.parts.append(fragment)
        self.sequence += 1
        return self.sequence

    def complete(self) -> None:
        self._move(SessionState.COMPLETED)

    def fail(self, message: str) -> None:
        self._move(SessionState.FAILED)
        self.error = message

    def cancel(self) -> None:
        # a late disconnect after a terminal state changes nothing
        if not self.is_terminal:
            self._move(SessionState.CANCELLED)


_CLOSED = object()


class EventChannel:
    """
    Push channel between the controller task and the HTTP response body.
    `send` fails with ClientDisconnected once closed; `close` is idempotent.
    """

    def __init__(self, max_pending: int = 1):
        # a bounded queue makes `send` wait for the consumer to take the event
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self._closed = False
        self._disconnected = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def disconnected(self) -> bool:
        return self._disconnected

    async def send(self, event: str) -> None:
        if self._closed:
            raise ClientDisconnected("outbound channel is closed")
        await self._queue.put(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # the consumer is not waiting; it sees `closed` once the queue drains
            pass

    def disconnect(self) -> None:
        """The remote consumer is gone; anything still queued is never delivered."""
        self._disconnected = True
        self.close()

    async def __aiter__(self) -> AsyncIterator[str]:
        while not self._disconnected:
            if self._closed and self._queue.empty():
                return
            event = await self._queue.get()
            if event is _CLOSED or self._disconnected:
                return
            yield event


class RelayController:
    def __init__(
        self,
        session: RelaySession,
        stream: Any,
        channel: Optional[EventChannel] = None,
        on_complete: Optional[OnComplete] = None,
        is_disconnected: Optional[DisconnectCheck] = None,
    ):
        # `stream` is a services.ai_providers.CompletionStream or anything with
        # the same fragments()/aclose() pair
        self.session = session
        self.stream = stream
        self.channel = channel or EventChannel()
        self.on_complete = on_complete
        self.is_disconnected = is_disconnected
        self._task: Optional[asyncio.Task] = None

    async def _ensure_live(self) -> None:
        if self.channel.closed:
            raise ClientDisconnected("outbound channel is closed")
        if self.is_disconnected is not None and await self.is_disconnected():
            self.channel.disconnect()
            raise ClientDisconnected("client disconnected")

    async def _emit_error(self, message: str) -> None:
        try:
            await self._ensure_live()
            await self.channel.send(format_event({"error": message}))
        except ClientDisconnected:
            logger.info("Client gone before error event could be delivered: %s", message)

    async def run(self) -> SessionState:
        """Drive the upstream stream into the channel until a terminal state."""
        session = self.session
        fragments = self.stream.fragments()
        try:
            async for fragment in fragments:
                await self._ensure_live()
                seq = session.record_fragment(fragment)
                logger.debug("Fragment %d (%d chars)", seq, len(fragment))
                await self.channel.send(format_event({"content": fragment}))
            await self._ensure_live()
            await self.channel.send(SSE_DONE)
            session.complete()
            logger.info(
                "Relay completed: %s/%s, %d fragments, %d chars, %d records skipped",
                session.provider, session.model, session.sequence, len(session.text),
                getattr(self.stream, "skipped_records", 0),
            )
            # stored before the body ends, so a reload right after [DONE] sees it
            await self._store()
        except ClientDisconnected:
            session.cancel()
            logger.info("Client disconnected after %d fragments; stream cancelled", session.sequence)
        except asyncio.CancelledError:
            session.cancel()
            logger.info("Relay task cancelled after %d fragments", session.sequence)
            raise
        except Exception as exc:
            # surface the error as the last event so the client never sees an abrupt drop
            message = str(exc) or type(exc).__name__
            session.fail(message)
            logger.warning("Relay failed after %d fragments: %s", session.sequence, message)
            await self._emit_error(message)
        finally:
            await fragments.aclose()
            await self.stream.aclose()
            self.channel.close()
        return session.state

    async def _store(self) -> None:
        if self.on_complete is None:
            return
        try:
            await self.on_complete(self.session.text)
        except Exception:
            # the client already has [DONE]; nothing left to report to
            logger.exception("Storing the completed message failed")

    async def drain(self) -> str:
        """
        Non-streaming fallback: consume the whole upstream stream and return the
        concatenated text. Errors propagate to the caller.
        """
        session = self.session
        fragments = self.stream.fragments()
        try:
            async for fragment in fragments:
                session.record_fragment(fragment)
        except asyncio.CancelledError:
            session.cancel()
            raise
        except Exception as exc:
            session.fail(str(exc) or type(exc).__name__)
            raise
        finally:
            await fragments.aclose()
            await self.stream.aclose()

        session.complete()
        if self.on_complete is not None:
            await self.on_complete(session.text)
        return session.text

    def start(self) -> asyncio.Task:
        if self._task is None:
            self._task = asyncio.create_task(self.run())
        return self._task

    async def events(self) -> AsyncIterator[str]:
        """
        Response body: start the relay task and forward its events. If the
        body is abandoned before the channel closes, the consumer is gone:
        mark the channel and cancel the task so the upstream read stops.
        """
        task = self.start()
        source = self.channel.__aiter__()
        finished = False
        try:
            async for event in source:
                yield event
            finished = not self.channel.disconnected
        finally:
            if not finished and not task.done():
                self.channel.disconnect()
                task.cancel()
                task.add_done_callback(self._release_upstream)
            await source.aclose()

    def _release_upstream(self, task: asyncio.Task) -> None:
        # a task cancelled before its first step never reaches run()'s cleanup
        if not getattr(self.stream, "closed", True):
            asyncio.ensure_future(self.stream.aclose())
