# services/wire_formats.py
"""
Incremental decoders for the three upstream streaming framings.

Every provider family frames its stream as newline-separated records:

* CLOUD_SSE      OpenAI-style ``data: {json}`` lines, ended by ``data: [DONE]``
* ANTHROPIC_SSE  ``data: {json}`` lines, ended by an event of type ``message_stop``
* LINE_JSON      Ollama-style bare JSON objects, ended by ``"done": true``

A StreamDecoder holds the parse state for one stream: raw bytes are buffered
and split on ``\\n`` before decoding, so neither a record nor a multi-byte
character cut across two network chunks is ever parsed half-way. Once the
terminal record is seen the decoder is finished and ignores any further input.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from core.errors import ConfigurationError, MalformedRecordSkipped, UpstreamStreamError

logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data:"
CLOUD_DONE_SENTINEL = "[DONE]"

# (fragment or None, terminal reached)
ParsedRecord = Tuple[Optional[str], bool]


class WireFormat(str, Enum):
    CLOUD_SSE = "cloud_sse"
    ANTHROPIC_SSE = "anthropic_sse"
    LINE_JSON = "line_json"


PROVIDER_WIRE_FORMATS: Dict[str, WireFormat] = {
    "openai": WireFormat.CLOUD_SSE,
    "anthropic": WireFormat.ANTHROPIC_SSE,
    "ollama": WireFormat.LINE_JSON,
}


def wire_format_for(provider: str) -> WireFormat:
    try:
        return PROVIDER_WIRE_FORMATS[provider]
    except KeyError:
        raise ConfigurationError(f"Unknown provider: {provider}") from None


def _load_json(payload: str) -> Dict[str, Any]:
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise MalformedRecordSkipped(payload, f"invalid JSON: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise MalformedRecordSkipped(payload, "record is not a JSON object")
    return data


def _sse_payload(line: str) -> Optional[str]:
    """Strip the `data:` prefix; None for comments, `event:` lines and the like."""
    if not line.startswith(SSE_DATA_PREFIX):
        return None
    return line[len(SSE_DATA_PREFIX):].strip()


def _error_message(data: Dict[str, Any]) -> str:
    err = data.get("error")
    if isinstance(err, dict):
        return str(err.get("message") or err)
    return str(err)


# -------------------------
# Per-variant record parsers
# -------------------------
def _parse_cloud_sse(line: str) -> ParsedRecord:
    payload = _sse_payload(line)
    if payload is None:
        return None, False
    if payload == CLOUD_DONE_SENTINEL:
        return None, True

    data = _load_json(payload)
    if data.get("error"):
        raise UpstreamStreamError("openai", _error_message(data))

    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return None, False
    delta = choices[0].get("delta") or {}
    content = delta.get("content") if isinstance(delta, dict) else None
    return (content or None), False


def _parse_anthropic_sse(line: str) -> ParsedRecord:
    payload = _sse_payload(line)
    if payload is None:
        return None, False

    data = _load_json(payload)
    event_type = data.get("type")
    if event_type == "message_stop":
        return None, True
    if event_type == "error":
        raise UpstreamStreamError("anthropic", _error_message(data))
    if event_type == "content_block_delta":
        delta = data.get("delta") or {}
        text = delta.get("text") if isinstance(delta, dict) else None
        return (text or None), False
    return None, False


def _parse_line_json(line: str) -> ParsedRecord:
    data = _load_json(line)
    if data.get("error"):
        raise UpstreamStreamError("ollama", _error_message(data))

    text = data.get("response")
    if text is None:
        # /api/chat framing carries the text under message.content
        message = data.get("message") or {}
        text = message.get("content") if isinstance(message, dict) else None
    return (text or None), bool(data.get("done"))


_RECORD_PARSERS: Dict[WireFormat, Callable[[str], ParsedRecord]] = {
    WireFormat.CLOUD_SSE: _parse_cloud_sse,
    WireFormat.ANTHROPIC_SSE: _parse_anthropic_sse,
    WireFormat.LINE_JSON: _parse_line_json,
}


def parse_record(wire_format: WireFormat, line: str) -> ParsedRecord:
    """Parse one complete, stripped, non-empty record of the given framing."""
    return _RECORD_PARSERS[wire_format](line)


# -------------------------
# Incremental decoder
# -------------------------
@dataclass
class StreamDecoder:
    wire_format: WireFormat
    buffer: bytearray = field(default_factory=bytearray)
    finished: bool = False
    skipped: int = 0
    # in-band upstream error, raised by `raise_for_error` after earlier fragments are delivered
    error: Optional[UpstreamStreamError] = None

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error

    def feed(self, chunk: bytes) -> List[str]:
        """Add raw bytes; return the fragments of every record they complete."""
        if self.finished or not chunk:
            return []
        self.buffer.extend(chunk)
        *records, rest = self.buffer.split(b"\n")
        self.buffer = bytearray(rest)
        return self._consume(records)

    def flush(self) -> List[str]:
        """End of stream: a final record without a trailing newline still counts."""
        if self.finished or not self.buffer:
            return []
        record = bytes(self.buffer)
        self.buffer.clear()
        return self._consume([record])

    def _consume(self, records: List[bytes]) -> List[str]:
        fragments: List[str] = []
        for raw in records:
            line = raw.decode("utf-8", errors="replace").strip()
            if not line:
                continue
            try:
                fragment, terminal = parse_record(self.wire_format, line)
            except MalformedRecordSkipped as exc:
                self.skipped += 1
                logger.warning("Skipping %s record (%s): %.120s", self.wire_format.value, exc, exc.record)
                continue
            except UpstreamStreamError as exc:
                self.error = exc
                self.finished = True
                self.buffer.clear()
                break
            if fragment:
                fragments.append(fragment)
            if terminal:
                self.finished = True
                self.buffer.clear()
                break
        return fragments
