# core/errors.py
# Error taxonomy for the completion relay. Routes map these to JSON
# `{error}` responses in main.py; the controller turns stream errors into a
# terminal SSE error event.

from typing import Optional


class RelayError(Exception):
    """Base class for every relay-level failure."""


class ConfigurationError(RelayError):
    """Missing credential, unknown provider, or invalid turn request (4xx)."""


class UpstreamRequestError(RelayError):
    """Provider answered with a non-success status before streaming began."""

    def __init__(self, provider: str, status: int, body: str = ""):
        self.provider = provider
        self.status = status
        self.body = body
        super().__init__(f"{provider} API error: {status} - {body}")


class UpstreamStreamError(RelayError):
    """Transport failure after the upstream stream had started."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider} stream error: {message}")


class ClientDisconnected(RelayError):
    """Outbound consumer went away. A cancellation signal, not a failure."""


class MalformedRecordSkipped(RelayError):
    """A complete record that could not be parsed. Never leaves the decoder."""

    def __init__(self, record: str, reason: Optional[str] = None):
        self.record = record
        super().__init__(reason or "malformed record")


class InvalidTransition(RelayError):
    """A RelaySession was asked to move backwards or out of a terminal state."""
