"""Error types for WebSocket latency measurement.

Each error names the connection phase that failed. Underlying library
exceptions are chained with ``raise ... from err`` and never rewritten.
"""

from __future__ import annotations


class WsStatError(Exception):
    """Base error for wsstat measurement failures."""


class ResolutionError(WsStatError):
    """Name resolution of the target host failed."""


class ConnectError(WsStatError):
    """Transport connection to the first resolved address failed."""


class SecureHandshakeError(WsStatError):
    """TLS handshake over the open transport failed."""


class ProtocolHandshakeError(WsStatError):
    """WebSocket upgrade handshake was rejected or timed out."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class WriteError(WsStatError):
    """Writing a frame to the connection failed."""


class ReadError(WsStatError):
    """Reading from the connection failed."""


class ReadTimeoutError(ReadError):
    """No message arrived before the read deadline."""


class PongTimeoutError(WsStatError):
    """No pong arrived before the ping timeout."""


class CloseError(WsStatError):
    """Closing the connection failed."""


class PayloadDecodeError(WsStatError):
    """A structured response could not be decoded."""


class SessionStateError(WsStatError):
    """Operation is not valid in the session's current state."""
