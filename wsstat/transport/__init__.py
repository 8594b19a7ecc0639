"""Instrumented dial path for wsstat sessions.

Components:
- dialer: name resolution, transport connect, TLS handshake timing
- connection: websockets connection reporting transport readiness
- handshake: WebSocket upgrade timing and header capture
"""

from .connection import TimedClientConnection
from .dialer import Connector
from .handshake import HandshakeTracker, merge_headers

__all__ = [
    "Connector",
    "HandshakeTracker",
    "TimedClientConnection",
    "merge_headers",
]
