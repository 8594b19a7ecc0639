"""WebSocket connection latency measurement.

Breaks a WebSocket connection into timed phases: name resolution, transport
connect, TLS handshake, upgrade handshake, first message round trip and
close, with cumulative markers for each.
"""

__version__ = "0.1.0"

from .config import WsStatConfig
from .endpoint import CertificateDetails, Endpoint, TlsState, port_for
from .errors import (
    CloseError,
    ConnectError,
    PayloadDecodeError,
    PongTimeoutError,
    ProtocolHandshakeError,
    ReadError,
    ReadTimeoutError,
    ResolutionError,
    SecureHandshakeError,
    SessionStateError,
    WriteError,
    WsStatError,
)
from .exchange import FrameType
from .measure import (
    measure_ping_round_trip,
    measure_structured_round_trip,
    measure_text_round_trip,
)
from .session import WsStatSession, new_session
from .timing import TimingRecord

__all__ = [
    "CertificateDetails",
    "CloseError",
    "ConnectError",
    "Endpoint",
    "FrameType",
    "PayloadDecodeError",
    "PongTimeoutError",
    "ProtocolHandshakeError",
    "ReadError",
    "ReadTimeoutError",
    "ResolutionError",
    "SecureHandshakeError",
    "SessionStateError",
    "TimingRecord",
    "TlsState",
    "WriteError",
    "WsStatConfig",
    "WsStatError",
    "WsStatSession",
    "__version__",
    "measure_ping_round_trip",
    "measure_structured_round_trip",
    "measure_text_round_trip",
    "new_session",
    "port_for",
]
