"""Per-session configuration for latency measurement."""

from __future__ import annotations

import itertools
import logging
import ssl
from dataclasses import dataclass

_PACKAGE_LOGGER = logging.getLogger("wsstat")
_SESSION_IDS = itertools.count(1)

DEFAULT_DIAL_TIMEOUT = 3.0
DEFAULT_READ_TIMEOUT = 5.0
DEFAULT_PING_TIMEOUT = 5.0
DEFAULT_HANDSHAKE_TIMEOUT = 10.0
DEFAULT_CLOSE_TIMEOUT = 5.0
DEFAULT_ORIGIN = "http://example.com"


@dataclass
class WsStatConfig:
    """Configuration for a measurement session.

    Attributes:
        dial_timeout: Bound on the transport connect step (seconds)
        read_timeout: Read deadline for each message exchange (seconds)
        ping_timeout: How long to wait for a pong after a ping (seconds)
        handshake_timeout: Bound on TLS plus upgrade handshake (seconds)
        close_timeout: How long the close handshake may wait for the peer
        ssl_context: TLS settings for wss:// URLs; None verifies against the
            default trust store
        origin: Default Origin header, overridable by caller headers
        logger: Diagnostic logger; None uses the package logger
        log_level: Level for this session's logging (logging.DEBUG or
            logging.INFO); None leaves levels to the application
    """

    dial_timeout: float = DEFAULT_DIAL_TIMEOUT
    read_timeout: float = DEFAULT_READ_TIMEOUT
    ping_timeout: float = DEFAULT_PING_TIMEOUT
    handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT
    close_timeout: float = DEFAULT_CLOSE_TIMEOUT
    ssl_context: ssl.SSLContext | None = None
    origin: str | None = DEFAULT_ORIGIN
    logger: logging.Logger | None = None
    log_level: int | None = None

    def __post_init__(self) -> None:
        for name in ("dial_timeout", "read_timeout", "ping_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

    def get_logger(self) -> logging.Logger:
        """Return the logger for one session.

        The package logger is never reconfigured. With a level and no custom
        logger, each call returns a fresh ``wsstat.session<N>`` child that
        carries the level and propagates to the package logger's handlers.
        """
        if self.logger is not None:
            if self.log_level is not None:
                self.logger.setLevel(self.log_level)
            return self.logger
        if self.log_level is None:
            return _PACKAGE_LOGGER
        logger = _PACKAGE_LOGGER.getChild(f"session{next(_SESSION_IDS)}")
        logger.setLevel(self.log_level)
        return logger

    def get_ssl_context(self) -> ssl.SSLContext:
        """Return the TLS context used for secure connections."""
        if self.ssl_context is not None:
            return self.ssl_context
        return ssl.create_default_context()
