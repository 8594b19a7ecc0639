"""WebSocket upgrade handshake with timing and header capture."""

from __future__ import annotations

import logging
import socket
import ssl
from collections.abc import Iterable, Mapping
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidStatus,
    InvalidURI,
    WebSocketException,
)

from ..config import WsStatConfig
from ..endpoint import Endpoint, TlsState, headers_to_dict
from ..errors import ProtocolHandshakeError, SecureHandshakeError
from ..timing import ZERO, TimingRecord, elapsed_since

_LOGGER = logging.getLogger(__name__)

HeadersLike = Mapping[str, str] | Iterable[tuple[str, str]]


def merge_headers(
    headers: HeadersLike | None, *, origin: str | None = None
) -> list[tuple[str, str]]:
    """Merge caller headers over the default request headers.

    A caller-supplied header replaces the default of the same name
    (case-insensitive). websockets adds the protocol-mandated headers itself.
    """
    pairs: list[tuple[str, str]] = []
    if headers is not None:
        items = headers.items() if isinstance(headers, Mapping) else headers
        pairs = [(str(name), str(value)) for name, value in items]

    supplied = {name.lower() for name, _ in pairs}
    defaults = [("Origin", origin)] if origin else []
    return [
        (name, value) for name, value in defaults if name.lower() not in supplied
    ] + pairs


class HandshakeTracker:
    """Performs the protocol upgrade and derives its duration.

    The handshake-only duration is never timed on its own. It is the total
    dial time minus the last marker the dial path recorded before the
    upgrade (TLS done for wss://, transport connected for ws://).
    """

    def __init__(
        self,
        record: TimingRecord,
        config: WsStatConfig,
        endpoint: Endpoint,
        *,
        label: str = "",
        logger: logging.Logger | None = None,
    ) -> None:
        self._record = record
        self._config = config
        self._endpoint = endpoint
        self._label = label
        self._logger = logger or _LOGGER

    async def upgrade(
        self,
        url: str,
        sock: socket.socket,
        *,
        secure: bool,
        dial_started_ns: int,
        connection_factory: Any,
        headers: HeadersLike | None = None,
    ) -> ClientConnection:
        """Upgrade the open transport to a WebSocket connection.

        Args:
            url: WebSocket URL being dialed
            sock: Connected socket from the dial path
            secure: Whether a TLS handshake runs before the upgrade
            dial_started_ns: Timestamp taken before name resolution
            connection_factory: Factory from ``Connector.connection_factory``
            headers: Caller headers, merged over the defaults

        Raises:
            SecureHandshakeError: If TLS fails before the upgrade starts
            ProtocolHandshakeError: If the upgrade is rejected or times out
        """
        record = self._record
        request_headers = merge_headers(headers, origin=self._config.origin)
        connect_kwargs: dict[str, Any] = {}
        if secure:
            connect_kwargs["ssl"] = self._config.get_ssl_context()

        try:
            connection: ClientConnection = await websockets.connect(
                url,
                sock=sock,
                additional_headers=request_headers,
                open_timeout=self._config.handshake_timeout,
                ping_interval=None,
                close_timeout=self._config.close_timeout,
                max_size=None,
                logger=self._logger,
                create_connection=connection_factory,
                **connect_kwargs,
            )
        except TimeoutError as err:
            sock.close()
            if secure and record.secure_handshake_done == ZERO:
                raise SecureHandshakeError("TLS handshake timed out") from err
            raise ProtocolHandshakeError("WebSocket handshake timed out") from err
        except InvalidStatus as err:
            response = err.response
            self._endpoint.status_code = response.status_code
            self._endpoint.response_headers = headers_to_dict(
                response.headers.raw_items()
            )
            raise ProtocolHandshakeError(
                f"WebSocket upgrade rejected with HTTP {response.status_code}",
                status=response.status_code,
            ) from err
        except (InvalidHandshake, InvalidURI) as err:
            raise ProtocolHandshakeError(f"WebSocket handshake failed: {err}") from err
        except ssl.SSLError as err:
            sock.close()
            raise SecureHandshakeError(f"TLS handshake failed: {err}") from err
        except (OSError, WebSocketException) as err:
            sock.close()
            if secure and record.secure_handshake_done == ZERO:
                raise SecureHandshakeError(f"TLS handshake failed: {err}") from err
            raise ProtocolHandshakeError(f"WebSocket handshake failed: {err}") from err

        total_dial = elapsed_since(dial_started_ns)
        previous = record.secure_handshake_done if secure else record.transport_connected
        record.protocol_handshake = total_dial - previous
        record.protocol_handshake_done = total_dial

        self._capture(connection)
        self._logger.debug(
            "[%s] WebSocket handshake done in %s (dial total %s)",
            self._label,
            record.protocol_handshake,
            total_dial,
        )
        return connection

    def _capture(self, connection: ClientConnection) -> None:
        endpoint = self._endpoint
        if connection.request is not None:
            endpoint.request_headers = headers_to_dict(
                connection.request.headers.raw_items()
            )
        if connection.response is not None:
            endpoint.status_code = connection.response.status_code
            endpoint.response_headers = headers_to_dict(
                connection.response.headers.raw_items()
            )
        ssl_object = connection.transport.get_extra_info("ssl_object")
        if ssl_object is not None:
            endpoint.tls = TlsState.from_ssl_object(ssl_object)
