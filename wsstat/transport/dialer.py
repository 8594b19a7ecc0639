"""Instrumented dial path: name resolution, transport connect, TLS handshake.

Each sub-step writes its duration and cumulative marker into the session's
TimingRecord as soon as it completes, so a failure in a later step leaves the
earlier markers intact and the later ones at zero.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import socket
from typing import Any

from ..config import WsStatConfig
from ..endpoint import Endpoint, unique_addresses
from ..errors import ConnectError, ResolutionError
from ..timing import TimingRecord, elapsed_since, now_ns
from .connection import TimedClientConnection

_LOGGER = logging.getLogger(__name__)

AddrInfo = tuple[Any, ...]


class Connector:
    """Opens the transport for a session and times each dial sub-step."""

    def __init__(
        self,
        record: TimingRecord,
        config: WsStatConfig,
        *,
        label: str = "",
        logger: logging.Logger | None = None,
    ) -> None:
        self._record = record
        self._config = config
        self._label = label
        self._logger = logger or _LOGGER

    async def resolve(self, host: str, port: int) -> list[AddrInfo]:
        """Resolve ``host`` and record name resolution time.

        Raises:
            ResolutionError: If the resolver fails or returns no address
        """
        loop = asyncio.get_running_loop()
        start = now_ns()
        try:
            addrinfo = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
        except OSError as err:
            raise ResolutionError(f"Failed to resolve {host}: {err}") from err
        if not addrinfo:
            raise ResolutionError(f"No address found for {host}")

        record = self._record
        record.name_resolution = elapsed_since(start)
        record.name_resolution_done = record.name_resolution
        self._logger.debug(
            "[%s] Resolved %s to %d address(es) in %s",
            self._label,
            host,
            len(addrinfo),
            record.name_resolution,
        )
        return addrinfo

    async def connect(self, addrinfo: AddrInfo) -> socket.socket:
        """Connect a TCP socket to one resolved address within the dial timeout.

        Raises:
            ConnectError: If the connect fails or exceeds the dial timeout
        """
        family, sock_type, proto, _, sockaddr = addrinfo
        loop = asyncio.get_running_loop()
        sock = socket.socket(family, sock_type, proto)
        sock.setblocking(False)

        start = now_ns()
        try:
            await asyncio.wait_for(
                loop.sock_connect(sock, sockaddr),
                timeout=self._config.dial_timeout,
            )
        except TimeoutError as err:
            sock.close()
            raise ConnectError(
                f"Connect to {sockaddr[0]} timed out after {self._config.dial_timeout}s"
            ) from err
        except OSError as err:
            sock.close()
            raise ConnectError(f"Connect to {sockaddr[0]} failed: {err}") from err

        record = self._record
        record.transport_connect = elapsed_since(start)
        record.transport_connected = (
            record.name_resolution_done + record.transport_connect
        )
        self._logger.debug(
            "[%s] Transport connected to %s in %s",
            self._label,
            sockaddr[0],
            record.transport_connect,
        )
        return sock

    async def open_transport(
        self, host: str, port: int, endpoint: Endpoint
    ) -> socket.socket:
        """Resolve ``host`` and connect to its first address.

        Only the first resolved address is tried; there is no fallback and no
        retry. Every resolved IP is stored on ``endpoint``.
        """
        addrinfo = await self.resolve(host, port)
        endpoint.ips = unique_addresses(addrinfo)
        return await self.connect(addrinfo[0])

    def connection_factory(self, *, secure: bool) -> Any:
        """Return the connection factory handed to ``websockets.connect``.

        For secure URLs the factory records the TLS handshake as soon as the
        secured transport is ready.
        """
        if not secure:
            return TimedClientConnection
        return functools.partial(
            TimedClientConnection,
            on_transport_ready=self._secure_handshake_done,
        )

    def _secure_handshake_done(self, started_ns: int) -> None:
        record = self._record
        record.secure_handshake = elapsed_since(started_ns)
        record.secure_handshake_done = (
            record.transport_connected + record.secure_handshake
        )
        self._logger.debug(
            "[%s] TLS handshake done in %s", self._label, record.secure_handshake
        )
