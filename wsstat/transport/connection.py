"""Instrumented websockets connection."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from websockets.asyncio.client import ClientConnection

from ..timing import now_ns

if TYPE_CHECKING:
    from websockets.client import ClientProtocol

TransportReadyCallback = Callable[[int], None]


class TimedClientConnection(ClientConnection):
    """ClientConnection that reports when its transport becomes ready.

    asyncio builds the protocol object right before it starts the TLS
    handshake on a preexisting socket, and calls ``connection_made`` once the
    secured transport is ready. The callback receives the construction
    timestamp so the caller can time the handshake in between.
    """

    def __init__(
        self,
        protocol: ClientProtocol,
        *,
        on_transport_ready: TransportReadyCallback | None = None,
        **kwargs: Any,
    ) -> None:
        self.created_ns = now_ns()
        self._on_transport_ready = on_transport_ready
        super().__init__(protocol, **kwargs)

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        if self._on_transport_ready is not None:
            self._on_transport_ready(self.created_ns)
        super().connection_made(transport)
