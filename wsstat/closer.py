"""Connection teardown timing."""

from __future__ import annotations

import logging

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import WebSocketException

from .errors import CloseError
from .timing import ZERO, TimingRecord, elapsed_since, now_ns

_LOGGER = logging.getLogger(__name__)


class ConnectionCloser:
    """Closes a connection and records the close phase and session total."""

    def __init__(
        self,
        record: TimingRecord,
        *,
        label: str = "",
        logger: logging.Logger | None = None,
    ) -> None:
        self._record = record
        self._label = label
        self._logger = logger or _LOGGER

    async def close(self, connection: ClientConnection) -> None:
        """Run the close handshake, then hard-close the transport.

        ``close`` is recorded even when the handshake fails. ``total`` is only
        set when a message round trip was recorded; otherwise it stays zero.

        Raises:
            CloseError: If the close handshake failed
        """
        record = self._record
        start = now_ns()
        error: Exception | None = None
        try:
            await connection.close()
        except (OSError, WebSocketException) as err:
            error = err
        finally:
            connection.transport.abort()
            record.close = elapsed_since(start)

        if error is not None:
            raise CloseError(f"Close handshake failed: {error}") from error

        if record.first_message_received != ZERO:
            record.total = record.first_message_received + record.close
        self._logger.debug(
            "[%s] Connection closed in %s (total %s)",
            self._label,
            record.close,
            record.total,
        )
