"""Message and ping/pong round-trip measurement.

Application round trips are strictly sequential: write, then a read bounded
by the read deadline. The ping path is the only concurrent one. websockets
only hands incoming frames to the application as a side effect of reads, so
a background task keeps pulling frames while the foreground writes the ping
and waits for the pong.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from enum import Enum
from typing import Any

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed, WebSocketException

from .config import WsStatConfig
from .errors import (
    PayloadDecodeError,
    PongTimeoutError,
    ReadError,
    ReadTimeoutError,
    SessionStateError,
    WriteError,
)
from .timing import TimingRecord, elapsed_since, now_ns

_LOGGER = logging.getLogger(__name__)


class FrameType(Enum):
    """Application frame types."""

    TEXT = "text"
    BINARY = "binary"


class MessageExchanger:
    """Measures round trips over one open connection."""

    def __init__(
        self,
        connection: ClientConnection,
        record: TimingRecord,
        config: WsStatConfig,
        *,
        label: str = "",
        logger: logging.Logger | None = None,
    ) -> None:
        self._connection = connection
        self._record = record
        self._config = config
        self._label = label
        self._logger = logger or _LOGGER
        self._reader_task: asyncio.Task[None] | None = None
        self.reader_error: BaseException | None = None

    @property
    def reader_task(self) -> asyncio.Task[None] | None:
        """Background frame reader started by the last ping, if any."""
        return self._reader_task

    # -------------------------------------------------------------------------
    # Application round trip
    # -------------------------------------------------------------------------

    async def write(self, frame_type: FrameType, data: bytes) -> int:
        """Write one frame and return the timestamp taken before the write.

        Raises:
            WriteError: If the frame could not be written, or a text payload
                is not valid UTF-8
        """
        start = now_ns()
        message: str | bytes = data
        if frame_type is FrameType.TEXT:
            try:
                message = data.decode("utf-8")
            except UnicodeDecodeError as err:
                raise WriteError(
                    f"Text frame payload is not valid UTF-8: {err}"
                ) from err
        try:
            await self._connection.send(message)
        except (ConnectionClosed, OSError) as err:
            raise WriteError(f"Failed to write {frame_type.value} frame: {err}") from err
        return start

    async def read(self, start_ns: int) -> tuple[FrameType, bytes]:
        """Read one frame and record the round trip since ``start_ns``.

        ``start_ns`` must be the timestamp returned by :meth:`write` for the
        message this read answers; any other value yields a meaningless
        round trip.

        Raises:
            ReadTimeoutError: If nothing arrives before the read deadline
            ReadError: If the connection closes or fails during the read
        """
        try:
            message = await asyncio.wait_for(
                self._connection.recv(), timeout=self._config.read_timeout
            )
        except TimeoutError as err:
            raise ReadTimeoutError(
                f"No message within {self._config.read_timeout}s"
            ) from err
        except (ConnectionClosed, OSError) as err:
            raise ReadError(f"Failed to read message: {err}") from err

        self._record_round_trip(start_ns)
        if isinstance(message, str):
            return FrameType.TEXT, message.encode("utf-8")
        return FrameType.BINARY, bytes(message)

    async def send_and_receive(self, frame_type: FrameType, data: bytes) -> bytes:
        """Write ``data`` and return the next message received."""
        start = await self.write(frame_type, data)
        _, response = await self.read(start)
        self._logger.debug("[%s] Received message: %r", self._label, response)
        return response

    async def send_structured_and_receive(self, payload: Any) -> Any:
        """Send ``payload`` as JSON text and decode the JSON response.

        Raises:
            PayloadDecodeError: If the response is not valid JSON
        """
        data = json.dumps(payload).encode("utf-8")
        start = await self.write(FrameType.TEXT, data)
        _, response = await self.read(start)
        try:
            decoded = json.loads(response)
        except ValueError as err:
            raise PayloadDecodeError("Response is not valid JSON") from err
        self._logger.debug("[%s] Received message: %r", self._label, decoded)
        return decoded

    # -------------------------------------------------------------------------
    # Ping/pong round trip
    # -------------------------------------------------------------------------

    async def ping(self) -> None:
        """Send a ping and record the round trip until its pong.

        On success the background reader is cancelled and the read side
        returns to the caller. On failure it is left running; it ends by
        itself at the next connection error or close, and the connection
        must not be reused.

        Raises:
            SessionStateError: If a previous ping's reader is still running
            WriteError: If the ping frame could not be written
            PongTimeoutError: If no pong arrives within the ping timeout
            ReadError: If the connection closes before the pong arrives
        """
        if self._reader_task is not None and not self._reader_task.done():
            raise SessionStateError("A ping is already outstanding on this session")

        pong_received = asyncio.Event()
        self.reader_error = None
        self._reader_task = asyncio.create_task(
            self._read_frames(), name=f"wsstat-reader[{self._label}]"
        )

        start = now_ns()
        try:
            pong_waiter = await self._connection.ping()
        except (ConnectionClosed, OSError) as err:
            raise WriteError(f"Failed to write ping frame: {err}") from err
        # One-shot: the waiter completes once, on pong or on connection loss
        pong_waiter.add_done_callback(lambda _: pong_received.set())

        try:
            await asyncio.wait_for(
                pong_received.wait(), timeout=self._config.ping_timeout
            )
        except TimeoutError as err:
            raise PongTimeoutError(
                f"No pong within {self._config.ping_timeout}s"
            ) from err

        if pong_waiter.cancelled() or pong_waiter.exception() is not None:
            raise ReadError("Connection closed before pong was received")

        self._record_round_trip(start)
        await self.stop_reader()

    async def stop_reader(self) -> None:
        """Cancel the background reader and wait for it to finish."""
        task = self._reader_task
        if task is None:
            return
        if not task.done():
            task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        self._reader_task = None

    async def _read_frames(self) -> None:
        """Keep pulling frames so control frames get processed."""
        connection = self._connection
        try:
            while True:
                message = await connection.recv()
                self._logger.debug(
                    "[%s] Discarded %d-byte message while waiting for pong",
                    self._label,
                    len(message),
                )
        except ConnectionClosed as err:
            self.reader_error = err
            self._logger.debug("[%s] Reader stopped: %s", self._label, err)
        except (OSError, WebSocketException) as err:
            self.reader_error = err
            self._logger.debug("[%s] Reader failed: %s", self._label, err)
        await connection.close()

    def _record_round_trip(self, start_ns: int) -> None:
        record = self._record
        record.message_round_trip = elapsed_since(start_ns)
        record.first_message_received = (
            record.protocol_handshake_done + record.message_round_trip
        )
        self._logger.debug(
            "[%s] Message round trip %s", self._label, record.message_round_trip
        )
