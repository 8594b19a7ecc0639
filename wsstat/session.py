"""Step-by-step measurement session.

A session owns exactly one connection and one TimingRecord. Phases run in a
fixed order:

    dial (resolve -> connect -> [TLS] -> upgrade) -> exchange -> close

Usage:
    session = new_session(WsStatConfig(read_timeout=2.0))
    await session.dial("wss://echo.example.com/ws")
    start = await session.write_message(FrameType.TEXT, b"hello")
    frame_type, data = await session.read_message(start)
    await session.close()
    print(session.record.as_milliseconds())

When a step fails, the error is raised and ``session.record`` keeps whatever
had been recorded up to that point. Later markers stay zero.
"""

from __future__ import annotations

from types import TracebackType
from typing import Any

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import InvalidURI
from websockets.uri import parse_uri

from .closer import ConnectionCloser
from .config import WsStatConfig
from .endpoint import Endpoint
from .errors import (
    ProtocolHandshakeError,
    ReadTimeoutError,
    SessionStateError,
    WsStatError,
)
from .exchange import FrameType, MessageExchanger
from .timing import TimingRecord, now_ns
from .transport.dialer import Connector
from .transport.handshake import HandshakeTracker, HeadersLike

STATE_NEW = "new"
STATE_DIALING = "dialing"
STATE_OPEN = "open"
STATE_FAILED = "failed"
STATE_CLOSED = "closed"


class WsStatSession:
    """One instrumented attempt to open, use and close a WebSocket connection."""

    def __init__(self, config: WsStatConfig | None = None) -> None:
        self.config = config or WsStatConfig()
        self.logger = self.config.get_logger()
        self.record = TimingRecord()
        self.endpoint = Endpoint()

        self._state = STATE_NEW
        self._failure: WsStatError | None = None
        self._connection: ClientConnection | None = None
        self._exchanger: MessageExchanger | None = None

    async def __aenter__(self) -> WsStatSession:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        if self._state != STATE_CLOSED:
            await self.abort()

    @property
    def state(self) -> str:
        """Current session state."""
        return self._state

    @property
    def failure(self) -> WsStatError | None:
        """Error that made the connection unusable, if any."""
        return self._failure

    @property
    def is_usable(self) -> bool:
        """Whether the connection can still carry message exchanges."""
        return self._state == STATE_OPEN

    @property
    def label(self) -> str:
        return self.endpoint.url or "wsstat"

    # -------------------------------------------------------------------------
    # Dial
    # -------------------------------------------------------------------------

    async def dial(self, url: str, headers: HeadersLike | None = None) -> None:
        """Open the connection, recording every dial phase.

        Args:
            url: ws:// or wss:// URL
            headers: Extra request headers, merged over the defaults

        Raises:
            SessionStateError: If this session already dialed
            ResolutionError, ConnectError, SecureHandshakeError,
            ProtocolHandshakeError: If the corresponding phase failed
        """
        if self._state != STATE_NEW:
            raise SessionStateError("A session can only dial once")
        self._state = STATE_DIALING
        self.endpoint.url = url

        try:
            ws_uri = parse_uri(url)
        except InvalidURI as err:
            error = ProtocolHandshakeError(f"Invalid WebSocket URL: {url}")
            self._fail(error)
            raise error from err

        connector = Connector(
            self.record, self.config, label=self.label, logger=self.logger
        )
        tracker = HandshakeTracker(
            self.record,
            self.config,
            self.endpoint,
            label=self.label,
            logger=self.logger,
        )

        self.logger.debug("[%s] Dialing", self.label)
        dial_started = now_ns()
        try:
            sock = await connector.open_transport(
                ws_uri.host, ws_uri.port, self.endpoint
            )
            connection = await tracker.upgrade(
                url,
                sock,
                secure=ws_uri.secure,
                dial_started_ns=dial_started,
                connection_factory=connector.connection_factory(secure=ws_uri.secure),
                headers=headers,
            )
        except WsStatError as err:
            self._fail(err)
            raise

        self._connection = connection
        self._exchanger = MessageExchanger(
            connection,
            self.record,
            self.config,
            label=self.label,
            logger=self.logger,
        )
        self._state = STATE_OPEN

    # -------------------------------------------------------------------------
    # Message exchange
    # -------------------------------------------------------------------------

    async def write_message(self, frame_type: FrameType, data: bytes) -> int:
        """Write one frame and return the timestamp taken before the write.

        Pass the returned value to :meth:`read_message` to time the round
        trip.
        """
        exchanger = self._require_open()
        try:
            return await exchanger.write(frame_type, data)
        except WsStatError as err:
            self._fail(err)
            raise

    async def read_message(self, start_ns: int) -> tuple[FrameType, bytes]:
        """Read one frame, recording the round trip since ``start_ns``.

        A read that hit the deadline may be retried with the same timestamp.
        """
        exchanger = self._require_open(allow_reread=True)
        try:
            result = await exchanger.read(start_ns)
        except WsStatError as err:
            self._fail(err)
            raise
        if isinstance(self._failure, ReadTimeoutError):
            self._failure = None
            self._state = STATE_OPEN
        return result

    async def send_and_receive(self, frame_type: FrameType, data: bytes) -> bytes:
        """Write ``data`` and return the response, recording the round trip."""
        exchanger = self._require_open()
        try:
            return await exchanger.send_and_receive(frame_type, data)
        except WsStatError as err:
            self._fail(err)
            raise

    async def send_structured_and_receive(self, payload: Any) -> Any:
        """Send ``payload`` as JSON and return the decoded JSON response."""
        exchanger = self._require_open()
        try:
            return await exchanger.send_structured_and_receive(payload)
        except WsStatError as err:
            self._fail(err)
            raise

    async def ping(self) -> None:
        """Send a ping and record the round trip until the pong.

        After a failed ping the session is unusable; close it.
        """
        exchanger = self._require_open()
        try:
            await exchanger.ping()
        except SessionStateError:
            raise
        except WsStatError as err:
            self._fail(err)
            raise

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Close the connection, recording the close phase and total.

        Raises:
            SessionStateError: If there is no connection to close
            CloseError: If the close handshake failed
        """
        if self._state == STATE_CLOSED:
            raise SessionStateError("Session is already closed")
        if self._connection is None:
            raise SessionStateError("Session has no connection to close")

        closer = ConnectionCloser(self.record, label=self.label, logger=self.logger)
        try:
            await closer.close(self._connection)
        finally:
            self._state = STATE_CLOSED
            await self._stop_reader()

    async def abort(self) -> None:
        """Release the connection without recording anything."""
        await self._stop_reader()
        if self._connection is not None:
            self._connection.transport.abort()
        self._state = STATE_CLOSED

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _require_open(self, *, allow_reread: bool = False) -> MessageExchanger:
        if self._exchanger is None or self._state == STATE_CLOSED:
            raise SessionStateError("Session is not connected")
        if self._state == STATE_OPEN:
            return self._exchanger
        if allow_reread and isinstance(self._failure, ReadTimeoutError):
            return self._exchanger
        raise SessionStateError(
            f"Session connection is unusable after {type(self._failure).__name__}"
        )

    def _fail(self, err: WsStatError) -> None:
        self._failure = err
        if self._state != STATE_CLOSED:
            self._state = STATE_FAILED
        self.logger.debug("[%s] %s: %s", self.label, type(err).__name__, err)

    async def _stop_reader(self) -> None:
        if self._exchanger is not None:
            await self._exchanger.stop_reader()


def new_session(config: WsStatConfig | None = None) -> WsStatSession:
    """Create a session with its own TimingRecord."""
    return WsStatSession(config)
