"""One-call measurement flows.

Each flow builds a session and runs dial -> exchange -> close. On any failure
the error is raised, the connection is released and no partial timing is
returned; use :class:`~wsstat.session.WsStatSession` directly to inspect
partial records.
"""

from __future__ import annotations

from typing import Any

from .config import WsStatConfig
from .errors import WsStatError
from .exchange import FrameType
from .session import WsStatSession, new_session
from .timing import TimingRecord
from .transport.handshake import HeadersLike


async def measure_text_round_trip(
    url: str,
    message: str | bytes,
    headers: HeadersLike | None = None,
    *,
    config: WsStatConfig | None = None,
) -> tuple[TimingRecord, bytes]:
    """Dial ``url``, send ``message`` as a text frame, read the reply, close.

    Returns:
        The finished timing record and the response bytes
    """
    data = message.encode("utf-8") if isinstance(message, str) else message
    async with new_session(config) as session:
        try:
            await session.dial(url, headers)
            start = await session.write_message(FrameType.TEXT, data)
            _, response = await session.read_message(start)
            await session.close()
        except WsStatError as err:
            _log_failure(session, "text round trip", err)
            raise
    return session.record.copy(), response


async def measure_structured_round_trip(
    url: str,
    payload: Any,
    headers: HeadersLike | None = None,
    *,
    config: WsStatConfig | None = None,
) -> tuple[TimingRecord, Any]:
    """Dial ``url``, send ``payload`` as JSON, decode the JSON reply, close.

    Returns:
        The finished timing record and the decoded response
    """
    async with new_session(config) as session:
        try:
            await session.dial(url, headers)
            response = await session.send_structured_and_receive(payload)
            await session.close()
        except WsStatError as err:
            _log_failure(session, "structured round trip", err)
            raise
    return session.record.copy(), response


async def measure_ping_round_trip(
    url: str,
    headers: HeadersLike | None = None,
    *,
    config: WsStatConfig | None = None,
) -> TimingRecord:
    """Dial ``url``, send a ping, wait for the pong, close.

    Returns:
        The finished timing record
    """
    async with new_session(config) as session:
        try:
            await session.dial(url, headers)
            await session.ping()
            await session.close()
        except WsStatError as err:
            _log_failure(session, "ping round trip", err)
            raise
    return session.record.copy()


def _log_failure(session: WsStatSession, flow: str, err: WsStatError) -> None:
    session.logger.debug("[%s] Failed %s: %s", session.label, flow, err)
