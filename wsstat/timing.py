"""Timing record for one instrumented WebSocket session.

Phase durations and cumulative markers are ``timedelta`` values so the
additive identities between them hold exactly:

    name_resolution_done   = name_resolution
    transport_connected    = name_resolution_done + transport_connect
    secure_handshake_done  = transport_connected + secure_handshake
    protocol_handshake_done = (secure_handshake_done or transport_connected)
                              + protocol_handshake
    first_message_received = protocol_handshake_done + message_round_trip
    total                  = first_message_received + close

A zero value means the phase did not run (or failed).
"""

from __future__ import annotations

import time
from dataclasses import dataclass, fields
from datetime import timedelta

ZERO = timedelta(0)
_MILLISECOND = timedelta(milliseconds=1)

PHASE_FIELDS: tuple[str, ...] = (
    "name_resolution",
    "transport_connect",
    "secure_handshake",
    "protocol_handshake",
    "message_round_trip",
    "close",
)

MARKER_FIELDS: tuple[str, ...] = (
    "name_resolution_done",
    "transport_connected",
    "secure_handshake_done",
    "protocol_handshake_done",
    "first_message_received",
    "total",
)


def now_ns() -> int:
    """Monotonic timestamp used for every phase measurement."""
    return time.perf_counter_ns()


def elapsed_since(start_ns: int) -> timedelta:
    """Return the wall time elapsed since ``start_ns``."""
    return timedelta(microseconds=(time.perf_counter_ns() - start_ns) / 1000)


@dataclass(slots=True)
class TimingRecord:
    """Phase durations and cumulative markers of a session."""

    # Phase durations
    name_resolution: timedelta = ZERO
    transport_connect: timedelta = ZERO
    secure_handshake: timedelta = ZERO
    protocol_handshake: timedelta = ZERO
    message_round_trip: timedelta = ZERO
    close: timedelta = ZERO

    # Cumulative markers
    name_resolution_done: timedelta = ZERO
    transport_connected: timedelta = ZERO
    secure_handshake_done: timedelta = ZERO
    protocol_handshake_done: timedelta = ZERO
    first_message_received: timedelta = ZERO
    total: timedelta = ZERO

    def durations(self) -> dict[str, timedelta]:
        """Return every duration and marker keyed by field name."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def as_milliseconds(self) -> dict[str, float]:
        """Return every duration and marker in milliseconds."""
        return {
            name: value / _MILLISECOND
            for name, value in self.durations().items()
        }

    def copy(self) -> TimingRecord:
        """Return a detached snapshot of this record."""
        return TimingRecord(**self.durations())
