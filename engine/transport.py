"""
Contract between the engine and a bulk-transfer transport.

The engine never moves bytes itself.  For every phase it asks the transport
to open a handle, consumes that handle's event stream, and closes it::

    handle = await transport.open_phase(PhaseRequest(PhaseKind.DOWNLOAD, ...))
    try:
        async for event in handle.events():
            ...
    finally:
        await transport.close(handle)

The stream running dry is the phase's *completion* event.  Failures are
raised as :class:`~engine.errors.TransportError`.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Protocol, Union

from .constants import CHUNK_BYTES, DEFAULT_CONNECTIONS, DEFAULT_PING_COUNT, PAYLOAD_BYTES, PING_INTERVAL


class PhaseKind(str, Enum):
    PING = "ping"
    DOWNLOAD = "download"
    UPLOAD = "upload"
    BUFFERBLOAT = "bufferbloat"
    PACKET_LOSS = "packetLoss"


@dataclass(frozen=True)
class PhaseRequest:
    kind: PhaseKind
    connections: int = DEFAULT_CONNECTIONS
    probe_count: int = DEFAULT_PING_COUNT
    probe_interval_s: float = PING_INTERVAL
    payload_bytes: int = PAYLOAD_BYTES
    chunk_bytes: int = CHUNK_BYTES


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ByteProgress:
    bytes_delta: int
    timestamp_ms: float


@dataclass(frozen=True)
class RoundTrip:
    round_trip_ms: float
    timestamp_ms: float


@dataclass(frozen=True)
class PacketLossReport:
    sent: int
    received: int
    timestamp_ms: float


TransportEvent = Union[ByteProgress, RoundTrip, PacketLossReport]


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------

class PhaseHandle(Protocol):
    request: PhaseRequest

    def events(self) -> AsyncIterator[TransportEvent]:
        ...


class Transport(Protocol):
    async def open_phase(self, request: PhaseRequest) -> PhaseHandle:
        ...

    async def close(self, handle: PhaseHandle) -> None:
        ...
