"""
Measurement phases and the legal transitions between them.

The happy path is strictly forward::

    IDLE -> PING -> DOWNLOAD -> UPLOAD -> [BUFFERBLOAT] -> [PACKET_LOSS] -> COMPLETE

Optional phases may be skipped.  ``ERROR`` can be entered from any
non-terminal phase; ``COMPLETE`` and ``ERROR`` are terminal.
"""
from __future__ import annotations

from enum import Enum


class MeasurementPhase(str, Enum):
    IDLE = "idle"
    PING = "ping"
    DOWNLOAD = "download"
    UPLOAD = "upload"
    BUFFERBLOAT = "bufferbloat"
    PACKET_LOSS = "packetLoss"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (MeasurementPhase.COMPLETE, MeasurementPhase.ERROR)

    @property
    def is_transfer(self) -> bool:
        return self in (MeasurementPhase.DOWNLOAD, MeasurementPhase.UPLOAD)


_ORDER = (
    MeasurementPhase.IDLE,
    MeasurementPhase.PING,
    MeasurementPhase.DOWNLOAD,
    MeasurementPhase.UPLOAD,
    MeasurementPhase.BUFFERBLOAT,
    MeasurementPhase.PACKET_LOSS,
    MeasurementPhase.COMPLETE,
)

# Phases that may be skipped on the way forward.
_OPTIONAL = frozenset({MeasurementPhase.BUFFERBLOAT, MeasurementPhase.PACKET_LOSS})


def can_transition(src: MeasurementPhase, dst: MeasurementPhase) -> bool:
    """Return True if moving from *src* to *dst* is legal."""
    if src.is_terminal:
        return False
    if dst is MeasurementPhase.ERROR:
        return True

    i, j = _ORDER.index(src), _ORDER.index(dst)
    if j <= i:
        return False
    return all(p in _OPTIONAL for p in _ORDER[i + 1 : j])
