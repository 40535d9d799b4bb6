"""
Per-phase sample buffer.

Byte deltas reported by the transport are folded into a running counter;
individual samples are not kept, only the most recent one.  The counter is
zeroed exactly once per phase, when the grace period ends.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .phases import MeasurementPhase


@dataclass(frozen=True)
class Sample:
    """A single timestamped byte delta."""

    timestamp_ms: float
    bytes: int
    phase: MeasurementPhase


def bytes_to_mbps(total_bytes: int, elapsed_ms: float) -> float:
    """Convert a byte count over *elapsed_ms* to megabits per second."""
    if elapsed_ms <= 0:
        return 0.0
    return (total_bytes * 8) / (elapsed_ms / 1000) / 1_000_000


class SampleBuffer:
    """Rolling byte counter for one transfer phase."""

    def __init__(self, phase: MeasurementPhase, start_timestamp_ms: float = 0.0) -> None:
        self.phase = phase
        self.start_timestamp_ms = start_timestamp_ms
        self.sample_count = 0
        self.reset_count = 0
        self.current_mbps = 0.0
        self.last_sample: Optional[Sample] = None
        self._total = 0

    def record(self, bytes_delta: int, timestamp_ms: float) -> Sample:
        if bytes_delta < 0:
            raise ValueError(f"bytes_delta must be non-negative, got {bytes_delta}")

        # Keep samples ordered even if a clock reading goes backwards.
        if self.last_sample is not None and timestamp_ms < self.last_sample.timestamp_ms:
            timestamp_ms = self.last_sample.timestamp_ms

        sample = Sample(timestamp_ms=timestamp_ms, bytes=bytes_delta, phase=self.phase)
        self._total += bytes_delta
        self.sample_count += 1
        self.last_sample = sample
        self.current_mbps = self.speed_mbps(timestamp_ms)
        return sample

    def total_bytes(self) -> int:
        """Bytes recorded since the last reset."""
        return self._total

    def reset(self, timestamp_ms: float) -> None:
        """Zero the counter and start a new measurement window at *timestamp_ms*."""
        self._total = 0
        self.start_timestamp_ms = timestamp_ms
        self.current_mbps = 0.0
        self.reset_count += 1

    def elapsed_ms(self, now_ms: float) -> float:
        return max(0.0, now_ms - self.start_timestamp_ms)

    def speed_mbps(self, now_ms: float) -> float:
        """Raw payload speed since the window start (no overhead applied)."""
        return bytes_to_mbps(self._total, self.elapsed_ms(now_ms))
