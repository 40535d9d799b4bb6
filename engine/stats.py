"""
Latency statistics.

Pure functions and lightweight dataclasses -- no I/O, no side effects.
Everything here is deterministic and easy to unit-test.
"""
from __future__ import annotations

import statistics
from dataclasses import dataclass, field
from typing import List

from .constants import TRIM_MIN_SAMPLES


# ---------------------------------------------------------------------------
# Pure helper functions
# ---------------------------------------------------------------------------

def trimmed_samples(samples: List[float]) -> List[float]:
    """Sorted samples with the single lowest and highest removed (>= 5 samples)."""
    ordered = sorted(samples)
    if len(ordered) >= TRIM_MIN_SAMPLES:
        return ordered[1:-1]
    return ordered


def trimmed_mean(samples: List[float]) -> float:
    """Mean of :func:`trimmed_samples`."""
    if not samples:
        return 0.0
    return statistics.mean(trimmed_samples(samples))


def calculate_jitter(samples: List[float]) -> float:
    """Population standard deviation of the trimmed samples."""
    trimmed = trimmed_samples(samples)
    if len(trimmed) < 2:
        return 0.0
    return statistics.pstdev(trimmed)


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass
class PingStats:
    """Round-trip statistics for the ping phase."""

    samples: List[float] = field(default_factory=list)
    average: float = 0.0
    jitter: float = 0.0
    min: float = 0.0
    max: float = 0.0
    count: int = 0

    def calculate(self) -> None:
        if not self.samples:
            return
        self.count = len(self.samples)
        self.min = min(self.samples)
        self.max = max(self.samples)
        self.average = trimmed_mean(self.samples)
        self.jitter = calculate_jitter(self.samples)

    def to_dict(self) -> dict:
        return {
            "samples": [round(s, 3) for s in self.samples],
            "average": round(self.average, 3),
            "jitter": round(self.jitter, 3),
            "min": round(self.min, 3),
            "max": round(self.max, 3),
            "count": self.count,
        }


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def format_speed(speed_mbps: float) -> str:
    """Human-readable speed string."""
    if speed_mbps >= 1000:
        return f"{speed_mbps / 1000:.2f} Gbps"
    return f"{speed_mbps:.2f} Mbps"


def format_latency(latency_ms: float) -> str:
    """Human-readable latency string."""
    if latency_ms >= 1000:
        return f"{latency_ms / 1000:.2f} s"
    return f"{latency_ms:.1f} ms"
