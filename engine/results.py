"""
Result aggregation.

Per-phase outputs are collected into a :class:`ResultAggregator` while the
run is in progress and frozen into a :class:`MeasurementResult` at the
Complete transition.  A result is never built for a failed run.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .phases import MeasurementPhase
from .stats import PingStats


# ---------------------------------------------------------------------------
# Result parts
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OverheadInfo:
    detected: bool
    factor: float
    percentage: float
    mode: str = "fixed"

    def to_dict(self) -> dict:
        return {
            "detected": self.detected,
            "factor": round(self.factor, 4),
            "percentage": round(self.percentage, 2),
            "mode": self.mode,
        }


@dataclass(frozen=True)
class BufferbloatInfo:
    loaded_latency_ms: float
    latency_increase_ms: float
    rating: str

    def to_dict(self) -> dict:
        return {
            "loaded_latency_ms": round(self.loaded_latency_ms, 2),
            "latency_increase_ms": round(self.latency_increase_ms, 2),
            "rating": self.rating,
        }


@dataclass(frozen=True)
class PacketLossInfo:
    sent: int
    received: int

    @property
    def percentage(self) -> float:
        if self.sent <= 0:
            return 0.0
        return max(0, self.sent - self.received) / self.sent * 100

    def to_dict(self) -> dict:
        return {
            "sent": self.sent,
            "received": self.received,
            "percentage": round(self.percentage, 2),
        }


@dataclass(frozen=True)
class MeasurementAnomaly:
    """Something odd that degraded a value without failing the run."""

    phase: MeasurementPhase
    message: str

    def to_dict(self) -> dict:
        return {"phase": self.phase.value, "message": self.message}


@dataclass(frozen=True)
class PhaseOutcome:
    """Frozen output of one transfer phase."""

    phase: MeasurementPhase
    speed_mbps: float
    raw_speed_mbps: float
    bytes_measured: int
    measured_ms: float
    grace_period_seconds: float
    effective_duration_seconds: float
    grace_extended: bool = False


# ---------------------------------------------------------------------------
# Final result
# ---------------------------------------------------------------------------

_MAPPING_FIELDS = (
    "grace_period_seconds",
    "effective_durations",
    "bytes_transferred",
    "measured_seconds",
    "config",
)


@dataclass(frozen=True)
class MeasurementResult:
    """Immutable record of a completed run.

    Mapping fields are exposed through read-only views; ``to_dict`` returns
    plain copies.
    """

    id: str
    timestamp: datetime
    download_mbps: float
    upload_mbps: float
    ping_ms: float
    jitter_ms: float
    overhead: OverheadInfo
    grace_period_seconds: Mapping[str, float]
    effective_durations: Mapping[str, float]
    ping_samples: Tuple[float, ...] = ()
    bytes_transferred: Mapping[str, int] = field(default_factory=dict)
    measured_seconds: Mapping[str, float] = field(default_factory=dict)
    test_duration_seconds: float = 0.0
    bufferbloat: Optional[BufferbloatInfo] = None
    packet_loss: Optional[PacketLossInfo] = None
    anomalies: Tuple[MeasurementAnomaly, ...] = ()
    config: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in _MAPPING_FIELDS:
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))
        object.__setattr__(self, "ping_samples", tuple(self.ping_samples))
        object.__setattr__(self, "anomalies", tuple(self.anomalies))

    def to_dict(self) -> dict:
        result: dict = {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "download_mbps": round(self.download_mbps, 2),
            "upload_mbps": round(self.upload_mbps, 2),
            "ping_ms": round(self.ping_ms, 2),
            "jitter_ms": round(self.jitter_ms, 3),
            "ping_samples": [round(p, 2) for p in self.ping_samples],
            "overhead": self.overhead.to_dict(),
            "grace_period_seconds": dict(self.grace_period_seconds),
            "effective_durations": {
                k: round(v, 3) for k, v in self.effective_durations.items()
            },
            "measured_seconds": {
                k: round(v, 3) for k, v in self.measured_seconds.items()
            },
            "bytes_transferred": dict(self.bytes_transferred),
            "test_duration_seconds": round(self.test_duration_seconds, 2),
            "anomalies": [a.to_dict() for a in self.anomalies],
            "config": dict(self.config),
        }
        if self.bufferbloat:
            result["bufferbloat"] = self.bufferbloat.to_dict()
        if self.packet_loss:
            result["packet_loss"] = self.packet_loss.to_dict()
        return result


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------

class ResultAggregator:
    """Mutable collector used only while a run is in flight."""

    def __init__(self, overhead: OverheadInfo, config: Optional[Dict[str, Any]] = None) -> None:
        self.overhead = overhead
        self.config = dict(config or {})
        self.ping: Optional[PingStats] = None
        self.transfers: Dict[MeasurementPhase, PhaseOutcome] = {}
        self.bufferbloat: Optional[BufferbloatInfo] = None
        self.packet_loss: Optional[PacketLossInfo] = None
        self.anomalies: List[MeasurementAnomaly] = []

    def add_ping(self, stats: PingStats) -> None:
        self.ping = stats

    def add_transfer(self, outcome: PhaseOutcome) -> None:
        self.transfers[outcome.phase] = outcome

    def add_bufferbloat(self, info: BufferbloatInfo) -> None:
        self.bufferbloat = info

    def add_packet_loss(self, info: PacketLossInfo) -> None:
        self.packet_loss = info

    def add_anomaly(self, phase: MeasurementPhase, message: str) -> MeasurementAnomaly:
        anomaly = MeasurementAnomaly(phase=phase, message=message)
        self.anomalies.append(anomaly)
        return anomaly

    def _speed(self, phase: MeasurementPhase) -> float:
        outcome = self.transfers.get(phase)
        return outcome.speed_mbps if outcome else 0.0

    def build(self, test_duration_seconds: float = 0.0) -> MeasurementResult:
        ping = self.ping or PingStats()
        outcomes = self.transfers.values()
        return MeasurementResult(
            id=uuid.uuid4().hex,
            timestamp=datetime.now(timezone.utc),
            download_mbps=self._speed(MeasurementPhase.DOWNLOAD),
            upload_mbps=self._speed(MeasurementPhase.UPLOAD),
            ping_ms=ping.average,
            jitter_ms=ping.jitter,
            overhead=self.overhead,
            grace_period_seconds={o.phase.value: o.grace_period_seconds for o in outcomes},
            effective_durations={o.phase.value: o.effective_duration_seconds for o in outcomes},
            ping_samples=tuple(ping.samples),
            bytes_transferred={o.phase.value: o.bytes_measured for o in outcomes},
            measured_seconds={o.phase.value: o.measured_ms / 1000 for o in outcomes},
            test_duration_seconds=test_duration_seconds,
            bufferbloat=self.bufferbloat,
            packet_loss=self.packet_loss,
            anomalies=tuple(self.anomalies),
            config=self.config,
        )
