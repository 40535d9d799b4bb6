"""Adaptive measurement engine -- phases, grace periods, dynamic duration, overhead."""

from .config import EngineConfig
from .duration import DurationBudget, DynamicDurationController, calculate_bonus_ms
from .errors import (
    ConfigurationError,
    MeasurementAborted,
    MeasurementTimeoutError,
    SpeedtestError,
    TransportError,
)
from .grace import GracePeriodDetector, GraceState
from .machine import MeasurementEngine, ProgressUpdate
from .overhead import OverheadCompensator, OverheadConfig, OverheadMode, estimate_overhead_factor
from .phases import MeasurementPhase
from .results import MeasurementAnomaly, MeasurementResult, OverheadInfo, ResultAggregator
from .samples import Sample, SampleBuffer
from .stats import PingStats, calculate_jitter, format_latency, format_speed, trimmed_mean
from .transport import (
    ByteProgress,
    PacketLossReport,
    PhaseKind,
    PhaseRequest,
    RoundTrip,
    Transport,
)

__all__ = [
    "ByteProgress",
    "ConfigurationError",
    "DurationBudget",
    "DynamicDurationController",
    "EngineConfig",
    "GracePeriodDetector",
    "GraceState",
    "MeasurementAborted",
    "MeasurementAnomaly",
    "MeasurementEngine",
    "MeasurementPhase",
    "MeasurementResult",
    "MeasurementTimeoutError",
    "OverheadCompensator",
    "OverheadConfig",
    "OverheadInfo",
    "OverheadMode",
    "PacketLossReport",
    "PhaseKind",
    "PhaseRequest",
    "PingStats",
    "ProgressUpdate",
    "ResultAggregator",
    "RoundTrip",
    "Sample",
    "SampleBuffer",
    "SpeedtestError",
    "Transport",
    "TransportError",
    "calculate_bonus_ms",
    "calculate_jitter",
    "estimate_overhead_factor",
    "format_latency",
    "format_speed",
    "trimmed_mean",
]
