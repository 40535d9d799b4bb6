"""Exception taxonomy for a measurement run."""
from __future__ import annotations


class SpeedtestError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(SpeedtestError, ValueError):
    """Invalid configuration, rejected before any phase starts."""


class TransportError(SpeedtestError):
    """Connection refused, dropped, or otherwise unusable.

    The engine never retries; retry policy belongs to the transport.
    """


class MeasurementTimeoutError(SpeedtestError, TimeoutError):
    """The run exceeded its global time bound."""


class MeasurementAborted(SpeedtestError):
    """The run was cancelled by the caller."""
