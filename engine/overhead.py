"""
Protocol overhead compensation.

Throughput is measured on payload bytes, but the link also carries TCP/IP
headers and Ethernet framing.  Multiplying by a factor in ``[1.00, 1.20]``
turns payload Mbps into an estimate of wire Mbps.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .constants import DEFAULT_OVERHEAD_FACTOR, MAX_OVERHEAD_FACTOR, MIN_OVERHEAD_FACTOR
from .errors import ConfigurationError
from .results import OverheadInfo

# Per-frame sizes in bytes.
_ETHERNET_FRAMING = 8 + 14 + 4 + 12   # preamble/SFD + header + FCS + inter-frame gap
_IPV4_HEADER = 20
_IPV6_HEADER = 40
_TCP_HEADER = 20
_TCP_TIMESTAMPS = 12


class OverheadMode(str, Enum):
    FIXED = "fixed"
    AUTO = "auto"


@dataclass(frozen=True)
class OverheadConfig:
    mode: OverheadMode = OverheadMode.FIXED
    factor: float = DEFAULT_OVERHEAD_FACTOR

    def validate(self) -> None:
        if not MIN_OVERHEAD_FACTOR <= self.factor <= MAX_OVERHEAD_FACTOR:
            raise ConfigurationError(
                f"Overhead factor must be between {MIN_OVERHEAD_FACTOR:.2f} "
                f"and {MAX_OVERHEAD_FACTOR:.2f}, got {self.factor}"
            )


def estimate_overhead_factor(
    mtu: int = 1500,
    ipv6: bool = False,
    tcp_timestamps: bool = True,
) -> float:
    """
    Wire bytes per payload byte for a full-sized TCP segment.

    A standard 1500-byte MTU over IPv4 with timestamps gives 1538 / 1448,
    about 1.062.  The result is clamped to the accepted factor range.
    """
    headers = (_IPV6_HEADER if ipv6 else _IPV4_HEADER) + _TCP_HEADER
    if tcp_timestamps:
        headers += _TCP_TIMESTAMPS

    payload = mtu - headers
    if payload <= 0:
        raise ConfigurationError(f"MTU {mtu} is too small to carry TCP payload")

    factor = (mtu + _ETHERNET_FRAMING) / payload
    return min(max(factor, MIN_OVERHEAD_FACTOR), MAX_OVERHEAD_FACTOR)


class OverheadCompensator:
    """Applies the run's overhead factor to externally reported speeds."""

    def __init__(self, config: OverheadConfig) -> None:
        config.validate()
        self.config = config

    @property
    def factor(self) -> float:
        return self.config.factor

    def apply(self, raw_mbps: float) -> float:
        return raw_mbps * self.config.factor

    def info(self) -> OverheadInfo:
        return OverheadInfo(
            detected=self.config.mode is OverheadMode.AUTO,
            factor=self.config.factor,
            percentage=(self.config.factor - 1) * 100,
            mode=self.config.mode.value,
        )
