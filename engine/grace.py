"""
Grace period detection.

Early throughput in a transfer is dominated by TCP slow-start and
connection setup rather than steady-state capacity.  The detector keeps a
phase in "grace" until its window has elapsed, then flips to measurement
exactly once.  Slow links (early mean below 1 Mbps) get one extension of
the window, capped at ``GRACE_EXTENSION_CAP_MS``.
"""
from __future__ import annotations

import logging
import statistics
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Optional

from .constants import (
    GRACE_EXTENSION_CAP_MS,
    GRACE_EXTENSION_MS,
    GRACE_MAX_EARLY_SAMPLES,
    GRACE_MIN_EARLY_SAMPLES,
    GRACE_SAMPLE_DELAY_MS,
    GRACE_SAMPLE_INTERVAL_MS,
    GRACE_SLOW_LINK_MBPS,
)
from .samples import bytes_to_mbps

LOGGER = logging.getLogger(__name__)


@dataclass
class GraceState:
    """Grace bookkeeping for a single phase."""

    active: bool = True
    window_ms: float = 2000.0
    early_speed_samples: Deque[float] = field(
        default_factory=lambda: deque(maxlen=GRACE_MAX_EARLY_SAMPLES)
    )
    measurement_start_timestamp_ms: Optional[float] = None
    extended: bool = False

    @property
    def window_seconds(self) -> float:
        return self.window_ms / 1000


class GracePeriodDetector:
    """
    Decides, tick by tick, whether ramp-up distortion is still present.

    Call :meth:`begin` when the phase opens and :meth:`observe` on every
    progress event.  ``observe`` returns True on exactly one call: the one
    that ends the grace period.  The caller is expected to reset its byte
    counter at that point.
    """

    def __init__(self, window_ms: float, dynamic: bool = True) -> None:
        self.dynamic = dynamic
        self.state = GraceState(window_ms=float(window_ms))
        self._phase_start_ms = 0.0
        self._last_check_ms: Optional[float] = None

    @property
    def active(self) -> bool:
        return self.state.active

    def begin(self, phase_start_ms: float) -> None:
        self._phase_start_ms = phase_start_ms
        self._last_check_ms = None

    def elapsed_ms(self, now_ms: float) -> float:
        return max(0.0, now_ms - self._phase_start_ms)

    def observe(self, now_ms: float, bytes_since_start: int) -> bool:
        if not self.state.active:
            return False

        elapsed = self.elapsed_ms(now_ms)

        if elapsed > GRACE_SAMPLE_DELAY_MS and (
            self._last_check_ms is None
            or now_ms - self._last_check_ms >= GRACE_SAMPLE_INTERVAL_MS
        ):
            self.state.early_speed_samples.append(bytes_to_mbps(bytes_since_start, elapsed))
            self._last_check_ms = now_ms
            self._maybe_extend()

        if elapsed >= self.state.window_ms:
            self.end_now(now_ms)
            return True
        return False

    def end_now(self, now_ms: float) -> None:
        """Force the grace period to end at *now_ms* (no-op if already over)."""
        if not self.state.active:
            return
        self.state.active = False
        self.state.measurement_start_timestamp_ms = now_ms
        LOGGER.debug(
            "Grace period ended after %.0f ms (window %.0f ms)",
            self.elapsed_ms(now_ms),
            self.state.window_ms,
        )

    def progress_percent(self, now_ms: float) -> float:
        """0-50 % mapped onto the grace window."""
        if self.state.window_ms <= 0:
            return 50.0
        return min(self.elapsed_ms(now_ms) / self.state.window_ms * 50, 50.0)

    # -- Internals ----------------------------------------------------------

    def _maybe_extend(self) -> None:
        samples = self.state.early_speed_samples
        if not self.dynamic or self.state.extended or len(samples) < GRACE_MIN_EARLY_SAMPLES:
            return

        mean = statistics.mean(samples)
        if mean >= GRACE_SLOW_LINK_MBPS:
            return

        extended = min(GRACE_EXTENSION_CAP_MS, self.state.window_ms + GRACE_EXTENSION_MS)
        # Fires once whether or not the cap left room to grow.
        self.state.extended = True
        if extended > self.state.window_ms:
            LOGGER.info(
                "Slow connection detected (%.2f Mbps), extending grace period to %.0f ms",
                mean,
                extended,
            )
            self.state.window_ms = extended
