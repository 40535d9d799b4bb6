"""
Dynamic test duration.

Fast links settle quickly, so they get little or no extra time; slow links
get up to ``BONUS_MAGNITUDE_MS`` on top of the base duration::

    bonus = max(0, k * (1 - 0.5 * log10(speed + 1) ** 2))
"""
from __future__ import annotations

import math
from dataclasses import dataclass

from .constants import BONUS_MAGNITUDE_MS, BONUS_SETTLE_MS


def calculate_bonus_ms(speed_mbps: float, magnitude_ms: float = BONUS_MAGNITUDE_MS) -> float:
    """Extra measurement time for a link running at *speed_mbps*."""
    speed = max(0.0, speed_mbps)
    return max(0.0, magnitude_ms * (1.0 - 0.5 * math.log10(speed + 1) ** 2))


@dataclass
class DurationBudget:
    base_duration_ms: float
    bonus_ms: float = 0.0
    floor_ms: float = 0.0

    @property
    def effective_duration_ms(self) -> float:
        return max(self.base_duration_ms + self.bonus_ms, self.floor_ms)


class DynamicDurationController:
    """Keeps the post-grace time budget for one phase."""

    def __init__(self, base_duration_ms: float, enabled: bool = True) -> None:
        self.enabled = enabled
        self.budget = DurationBudget(base_duration_ms=float(base_duration_ms))

    def update(self, speed_mbps: float, measured_ms: float) -> DurationBudget:
        """Recompute the bonus from the current effective speed."""
        if measured_ms <= BONUS_SETTLE_MS:
            return self.budget

        self.budget.bonus_ms = calculate_bonus_ms(speed_mbps) if self.enabled else 0.0
        # A shrinking bonus must never claim less time than already measured.
        self.budget.floor_ms = measured_ms
        return self.budget

    def is_exhausted(self, measured_ms: float) -> bool:
        return measured_ms >= self.budget.base_duration_ms + self.budget.bonus_ms

    def progress_percent(self, measured_ms: float) -> float:
        """50-100 % mapped onto the effective duration."""
        total = self.budget.effective_duration_ms
        if total <= 0:
            return 100.0
        return 50 + min(measured_ms / total * 50, 50.0)
