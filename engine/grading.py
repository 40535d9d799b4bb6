"""
Bufferbloat grading.

Letter grades for the latency increase observed under load, relative to the
idle ping.
"""
from __future__ import annotations

from typing import Tuple


# ---------------------------------------------------------------------------
# Grading
# ---------------------------------------------------------------------------

# (upper bound of latency increase in ms, grade, color)
_THRESHOLDS = [
    (5.0,   "A", "green"),
    (30.0,  "B", "green"),
    (60.0,  "C", "yellow"),
    (200.0, "D", "red"),
]


def grade_bufferbloat(increase_ms: float) -> str:
    """Return the letter grade for a latency increase of *increase_ms*."""
    return grade_with_color(increase_ms)[0]


def grade_with_color(increase_ms: float) -> Tuple[str, str]:
    """Return ``(grade, color)`` for display."""
    for bound, letter, color in _THRESHOLDS:
        if increase_ms < bound:
            return (letter, color)
    return ("F", "red")
