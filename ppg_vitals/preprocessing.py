"""
Baseline removal and amplitude normalisation.

Algorithm
---------
1. **Detrend** – keep the last ``trend_window_ms`` of raw green means, fit an
   ordinary-least-squares line of value against sample index and subtract
   its value at the newest index.  This removes slow drift caused by finger
   pressure and auto-exposure.
2. **Normalise** – rolling z-score over the last ``normalization_window``
   detrended values so both filters see a unit-variance input regardless of
   skin tone or torch brightness.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple

import numpy as np

from .windows import RollingWindow

MIN_TREND_POINTS = 10
MIN_NORMALIZATION_POINTS = 10
_ZERO_STD = 1e-12


@dataclass(frozen=True)
class TrendState:
    points: Tuple[Tuple[float, float], ...] = ()   # (timestamp, value)
    last_trend: float = 0.0


def detrend(
    state: TrendState, value: float, timestamp: float, window_ms: float = 5000.0
) -> Tuple[TrendState, float]:
    """Return ``(new_state, value - trend)``."""
    points = tuple(
        p for p in state.points + ((float(timestamp), float(value)),)
        if timestamp - p[0] <= window_ms
    )

    if len(points) < MIN_TREND_POINTS:
        return TrendState(points, state.last_trend), value - state.last_trend

    y = np.array([p[1] for p in points], dtype=np.float64)
    x = np.arange(len(y), dtype=np.float64)
    slope, intercept = np.polyfit(x, y, 1)
    trend = float(slope * x[-1] + intercept)
    return TrendState(points, trend), value - trend


@dataclass(frozen=True)
class NormalizerState:
    window: RollingWindow = field(default_factory=lambda: RollingWindow(100))


def normalize(state: NormalizerState, value: float) -> Tuple[NormalizerState, float]:
    """Rolling z-score; passes *value* through until the window warms up."""
    window = state.window.push(value)
    new_state = NormalizerState(window)

    if len(window) < MIN_NORMALIZATION_POINTS:
        return new_state, value

    std = window.std()
    if std <= _ZERO_STD:
        return new_state, 0.0
    return new_state, (value - window.mean()) / std
