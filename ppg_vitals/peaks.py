"""
Adaptive-threshold heartbeat detection.

A sample of the narrow-band waveform is accepted as a beat when it rises
above ``mean + k·stddev`` of the recent waveform, is positive, and arrives
at least one refractory period after the previous beat.  Accepted beat
times feed the RR-interval list used for BPM.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Tuple

from .windows import RollingWindow

logger = logging.getLogger(__name__)

MAX_PEAKS = 10
MIN_THRESHOLD_POINTS = 10
DEFAULT_REFRACTORY_MS = 250.0


@dataclass(frozen=True)
class PeakState:
    """
    Peak-threshold window plus the peak registry.

    ``peak_times`` is strictly increasing and holds at most ``MAX_PEAKS``
    entries; ``rr_intervals`` are their consecutive differences.
    """

    window: RollingWindow = field(default_factory=lambda: RollingWindow(50))
    peak_times: Tuple[float, ...] = ()
    rr_intervals: Tuple[float, ...] = ()
    last_peak_time: float = 0.0

    @property
    def last_rr(self) -> float:
        return self.rr_intervals[-1] if self.rr_intervals else 0.0


def rr_from_peaks(peak_times: Tuple[float, ...]) -> Tuple[float, ...]:
    return tuple(b - a for a, b in zip(peak_times, peak_times[1:]))


def detect_peak(
    state: PeakState,
    value: float,
    timestamp: float,
    refractory_ms: float = DEFAULT_REFRACTORY_MS,
    threshold_k: float = 1.5,
    sensitivity: float = 1.0,
) -> Tuple[PeakState, bool]:
    """
    Feed one narrow-band sample; return ``(new_state, is_peak)``.

    The threshold window records every sample, including those that arrive
    inside the refractory period, but the threshold itself is only
    evaluated once the refractory period has elapsed.
    """
    window = state.window.push(value)
    state = PeakState(window, state.peak_times, state.rr_intervals, state.last_peak_time)

    if timestamp - state.last_peak_time < refractory_ms:
        return state, False

    if len(window) < MIN_THRESHOLD_POINTS:
        return state, False

    threshold = window.mean() + (threshold_k / sensitivity) * window.std()
    if not (value > threshold and value > 0):
        return state, False

    if state.peak_times and timestamp <= state.peak_times[-1]:
        logger.debug("Ignoring out-of-order peak candidate at t=%.0f", timestamp)
        return state, False

    peak_times = (state.peak_times + (float(timestamp),))[-MAX_PEAKS:]
    rr_intervals = rr_from_peaks(peak_times)
    logger.debug("Peak at t=%.0f (value=%.3f threshold=%.3f)", timestamp, value, threshold)
    return PeakState(window, peak_times, rr_intervals, float(timestamp)), True
