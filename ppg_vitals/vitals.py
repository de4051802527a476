"""
Vital-sign estimators: heart rate, SpO2 proxy and signal quality.

BPM
    Median RR interval (upper-middle element for even counts) converted to
    beats per minute.
SpO2
    Ratio of ratios of the pulsatile (AC) to baseline (DC) components of
    the red and green channels::

        SpO2 ≈ 110 − 25 × (AC_red/DC_red) / (AC_green/DC_green)

    DC and AC are exponential moving averages updated every sample.  This
    uses visible light only and is uncalibrated; treat it as indicative,
    never clinical.
Signal quality
    A simplified SNR proxy of the wide-band waveform, mean(|x|) / std(x),
    scaled to 0 – 100.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Sequence, Tuple

import numpy as np

from .windows import RollingWindow

BPM_RANGE = (30, 200)
SPO2_RANGE = (70, 100)
QUALITY_RANGE = (0, 100)
MIN_QUALITY_POINTS = 50

DC_ALPHA = 0.01
AC_ALPHA = 0.1


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves rounded up (62.5 -> 63)."""
    return int(math.floor(value + 0.5))


def calculate_bpm(rr_intervals: Sequence[float]) -> int:
    """Return BPM from RR intervals in ms, or 0 when there are none."""
    if not rr_intervals:
        return 0
    ordered = sorted(rr_intervals)
    median_rr = ordered[len(ordered) // 2]
    if median_rr <= 0:
        return 0
    bpm = round_half_up(60000.0 / median_rr)
    return int(clamp(bpm, *BPM_RANGE))


@dataclass(frozen=True)
class SpO2State:
    dc_red: float = 0.0
    dc_green: float = 0.0
    ac_red: float = 0.0
    ac_green: float = 0.0


def estimate_spo2(
    state: SpO2State, red_value: float, green_value: float
) -> Tuple[SpO2State, int]:
    """Update the DC/AC averages and return ``(new_state, spo2)``; 0 if degenerate."""
    dc_red = state.dc_red * (1 - DC_ALPHA) + red_value * DC_ALPHA
    dc_green = state.dc_green * (1 - DC_ALPHA) + green_value * DC_ALPHA

    ac_red = state.ac_red * (1 - AC_ALPHA) + abs(red_value - dc_red) * AC_ALPHA
    ac_green = state.ac_green * (1 - AC_ALPHA) + abs(green_value - dc_green) * AC_ALPHA

    new_state = SpO2State(dc_red, dc_green, ac_red, ac_green)

    if dc_red == 0 or dc_green == 0 or ac_red == 0 or ac_green == 0:
        return new_state, 0

    ratio_red = ac_red / dc_red
    ratio_green = ac_green / dc_green
    if ratio_green == 0:
        return new_state, 0

    R = ratio_red / ratio_green
    spo2 = 110 - 25 * R
    if not math.isfinite(spo2):
        return new_state, 0
    return new_state, int(clamp(round_half_up(spo2), *SPO2_RANGE))


@dataclass(frozen=True)
class QualityState:
    window: RollingWindow = field(default_factory=lambda: RollingWindow(100))


def signal_quality(state: QualityState, wide_value: float) -> Tuple[QualityState, int]:
    """Return ``(new_state, quality)`` with quality in 0 – 100."""
    window = state.window.push(wide_value)
    new_state = QualityState(window)

    if len(window) < MIN_QUALITY_POINTS:
        return new_state, 0

    values = window.as_array()
    variance = float(np.var(values))
    snr = float(np.mean(np.abs(values))) / math.sqrt(variance) if variance > 0 else 0.0
    if not math.isfinite(snr):
        return new_state, 0
    return new_state, round_half_up(clamp(snr * 10, *QUALITY_RANGE))


def apply_offset(value: int, offset: int, value_range: Tuple[int, int]) -> int:
    """Add a calibration *offset* to a non-zero reading and re-clamp it."""
    if value == 0 or offset == 0:
        return value
    return int(clamp(value + offset, *value_range))
