"""
Value types passed between pipeline stages and out to collaborators.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Sample:
    """One frame reduced to ROI channel means (ephemeral, one pipeline pass)."""

    timestamp: float          # ms since epoch
    red_mean: float
    green_mean: float
    finger_present: bool
    avg_intensity: float = 0.0


@dataclass(frozen=True)
class VitalSignsSnapshot:
    """
    Published readings for one processed sample.

    ``spo2`` is an uncalibrated ratio-of-ratios proxy and must be presented
    as experimental, never as a diagnostic value.
    """

    bpm: int = 0
    spo2: int = 0
    signal_quality: int = 0
    last_rr: float = 0.0
    is_arrhythmic: bool = False

    SPO2_IS_EXPERIMENTAL = True


NEUTRAL_SNAPSHOT = VitalSignsSnapshot()


@dataclass(frozen=True)
class WaveformPoint:
    timestamp: float
    filtered_value: float
    is_peak: bool
    is_arrhythmic: bool


@dataclass(frozen=True)
class SessionRow:
    """One exported row; field names follow the interchange column names."""

    timestamp: float
    raw_value: float
    filtered_value: float
    peak_flag: bool
    bpm_instant: int
    spo2_estimate: int
    signal_quality: int
