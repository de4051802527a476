"""
Heuristic rhythm-anomaly classifier over a rolling RR-interval history.

The classifier is fed one RR interval per accepted beat.  It flags the
newest interval when it deviates from the recent rhythm (premature beat,
pause, sudden change), lies outside physiological limits, or when the
whole history is highly variable.

Tachycardia and bradycardia (BPM above 100 / below 60) are reported in
:class:`RhythmCriteria` but only gate the decision when
``include_rate_criteria`` is set.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple

from .windows import RollingWindow

HISTORY_SIZE = 10
MIN_HISTORY = 3
MIN_VARIABILITY_HISTORY = 5

TOO_FAST_RR_MS = 300.0     # > 200 BPM
TOO_SLOW_RR_MS = 2000.0    # < 30 BPM


@dataclass(frozen=True)
class RhythmCriteria:
    premature: bool = False
    pause: bool = False
    sudden_change: bool = False
    too_fast: bool = False
    too_slow: bool = False
    high_variability: bool = False
    tachycardia: bool = False
    bradycardia: bool = False

    def is_arrhythmic(self, include_rate_criteria: bool = False) -> bool:
        irregular = (
            self.premature
            or self.pause
            or self.sudden_change
            or self.too_fast
            or self.too_slow
            or self.high_variability
        )
        if include_rate_criteria:
            return irregular or self.tachycardia or self.bradycardia
        return irregular


@dataclass(frozen=True)
class ArrhythmiaState:
    history: RollingWindow = field(default_factory=lambda: RollingWindow(HISTORY_SIZE))
    last_verdict: bool = False


def evaluate(history: RollingWindow, bpm: int) -> RhythmCriteria:
    """Evaluate every criterion for the newest interval in *history*."""
    if len(history) < MIN_HISTORY:
        return RhythmCriteria()

    mean = history.mean()
    std = history.std()
    current = history.values[-1]
    previous = history.values[-2] if len(history) > 1 else current

    return RhythmCriteria(
        premature=current < 0.6 * mean,
        pause=current > 1.5 * mean,
        sudden_change=previous > 0 and abs(current - previous) / previous > 0.2,
        too_fast=current < TOO_FAST_RR_MS,
        too_slow=current > TOO_SLOW_RR_MS,
        high_variability=std > 0.3 * mean and len(history) >= MIN_VARIABILITY_HISTORY,
        tachycardia=bpm > 100,
        bradycardia=0 < bpm < 60,
    )


def classify(
    state: ArrhythmiaState,
    rr_interval: float,
    bpm: int,
    include_rate_criteria: bool = False,
) -> Tuple[ArrhythmiaState, bool, RhythmCriteria]:
    """
    Push a new RR interval and return ``(new_state, is_arrhythmic, criteria)``.

    Non-positive intervals are ignored and report "not arrhythmic".
    """
    if rr_interval <= 0:
        return state, False, RhythmCriteria()

    history = state.history.push(rr_interval)
    criteria = evaluate(history, bpm)
    verdict = criteria.is_arrhythmic(include_rate_criteria)
    return ArrhythmiaState(history, verdict), verdict, criteria


def arrhythmia_label(state: ArrhythmiaState, rr_interval: float, bpm: int) -> str:
    """
    Display-only description of the newest beat.

    Uses its own thresholds and never influences the arrhythmia decision.
    """
    if rr_interval <= 0:
        return "normal"

    mean = state.history.mean() if len(state.history) else rr_interval

    if rr_interval < TOO_FAST_RR_MS:
        return "extreme tachycardia"
    if rr_interval > TOO_SLOW_RR_MS:
        return "extreme bradycardia"
    if rr_interval < 0.6 * mean:
        return "premature beat"
    if rr_interval > 1.5 * mean:
        return "pause"
    if bpm > 100:
        return "tachycardia"
    if 0 < bpm < 60:
        return "bradycardia"
    return "normal"
