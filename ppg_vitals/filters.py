"""
Streaming IIR bandpass filter.

Two coefficient designs are available:

``"butterworth"``
    A second-order Butterworth bandpass from :func:`scipy.signal.butter`.
    A bandpass of order 2 has exactly five feedforward and five feedback
    taps, the same shape as the legacy design.
``"legacy"``
    The closed-form approximation used by earlier releases.  It is not a
    true Butterworth realisation; keep it only when results must match
    previously exported datasets sample for sample.

Samples are processed one at a time through explicit input/output delay
lines so the filter can run inside a real-time loop.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Tuple

import numpy as np
from scipy.signal import butter

Coefficients = Tuple[Tuple[float, ...], Tuple[float, ...]]


def design_butterworth(low_hz: float, high_hz: float, fs: float) -> Coefficients:
    """Return ``(b, a)`` for a 2nd-order Butterworth bandpass at *fs* Hz."""
    nyq = fs / 2.0
    low = low_hz / nyq
    high = high_hz / nyq
    # Clamp to valid range
    low = max(1e-4, min(low, 0.999))
    high = max(low + 1e-4, min(high, 0.999))
    b, a = butter(2, [low, high], btype="bandpass")
    return tuple(float(v) for v in b), tuple(float(v) for v in a)


def design_legacy(low_hz: float, high_hz: float, fs: float) -> Coefficients:
    """Return ``(b, a)`` from the legacy pre-warped closed-form approximation."""
    nyq = fs / 2.0
    w1 = 2 * math.pi * (low_hz / nyq)
    w2 = 2 * math.pi * (high_hz / nyq)

    # Pre-warp corner frequencies; tan() wraps negative past fs/4
    if not 0 < low_hz < high_hz < fs / 4.0:
        raise ValueError(
            f"Legacy design needs 0 < low < high < fs/4 ({fs / 4.0} Hz), "
            f"got ({low_hz}, {high_hz}) Hz"
        )
    w1p = 2 * math.tan(w1 / 2)
    w2p = 2 * math.tan(w2 / 2)
    w0p = math.sqrt(w1p * w2p)
    bwp = w2p - w1p

    gain = bwp * bwp * 0.0001
    b = [gain, 0.0, -2 * gain, 0.0, gain]
    a = [
        1.0,
        2 * 0.7654 * bwp + w0p * w0p / bwp,
        2 * w0p * w0p + bwp * bwp * 0.4142,
        2 * 0.7654 * bwp * w0p * w0p / bwp,
        w0p ** 4 / (bwp * bwp),
    ]
    a0 = a[0]
    return tuple(v / a0 for v in b), tuple(v / a0 for v in a)


_DESIGNS = {
    "butterworth": design_butterworth,
    "legacy": design_legacy,
}


@dataclass(frozen=True)
class FilterState:
    """
    Coefficients plus delay lines of one filter instance.

    ``x`` holds the most recent inputs and ``y`` the most recent outputs,
    newest first.  ``legacy_feedback`` reproduces the earlier feedback
    indexing in which ``a[i]`` multiplies ``y[i]`` of the line *before* the
    new output is pushed (one sample later than the textbook recurrence).
    """

    b: Tuple[float, ...]
    a: Tuple[float, ...]
    x: Tuple[float, ...] = field(default=())
    y: Tuple[float, ...] = field(default=())
    legacy_feedback: bool = False

    def __post_init__(self) -> None:
        if not self.x:
            object.__setattr__(self, "x", (0.0,) * len(self.b))
        if not self.y:
            object.__setattr__(self, "y", (0.0,) * len(self.a))

    @classmethod
    def bandpass(
        cls,
        low_hz: float,
        high_hz: float,
        sampling_rate_hz: float = 100.0,
        design: str = "butterworth",
    ) -> "FilterState":
        try:
            designer = _DESIGNS[design]
        except KeyError:
            raise ValueError(f"Unknown filter design {design!r}") from None
        b, a = designer(low_hz, high_hz, sampling_rate_hz)
        return cls(b=b, a=a, legacy_feedback=(design == "legacy"))

    def reset(self) -> "FilterState":
        """Same coefficients, zeroed delay lines."""
        return replace(self, x=(0.0,) * len(self.b), y=(0.0,) * len(self.a))

    def poles(self) -> np.ndarray:
        """
        Roots of the feedback recurrence :func:`filter_step` executes.

        With ``legacy_feedback`` each ``a[i]`` reaches one sample further
        back, so the characteristic polynomial gains a zero coefficient
        after the leading term.
        """
        a = list(self.a)
        if self.legacy_feedback:
            a = [a[0], 0.0] + a[1:]
        return np.roots(a)

    def is_stable(self) -> bool:
        """True when every pole lies strictly inside the unit circle."""
        return bool(np.all(np.abs(self.poles()) < 1.0))


def filter_step(state: FilterState, value: float) -> Tuple[FilterState, float]:
    """Push *value* through the filter and return ``(new_state, output)``."""
    x = (float(value),) + state.x[:-1]
    b = np.asarray(state.b)
    a = np.asarray(state.a)

    output = float(np.dot(b, x))
    if state.legacy_feedback:
        output -= float(np.dot(a[1:], state.y[1:]))
    else:
        output -= float(np.dot(a[1:], state.y[:-1]))

    y = (output,) + state.y[:-1]
    return replace(state, x=x, y=y), output
