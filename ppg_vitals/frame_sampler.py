"""
Frame sampler and finger-on-lens detector.

When a fingertip covers the lens with the torch on, the centre of the frame
becomes:
  - Dominated by reddish tones (blood-perfused tissue).
  - Moderately bright, neither black nor clipped.
  - Slowly pulsing in the green channel as blood volume changes.

:func:`sample_frame` reduces a BGR frame to the mean red and green
intensity inside a circular region of interest and decides whether a
finger is present.  Clipped pixels (any channel at or above the
saturation level) are excluded from the means.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional, Tuple

import numpy as np

from .config import PipelineConfig
from .models import Sample
from .windows import RollingWindow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SamplerState:
    """Finger-variance window: the last N green means."""

    green_history: RollingWindow = field(default_factory=lambda: RollingWindow(30))

    @classmethod
    def initial(cls, config: PipelineConfig) -> "SamplerState":
        return cls(RollingWindow(config.finger_window))


@lru_cache(maxsize=8)
def roi_mask(height: int, width: int) -> np.ndarray:
    """
    Boolean mask of the circular ROI centred in a ``height`` x ``width`` frame.

    The radius is a quarter of the shorter dimension.
    """
    cy, cx = height / 2.0, width / 2.0
    radius = min(width, height) / 4.0
    yy, xx = np.ogrid[:height, :width]
    mask = (xx - cx) ** 2 + (yy - cy) ** 2 <= radius * radius
    mask.setflags(write=False)
    return mask


def extract_roi_means(
    frame: np.ndarray, saturation_level: int = 250
) -> Optional[Tuple[float, float, float]]:
    """
    Return ``(red_mean, green_mean, avg_intensity)`` over unclipped ROI pixels.

    Parameters
    ----------
    frame:
        BGR image array (H × W × 3, uint8).

    Returns *None* when no usable pixel remains.
    """
    height, width = frame.shape[:2]
    mask = roi_mask(height, width)

    pixels = frame[:, :, :3][mask].astype(np.float64)   # N × 3, BGR
    unclipped = np.all(pixels < saturation_level, axis=1)
    pixels = pixels[unclipped]
    count = pixels.shape[0]
    if count == 0:
        return None

    blue_sum, green_sum, red_sum = pixels.sum(axis=0)
    red_mean = float(red_sum / count)
    green_mean = float(green_sum / count)
    avg_intensity = float((red_sum + green_sum + blue_sum) / (3 * count))
    return red_mean, green_mean, avg_intensity


def is_finger(
    red_mean: float,
    avg_intensity: float,
    green_history: RollingWindow,
    green_mean: float,
    config: PipelineConfig,
) -> bool:
    """
    Heuristic check: does the ROI look like a finger covering the lens?

    *green_history* must already contain *green_mean*.
    """
    ratio = red_mean / (green_mean + 1.0)
    low_ratio, high_ratio = config.ratio_range
    low_intensity, high_intensity = config.intensity_range

    skin_tone   = low_ratio < ratio < high_ratio
    exposed_ok  = low_intensity < avg_intensity < high_intensity
    pulsing     = green_history.variance() > config.min_green_variance

    return skin_tone and exposed_ok and pulsing


def sample_frame(
    state: SamplerState,
    frame: np.ndarray,
    timestamp: float,
    config: PipelineConfig,
) -> Tuple[SamplerState, Optional[Sample]]:
    """
    Reduce *frame* to a :class:`Sample`.

    Returns ``(state, None)`` for a dropped frame: malformed input or an ROI
    with no unclipped pixels.  The finger-variance window only advances when
    a sample is produced.
    """
    if frame is not None:
        frame = np.asarray(frame)
    if frame is None or frame.ndim != 3 or frame.shape[2] < 3 or frame.size == 0:
        logger.debug("Dropping malformed frame at t=%.0f", timestamp)
        return state, None

    means = extract_roi_means(frame, config.saturation_level)
    if means is None:
        logger.debug("Dropping frame at t=%.0f: ROI fully saturated", timestamp)
        return state, None

    red_mean, green_mean, avg_intensity = means
    history = state.green_history.push(green_mean)
    present = is_finger(red_mean, avg_intensity, history, green_mean, config)
    sample = Sample(
        timestamp=float(timestamp),
        red_mean=red_mean,
        green_mean=green_mean,
        finger_present=present,
        avg_intensity=avg_intensity,
    )
    return SamplerState(history), sample
