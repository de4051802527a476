"""
Pipeline configuration.

Every tunable of the PPG pipeline lives on :class:`PipelineConfig` so the
settings collaborator (CLI flags, a calibration screen, a test) can build one
object and hand it to :class:`~ppg_vitals.pipeline.VitalSignsPipeline` at
construction time.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Tuple

from .filters import FilterState

FILTER_DESIGNS = ("butterworth", "legacy")


@dataclass(frozen=True)
class PipelineConfig:
    """
    Construction-time parameters for the vital-signs pipeline.

    Band edges are in Hz, times in milliseconds.  The defaults reproduce a
    100 Hz stream; use :meth:`for_frame_rate` when the stream is driven
    directly by camera frames at a different cadence.
    """

    # Bandpass filters
    wide_band: Tuple[float, float] = (0.5, 8.0)
    narrow_band: Tuple[float, float] = (0.7, 4.0)
    sampling_rate_hz: float = 100.0
    filter_design: str = "butterworth"   # or "legacy"

    # Peak detection
    refractory_ms: float = 250.0
    sensitivity: float = 1.0             # >1 lowers the peak threshold
    threshold_k: float = 1.5

    # Calibration offsets (added after estimation, then re-clamped)
    bpm_offset: int = 0
    spo2_offset: int = 0

    # Frame sampler / finger detection
    saturation_level: int = 250
    ratio_range: Tuple[float, float] = (1.2, 2.5)
    intensity_range: Tuple[float, float] = (60.0, 200.0)
    min_green_variance: float = 10.0

    # Window sizes
    finger_window: int = 30
    trend_window_ms: float = 5000.0
    normalization_window: int = 100
    peak_window: int = 50
    quality_window: int = 100
    waveform_capacity: int = 2000

    # Arrhythmia
    include_rate_criteria: bool = False

    @classmethod
    def for_frame_rate(cls, fps: float, **overrides) -> "PipelineConfig":
        """
        Configuration whose filters are designed for *fps* samples per second.

        The upper edge of each band is pulled below Nyquist when the frame
        rate is too low to represent it.
        """
        nyquist = fps / 2.0
        defaults = cls()

        def _fit(band: Tuple[float, float]) -> Tuple[float, float]:
            low, high = band
            return low, min(high, 0.9 * nyquist)

        params = dict(
            sampling_rate_hz=float(fps),
            wide_band=_fit(defaults.wide_band),
            narrow_band=_fit(defaults.narrow_band),
        )
        params.update(overrides)
        return cls(**params)

    def with_calibration(
        self, bpm_offset: int = 0, spo2_offset: int = 0, sensitivity: float = 1.0
    ) -> "PipelineConfig":
        return replace(
            self,
            bpm_offset=bpm_offset,
            spo2_offset=spo2_offset,
            sensitivity=sensitivity,
        )

    def validate(self) -> "PipelineConfig":
        """Raise :class:`ValueError` for settings the pipeline cannot honour."""
        if self.sampling_rate_hz <= 0:
            raise ValueError(f"sampling_rate_hz must be positive, got {self.sampling_rate_hz}")
        if self.sensitivity <= 0:
            raise ValueError(f"sensitivity must be positive, got {self.sensitivity}")
        if self.refractory_ms < 0:
            raise ValueError(f"refractory_ms must be >= 0, got {self.refractory_ms}")
        if self.filter_design not in FILTER_DESIGNS:
            raise ValueError(
                f"Unknown filter_design {self.filter_design!r}; "
                f"expected one of {FILTER_DESIGNS}"
            )
        nyquist = self.sampling_rate_hz / 2.0
        for name, (low, high) in (("wide_band", self.wide_band), ("narrow_band", self.narrow_band)):
            if not 0 < low < high < nyquist:
                raise ValueError(
                    f"{name} ({low}, {high}) Hz must satisfy 0 < low < high < "
                    f"Nyquist ({nyquist} Hz)"
                )
            # Raises ValueError for bands the design cannot realise
            bandpass = FilterState.bandpass(
                low, high, sampling_rate_hz=self.sampling_rate_hz, design=self.filter_design
            )
            if not bandpass.is_stable():
                peak = float(max(abs(bandpass.poles())))
                raise ValueError(
                    f"{name} ({low}, {high}) Hz is unstable with the "
                    f"{self.filter_design!r} design at {self.sampling_rate_hz} Hz "
                    f"(largest pole magnitude {peak:.2f})"
                )
        for name in ("finger_window", "normalization_window", "peak_window",
                     "quality_window", "waveform_capacity"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1")
        return self
