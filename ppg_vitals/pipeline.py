"""
Real-time PPG vital-signs pipeline.

Algorithm
---------
1. Reduce each frame to the mean red and green intensity inside a circular
   ROI and decide whether a finger covers the lens.
   (Green is most sensitive to haemoglobin absorption changes.)
2. Remove slow baseline drift from the green mean with a rolling linear fit,
   then z-score it over a rolling window.
3. Run the result through two bandpass filters in parallel: a wide band
   (0.5 – 8.0 Hz) for the displayed waveform and quality score, and a narrow
   band (0.7 – 4.0 Hz = 42 – 240 BPM) for beat detection.
4. Detect beats on the narrow band with an adaptive threshold and a
   refractory period; consecutive beat times give RR intervals.
5. BPM from the median RR interval, an SpO2 proxy from red/green AC/DC
   ratios, a signal-quality score from the wide band, and a rhythm
   classification from the RR history.

Every stage is an immutable state plus a pure step function; this class
owns the current states and threads one sample at a time through them.

References
----------
- Allen J., "Photoplethysmography and its application in clinical
  physiological measurement." Physiol. Meas., 2007.
- Verkruysse W. et al., "Remote plethysmographic imaging using ambient light."
  Opt Express, 2008.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional

import numpy as np

from .arrhythmia import ArrhythmiaState, RhythmCriteria, arrhythmia_label, classify
from .config import PipelineConfig
from .filters import FilterState, filter_step
from .frame_sampler import SamplerState, sample_frame
from .models import NEUTRAL_SNAPSHOT, Sample, SessionRow, VitalSignsSnapshot, WaveformPoint
from .peaks import PeakState, detect_peak
from .preprocessing import NormalizerState, TrendState, detrend, normalize
from .vitals import (
    BPM_RANGE,
    SPO2_RANGE,
    QualityState,
    SpO2State,
    apply_offset,
    calculate_bpm,
    estimate_spo2,
    signal_quality,
)
from .windows import RollingWindow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineResult:
    """Everything produced for one processed frame or sample."""

    sample: Sample
    snapshot: VitalSignsSnapshot
    waveform_point: Optional[WaveformPoint] = None
    criteria: RhythmCriteria = RhythmCriteria()
    label: str = "normal"

    @property
    def finger_present(self) -> bool:
        return self.sample.finger_present


class VitalSignsPipeline:
    """
    Stateful per-sample PPG analyser.

    Parameters
    ----------
    config:
        Construction-time settings; see :class:`~ppg_vitals.config.PipelineConfig`.
        Defaults assume a 100 Hz stream.
    recorder:
        Optional object with a ``record(SessionRow)`` method (for example a
        :class:`~ppg_vitals.session.SessionRecorder`) that receives one row per
        processed sample.
    """

    def __init__(self, config: PipelineConfig | None = None, recorder=None) -> None:
        self.config = (config or PipelineConfig()).validate()
        self.recorder = recorder

        self._waveform: Deque[WaveformPoint] = deque(maxlen=self.config.waveform_capacity)
        self._init_states()
        logger.info(
            "Pipeline ready – fs=%.1f Hz wide=%s narrow=%s design=%s",
            self.config.sampling_rate_hz,
            self.config.wide_band,
            self.config.narrow_band,
            self.config.filter_design,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def process_frame(self, frame: np.ndarray, timestamp: float) -> Optional[PipelineResult]:
        """
        Process one BGR frame captured at *timestamp* (ms).

        Returns *None* for a dropped frame; the caller simply moves on to
        the next one.
        """
        try:
            self._sampler, sample = sample_frame(self._sampler, frame, timestamp, self.config)
        except Exception as e:
            logger.warning("Frame extraction failed: %s", e)
            return None
        if sample is None:
            return None
        return self.process_sample(sample)

    def process_means(
        self,
        red_mean: float,
        green_mean: float,
        timestamp: float,
        finger_present: bool = True,
    ) -> Optional[PipelineResult]:
        """Process channel means extracted outside the pipeline."""
        return self.process_sample(
            Sample(
                timestamp=float(timestamp),
                red_mean=float(red_mean),
                green_mean=float(green_mean),
                finger_present=finger_present,
            )
        )

    def process_sample(self, sample: Sample) -> Optional[PipelineResult]:
        """Run one sample through every stage and publish the result."""
        if not (math.isfinite(sample.red_mean) and math.isfinite(sample.green_mean)):
            logger.debug("Dropping non-finite sample at t=%.0f", sample.timestamp)
            return None

        if not sample.finger_present:
            self._snapshot = NEUTRAL_SNAPSHOT
            return PipelineResult(sample=sample, snapshot=NEUTRAL_SNAPSHOT)

        cfg = self.config
        ts = sample.timestamp
        raw = sample.green_mean

        self._trend, detrended = detrend(self._trend, raw, ts, cfg.trend_window_ms)
        self._normalizer, normalized = normalize(self._normalizer, detrended)

        self._wide, wide = self._filter("wide", self._wide, normalized, ts)
        self._narrow, narrow = self._filter("narrow", self._narrow, normalized, ts)

        self._peaks, is_peak = detect_peak(
            self._peaks,
            narrow,
            ts,
            refractory_ms=cfg.refractory_ms,
            threshold_k=cfg.threshold_k,
            sensitivity=cfg.sensitivity,
        )

        bpm = calculate_bpm(self._peaks.rr_intervals)
        self._spo2, spo2 = estimate_spo2(self._spo2, sample.red_mean, sample.green_mean)
        self._quality, quality = signal_quality(self._quality, wide)
        last_rr = self._peaks.last_rr

        criteria = RhythmCriteria()
        label = "normal"
        if is_peak and last_rr > 0:
            self._arrhythmia, _, criteria = classify(
                self._arrhythmia, last_rr, bpm, cfg.include_rate_criteria
            )
            label = arrhythmia_label(self._arrhythmia, last_rr, bpm)
            if self._arrhythmia.last_verdict:
                logger.debug("Irregular beat at t=%.0f: RR=%.0f ms (%s)", ts, last_rr, label)
        is_arrhythmic = self._arrhythmia.last_verdict

        snapshot = VitalSignsSnapshot(
            bpm=apply_offset(bpm, cfg.bpm_offset, BPM_RANGE),
            spo2=apply_offset(spo2, cfg.spo2_offset, SPO2_RANGE),
            signal_quality=quality,
            last_rr=last_rr,
            is_arrhythmic=is_arrhythmic,
        )
        point = WaveformPoint(
            timestamp=ts,
            filtered_value=wide,
            is_peak=is_peak,
            is_arrhythmic=is_arrhythmic,
        )
        self._snapshot = snapshot
        self._waveform.append(point)

        if self.recorder is not None:
            self.recorder.record(
                SessionRow(
                    timestamp=ts,
                    raw_value=raw,
                    filtered_value=wide,
                    peak_flag=is_peak,
                    bpm_instant=snapshot.bpm,
                    spo2_estimate=snapshot.spo2,
                    signal_quality=snapshot.signal_quality,
                )
            )

        return PipelineResult(
            sample=sample,
            snapshot=snapshot,
            waveform_point=point,
            criteria=criteria,
            label=label,
        )

    @property
    def snapshot(self) -> VitalSignsSnapshot:
        """Most recently published readings."""
        return self._snapshot

    @property
    def waveform(self) -> List[WaveformPoint]:
        """Copy of the waveform ring buffer, oldest first."""
        return list(self._waveform)

    @property
    def rr_intervals(self) -> tuple:
        return self._peaks.rr_intervals

    @property
    def peak_times(self) -> tuple:
        return self._peaks.peak_times

    def reset(self) -> None:
        """Return every stage to its initial state and clear the waveform."""
        self._init_states()
        self._waveform.clear()
        logger.info("Pipeline reset.")

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _init_states(self) -> None:
        cfg = self.config
        self._sampler = SamplerState.initial(cfg)
        self._trend = TrendState()
        self._normalizer = NormalizerState(RollingWindow(cfg.normalization_window))
        self._wide = FilterState.bandpass(
            *cfg.wide_band, sampling_rate_hz=cfg.sampling_rate_hz, design=cfg.filter_design
        )
        self._narrow = FilterState.bandpass(
            *cfg.narrow_band, sampling_rate_hz=cfg.sampling_rate_hz, design=cfg.filter_design
        )
        self._peaks = PeakState(window=RollingWindow(cfg.peak_window))
        self._spo2 = SpO2State()
        self._quality = QualityState(RollingWindow(cfg.quality_window))
        self._arrhythmia = ArrhythmiaState()
        self._snapshot = NEUTRAL_SNAPSHOT

    @staticmethod
    def _filter(name: str, state: FilterState, value: float, ts: float):
        state, output = filter_step(state, value)
        if math.isfinite(output):
            return state, output
        # A non-finite output would stay in the delay line for good
        logger.warning("%s-band filter diverged at t=%.0f; resetting it", name, ts)
        return state.reset(), 0.0
