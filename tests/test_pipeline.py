"""
End-to-end tests for VitalSignsPipeline.
Run with:  pytest tests/
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace

import numpy as np
import pytest

from ppg_vitals.config import PipelineConfig
from ppg_vitals.models import NEUTRAL_SNAPSHOT
from ppg_vitals.pipeline import VitalSignsPipeline
from ppg_vitals.session import SessionRecorder

FS = 100.0


def ppg_wave(seconds: float, hz: float = 1.2, fs: float = FS) -> np.ndarray:
    """Synthetic PPG: one narrow Gaussian pulse per beat (values 0 – 1)."""
    t = np.arange(int(seconds * fs)) / fs
    phase = (t * hz) % 1.0
    return np.exp(-(((phase - 0.2) / 0.08) ** 2))


def feed(pipeline: VitalSignsPipeline, pulse: np.ndarray, t0: float = 1_700_000_000_000.0):
    results = []
    for i, p in enumerate(pulse):
        results.append(
            pipeline.process_means(
                red_mean=150.0 + 1.5 * p,
                green_mean=80.0 + 3.0 * p,
                timestamp=t0 + i * 1000.0 / FS,
            )
        )
    return results


def _frame(r, g, b, size=32) -> np.ndarray:
    frame = np.zeros((size, size, 3), dtype=np.uint8)
    frame[:, :, 0] = b
    frame[:, :, 1] = g
    frame[:, :, 2] = r
    return frame


class TestPipelineSignal:

    def test_detects_heart_rate(self):
        pipeline = VitalSignsPipeline()
        feed(pipeline, ppg_wave(20.0))   # 72 BPM
        snap = pipeline.snapshot
        assert abs(snap.bpm - 72) <= 3, f"Expected ~72 BPM, got {snap.bpm}"
        assert 790 <= snap.last_rr <= 880
        assert 70 <= snap.spo2 <= 100
        assert 0 < snap.signal_quality <= 100
        assert snap.is_arrhythmic is False

    def test_peaks_respect_refractory_period(self):
        pipeline = VitalSignsPipeline()
        feed(pipeline, ppg_wave(20.0, hz=1.5))
        peaks = [p.timestamp for p in pipeline.waveform if p.is_peak]
        assert len(peaks) > 10
        assert all(b - a >= 250.0 for a, b in zip(peaks, peaks[1:]))

    def test_no_finger_emits_neutral_snapshot(self):
        pipeline = VitalSignsPipeline()
        feed(pipeline, ppg_wave(5.0))
        result = pipeline.process_means(150.0, 80.0, 1_800_000_000_000.0, finger_present=False)
        assert result.snapshot == NEUTRAL_SNAPSHOT
        assert result.waveform_point is None
        assert pipeline.snapshot == NEUTRAL_SNAPSHOT

    def test_calibration_offsets_applied(self):
        base = VitalSignsPipeline()
        shifted = VitalSignsPipeline(PipelineConfig(bpm_offset=5, spo2_offset=-2))
        feed(base, ppg_wave(15.0))
        feed(shifted, ppg_wave(15.0))
        assert shifted.snapshot.bpm == base.snapshot.bpm + 5
        expected_spo2 = max(70, min(100, base.snapshot.spo2 - 2))
        assert shifted.snapshot.spo2 == expected_spo2

    def test_legacy_filter_design_stays_bounded(self):
        pipeline = VitalSignsPipeline(PipelineConfig(filter_design="legacy", wide_band=(0.5, 4.0)))
        results = feed(pipeline, ppg_wave(12.0))
        wide = np.array([r.waveform_point.filtered_value for r in results])
        assert np.all(np.isfinite(wide))
        assert np.max(np.abs(wide)) < 100.0
        assert all(abs(v) < 100.0 for v in pipeline._wide.y)

    def test_diverged_filter_is_reset(self, caplog):
        pipeline = VitalSignsPipeline()
        feed(pipeline, ppg_wave(2.0))
        pipeline._wide = replace(pipeline._wide, y=(math.inf,) * 5)
        with caplog.at_level(logging.WARNING, logger="ppg_vitals.pipeline"):
            result = pipeline.process_means(150.0, 80.0, 1_800_000_000_000.0)
        assert result.waveform_point.filtered_value == 0.0
        assert pipeline._wide.y == (0.0,) * 5
        assert "diverged" in caplog.text
        nxt = pipeline.process_means(151.0, 81.0, 1_800_000_000_010.0)
        assert math.isfinite(nxt.waveform_point.filtered_value)

    def test_published_values_always_clamped(self):
        rng = np.random.default_rng(3)
        pipeline = VitalSignsPipeline()
        for i in range(3000):
            result = pipeline.process_means(
                rng.uniform(0, 255), rng.uniform(0, 255), 1000.0 + i * 10.0
            )
            s = result.snapshot
            assert s.bpm == 0 or 30 <= s.bpm <= 200
            assert s.spo2 == 0 or 70 <= s.spo2 <= 100
            assert 0 <= s.signal_quality <= 100
            assert s.last_rr >= 0
            assert math.isfinite(result.waveform_point.filtered_value)

    def test_non_finite_sample_dropped(self):
        pipeline = VitalSignsPipeline()
        assert pipeline.process_means(float("nan"), 80.0, 1000.0) is None
        assert pipeline.waveform == []


class TestPipelineState:

    def test_waveform_ring_buffer_capped(self):
        pipeline = VitalSignsPipeline()
        results = feed(pipeline, ppg_wave(25.0))     # 2500 samples
        waveform = pipeline.waveform
        assert len(waveform) == 2000
        assert waveform == [r.waveform_point for r in results[-2000:]]

    def test_reset_then_replay_is_identical(self):
        pulse = ppg_wave(12.0)
        fresh = VitalSignsPipeline()
        expected = feed(fresh, pulse)

        reused = VitalSignsPipeline()
        rng = np.random.default_rng(11)
        feed(reused, rng.uniform(0, 1, size=700))
        reused.reset()
        assert reused.waveform == []
        assert reused.snapshot == NEUTRAL_SNAPSHOT
        replay = feed(reused, pulse)

        for a, b in zip(expected, replay):
            assert a.snapshot == b.snapshot
            assert a.waveform_point == b.waveform_point

    def test_invalid_config_rejected(self):
        with pytest.raises(ValueError):
            VitalSignsPipeline(PipelineConfig(sensitivity=0))
        with pytest.raises(ValueError):
            VitalSignsPipeline(PipelineConfig(narrow_band=(4.0, 0.7)))


class TestPipelineFrames:

    def test_saturated_frame_dropped(self):
        pipeline = VitalSignsPipeline()
        assert pipeline.process_frame(_frame(255, 255, 255), 1000.0) is None

    def test_garbage_frame_dropped(self):
        pipeline = VitalSignsPipeline()
        assert pipeline.process_frame(np.zeros((4, 4), dtype=np.uint8), 1000.0) is None

    def test_open_scene_is_not_finger(self):
        pipeline = VitalSignsPipeline()
        result = pipeline.process_frame(_frame(120, 120, 120), 1000.0)
        assert result.finger_present is False
        assert result.snapshot == NEUTRAL_SNAPSHOT

    def test_finger_frames_reach_waveform_and_recorder(self):
        recorder = SessionRecorder()
        recorder.start(start_time=0.0)
        pipeline = VitalSignsPipeline(recorder=recorder)
        for i in range(40):
            g = 86 if i % 2 else 74
            pipeline.process_frame(_frame(150, g, 40), 1000.0 + i * 10.0)
        session = recorder.stop(end_time=2000.0)

        # The very first frame has no green variance yet.
        assert len(pipeline.waveform) == 39
        assert len(session.rows) == 39
        assert session.rows[0].timestamp == 1010.0
        assert session.rows[-1].raw_value == pytest.approx(86.0)
