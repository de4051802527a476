"""
Unit tests for the detrender, normalizer and bandpass filters.
Run with:  pytest tests/
"""

from __future__ import annotations

import math

import numpy as np
import pytest
from scipy.signal import lfilter

from ppg_vitals.filters import FilterState, design_butterworth, design_legacy, filter_step
from ppg_vitals.preprocessing import NormalizerState, TrendState, detrend, normalize
from ppg_vitals.windows import RollingWindow


# ---------------------------------------------------------------------------
# Rolling windows
# ---------------------------------------------------------------------------

class TestRollingWindow:

    def test_capacity_drops_oldest(self):
        w = RollingWindow(3)
        for v in range(5):
            w = w.push(v)
        assert w.values == (2.0, 3.0, 4.0)

    def test_population_variance(self):
        w = RollingWindow(10)
        for v in (2, 4, 4, 4, 5, 5, 7, 9):
            w = w.push(v)
        assert w.mean() == pytest.approx(5.0)
        assert w.variance() == pytest.approx(4.0)
        assert w.std() == pytest.approx(2.0)

    def test_push_does_not_mutate(self):
        w = RollingWindow(5).push(1.0)
        w.push(2.0)
        assert len(w) == 1


# ---------------------------------------------------------------------------
# Detrender
# ---------------------------------------------------------------------------

class TestDetrend:

    def test_warmup_subtracts_last_trend(self):
        state = TrendState()
        state, out = detrend(state, 100.0, 0.0)
        assert out == 100.0            # last trend starts at 0

    def test_linear_ramp_is_removed(self):
        state = TrendState()
        outputs = []
        for i in range(40):
            state, out = detrend(state, 50.0 + 0.5 * i, i * 10.0)
            outputs.append(out)
        # Once the fit kicks in, a pure ramp leaves no residual
        assert all(abs(o) < 1e-9 for o in outputs[9:])
        assert state.last_trend == pytest.approx(50.0 + 0.5 * 39)

    def test_window_pruned_by_age(self):
        state = TrendState()
        for i in range(20):
            state, _ = detrend(state, 1.0, i * 1000.0)
        # Only points within the last 5 s survive
        assert len(state.points) == 6
        assert state.points[0][0] == 14000.0


# ---------------------------------------------------------------------------
# Normalizer
# ---------------------------------------------------------------------------

class TestNormalize:

    def test_passthrough_before_ten_samples(self):
        state = NormalizerState()
        for v in range(9):
            state, out = normalize(state, float(v))
            assert out == float(v)

    def test_zscore_after_warmup(self):
        state = NormalizerState()
        values = [float(v) for v in range(10)]
        for v in values:
            state, out = normalize(state, v)
        expected = (9.0 - np.mean(values)) / np.std(values)
        assert out == pytest.approx(expected)

    def test_constant_signal_gives_zero(self):
        state = NormalizerState()
        for _ in range(15):
            state, out = normalize(state, 3.0)
        assert out == 0.0

    def test_window_capped_at_100(self):
        state = NormalizerState()
        for v in range(250):
            state, _ = normalize(state, float(v))
        assert len(state.window) == 100


# ---------------------------------------------------------------------------
# Bandpass filter
# ---------------------------------------------------------------------------

def _run(state: FilterState, signal) -> tuple[FilterState, list[float]]:
    out = []
    for v in signal:
        state, y = filter_step(state, v)
        out.append(y)
    return state, out


class TestBandpassFilter:

    @pytest.mark.parametrize("design", ["butterworth", "legacy"])
    def test_five_taps_normalised(self, design):
        f = FilterState.bandpass(0.7, 4.0, 100.0, design=design)
        assert len(f.b) == 5
        assert len(f.a) == 5
        assert f.a[0] == pytest.approx(1.0)
        assert len(f.x) == 5 and len(f.y) == 5

    def test_unknown_design_rejected(self):
        with pytest.raises(ValueError):
            FilterState.bandpass(0.7, 4.0, 100.0, design="chebyshev")

    @pytest.mark.parametrize("design", ["butterworth", "legacy"])
    def test_impulse_response_finite_and_repeatable(self, design):
        f = FilterState.bandpass(0.7, 4.0, 100.0, design=design)
        impulse = [1.0] + [0.0] * 20
        f, first = _run(f, impulse)
        assert all(math.isfinite(v) for v in first)

        f = f.reset()
        assert f.x == (0.0,) * 5 and f.y == (0.0,) * 5
        _, again = _run(f, impulse)
        assert again[0] == first[0]
        assert again == first

    def test_butterworth_matches_lfilter(self):
        b, a = design_butterworth(0.7, 4.0, 100.0)
        rng = np.random.default_rng(0)
        signal = rng.normal(size=200)
        _, ours = _run(FilterState.bandpass(0.7, 4.0, 100.0), signal)
        np.testing.assert_allclose(ours, lfilter(b, a, signal), rtol=1e-9, atol=1e-12)

    def test_butterworth_passes_heart_band(self):
        fs = 100.0
        t = np.arange(int(fs * 20)) / fs
        in_band = np.sin(2 * np.pi * 1.2 * t)        # 72 BPM
        drift = np.sin(2 * np.pi * 0.05 * t)          # baseline wander
        f = FilterState.bandpass(0.7, 4.0, fs)
        _, out_in = _run(f, in_band)
        _, out_drift = _run(f, drift)
        tail = slice(len(t) // 2, None)
        assert np.std(out_in[tail]) > 0.5
        assert np.std(out_drift[tail]) < 0.1

    def test_legacy_first_output_is_b0(self):
        b, _ = design_legacy(0.7, 4.0, 100.0)
        _, out = _run(FilterState.bandpass(0.7, 4.0, 100.0, design="legacy"), [1.0])
        assert out[0] == pytest.approx(b[0])

    def test_executed_recurrence_poles(self):
        assert len(FilterState.bandpass(0.7, 4.0, 100.0).poles()) == 4
        # legacy feedback reaches one sample further back
        assert len(FilterState.bandpass(0.7, 4.0, 100.0, design="legacy").poles()) == 5

    @pytest.mark.parametrize("band", [(0.5, 8.0), (0.7, 4.0)])
    def test_butterworth_is_stable(self, band):
        assert FilterState.bandpass(*band, 100.0).is_stable()

    def test_legacy_wide_band_is_unstable(self):
        assert not FilterState.bandpass(0.5, 8.0, 100.0, design="legacy").is_stable()
        assert FilterState.bandpass(0.7, 4.0, 100.0, design="legacy").is_stable()

    def test_stable_legacy_impulse_decays(self):
        f = FilterState.bandpass(0.5, 4.0, 100.0, design="legacy")
        assert f.is_stable()
        _, out = _run(f, [1.0] + [0.0] * 2000)
        assert all(math.isfinite(v) for v in out)
        assert max(abs(v) for v in out[-100:]) < 1e-12

    def test_legacy_rejects_band_above_quarter_rate(self):
        with pytest.raises(ValueError, match="fs/4"):
            design_legacy(0.5, 8.0, 30.0)
