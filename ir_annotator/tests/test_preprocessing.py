import numpy as np
import pytest

from ir_annotator.engine.preprocessing import (
    apply_baseline,
    normalize_axis,
    remove_baseline,
    smooth,
    to_absorbance,
)


def test_absorbance_conversion_clips_low_transmittance():
    absorbance = to_absorbance([100.0, 10.0, 1.0, 0.0])
    assert absorbance == pytest.approx([0.0, 1.0, 2.0, 3.0])


def test_smoothing_constant_signal_is_unchanged():
    signal = np.full(40, 0.37)
    assert smooth(signal, 11, 3) == pytest.approx(signal)
    assert smooth(signal, 7, 2, method="gaussian") == pytest.approx(signal)


def test_savgol_reproduces_cubic_including_edges():
    x = np.arange(30, dtype=float)
    cubic = 0.001 * x ** 3 - 0.02 * x ** 2 + 0.5 * x + 1.0
    assert smooth(cubic, 11, 3) == pytest.approx(cubic, abs=1e-8)


def test_smoothing_reduces_alternating_noise():
    rng = np.random.default_rng(7)
    x = np.linspace(0.0, 1.0, 200)
    clean = np.sin(2 * np.pi * x)
    noisy = clean + rng.normal(0.0, 0.05, size=x.size)
    smoothed = smooth(noisy, 11, 3)
    assert np.std(smoothed - clean) < np.std(noisy - clean)


def test_smoothing_short_signal_returns_copy():
    signal = np.array([1.0, 2.0, 3.0])
    out = smooth(signal, 11, 3)
    assert out == pytest.approx(signal)
    out[0] = 99.0
    assert signal[0] == 1.0


def test_even_window_is_made_odd():
    signal = np.linspace(0.0, 1.0, 25)
    assert smooth(signal, 10, 2) == pytest.approx(smooth(signal, 11, 2))


def test_unknown_smoothing_method_raises():
    with pytest.raises(ValueError):
        smooth(np.zeros(20), 5, 2, method="wavelet")


def test_linear_baseline_on_straight_line_gives_zeros():
    line = np.linspace(0.2, 1.4, 50)
    assert remove_baseline(line) == pytest.approx(np.zeros(50), abs=1e-12)


def test_baseline_removal_clamps_negative_values():
    signal = np.array([1.0, 0.5, 2.0, 1.0])
    corrected = remove_baseline(signal)
    assert corrected.min() >= 0.0
    assert corrected[1] == 0.0
    assert corrected[2] == pytest.approx(1.0)


def test_apply_baseline_dispatch():
    signal = np.array([1.0, 2.0, 1.0])
    assert apply_baseline(signal, "none") == pytest.approx(signal)
    assert apply_baseline(signal, "linear") == pytest.approx([0.0, 1.0, 0.0])
    with pytest.raises(ValueError):
        apply_baseline(signal, "als")


def test_normalize_axis_reverses_descending_input():
    wn = np.array([4000.0, 3000.0, 2000.0, 1000.0])
    ys = np.array([1.0, 2.0, 3.0, 4.0])
    out_wn, out_ys = normalize_axis(wn, ys)
    assert out_wn.tolist() == [1000.0, 2000.0, 3000.0, 4000.0]
    assert out_ys.tolist() == [4.0, 3.0, 2.0, 1.0]
    assert wn[0] == 4000.0


def test_normalize_axis_sorts_and_drops_near_duplicates():
    wn = np.array([1000.0, 3000.0, 2000.0, 2000.005, 4000.0])
    ys = np.array([1.0, 3.0, 2.0, 9.0, 4.0])
    out_wn, out_ys = normalize_axis(wn, ys)
    assert out_wn.tolist() == [1000.0, 2000.0, 3000.0, 4000.0]
    assert out_ys.tolist() == [1.0, 2.0, 3.0, 4.0]
