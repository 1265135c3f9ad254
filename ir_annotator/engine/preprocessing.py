"""Signal conditioning ahead of peak detection.

Transmittance is converted to absorbance, smoothed with a local polynomial
filter and flattened by subtracting a straight-line baseline.
"""

from __future__ import annotations

import logging
from typing import Tuple

import numpy as np
from numpy.polynomial import polynomial as P
from scipy.signal import savgol_coeffs

logger = logging.getLogger(__name__)

TRANSMITTANCE_FLOOR = 0.1
DUPLICATE_TOLERANCE_CM = 0.01

SMOOTHING_METHODS = ("savgol", "gaussian")
BASELINE_METHODS = ("linear", "none")


def to_absorbance(transmittance) -> np.ndarray:
    """A = log10(100 / %T), with %T clipped to [0.1, 100]."""

    clipped = np.clip(np.asarray(transmittance, dtype=float), TRANSMITTANCE_FLOOR, 100.0)
    return np.log10(100.0 / clipped)


def normalize_axis(
    wavenumber,
    values,
    *,
    tolerance: float = DUPLICATE_TOLERANCE_CM,
) -> Tuple[np.ndarray, np.ndarray]:
    """Return copies ordered by ascending wavenumber with near-duplicates removed."""

    wn = np.array(wavenumber, dtype=float)
    ys = np.array(values, dtype=float)
    if wn.size == 0:
        return wn, ys
    if wn[0] > wn[-1]:
        wn = wn[::-1].copy()
        ys = ys[::-1].copy()
    if wn.size > 1 and np.all(np.diff(wn) > tolerance):
        return wn, ys

    order = np.argsort(wn, kind="stable")
    wn = wn[order]
    ys = ys[order]
    keep = [0]
    for idx in range(1, wn.size):
        if abs(wn[idx] - wn[keep[-1]]) > tolerance:
            keep.append(idx)
    if len(keep) != wn.size:
        logger.info("Dropped near-duplicate wavenumbers removed=%d kept=%d", wn.size - len(keep), len(keep))
    return wn[keep], ys[keep]


def _resolve_window(window_length: int, polyorder: int) -> int:
    window = int(window_length)
    if window % 2 == 0:
        window += 1
    if window < polyorder + 1:
        window = polyorder + 1
    if window % 2 == 0:
        window += 1
    return window


def _local_polyfit(y: np.ndarray, idx: int, half: int, polyorder: int) -> float:
    start = max(0, idx - half)
    stop = min(y.size, idx + half + 1)
    offsets = np.arange(start, stop, dtype=float) - idx
    order = min(polyorder, offsets.size - 1)
    if order < 1:
        return float(np.mean(y[start:stop]))
    coeffs = P.polyfit(offsets, y[start:stop], order)
    return float(coeffs[0])


def _savgol_truncated(y: np.ndarray, window: int, polyorder: int) -> np.ndarray:
    n = y.size
    half = window // 2
    out = np.empty_like(y)
    coeffs = savgol_coeffs(window, polyorder)
    out[half:n - half] = np.convolve(y, coeffs, mode="valid")
    for idx in list(range(min(half, n))) + list(range(max(n - half, half), n)):
        out[idx] = _local_polyfit(y, idx, half, polyorder)
    return out


def _gaussian_truncated(y: np.ndarray, window: int) -> np.ndarray:
    n = y.size
    half = window // 2
    sigma = window / 4.0
    out = np.empty_like(y)
    for idx in range(n):
        start = max(0, idx - half)
        stop = min(n, idx + half + 1)
        offsets = np.arange(start, stop, dtype=float) - idx
        weights = np.exp(-(offsets ** 2) / (2.0 * sigma ** 2))
        out[idx] = float(np.dot(weights, y[start:stop]) / np.sum(weights))
    return out


def smooth(signal, window_length: int = 11, polyorder: int = 3, method: str = "savgol") -> np.ndarray:
    """Local polynomial smoothing with truncated windows at the edges.

    ``window_length`` is forced odd and to at least ``polyorder + 1``. Signals
    shorter than the window come back unchanged.
    """

    y = np.array(signal, dtype=float)
    method = (method or "savgol").lower()
    if method not in SMOOTHING_METHODS:
        raise ValueError(f"Unsupported smoothing method: {method}")
    polyorder = max(0, int(polyorder))
    window = _resolve_window(window_length, polyorder)
    if y.size < window:
        return y
    if method == "gaussian":
        return _gaussian_truncated(y, window)
    return _savgol_truncated(y, window, polyorder)


def remove_baseline(signal) -> np.ndarray:
    """Subtract the line through the first and last sample, clamping at zero."""

    y = np.array(signal, dtype=float)
    n = y.size
    if n < 2:
        return y
    baseline = np.linspace(y[0], y[-1], n)
    return np.maximum(y - baseline, 0.0)


def apply_baseline(signal, method: str = "linear") -> np.ndarray:
    method = (method or "none").lower()
    if method == "linear":
        return remove_baseline(signal)
    if method == "none":
        return np.array(signal, dtype=float)
    raise ValueError(f"Unsupported baseline method: {method}")
