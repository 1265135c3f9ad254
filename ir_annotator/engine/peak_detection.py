"""Peak detection for absorbance spectra.

The search is a plain local-maximum scan with three filters applied in order:
minimum height, bounded-window prominence and a greedy minimum distance. Peak
widths are measured at half height in samples and converted to cm^-1 with the
mean axis spacing.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, NamedTuple, Optional

import numpy as np

from ir_annotator.engine.preprocessing import (
    apply_baseline,
    normalize_axis,
    smooth,
    to_absorbance,
)
from ir_annotator.engine.records import Peak, ProcessedSignal
from ir_annotator.engine.validation import require_valid_spectrum

logger = logging.getLogger(__name__)

PROMINENCE_WINDOW = 50
NOISE_FRACTION = 0.1

# Greedy distance filtering keeps the earliest (lowest-index) candidate when two
# are closer than ``distance`` samples.
DISTANCE_POLICY = "earliest-index"
DISTANCE_POLICIES = ("earliest-index", "highest-first")

DEFAULT_PEAK_CONFIG: Dict[str, object] = {
    "smooth_window_length": 11,
    "smooth_polyorder": 3,
    "smoothing_method": "savgol",
    "baseline_method": "linear",
    "min_height": 0.005,
    "prominence_percent": 5.0,
    "distance_percent": 2.0,
    "prominence_window": PROMINENCE_WINDOW,
    "distance_policy": DISTANCE_POLICY,
}

_CONFIG_ALIASES = {
    "smoothWindowLength": "smooth_window_length",
    "smoothingWindow": "smooth_window_length",
    "window": "smooth_window_length",
    "smoothPolyorder": "smooth_polyorder",
    "polyorder": "smooth_polyorder",
    "smoothingMethod": "smoothing_method",
    "baselineMethod": "baseline_method",
    "minHeight": "min_height",
    "peakHeightThreshold": "min_height",
    "prominencePercent": "prominence_percent",
    "distancePercent": "distance_percent",
    "prominenceWindow": "prominence_window",
    "distancePolicy": "distance_policy",
}


class PeakSearch(NamedTuple):
    indices: np.ndarray
    heights: np.ndarray
    widths: np.ndarray
    prominences: np.ndarray


def resolve_peak_config(peak_cfg: Optional[Mapping[str, object]] = None) -> Dict[str, object]:
    """Return merged peak configuration using shared defaults."""

    resolved = dict(DEFAULT_PEAK_CONFIG)
    if peak_cfg:
        for key, value in peak_cfg.items():
            if value is None:
                continue
            resolved[_CONFIG_ALIASES.get(key, key)] = value
    return resolved


def _local_maxima(y: np.ndarray, height: float) -> np.ndarray:
    if y.size < 3:
        return np.asarray([], dtype=int)
    center = y[1:-1]
    mask = (center > y[:-2]) & (center > y[2:]) & (center >= height)
    return np.nonzero(mask)[0] + 1


def _window_prominence(y: np.ndarray, idx: int, window: int) -> float:
    value = y[idx]
    left = y[max(0, idx - window):idx]
    right = y[idx + 1:min(y.size, idx + window + 1)]
    min_left = min(value, float(np.min(left))) if left.size else value
    min_right = min(value, float(np.min(right))) if right.size else value
    return float(min(value - min_left, value - min_right))


def _apply_distance_filter(
    y: np.ndarray,
    indices: List[int],
    distance: int,
    policy: str = DISTANCE_POLICY,
) -> List[int]:
    if policy not in DISTANCE_POLICIES:
        raise ValueError(f"Unknown distance policy: {policy}")
    ordered = list(indices)
    if policy == "highest-first":
        ordered.sort(key=lambda idx: y[idx], reverse=True)
    kept: List[int] = []
    for idx in ordered:
        if all(abs(idx - prev) >= distance for prev in kept):
            kept.append(idx)
    kept.sort()
    return kept


def _half_height_width(y: np.ndarray, idx: int) -> int:
    half = y[idx] / 2.0
    left = idx
    for j in range(idx - 1, -1, -1):
        if y[j] < half:
            left = j
            break
    right = idx
    for j in range(idx + 1, y.size):
        if y[j] < half:
            right = j
            break
    return right - left


def find_peaks(
    signal,
    height: float,
    prominence: Optional[float] = None,
    distance: Optional[int] = None,
    *,
    prominence_window: int = PROMINENCE_WINDOW,
    distance_policy: str = DISTANCE_POLICY,
) -> PeakSearch:
    y = np.asarray(signal, dtype=float)
    if prominence is None:
        prominence = 0.05 * float(np.max(y)) if y.size else 0.0
    if distance is None:
        distance = max(1, y.size // 200)
    distance = max(1, int(distance))

    accepted: List[int] = []
    prominences: Dict[int, float] = {}
    maxima = _local_maxima(y, height)
    for idx in maxima:
        idx = int(idx)
        prom = _window_prominence(y, idx, int(prominence_window))
        if prom >= prominence:
            accepted.append(idx)
            prominences[idx] = prom

    kept = _apply_distance_filter(y, accepted, distance, distance_policy)
    logger.debug(
        "Peak search candidates=%d after_prominence=%d kept=%d height=%.4g prominence=%.4g distance=%d",
        int(maxima.size),
        len(accepted),
        len(kept),
        height,
        prominence,
        distance,
    )
    indices = np.asarray(kept, dtype=int)
    return PeakSearch(
        indices=indices,
        heights=y[indices] if indices.size else np.asarray([], dtype=float),
        widths=np.asarray([_half_height_width(y, idx) for idx in kept], dtype=float),
        prominences=np.asarray([prominences[idx] for idx in kept], dtype=float),
    )


def calculate_fwhm(widths, wavenumber) -> np.ndarray:
    """Convert sample-unit widths to cm^-1 using the mean axis spacing."""

    wn = np.asarray(wavenumber, dtype=float)
    spacing = float(np.mean(np.abs(np.diff(wn)))) if wn.size > 1 else 0.0
    return np.asarray(widths, dtype=float) * spacing


def calculate_snr(peak_heights, signal) -> np.ndarray:
    y = np.sort(np.asarray(signal, dtype=float))
    count = max(1, int(np.floor(y.size * NOISE_FRACTION)))
    noise_std = float(np.std(y[:count])) if y.size else 0.0
    denominator = noise_std if noise_std > 0 else 1.0
    return np.asarray(peak_heights, dtype=float) / denominator


def preprocess_spectrum(
    wavenumber,
    transmittance,
    config: Optional[Mapping[str, object]] = None,
) -> ProcessedSignal:
    cfg = resolve_peak_config(config)
    require_valid_spectrum(wavenumber, transmittance)
    wn, tm = normalize_axis(wavenumber, transmittance)
    require_valid_spectrum(wn, tm)
    raw = to_absorbance(tm)
    smoothed = smooth(
        raw,
        int(cfg["smooth_window_length"]),
        int(cfg["smooth_polyorder"]),
        method=str(cfg["smoothing_method"]),
    )
    processed = apply_baseline(smoothed, str(cfg["baseline_method"]))
    return ProcessedSignal(wavenumber=wn, raw_absorbance=raw, absorbance=processed)


def detect_peaks_in_signal(
    processed: ProcessedSignal,
    config: Optional[Mapping[str, object]] = None,
) -> List[Peak]:
    cfg = resolve_peak_config(config)
    wn = processed.wavenumber
    absorbance = processed.absorbance
    max_abs = float(np.max(absorbance)) if absorbance.size else 0.0
    height = max(float(cfg["min_height"]), max_abs * 0.01)
    prominence = max_abs * float(cfg["prominence_percent"]) / 100.0
    distance = max(1, int(np.floor(wn.size * float(cfg["distance_percent"]) / 100.0)))

    logger.info(
        "Peak thresholds points=%d max_absorbance=%.4g height=%.4g prominence=%.4g distance_pts=%d policy=%s",
        wn.size,
        max_abs,
        height,
        prominence,
        distance,
        cfg["distance_policy"],
    )
    search = find_peaks(
        absorbance,
        height,
        prominence,
        distance,
        prominence_window=int(cfg["prominence_window"]),
        distance_policy=str(cfg["distance_policy"]),
    )
    fwhm = calculate_fwhm(search.widths, wn)
    snr = calculate_snr(search.heights, absorbance)

    peaks = [
        Peak(
            position=float(wn[idx]),
            intensity=float(absorbance[idx]),
            fwhm=float(fwhm[i]),
            height=float(search.heights[i]),
            prominence=float(search.prominences[i]),
            snr=float(snr[i]),
            index=int(idx),
        )
        for i, idx in enumerate(search.indices)
    ]
    peaks.sort(key=lambda peak: peak.position, reverse=True)
    logger.info("Detected peaks count=%d", len(peaks))
    return peaks


def detect_peaks(
    wavenumber,
    transmittance,
    options: Optional[Mapping[str, object]] = None,
) -> List[Peak]:
    """Detect peaks in a transmittance spectrum.

    Returns ``Peak`` records sorted by descending wavenumber. An empty list is
    a valid result. Raises ``InvalidInput`` for malformed spectra.
    """

    processed = preprocess_spectrum(wavenumber, transmittance, options)
    return detect_peaks_in_signal(processed, options)
