"""Rule-based assignment of detected peaks to vibrational modes.

Each peak is scored against every subtype in the catalog. A subtype must pass
the wavenumber gate and the shape check; intensity and secondary-peak
corroboration only adjust the confidence.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from ir_annotator.engine.ambiguity import detect_ambiguities
from ir_annotator.engine.records import Annotation, AnnotationResult, Candidate, Peak, ScoreBreakdown
from ir_annotator.engine.rule_database import (
    RuleDatabase,
    RuleSubtype,
    SecondaryPeakSpec,
    normalize_class_name,
)

logger = logging.getLogger(__name__)

WAVENUMBER_TOLERANCE = 0.05
SECONDARY_TOLERANCE = 0.10
SECONDARY_MAX_GAP_CM = 200.0
MAX_CANDIDATES = 5
INLINE_AMBIGUITY_GAP = 0.05

SHAPE_BONUS = 0.05
INTENSITY_BONUS = 0.05
SECONDARY_BONUS_PER_PEAK = 0.1
REQUIRED_MISSING_FACTOR = 0.5

SHAPE_FWHM_BANDS: Dict[str, Tuple[float, float]] = {
    "sharp": (10.0, 50.0),
    "medium": (50.0, 100.0),
    "broad": (100.0, 300.0),
    "very-broad": (300.0, 1200.0),
    "medium-broad": (80.0, 150.0),
}

INTENSITY_BANDS: Dict[str, Tuple[float, float]] = {
    "strong": (0.5, 1.0),
    "medium-to-strong": (0.4, 1.0),
    "medium": (0.2, 0.7),
    "weak-to-medium": (0.1, 0.6),
    "weak": (0.01, 0.3),
    "variable": (0.0, 1.0),
}


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(value, high))


def wavenumber_match(position: float, rule_range: Sequence[float], tolerance: float = WAVENUMBER_TOLERANCE) -> bool:
    """Return True when ``position`` lies inside the range widened by ``tolerance`` of its span."""

    low, high = float(rule_range[0]), float(rule_range[1])
    tol = (high - low) * tolerance
    return low - tol <= position <= high + tol


def shape_match(fwhm: float, shape: str) -> Tuple[bool, float]:
    band = SHAPE_FWHM_BANDS.get(normalize_class_name(shape))
    if band is None:
        return True, 0.0
    low, high = band
    if low <= fwhm <= high:
        return True, SHAPE_BONUS
    if fwhm < low * 0.7 or fwhm > high * 1.5:
        return False, 0.0
    return True, 0.0


def intensity_check(intensity: float, intensity_class: str, max_intensity: float) -> Tuple[bool, float]:
    """Score intensity against the declared class; never disqualifies."""

    band = INTENSITY_BANDS.get(normalize_class_name(intensity_class))
    if band is None:
        return True, 0.0
    normalized = intensity / max_intensity if max_intensity > 0 else 0.0
    low, high = band
    if low <= normalized <= high:
        return True, INTENSITY_BONUS
    return True, 0.0


def find_secondary_peaks(
    primary: Peak,
    specs: Sequence[SecondaryPeakSpec],
    peaks: Sequence[Peak],
    *,
    tolerance: float = SECONDARY_TOLERANCE,
    max_gap: float = SECONDARY_MAX_GAP_CM,
) -> Optional[List[Tuple[int, SecondaryPeakSpec]]]:
    """Return ``(peak position in peaks, spec)`` for each matched secondary spec.

    The first peak in scan order wins. ``None`` means a required spec found no
    match.
    """

    matches: List[Tuple[int, SecondaryPeakSpec]] = []
    for spec in specs:
        found = False
        for pos, candidate in enumerate(peaks):
            if not wavenumber_match(candidate.position, spec.wavenumber, tolerance):
                continue
            if abs(candidate.position - primary.position) <= max_gap:
                matches.append((pos, spec))
                found = True
                break
        if not found and spec.required:
            return None
    return matches


def _score_subtype(
    peak: Peak,
    subtype: RuleSubtype,
    all_peaks: Sequence[Peak],
    max_intensity: float,
    *,
    tolerance: float,
    secondary_tolerance: float,
    max_gap: float,
) -> Optional[Tuple[float, int, ScoreBreakdown]]:
    primary = subtype.primary
    if not wavenumber_match(peak.position, primary.wavenumber, tolerance):
        return None
    shape_ok, shape_bonus = shape_match(peak.fwhm, primary.shape)
    if not shape_ok:
        return None
    intensity_ok, intensity_bonus = intensity_check(peak.intensity, primary.intensity, max_intensity)

    base = subtype.confidence
    confidence = _clamp(base + shape_bonus + intensity_bonus)

    secondary = find_secondary_peaks(
        peak,
        subtype.secondary,
        all_peaks,
        tolerance=secondary_tolerance,
        max_gap=max_gap,
    )
    required_missing = secondary is None
    matched = [] if secondary is None else secondary
    secondary_bonus = SECONDARY_BONUS_PER_PEAK * len(matched)
    if required_missing:
        confidence *= REQUIRED_MISSING_FACTOR
    else:
        confidence = _clamp(confidence + secondary_bonus)

    scoring = ScoreBreakdown(
        base_confidence=base,
        shape_bonus=shape_bonus,
        intensity_bonus=intensity_bonus,
        secondary_bonus=secondary_bonus,
        wavenumber_match=True,
        shape_match=shape_ok,
        intensity_match=intensity_ok,
        secondary_match=bool(matched) or not subtype.secondary,
    )
    return confidence, len(matched), scoring


def match_peak_candidates(
    peak: Peak,
    all_peaks: Sequence[Peak],
    rules: RuleDatabase,
    *,
    tolerance: float = WAVENUMBER_TOLERANCE,
    secondary_tolerance: float = SECONDARY_TOLERANCE,
    max_gap: float = SECONDARY_MAX_GAP_CM,
) -> List[Candidate]:
    """Return the top candidates for ``peak``, highest confidence first."""

    intensities = [p.intensity for p in all_peaks] or [peak.intensity]
    max_intensity = max(intensities)
    candidates: List[Candidate] = []
    for mode, subtype in rules.iter_subtypes():
        scored = _score_subtype(
            peak,
            subtype,
            all_peaks,
            max_intensity,
            tolerance=tolerance,
            secondary_tolerance=secondary_tolerance,
            max_gap=max_gap,
        )
        if scored is None:
            continue
        confidence, secondary_found, scoring = scored
        candidates.append(
            Candidate(
                vibration_mode=mode.name,
                source=subtype.source,
                confidence=round(confidence, 3),
                rule_key=mode.key,
                rule_subtype_id=subtype.id,
                secondary_peaks_found=secondary_found,
                scoring=scoring,
                notes=subtype.notes,
            )
        )
    candidates.sort(key=lambda cand: cand.confidence, reverse=True)
    logger.debug(
        "Matched peak position=%.2f fwhm=%.2f candidates=%d",
        peak.position,
        peak.fwhm,
        len(candidates),
    )
    return candidates[:MAX_CANDIDATES]


def _inline_ambiguous(candidates: Sequence[Candidate]) -> bool:
    if len(candidates) < 2:
        return False
    return round(candidates[0].confidence - candidates[1].confidence, 3) < INLINE_AMBIGUITY_GAP


def match_all_peaks(
    peaks: Sequence[Peak],
    rules: RuleDatabase,
    *,
    tolerance: float = WAVENUMBER_TOLERANCE,
    secondary_tolerance: float = SECONDARY_TOLERANCE,
    max_gap: float = SECONDARY_MAX_GAP_CM,
) -> List[Annotation]:
    annotations: List[Annotation] = []
    for peak_index, peak in enumerate(peaks):
        candidates = match_peak_candidates(
            peak,
            peaks,
            rules,
            tolerance=tolerance,
            secondary_tolerance=secondary_tolerance,
            max_gap=max_gap,
        )
        if not candidates:
            continue
        annotations.append(
            Annotation(
                peak_index=peak_index,
                peak=peak,
                primary_match=candidates[0],
                top_candidates=tuple(candidates),
                is_ambiguous=_inline_ambiguous(candidates),
            )
        )
    logger.info("Annotated peaks annotated=%d total=%d", len(annotations), len(peaks))
    return annotations


def annotate_peaks(
    peaks: Sequence[Peak],
    rules: RuleDatabase,
    ambiguity_threshold: float = INLINE_AMBIGUITY_GAP,
    *,
    tolerance: float = WAVENUMBER_TOLERANCE,
    secondary_tolerance: float = SECONDARY_TOLERANCE,
    max_gap: float = SECONDARY_MAX_GAP_CM,
) -> AnnotationResult:
    annotations = match_all_peaks(
        peaks,
        rules,
        tolerance=tolerance,
        secondary_tolerance=secondary_tolerance,
        max_gap=max_gap,
    )
    ambiguities = detect_ambiguities(annotations, ambiguity_threshold)
    return AnnotationResult(
        annotations=tuple(annotations),
        ambiguities=tuple(ambiguities),
        summary={
            "totalPeaks": len(peaks),
            "annotatedPeaks": len(annotations),
            "ambiguousPeaks": len(ambiguities),
        },
    )
