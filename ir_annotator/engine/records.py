from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

import numpy as np


@dataclass
class Spectrum:
    wavenumber: np.ndarray          # cm^-1
    transmittance: np.ndarray       # percent, 0-100
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        wn = np.asarray(self.wavenumber, dtype=float)
        tm = np.asarray(self.transmittance, dtype=float)
        payload: Dict[str, Any] = {
            "wavenumber": wn.tolist(),
            "transmittance": tm.tolist(),
            "dataPoints": int(wn.size),
        }
        if wn.size:
            payload["wavenumberRange"] = [float(np.min(wn)), float(np.max(wn))]
            payload["transmittanceRange"] = [float(np.min(tm)), float(np.max(tm))]
        if self.meta:
            payload["meta"] = dict(self.meta)
        return payload


@dataclass(frozen=True)
class ProcessedSignal:
    wavenumber: np.ndarray          # ascending
    raw_absorbance: np.ndarray
    absorbance: np.ndarray          # smoothed, baseline removed


@dataclass(frozen=True)
class Peak:
    position: float
    intensity: float
    fwhm: float
    height: float
    prominence: float
    snr: float
    index: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": round(self.position, 2),
            "intensity": round(self.intensity, 4),
            "fwhm": round(self.fwhm, 2),
            "height": round(self.height, 4),
            "prominence": round(self.prominence, 4),
            "snr": round(self.snr, 2),
            "index": self.index,
        }


@dataclass(frozen=True)
class ScoreBreakdown:
    base_confidence: float
    shape_bonus: float
    intensity_bonus: float
    secondary_bonus: float
    wavenumber_match: bool
    shape_match: bool
    intensity_match: bool
    secondary_match: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "baseConfidence": round(self.base_confidence, 3),
            "shapeBonus": round(self.shape_bonus, 3),
            "intensityBonus": round(self.intensity_bonus, 3),
            "secondaryBonus": round(self.secondary_bonus, 3),
            "wavenumberMatch": self.wavenumber_match,
            "shapeMatch": self.shape_match,
            "intensityMatch": self.intensity_match,
            "secondaryMatch": self.secondary_match,
        }


@dataclass(frozen=True)
class Candidate:
    vibration_mode: str
    source: str
    confidence: float
    rule_key: str
    rule_subtype_id: str
    secondary_peaks_found: int
    scoring: ScoreBreakdown
    notes: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vibrationMode": self.vibration_mode,
            "source": self.source,
            "confidence": self.confidence,
            "ruleKey": self.rule_key,
            "ruleSubtype": self.rule_subtype_id,
            "secondaryPeaksFound": self.secondary_peaks_found,
            "notes": self.notes,
            "scoring": self.scoring.to_dict(),
        }


@dataclass(frozen=True)
class Annotation:
    peak_index: int
    peak: Peak
    primary_match: Candidate
    top_candidates: Tuple[Candidate, ...]
    is_ambiguous: bool

    @property
    def num_candidates(self) -> int:
        return len(self.top_candidates)

    @property
    def confidence_range(self) -> List[float]:
        return [cand.confidence for cand in self.top_candidates]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "peakIndex": self.peak_index,
            "peakPosition": round(self.peak.position, 2),
            "peakIntensity": round(self.peak.intensity, 4),
            "peakFwhm": round(self.peak.fwhm, 2),
            "peakSNR": round(self.peak.snr, 2),
            "primaryMatch": self.primary_match.to_dict(),
            "topFiveCandidates": [cand.to_dict() for cand in self.top_candidates],
            "numCandidates": self.num_candidates,
            "confidenceRange": self.confidence_range,
            "isAmbiguous": self.is_ambiguous,
        }


@dataclass(frozen=True)
class Ambiguity:
    peak_index: int
    peak: Peak
    top_confidence: float
    second_confidence: float
    confidence_gap: float
    top_candidates: Tuple[Candidate, Candidate]
    all_candidates: Tuple[Candidate, ...]
    note: str = "Multiple plausible explanations - expert review recommended"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "peakIndex": self.peak_index,
            "peakPosition": round(self.peak.position, 2),
            "peakIntensity": round(self.peak.intensity, 4),
            "peakFwhm": round(self.peak.fwhm, 2),
            "topConfidence": round(self.top_confidence, 3),
            "secondConfidence": round(self.second_confidence, 3),
            "confidenceGap": round(self.confidence_gap, 3),
            "topCandidates": [cand.to_dict() for cand in self.top_candidates],
            "allCandidates": [cand.to_dict() for cand in self.all_candidates],
            "note": self.note,
        }


@dataclass(frozen=True)
class AnnotationResult:
    annotations: Tuple[Annotation, ...]
    ambiguities: Tuple[Ambiguity, ...]
    summary: Dict[str, int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "annotations": [ann.to_dict() for ann in self.annotations],
            "ambiguities": [amb.to_dict() for amb in self.ambiguities],
            "summary": dict(self.summary),
        }
