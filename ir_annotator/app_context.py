from __future__ import annotations

import logging
from collections import deque
from datetime import datetime
from typing import Any, Deque, Dict, List, Mapping, Optional, Tuple

from ir_annotator.engine.ambiguity import detect_ambiguities
from ir_annotator.engine.peak_detection import detect_peaks_in_signal, preprocess_spectrum
from ir_annotator.engine.recipe_model import Recipe
from ir_annotator.engine.records import Ambiguity, Annotation, Peak, ProcessedSignal, Spectrum
from ir_annotator.engine.rule_database import RuleDatabase, load_default_rules
from ir_annotator.engine.rule_matcher import annotate_peaks
from ir_annotator.engine.validation import InvalidInput

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50


class AnalysisContext:
    """Holds one spectrum and its peaks, annotations and review decisions.

    Each step returns ``False`` and sets ``status`` to ``"error"`` when its
    input is missing or invalid; downstream results are cleared whenever an
    upstream step reruns.
    """

    def __init__(self, rules: Optional[RuleDatabase] = None, recipe: Optional[Recipe] = None):
        self._rules = rules
        self.recipe = recipe or Recipe()
        self.spectrum: Optional[Spectrum] = None
        self.processed: Optional[ProcessedSignal] = None
        self.peaks: Optional[List[Peak]] = None
        self.annotations: Optional[List[Annotation]] = None
        self.ambiguities: Optional[List[Ambiguity]] = None
        self.reviews: Dict[int, Dict[str, Any]] = {}
        self.status = "idle"
        self.message = ""
        self._history: Deque[Dict[str, Any]] = deque(maxlen=HISTORY_LIMIT)

    @property
    def rules(self) -> RuleDatabase:
        if self._rules is None:
            self._rules = load_default_rules()
        return self._rules

    @property
    def history(self) -> List[Dict[str, Any]]:
        """Recorded actions, newest first."""
        return list(self._history)

    def _set_status(self, status: str, message: str = "") -> None:
        self.status = status
        self.message = message
        if status == "error":
            logger.warning("Analysis step failed: %s", message)

    def _record(self, action: str, **details: Any) -> None:
        entry = {"action": action, "timestamp": datetime.now().isoformat()}
        entry.update(details)
        self._history.appendleft(entry)

    def _clear_results(self) -> None:
        self.processed = None
        self.peaks = None
        self.annotations = None
        self.ambiguities = None
        self.reviews = {}

    def load_spectrum(self, spectrum: Spectrum) -> None:
        self.spectrum = spectrum
        self._clear_results()
        self._set_status("idle", f"Loaded {len(spectrum.wavenumber)} points")
        self._record("loadSpectrum", points=len(spectrum.wavenumber))

    def clear_spectrum(self) -> None:
        self.spectrum = None
        self._clear_results()
        self._set_status("idle")

    def detect_peaks(self) -> bool:
        if self.spectrum is None:
            self._set_status("error", "No spectrum data available")
            return False
        peak_cfg = self.recipe.peak_config()
        try:
            processed = preprocess_spectrum(self.spectrum.wavenumber, self.spectrum.transmittance, peak_cfg)
            peaks = detect_peaks_in_signal(processed, peak_cfg)
        except InvalidInput as exc:
            self._set_status("error", f"Peak detection error: {exc}")
            return False
        self._clear_results()
        self.processed = processed
        self.peaks = peaks
        self._set_status("success", f"Detected {len(peaks)} peaks")
        self._record("detectPeaks", count=len(peaks), params=dict(peak_cfg))
        return True

    def annotate_peaks(self) -> bool:
        if not self.peaks:
            self._set_status("error", "No peaks to annotate")
            return False
        matching = self.recipe.matching_config()
        result = annotate_peaks(
            self.peaks,
            self.rules,
            float(matching["ambiguity_threshold"]),
            tolerance=float(matching["wavenumber_tolerance"]),
            secondary_tolerance=float(matching["secondary_tolerance"]),
            max_gap=float(matching["secondary_max_gap"]),
        )
        self.annotations = list(result.annotations)
        self.ambiguities = list(result.ambiguities)
        self.reviews = {}
        self._set_status(
            "success",
            f"Annotated {len(self.annotations)} peaks ({len(self.ambiguities)} ambiguous)",
        )
        self._record(
            "annotatePeaks",
            count=len(self.annotations),
            ambiguousCount=len(self.ambiguities),
            params=dict(matching),
        )
        return True

    def refresh_ambiguities(self, threshold: Optional[float] = None) -> bool:
        """Re-derive ambiguities from existing annotations without re-matching."""

        if self.annotations is None:
            self._set_status("error", "No annotations available")
            return False
        if threshold is None:
            threshold = float(self.recipe.matching_config()["ambiguity_threshold"])
        self.ambiguities = detect_ambiguities(self.annotations, threshold)
        self._record("refreshAmbiguities", threshold=threshold, ambiguousCount=len(self.ambiguities))
        return True

    def update_peak_params(self, params: Mapping[str, Any]) -> List[str]:
        return self._update_recipe({"peaks": dict(params)})

    def update_matching_params(self, params: Mapping[str, Any]) -> List[str]:
        return self._update_recipe({"matching": dict(params)})

    def _update_recipe(self, overrides: Mapping[str, Any]) -> List[str]:
        candidate = self.recipe.with_overrides(overrides)
        errors = candidate.validate()
        if errors:
            self._set_status("error", "; ".join(errors))
            return errors
        self.recipe = candidate
        return []

    def select_candidate(self, peak_index: int, candidate_index: int) -> bool:
        ann = next((a for a in self.annotations or [] if a.peak_index == peak_index), None)
        if ann is None:
            self._set_status("error", f"No annotation for peak {peak_index}")
            return False
        if not 0 <= candidate_index < len(ann.top_candidates):
            self._set_status(
                "error",
                f"Candidate {candidate_index} out of range for peak {peak_index}",
            )
            return False
        self.reviews[peak_index] = {"candidateIndex": candidate_index, "skipped": False}
        return True

    def skip_peak(self, peak_index: int) -> None:
        self.reviews[peak_index] = {"candidateIndex": None, "skipped": True}

    def filtered_annotations(self, ambiguous_only: bool = False) -> List[Annotation]:
        if not self.annotations:
            return []
        if not ambiguous_only:
            return list(self.annotations)
        flagged = {amb.peak_index for amb in self.ambiguities or []}
        return [ann for ann in self.annotations if ann.peak_index in flagged]

    def selected_candidates(self) -> List[Tuple[Annotation, Any]]:
        """Pairs of (annotation, chosen candidate or None when skipped)."""

        chosen = []
        for ann in self.annotations or []:
            review = self.reviews.get(ann.peak_index)
            if review is None:
                chosen.append((ann, ann.primary_match))
            elif review["skipped"]:
                chosen.append((ann, None))
            else:
                chosen.append((ann, ann.top_candidates[review["candidateIndex"]]))
        return chosen

    def summary(self) -> Dict[str, Any]:
        annotations = self.annotations or []
        top = [ann.primary_match.confidence for ann in annotations]
        return {
            "dataPoints": len(self.spectrum.wavenumber) if self.spectrum is not None else 0,
            "detectedPeaks": len(self.peaks or []),
            "annotatedPeaks": len(annotations),
            "ambiguousPeaks": len(self.ambiguities or []),
            "meanTopConfidence": round(sum(top) / len(top), 3) if top else None,
        }

    def is_analysis_complete(self) -> bool:
        return self.spectrum is not None and bool(self.peaks) and self.annotations is not None

    def reset(self) -> None:
        self.clear_spectrum()
        self.recipe = Recipe()
        self._history.clear()
