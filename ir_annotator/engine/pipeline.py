from __future__ import annotations

import logging
import multiprocessing
import os
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from ir_annotator.engine.audit import log_step, start_audit
from ir_annotator.engine.peak_detection import detect_peaks_in_signal, preprocess_spectrum
from ir_annotator.engine.recipe_model import Recipe
from ir_annotator.engine.records import AnnotationResult, Peak, ProcessedSignal, Spectrum
from ir_annotator.engine.rule_database import RuleDatabase
from ir_annotator.engine.rule_matcher import annotate_peaks

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalysisResult:
    processed: ProcessedSignal
    peaks: Tuple[Peak, ...]
    annotation: AnnotationResult
    audit: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        payload = self.annotation.to_dict()
        payload["peaks"] = [peak.to_dict() for peak in self.peaks]
        payload["audit"] = list(self.audit)
        return payload


@dataclass(frozen=True)
class BatchEntry:
    index: int
    label: str
    result: Optional[AnalysisResult] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.result is not None and self.error is None


def run_analysis(
    spectrum: Spectrum,
    rules: RuleDatabase,
    recipe: Optional[Recipe] = None,
) -> AnalysisResult:
    """Preprocess, detect peaks, then annotate them against ``rules``.

    Raises ``InvalidInput`` when the spectrum fails validation.
    """

    recipe = recipe or Recipe()
    peak_cfg = recipe.peak_config()
    matching_cfg = recipe.matching_config()
    audit = start_audit()
    label = (spectrum.meta or {}).get("source_file", "spectrum")
    log_step(audit, f"Input {label}: {len(spectrum.wavenumber)} points")

    processed = preprocess_spectrum(spectrum.wavenumber, spectrum.transmittance, peak_cfg)
    log_step(
        audit,
        "Preprocessed: smoothing={method} window={window} polyorder={poly} baseline={baseline}".format(
            method=peak_cfg["smoothing_method"],
            window=peak_cfg["smooth_window_length"],
            poly=peak_cfg["smooth_polyorder"],
            baseline=peak_cfg["baseline_method"],
        ),
    )

    peaks = detect_peaks_in_signal(processed, peak_cfg)
    log_step(audit, f"Detected {len(peaks)} peaks")

    annotation = annotate_peaks(
        peaks,
        rules,
        float(matching_cfg["ambiguity_threshold"]),
        tolerance=float(matching_cfg["wavenumber_tolerance"]),
        secondary_tolerance=float(matching_cfg["secondary_tolerance"]),
        max_gap=float(matching_cfg["secondary_max_gap"]),
    )
    log_step(
        audit,
        "Annotated {annotated}/{total} peaks, {ambiguous} ambiguous (threshold {thr:g})".format(
            annotated=annotation.summary["annotatedPeaks"],
            total=annotation.summary["totalPeaks"],
            ambiguous=annotation.summary["ambiguousPeaks"],
            thr=float(matching_cfg["ambiguity_threshold"]),
        ),
    )
    return AnalysisResult(processed=processed, peaks=tuple(peaks), annotation=annotation, audit=audit)


def _default_parallel_workers() -> int:
    return max(1, min(4, os.cpu_count() or 1))


def _run_analysis_task(
    index: int,
    spectrum: Spectrum,
    rules: RuleDatabase,
    recipe: Optional[Recipe],
) -> BatchEntry:
    label = str((spectrum.meta or {}).get("source_file", f"spectrum[{index}]"))
    try:
        return BatchEntry(index=index, label=label, result=run_analysis(spectrum, rules, recipe))
    except ValueError as exc:
        return BatchEntry(index=index, label=label, error=f"{type(exc).__name__}: {exc}")
    except Exception as exc:
        error_text = f"{type(exc).__name__}: {exc}"
        logger.exception("Analysis task failed for spectrum %s: %s", index, error_text)
        return BatchEntry(index=index, label=label, error=error_text)


def run_batch(
    spectra: Sequence[Spectrum],
    rules: RuleDatabase,
    recipe: Optional[Recipe] = None,
    *,
    max_workers: Optional[int] = None,
) -> List[BatchEntry]:
    """Analyse each spectrum independently; results keep input order."""

    workers = max_workers if max_workers and max_workers > 0 else _default_parallel_workers()
    if len(spectra) <= 1 or workers <= 1:
        entries = [_run_analysis_task(idx, spec, rules, recipe) for idx, spec in enumerate(spectra)]
    else:
        ctx = multiprocessing.get_context("spawn")
        results: List[BatchEntry | None] = [None for _ in spectra]
        with ProcessPoolExecutor(mp_context=ctx, max_workers=workers) as executor:
            future_map = {
                executor.submit(_run_analysis_task, idx, spec, rules, recipe): idx
                for idx, spec in enumerate(spectra)
            }
            for future in as_completed(future_map):
                idx = future_map[future]
                try:
                    results[idx] = future.result()
                except Exception as exc:
                    error_text = f"{type(exc).__name__}: {exc}"
                    logger.exception("Analysis task failed for spectrum %s: %s", idx, error_text)
                    results[idx] = BatchEntry(index=idx, label=f"spectrum[{idx}]", error=error_text)
        entries = [entry for entry in results if entry is not None]

    for entry in entries:
        if entry.error:
            logger.error("Analysis failed for %s: %s", entry.label, entry.error)
    logger.info(
        "Batch complete spectra=%d failed=%d workers=%d",
        len(entries),
        sum(1 for entry in entries if not entry.ok),
        workers,
    )
    return entries
