from __future__ import annotations

import csv
import json
import math
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np
from openpyxl import Workbook

from ir_annotator.engine.records import Ambiguity, Annotation, Peak, Spectrum

PEAK_COLUMNS = ("Position (cm-1)", "Intensity", "FWHM (cm-1)", "Height", "SNR")
ANNOTATION_COLUMNS = (
    "Position (cm-1)",
    "Intensity",
    "FWHM (cm-1)",
    "Top Match",
    "Source",
    "Confidence",
    "Ambiguous",
    "All Candidates",
)
AMBIGUITY_COLUMNS = (
    "Position (cm-1)",
    "Top Confidence",
    "Second Confidence",
    "Confidence Gap",
    "Top Candidates",
    "Note",
)


def _ensure_parent(path: Path) -> None:
    if not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)


def _clean_value(value: Any) -> Any:
    if isinstance(value, np.ndarray):
        value = value.tolist()
    elif isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, (list, tuple)):
        return json.dumps([_clean_value(v) for v in value])
    if isinstance(value, (Path, os.PathLike)):
        value = os.fspath(value)
    if isinstance(value, str) and value and value[0] in "=+-@":
        return "'" + value
    return value


def _json_safe(value: Any) -> Any:
    if isinstance(value, np.ndarray):
        return [_json_safe(v) for v in value.tolist()]
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, Mapping):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    if isinstance(value, (Path, os.PathLike)):
        return os.fspath(value)
    return value


def peak_rows(peaks: Iterable[Peak]) -> List[Dict[str, Any]]:
    return [
        {
            "Position (cm-1)": round(peak.position, 2),
            "Intensity": round(peak.intensity, 4),
            "FWHM (cm-1)": round(peak.fwhm, 2),
            "Height": round(peak.height, 4),
            "SNR": round(peak.snr, 2),
        }
        for peak in peaks
    ]


def _candidate_summary(annotation: Annotation) -> str:
    return " | ".join(
        f"{cand.source}({round(cand.confidence * 100):d}%)" for cand in annotation.top_candidates
    )


def annotation_rows(annotations: Iterable[Annotation]) -> List[Dict[str, Any]]:
    rows = []
    for ann in annotations:
        match = ann.primary_match
        rows.append(
            {
                "Position (cm-1)": round(ann.peak.position, 2),
                "Intensity": round(ann.peak.intensity, 4),
                "FWHM (cm-1)": round(ann.peak.fwhm, 2),
                "Top Match": match.vibration_mode,
                "Source": match.source,
                "Confidence": f"{match.confidence * 100:.1f}%",
                "Ambiguous": "Yes" if ann.is_ambiguous else "No",
                "All Candidates": _candidate_summary(ann),
            }
        )
    return rows


def ambiguity_rows(ambiguities: Iterable[Ambiguity]) -> List[Dict[str, Any]]:
    return [
        {
            "Position (cm-1)": round(amb.peak.position, 2),
            "Top Confidence": round(amb.top_confidence, 3),
            "Second Confidence": round(amb.second_confidence, 3),
            "Confidence Gap": round(amb.confidence_gap, 3),
            "Top Candidates": " vs ".join(cand.source for cand in amb.top_candidates),
            "Note": amb.note,
        }
        for amb in ambiguities
    ]


def _write_csv(out_path: str | Path, columns: Sequence[str], rows: List[Dict[str, Any]]) -> Path:
    csv_path = Path(out_path)
    _ensure_parent(csv_path)
    with csv_path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(columns)
        for row in rows:
            writer.writerow([_clean_value(row.get(col)) for col in columns])
    return csv_path


def write_peaks_csv(out_path: str | Path, peaks: Iterable[Peak]) -> Path:
    return _write_csv(out_path, PEAK_COLUMNS, peak_rows(peaks))


def write_annotations_csv(out_path: str | Path, annotations: Iterable[Annotation]) -> Path:
    """Write one row per annotated peak; confidence is a percent string."""

    return _write_csv(out_path, ANNOTATION_COLUMNS, annotation_rows(annotations))


def write_analysis_json(
    out_path: str | Path,
    *,
    spectrum: Optional[Spectrum],
    peaks: Sequence[Peak],
    annotations: Sequence[Annotation],
    ambiguities: Sequence[Ambiguity],
    summary: Optional[Mapping[str, Any]] = None,
) -> Path:
    json_path = Path(out_path)
    _ensure_parent(json_path)
    payload = {
        "spectrum": spectrum.to_dict() if spectrum is not None else None,
        "peaks": [peak.to_dict() for peak in peaks],
        "annotations": [ann.to_dict() for ann in annotations],
        "ambiguities": [amb.to_dict() for amb in ambiguities],
        "summary": dict(summary or {}),
        "exportedAt": datetime.now(timezone.utc).isoformat(),
    }
    with json_path.open("w", encoding="utf-8") as handle:
        json.dump(_json_safe(payload), handle, indent=2)
    return json_path


def _write_sheet(ws, columns: Sequence[str], rows: List[Dict[str, Any]]) -> None:
    ws.append(list(columns))
    for row in rows:
        ws.append([_clean_value(row.get(col)) for col in columns])


def write_analysis_workbook(
    out_path: str | Path,
    peaks: Sequence[Peak],
    annotations: Sequence[Annotation],
    ambiguities: Sequence[Ambiguity],
    audit: Optional[Sequence[str]] = None,
) -> Path:
    workbook_path = Path(out_path)
    _ensure_parent(workbook_path)

    wb = Workbook()
    ws_peaks = wb.active
    ws_peaks.title = "Peaks"
    _write_sheet(ws_peaks, PEAK_COLUMNS, peak_rows(peaks))

    _write_sheet(wb.create_sheet("Annotations"), ANNOTATION_COLUMNS, annotation_rows(annotations))
    _write_sheet(wb.create_sheet("Ambiguities"), AMBIGUITY_COLUMNS, ambiguity_rows(ambiguities))

    ws_audit = wb.create_sheet("Audit_Log")
    ws_audit.append(["Index", "Entry"])
    for idx, entry in enumerate(audit or [], start=1):
        ws_audit.append([idx, _clean_value(entry)])

    wb.save(workbook_path)
    return workbook_path
