"""Two-column (wavenumber, %T) text ingestion.

Parsing never raises for bad data: callers get an ``IngestResult`` whose
``issue`` names what went wrong.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from ir_annotator.engine.preprocessing import normalize_axis
from ir_annotator.engine.records import Spectrum
from ir_annotator.engine.validation import (
    TRANSMITTANCE_RANGE,
    WAVENUMBER_RANGE,
    ErrorKind,
    InputIssue,
    check_spectrum_arrays,
)

logger = logging.getLogger(__name__)

HEADER_KEYWORDS = ("wavenumber", "wavenum", "frequency", "cm-1", "transmit", "%t", "wavelength")


@dataclass
class IngestResult:
    spectrum: Optional[Spectrum] = None
    issue: Optional[InputIssue] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.spectrum is not None and self.issue is None


def sniff_locale(sample: str) -> Dict[str, Optional[str]]:
    """Guess the delimiter and decimal mark of a delimited text sample.

    Decimal commas are recognised first so that a comma-decimal export with
    semicolon or tab delimiters is not split in the middle of each number.
    A ``None`` delimiter means the columns are separated by runs of spaces.
    """

    lines = [ln for ln in (sample or "").splitlines() if ln.strip()]
    if not lines:
        return {"decimal": ".", "delimiter": ","}
    text = "\n".join(lines[:50])

    comma_decimals = len(re.findall(r"\d,\d", text))
    dot_decimals = len(re.findall(r"\d\.\d", text))
    has_other_delimiter = ";" in text or "\t" in text
    decimal = "," if comma_decimals > dot_decimals and has_other_delimiter else "."

    delimiter = None
    candidates = ";\t" if decimal == "," else ",;\t"
    try:
        delimiter = csv.Sniffer().sniff(text, delimiters=candidates).delimiter
    except csv.Error:
        counts = {sep: text.count(sep) for sep in candidates}
        best = max(counts, key=counts.get)
        if counts[best]:
            delimiter = best
    if delimiter is None and not re.search(r"\S[ ]+\S", text):
        delimiter = "," if decimal == "." else ";"
    return {"decimal": decimal, "delimiter": delimiter}


def is_header_line(line: str) -> bool:
    lowered = line.lower()
    if any(keyword in lowered for keyword in HEADER_KEYWORDS):
        return True
    for part in re.split(r"[,;\s]+", line.strip()):
        try:
            float(part)
        except ValueError:
            return True
    return False


def _keep_first_two(fields: List[str]) -> List[str]:
    return fields[:2]


def _read_table(body: str, locale: Mapping[str, Optional[str]]) -> pd.DataFrame:
    delimiter = locale["delimiter"]
    if delimiter:
        options = {"sep": delimiter, "skipinitialspace": True}
    else:
        options = {"sep": r"\s+"}
    return pd.read_csv(
        io.StringIO(body),
        decimal=locale["decimal"],
        engine="python",
        header=None,
        names=["wavenumber", "transmittance"],
        index_col=False,
        on_bad_lines=_keep_first_two,
        **options,
    )


def _to_numeric(column: pd.Series, decimal: str) -> pd.Series:
    # A column with any unparseable cell comes back as strings, so the
    # decimal mark has to be normalised before coercion.
    if not pd.api.types.is_numeric_dtype(column):
        column = column.astype(str).str.strip()
        if decimal != ".":
            column = column.str.replace(decimal, ".", regex=False)
    return pd.to_numeric(column, errors="coerce")


def _row_issues(frame: pd.DataFrame, decimal: str) -> Tuple[pd.DataFrame, pd.Series]:
    """Coerce both columns and describe why each rejected row was rejected."""

    missing = frame["transmittance"].isna()
    values = pd.DataFrame(
        {
            "wavenumber": _to_numeric(frame["wavenumber"], decimal),
            "transmittance": _to_numeric(frame["transmittance"], decimal),
        }
    )
    not_numeric = ~missing & values.isna().any(axis=1)
    not_finite = ~missing & ~not_numeric & ~np.isfinite(values).all(axis=1)
    checked = ~(missing | not_numeric | not_finite)
    wn_low, wn_high = WAVENUMBER_RANGE
    tm_low, tm_high = TRANSMITTANCE_RANGE
    wn_out = checked & ((values["wavenumber"] < wn_low) | (values["wavenumber"] > wn_high))
    tm_out = checked & ~wn_out & (
        (values["transmittance"] < tm_low) | (values["transmittance"] > tm_high)
    )

    reasons = pd.Series([None] * len(values), index=values.index, dtype=object)
    reasons[missing] = "expected two columns"
    reasons[not_numeric] = "values are not numeric"
    reasons[not_finite] = "values are not finite"
    for row in values.index[wn_out]:
        reasons[row] = f"wavenumber {values.at[row, 'wavenumber']:g} outside {wn_low:g}-{wn_high:g}"
    for row in values.index[tm_out]:
        reasons[row] = f"transmittance {values.at[row, 'transmittance']:g} outside {tm_low:g}-{tm_high:g}"
    return values, reasons


def _issue_kind(reason: str) -> ErrorKind:
    if " outside " in reason:
        return ErrorKind.RANGE_VIOLATION
    return ErrorKind.PARSE_FAILURE


def parse_spectrum_text(
    text: str,
    *,
    has_header: Optional[bool] = None,
    skip_invalid_rows: bool = True,
    source: Optional[str] = None,
) -> IngestResult:
    lines = [ln.strip() for ln in (text or "").splitlines() if ln.strip()]
    if len(lines) < 2:
        return IngestResult(issue=InputIssue(ErrorKind.INSUFFICIENT_DATA, "At least 2 lines of data are required"))

    locale = sniff_locale(text)
    if has_header is None:
        has_header = is_header_line(lines[0])
    data_lines = lines[1:] if has_header else lines
    if not data_lines:
        return IngestResult(issue=InputIssue(ErrorKind.INSUFFICIENT_DATA, "At least 2 lines of data are required"))

    try:
        frame = _read_table("\n".join(data_lines), locale)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, csv.Error, ValueError) as exc:
        return IngestResult(issue=InputIssue(ErrorKind.PARSE_FAILURE, f"Could not read table: {exc}"))

    values, reasons = _row_issues(frame, locale["decimal"])
    bad = reasons.notna()
    warnings = [f"Row {row + 1}: {reasons[row]}" for row in values.index[bad]]
    if warnings and not skip_invalid_rows:
        first = int(values.index[bad][0])
        return IngestResult(issue=InputIssue(_issue_kind(reasons[first]), warnings[0]))

    if warnings:
        logger.warning("Skipped invalid rows count=%d source=%s", len(warnings), source or "text")
    good = values[~bad]
    if good.empty:
        return IngestResult(
            issue=InputIssue(ErrorKind.PARSE_FAILURE, "No valid data rows could be parsed"),
            warnings=warnings,
        )

    wavenumber = good["wavenumber"].to_numpy(dtype=float)
    transmittance = good["transmittance"].to_numpy(dtype=float)
    issue = check_spectrum_arrays(wavenumber, transmittance)
    if issue is not None:
        return IngestResult(issue=issue, warnings=warnings)

    meta = {
        "delimiter": locale["delimiter"] or "whitespace",
        "decimal": locale["decimal"],
        "skipped_rows": len(warnings),
    }
    if source:
        meta["source_file"] = source
    return IngestResult(
        spectrum=Spectrum(wavenumber=wavenumber, transmittance=transmittance, meta=meta),
        warnings=warnings,
    )


def parse_spectrum_file(path: str | Path, **kwargs) -> IngestResult:
    file_path = Path(path)
    try:
        text = file_path.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as exc:
        return IngestResult(issue=InputIssue(ErrorKind.PARSE_FAILURE, f"Could not read {file_path}: {exc}"))
    kwargs.setdefault("source", str(file_path))
    return parse_spectrum_text(text, **kwargs)


def clean_spectrum(spectrum: Spectrum) -> Spectrum:
    """Sort by ascending wavenumber and drop near-duplicate points."""

    wn, tm = normalize_axis(spectrum.wavenumber, spectrum.transmittance)
    return Spectrum(wavenumber=wn, transmittance=tm, meta=dict(spectrum.meta or {}))


def spectrum_info(spectrum: Spectrum) -> Dict[str, object]:
    wn = np.asarray(spectrum.wavenumber, dtype=float)
    tm = np.asarray(spectrum.transmittance, dtype=float)
    return {
        "data_points": int(wn.size),
        "wavenumber_range": (float(np.min(wn)), float(np.max(wn))) if wn.size else None,
        "transmittance_range": (float(np.min(tm)), float(np.max(tm))) if tm.size else None,
    }
