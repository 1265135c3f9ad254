"""Input validation shared by the ingestion layer and the detection engine."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

import numpy as np

MIN_POINTS = 10
WAVENUMBER_RANGE = (100.0, 5000.0)
TRANSMITTANCE_RANGE = (0.0, 100.0)


class ErrorKind(str, enum.Enum):
    INSUFFICIENT_DATA = "insufficient_data"
    LENGTH_MISMATCH = "length_mismatch"
    RANGE_VIOLATION = "range_violation"
    DEGENERATE_SIGNAL = "degenerate_signal"
    NON_FINITE = "non_finite"
    PARSE_FAILURE = "parse_failure"


@dataclass(frozen=True)
class InputIssue:
    kind: ErrorKind
    message: str

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message}


class InvalidInput(ValueError):
    """Raised when the engine is handed data it cannot analyse."""

    def __init__(self, issue: InputIssue):
        self.issue = issue
        self.kind = issue.kind
        super().__init__(f"{issue.kind.value}: {issue.message}")


def check_spectrum_arrays(wavenumber, transmittance) -> Optional[InputIssue]:
    """Return the first problem found in a (wavenumber, transmittance) pair."""

    try:
        wn = np.asarray(wavenumber, dtype=float)
        tm = np.asarray(transmittance, dtype=float)
    except (TypeError, ValueError) as exc:
        return InputIssue(ErrorKind.PARSE_FAILURE, f"Values are not numeric: {exc}")

    if wn.ndim != 1 or tm.ndim != 1:
        return InputIssue(ErrorKind.PARSE_FAILURE, "Expected one-dimensional sequences.")
    if wn.size != tm.size:
        return InputIssue(
            ErrorKind.LENGTH_MISMATCH,
            f"Wavenumber and transmittance lengths differ ({wn.size} != {tm.size}).",
        )
    if wn.size < MIN_POINTS:
        return InputIssue(
            ErrorKind.INSUFFICIENT_DATA,
            f"At least {MIN_POINTS} data points are required, got {wn.size}.",
        )
    if not (np.all(np.isfinite(wn)) and np.all(np.isfinite(tm))):
        return InputIssue(ErrorKind.NON_FINITE, "Spectrum contains NaN or infinite values.")

    wn_low, wn_high = WAVENUMBER_RANGE
    if float(np.min(wn)) < wn_low or float(np.max(wn)) > wn_high:
        return InputIssue(
            ErrorKind.RANGE_VIOLATION,
            f"Wavenumber values must lie within {wn_low:g}-{wn_high:g} cm-1.",
        )
    tm_low, tm_high = TRANSMITTANCE_RANGE
    if float(np.min(tm)) < tm_low or float(np.max(tm)) > tm_high:
        return InputIssue(
            ErrorKind.RANGE_VIOLATION,
            f"Transmittance values must lie within {tm_low:g}-{tm_high:g} %.",
        )

    if np.all(tm == 0.0):
        return InputIssue(ErrorKind.DEGENERATE_SIGNAL, "Transmittance is zero everywhere.")
    if np.all(tm == 100.0):
        return InputIssue(ErrorKind.DEGENERATE_SIGNAL, "Transmittance is 100 % everywhere.")
    if float(np.ptp(tm)) == 0.0:
        return InputIssue(ErrorKind.DEGENERATE_SIGNAL, "Transmittance is constant.")
    return None


def require_valid_spectrum(wavenumber, transmittance) -> None:
    issue = check_spectrum_arrays(wavenumber, transmittance)
    if issue is not None:
        raise InvalidInput(issue)
