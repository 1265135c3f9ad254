"""Typed vibrational-mode catalog.

The catalog document is validated once when it is loaded; matching code only
ever iterates the resulting frozen records.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Sequence, Tuple

import yaml

logger = logging.getLogger(__name__)

DEFAULT_RULES_PATH = Path(__file__).resolve().parents[1] / "data" / "ftir_rules.json"

DEFAULT_CONFIDENCE = 0.7
DEFAULT_RANGE = (0.0, 10000.0)
DEFAULT_SHAPE = "sharp"
DEFAULT_INTENSITY = "medium"

KNOWN_SHAPES = {"sharp", "medium", "broad", "very-broad", "medium-broad"}
KNOWN_INTENSITIES = {"strong", "medium-to-strong", "medium", "weak-to-medium", "weak", "variable"}


class RuleDatabaseError(ValueError):
    def __init__(self, errors: Sequence[str]):
        self.errors = list(errors)
        super().__init__("Invalid rule database: " + "; ".join(self.errors))


def normalize_class_name(value: object) -> str:
    text = str(value or "").strip().lower()
    return "-".join(text.replace("_", " ").split())


@dataclass(frozen=True)
class PrimaryPeakSpec:
    wavenumber: Tuple[float, float] = DEFAULT_RANGE
    shape: str = DEFAULT_SHAPE
    intensity: str = DEFAULT_INTENSITY


@dataclass(frozen=True)
class SecondaryPeakSpec:
    wavenumber: Tuple[float, float] = DEFAULT_RANGE
    required: bool = False
    label: str = ""


@dataclass(frozen=True)
class RuleSubtype:
    id: str
    source: str
    confidence: float
    primary: PrimaryPeakSpec
    secondary: Tuple[SecondaryPeakSpec, ...] = ()
    notes: str = ""


@dataclass(frozen=True)
class VibrationMode:
    key: str
    name: str
    subtypes: Tuple[RuleSubtype, ...]


@dataclass(frozen=True)
class RuleDatabase:
    modes: Tuple[VibrationMode, ...]
    version: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return sum(len(mode.subtypes) for mode in self.modes)

    def iter_subtypes(self) -> Iterator[Tuple[VibrationMode, RuleSubtype]]:
        for mode in self.modes:
            for subtype in mode.subtypes:
                yield mode, subtype

    def get_mode(self, key: str) -> VibrationMode | None:
        for mode in self.modes:
            if mode.key == key:
                return mode
        return None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RuleDatabase":
        errors = validate_rule_payload(payload)
        if errors:
            raise RuleDatabaseError(errors)
        modes = tuple(
            _build_mode(str(key), mode_payload)
            for key, mode_payload in _modes_payload(payload).items()
        )
        metadata = {
            key: value
            for key, value in payload.items()
            if key not in {"vibrationModes", "vibration_modes", "version"}
        }
        database = cls(modes=modes, version=str(payload.get("version") or ""), metadata=metadata)
        logger.info(
            "Loaded rule database version=%s modes=%d subtypes=%d",
            database.version or "unknown",
            len(database.modes),
            len(database),
        )
        return database


def _modes_payload(payload: Mapping[str, Any]) -> Mapping[str, Any]:
    modes = payload.get("vibrationModes")
    if modes is None:
        modes = payload.get("vibration_modes")
    return modes if modes is not None else {}


def _range_errors(value: Any, where: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence) or len(value) != 2:
        return [f"{where}: wavenumber must be a [min, max] pair"]
    try:
        low, high = float(value[0]), float(value[1])
    except (TypeError, ValueError):
        return [f"{where}: wavenumber bounds must be numeric"]
    if low > high:
        return [f"{where}: wavenumber min {low:g} exceeds max {high:g}"]
    return []


def validate_rule_payload(payload: Any) -> List[str]:
    """Return every structural problem in a catalog document."""

    if not isinstance(payload, Mapping):
        return ["Rule database must be a mapping"]
    modes = _modes_payload(payload)
    if not isinstance(modes, Mapping):
        return ["'vibrationModes' must be a mapping of mode key to mode record"]

    errors: List[str] = []
    for key, mode in modes.items():
        if not isinstance(mode, Mapping):
            errors.append(f"Mode '{key}' must be a mapping")
            continue
        subtypes = mode.get("subTypes", mode.get("subtypes", []))
        if not isinstance(subtypes, Sequence) or isinstance(subtypes, (str, bytes)):
            errors.append(f"Mode '{key}': subTypes must be a list")
            continue
        for pos, subtype in enumerate(subtypes):
            where = f"{key}[{pos}]"
            if not isinstance(subtype, Mapping):
                errors.append(f"{where}: subtype must be a mapping")
                continue
            confidence = subtype.get("confidence")
            if confidence is not None:
                try:
                    value = float(confidence)
                except (TypeError, ValueError):
                    errors.append(f"{where}: confidence must be numeric")
                else:
                    if not 0.0 <= value <= 1.0:
                        errors.append(f"{where}: confidence {value:g} outside [0, 1]")
            primary = subtype.get("primaryPeak", {}) or {}
            if not isinstance(primary, Mapping):
                errors.append(f"{where}: primaryPeak must be a mapping")
            else:
                errors.extend(_range_errors(primary.get("wavenumber"), f"{where}.primaryPeak"))
            secondaries = subtype.get("secondaryPeaks", []) or []
            if not isinstance(secondaries, Sequence) or isinstance(secondaries, (str, bytes)):
                errors.append(f"{where}: secondaryPeaks must be a list")
                continue
            for sec_pos, spec in enumerate(secondaries):
                sec_where = f"{where}.secondaryPeaks[{sec_pos}]"
                if not isinstance(spec, Mapping):
                    errors.append(f"{sec_where}: must be a mapping")
                    continue
                errors.extend(_range_errors(spec.get("wavenumber"), sec_where))
                required = spec.get("required", False)
                if not isinstance(required, bool):
                    errors.append(f"{sec_where}: required must be true or false")
    return errors


def _as_range(value: Any) -> Tuple[float, float]:
    if value is None:
        return DEFAULT_RANGE
    return float(value[0]), float(value[1])


def _build_subtype(mode_key: str, payload: Mapping[str, Any]) -> RuleSubtype:
    primary_payload = payload.get("primaryPeak") or {}
    shape = normalize_class_name(primary_payload.get("shape") or DEFAULT_SHAPE)
    intensity = normalize_class_name(primary_payload.get("intensity") or DEFAULT_INTENSITY)
    subtype_id = str(payload.get("id") or "?")
    if shape not in KNOWN_SHAPES:
        logger.warning("Unknown shape class '%s' in %s/%s; it will not be scored", shape, mode_key, subtype_id)
    if intensity not in KNOWN_INTENSITIES:
        logger.warning(
            "Unknown intensity class '%s' in %s/%s; it will not be scored", intensity, mode_key, subtype_id
        )
    confidence = payload.get("confidence")
    return RuleSubtype(
        id=subtype_id,
        source=str(payload.get("source") or "unknown"),
        confidence=float(confidence) if confidence is not None else DEFAULT_CONFIDENCE,
        primary=PrimaryPeakSpec(
            wavenumber=_as_range(primary_payload.get("wavenumber")),
            shape=shape,
            intensity=intensity,
        ),
        secondary=tuple(
            SecondaryPeakSpec(
                wavenumber=_as_range(spec.get("wavenumber")),
                required=bool(spec.get("required", False)),
                label=str(spec.get("label") or spec.get("name") or ""),
            )
            for spec in payload.get("secondaryPeaks") or []
        ),
        notes=str(payload.get("notes") or ""),
    )


def _build_mode(key: str, payload: Mapping[str, Any]) -> VibrationMode:
    subtypes = payload.get("subTypes", payload.get("subtypes", [])) or []
    return VibrationMode(
        key=key,
        name=str(payload.get("name") or key),
        subtypes=tuple(_build_subtype(key, item) for item in subtypes),
    )


def load_rule_database(path: str | Path) -> RuleDatabase:
    rules_path = Path(path).expanduser()
    suffix = rules_path.suffix.lower()
    with rules_path.open("r", encoding="utf-8") as handle:
        if suffix in {".yaml", ".yml"}:
            payload = yaml.safe_load(handle) or {}
        elif suffix == ".json":
            payload = json.load(handle)
        else:
            raise ValueError(f"Unsupported rule database format: {rules_path.suffix or rules_path.name}")
    return RuleDatabase.from_dict(payload)


def load_default_rules() -> RuleDatabase:
    return load_rule_database(DEFAULT_RULES_PATH)


def rules_from_modes(modes: Dict[str, Mapping[str, Any]], **extra: Any) -> RuleDatabase:
    """Build a catalog from a bare ``{key: mode}`` mapping."""

    payload: Dict[str, Any] = dict(extra)
    payload["vibrationModes"] = modes
    return RuleDatabase.from_dict(payload)
