from __future__ import annotations

import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from ir_annotator.engine.peak_detection import DISTANCE_POLICIES, resolve_peak_config
from ir_annotator.engine.preprocessing import BASELINE_METHODS, SMOOTHING_METHODS
from ir_annotator.engine.rule_matcher import (
    SECONDARY_MAX_GAP_CM,
    SECONDARY_TOLERANCE,
    WAVENUMBER_TOLERANCE,
)

DEFAULT_MATCHING_CONFIG: Dict[str, object] = {
    "wavenumber_tolerance": WAVENUMBER_TOLERANCE,
    "secondary_tolerance": SECONDARY_TOLERANCE,
    "secondary_max_gap": SECONDARY_MAX_GAP_CM,
    "ambiguity_threshold": 0.05,
}

_MATCHING_ALIASES = {
    "wavenumberTolerance": "wavenumber_tolerance",
    "secondaryTolerance": "secondary_tolerance",
    "secondaryMaxGap": "secondary_max_gap",
    "max_gap": "secondary_max_gap",
    "ambiguityThreshold": "ambiguity_threshold",
}

_PERCENT_KEYS = {
    "wavenumberTolerancePercent": "wavenumber_tolerance",
    "wavenumber_tolerance_percent": "wavenumber_tolerance",
    "ambiguityThresholdPercent": "ambiguity_threshold",
    "ambiguity_threshold_percent": "ambiguity_threshold",
}

PROFILES: Dict[str, Dict[str, Dict[str, Any]]] = {
    "standard": {
        "peaks": {"smooth_window_length": 11, "min_height": 0.005},
        "matching": {"ambiguity_threshold": 0.05},
    },
    "interactive": {
        "peaks": {"smooth_window_length": 7, "min_height": 0.01},
        "matching": {"ambiguity_threshold": 0.10},
    },
}


def resolve_matching_config(matching_cfg: Optional[Mapping[str, object]] = None) -> Dict[str, object]:
    resolved = dict(DEFAULT_MATCHING_CONFIG)
    if matching_cfg:
        for key, value in matching_cfg.items():
            if value is None:
                continue
            if key in _PERCENT_KEYS:
                resolved[_PERCENT_KEYS[key]] = float(value) / 100.0
                continue
            resolved[_MATCHING_ALIASES.get(key, key)] = value
    return resolved


def _deep_merge(base: Dict[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


@dataclass
class Recipe:
    module: str = "ftir"
    params: Dict[str, Any] = field(default_factory=dict)
    version: str = "0.1.0"

    def peak_config(self) -> Dict[str, object]:
        return resolve_peak_config(self.params.get("peaks") or {})

    def matching_config(self) -> Dict[str, object]:
        return resolve_matching_config(self.params.get("matching") or {})

    def with_overrides(self, params: Mapping[str, Any]) -> "Recipe":
        return Recipe(module=self.module, params=_deep_merge(self.params, params), version=self.version)

    def validate(self) -> list[str]:
        errs = []
        peaks = self.peak_config()
        try:
            window = int(peaks["smooth_window_length"])
            poly = int(peaks["smooth_polyorder"])
        except (TypeError, ValueError):
            errs.append("Smoothing window and polynomial order must be integers")
        else:
            if window % 2 == 0:
                errs.append("Smoothing window must be odd")
            if window < 3 or window > 21:
                errs.append("Smoothing window must be between 3 and 21 points")
            if window <= poly:
                errs.append("Smoothing window must exceed polynomial order")
            if poly < 0:
                errs.append("Polynomial order must not be negative")
        if str(peaks["smoothing_method"]).lower() not in SMOOTHING_METHODS:
            errs.append(f"Unknown smoothing method '{peaks['smoothing_method']}'")
        if str(peaks["baseline_method"]).lower() not in BASELINE_METHODS:
            errs.append(f"Unknown baseline method '{peaks['baseline_method']}'")
        if str(peaks["distance_policy"]) not in DISTANCE_POLICIES:
            errs.append(f"Unknown distance policy '{peaks['distance_policy']}'")

        for key, label, low, high in (
            ("min_height", "Minimum peak height", 0.0, None),
            ("prominence_percent", "Prominence percent", 0.0, 100.0),
            ("distance_percent", "Distance percent", 0.0, 100.0),
        ):
            errs.extend(_range_check(peaks.get(key), label, low, high))

        matching = self.matching_config()
        for key, label, low, high in (
            ("wavenumber_tolerance", "Wavenumber tolerance", 0.0, 1.0),
            ("secondary_tolerance", "Secondary tolerance", 0.0, 1.0),
            ("ambiguity_threshold", "Ambiguity threshold", 0.0, 1.0),
        ):
            errs.extend(_range_check(matching.get(key), label, low, high))
        try:
            if float(matching["secondary_max_gap"]) <= 0:
                errs.append("Secondary max gap must be positive")
        except (TypeError, ValueError):
            errs.append("Secondary max gap must be numeric")
        return errs

    def to_dict(self) -> Dict[str, Any]:
        return {"module": self.module, "version": self.version, "params": copy.deepcopy(self.params)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Recipe":
        params = data.get("params")
        if params is None:
            params = {k: v for k, v in data.items() if k not in {"module", "version", "profile"}}
        recipe = cls.from_profile(str(data["profile"])) if data.get("profile") else cls()
        recipe = recipe.with_overrides(dict(params or {}))
        recipe.module = str(data.get("module") or recipe.module)
        recipe.version = str(data.get("version") or recipe.version)
        return recipe

    @classmethod
    def from_profile(cls, name: str) -> "Recipe":
        try:
            params = PROFILES[name]
        except KeyError:
            raise ValueError(f"Unknown profile '{name}' (expected one of {', '.join(PROFILES)})") from None
        return cls(params=copy.deepcopy(params))

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Recipe":
        with Path(path).open("r", encoding="utf-8") as handle:
            content = yaml.safe_load(handle) or {}
        if not isinstance(content, Mapping):
            raise ValueError(f"Recipe file {path} must contain a mapping")
        return cls.from_dict(content)

    def to_yaml(self, path: str | Path) -> Path:
        out = Path(path)
        out.parent.mkdir(parents=True, exist_ok=True)
        with out.open("w", encoding="utf-8") as handle:
            yaml.safe_dump(self.to_dict(), handle, sort_keys=False)
        return out


def _range_check(value: Any, label: str, low: float | None, high: float | None) -> list[str]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return [f"{label} must be numeric"]
    if low is not None and number < low:
        return [f"{label} must be at least {low:g}"]
    if high is not None and number > high:
        return [f"{label} must be at most {high:g}"]
    return []
