import json
import logging

import pytest
import yaml

from ir_annotator.engine.rule_database import (
    DEFAULT_CONFIDENCE,
    RuleDatabase,
    RuleDatabaseError,
    load_default_rules,
    load_rule_database,
    normalize_class_name,
    validate_rule_payload,
)


def _payload(**subtype_fields):
    sub = {"id": "ketone", "source": "Ketone", "primaryPeak": {"wavenumber": [1705, 1725]}}
    sub.update(subtype_fields)
    return {"version": "t", "vibrationModes": {"C=O_stretch": {"name": "C=O stretch", "subTypes": [sub]}}}


def test_bundled_catalog_loads():
    rules = load_default_rules()
    assert len(rules) > 20
    carbonyl = rules.get_mode("C=O_stretch")
    assert carbonyl is not None
    assert any(sub.id == "ketone" for sub in carbonyl.subtypes)
    assert rules.get_mode("missing") is None
    for _, sub in rules.iter_subtypes():
        assert 0.0 <= sub.confidence <= 1.0
        low, high = sub.primary.wavenumber
        assert low <= high


def test_defaults_fill_missing_fields():
    rules = RuleDatabase.from_dict(
        {"vibrationModes": {"X": {"subTypes": [{"id": "bare"}]}}}
    )
    sub = rules.modes[0].subtypes[0]
    assert rules.modes[0].name == "X"
    assert sub.confidence == DEFAULT_CONFIDENCE
    assert sub.primary.wavenumber == (0.0, 10000.0)
    assert sub.primary.shape == "sharp"
    assert sub.primary.intensity == "medium"
    assert sub.secondary == ()


def test_explicit_zero_confidence_is_kept():
    rules = RuleDatabase.from_dict(_payload(confidence=0))
    assert rules.modes[0].subtypes[0].confidence == 0.0


def test_validation_reports_every_problem():
    payload = _payload(
        confidence=1.5,
        secondaryPeaks=[{"wavenumber": [1300, 1200]}, {"wavenumber": [1000, 1100], "required": "yes"}],
    )
    errors = validate_rule_payload(payload)
    assert any("confidence" in err for err in errors)
    assert any("exceeds max" in err for err in errors)
    assert any("required" in err for err in errors)
    with pytest.raises(RuleDatabaseError) as excinfo:
        RuleDatabase.from_dict(payload)
    assert len(excinfo.value.errors) == 3


def test_non_mapping_document_is_rejected():
    assert validate_rule_payload([1, 2]) == ["Rule database must be a mapping"]
    assert validate_rule_payload({"vibrationModes": []})


def test_class_names_are_normalised():
    assert normalize_class_name("Medium to Strong") == "medium-to-strong"
    assert normalize_class_name("very_broad") == "very-broad"
    rules = RuleDatabase.from_dict(
        _payload(primaryPeak={"wavenumber": [1705, 1725], "shape": "Very Broad", "intensity": "weak to medium"})
    )
    primary = rules.modes[0].subtypes[0].primary
    assert primary.shape == "very-broad"
    assert primary.intensity == "weak-to-medium"


def test_unknown_classes_warn(caplog):
    with caplog.at_level(logging.WARNING, logger="ir_annotator.engine.rule_database"):
        RuleDatabase.from_dict(_payload(primaryPeak={"wavenumber": [1705, 1725], "shape": "jagged"}))
    assert "Unknown shape class 'jagged'" in caplog.text


def test_load_json_and_yaml(tmp_path):
    payload = _payload(confidence=0.8)
    json_path = tmp_path / "rules.json"
    json_path.write_text(json.dumps(payload), encoding="utf-8")
    yaml_path = tmp_path / "rules.yaml"
    yaml_path.write_text(yaml.safe_dump(payload), encoding="utf-8")

    from_json = load_rule_database(json_path)
    from_yaml = load_rule_database(yaml_path)
    assert from_json.modes == from_yaml.modes
    assert from_json.version == "t"


def test_unsupported_extension_raises(tmp_path):
    path = tmp_path / "rules.txt"
    path.write_text("{}", encoding="utf-8")
    with pytest.raises(ValueError):
        load_rule_database(path)
