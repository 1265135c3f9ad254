import pytest

from ir_annotator.engine.rule_matcher import (
    annotate_peaks,
    find_secondary_peaks,
    intensity_check,
    match_all_peaks,
    match_peak_candidates,
    shape_match,
    wavenumber_match,
)
from ir_annotator.engine.rule_database import SecondaryPeakSpec
from ir_annotator.tests.spectrum_test_utils import carbonyl_rules, make_peak, subtype


def test_wavenumber_gate_widens_range_by_tolerance():
    assert wavenumber_match(1701.0, (1700, 1730))
    assert wavenumber_match(1698.6, (1700, 1730))
    assert not wavenumber_match(1698.4, (1700, 1730))
    assert wavenumber_match(1731.4, (1700, 1730))


def test_shape_bands():
    assert shape_match(30.0, "sharp") == (True, 0.05)
    assert shape_match(60.0, "sharp") == (True, 0.0)
    assert shape_match(5.0, "sharp") == (False, 0.0)
    assert shape_match(80.0, "sharp") == (False, 0.0)
    assert shape_match(250.0, "very broad") == (True, 0.0)
    assert shape_match(500.0, "very_broad") == (True, 0.05)
    assert shape_match(1.0, "unheard-of") == (True, 0.0)


def test_intensity_check_never_disqualifies():
    assert intensity_check(0.5, "strong", 1.0) == (True, 0.05)
    assert intensity_check(0.1, "strong", 1.0) == (True, 0.0)
    assert intensity_check(0.45, "Medium to strong", 1.0) == (True, 0.05)
    assert intensity_check(0.5, "medium", 0.0) == (True, 0.0)


def test_single_match_scores_base_plus_shape_bonus():
    rules = carbonyl_rules()
    peak = make_peak(1715.0, fwhm=30.0, intensity=0.5)

    candidates = match_peak_candidates(peak, [peak], rules)

    assert len(candidates) == 1
    cand = candidates[0]
    assert cand.confidence == pytest.approx(0.75)
    assert cand.scoring.shape_bonus == pytest.approx(0.05)
    assert cand.scoring.intensity_bonus == 0.0
    assert cand.rule_key == "C=O_stretch"
    assert cand.rule_subtype_id == "ketone"


def test_missing_required_secondary_halves_confidence():
    plain = carbonyl_rules(subtype("acid", (1700, 1730)))
    strict = carbonyl_rules(
        subtype("acid", (1700, 1730), secondary=[{"wavenumber": [2500, 3300], "required": True}])
    )
    peak = make_peak(1715.0)

    relaxed = match_peak_candidates(peak, [peak], plain)[0].confidence
    halved = match_peak_candidates(peak, [peak], strict)[0]

    assert halved.confidence == pytest.approx(relaxed / 2)
    assert halved.secondary_peaks_found == 0
    assert halved.scoring.secondary_bonus == 0.0


def test_secondary_peaks_add_bonus_within_gap():
    rules = carbonyl_rules(
        subtype(
            "ester",
            (1735, 1750),
            confidence=0.6,
            secondary=[{"wavenumber": [1150, 1300], "required": False}],
        )
    )
    primary = make_peak(1740.0, index=0)
    near = make_peak(1600.0, index=1)
    far = make_peak(1200.0, index=2)

    # 1200 lies in the secondary range but is 540 cm-1 away from the primary.
    alone = match_peak_candidates(primary, [primary, far], rules)[0]
    assert alone.secondary_peaks_found == 0
    assert alone.confidence == pytest.approx(0.65)

    wide = carbonyl_rules(
        subtype("ester", (1735, 1750), confidence=0.6, secondary=[{"wavenumber": [1550, 1650]}])
    )
    supported = match_peak_candidates(primary, [primary, near], wide)[0]
    assert supported.secondary_peaks_found == 1
    assert supported.confidence == pytest.approx(0.75)
    assert supported.scoring.secondary_match


def test_secondary_search_includes_primary_peak():
    primary = make_peak(1715.0)
    specs = [SecondaryPeakSpec(wavenumber=(1700.0, 1730.0), required=True)]
    matches = find_secondary_peaks(primary, specs, [primary])
    assert matches is not None
    assert matches[0][0] == 0


def test_confidence_is_clamped_to_one():
    rules = carbonyl_rules(
        subtype("ketone", (1700, 1730), confidence=0.98, intensity="strong", secondary=[{"wavenumber": [1700, 1730]}])
    )
    peak = make_peak(1715.0, intensity=0.9)
    cand = match_peak_candidates(peak, [peak], rules)[0]
    assert cand.confidence == 1.0


def test_explicit_zero_confidence_is_respected():
    rules = carbonyl_rules(subtype("artefact", (1700, 1730), confidence=0.0, shape="medium", intensity="weak"))
    peak = make_peak(1715.0, fwhm=45.0)
    assert match_peak_candidates(peak, [peak], rules)[0].confidence == 0.0


def test_missing_confidence_defaults():
    rules = carbonyl_rules(subtype("ketone", (1700, 1730), confidence=None, shape="medium", intensity="weak"))
    peak = make_peak(1715.0, fwhm=45.0)
    assert match_peak_candidates(peak, [peak], rules)[0].confidence == pytest.approx(0.7)


def test_candidates_are_capped_and_sorted():
    subtypes = [subtype(f"s{i}", (1700, 1730), confidence=0.3 + 0.05 * i) for i in range(8)]
    rules = carbonyl_rules(*subtypes)
    peak = make_peak(1715.0)
    candidates = match_peak_candidates(peak, [peak], rules)
    assert len(candidates) == 5
    confidences = [c.confidence for c in candidates]
    assert confidences == sorted(confidences, reverse=True)
    assert all(0.0 <= c <= 1.0 for c in confidences)


def test_equal_confidences_keep_catalog_order():
    rules = carbonyl_rules(subtype("first", (1700, 1730)), subtype("second", (1700, 1730)))
    peak = make_peak(1715.0)
    ids = [c.rule_subtype_id for c in match_peak_candidates(peak, [peak], rules)]
    assert ids == ["first", "second"]


def test_peaks_without_candidates_are_omitted():
    rules = carbonyl_rules()
    peaks = [make_peak(2950.0, index=0), make_peak(1715.0, index=1)]
    annotations = match_all_peaks(peaks, rules)
    assert len(annotations) == 1
    assert annotations[0].peak_index == 1
    assert annotations[0].primary_match is annotations[0].top_candidates[0]


def test_close_candidates_are_flagged_ambiguous():
    rules = carbonyl_rules(
        subtype("ketone", (1700, 1730), confidence=0.65),
        subtype("acid", (1700, 1730), confidence=0.63),
    )
    peak = make_peak(1715.0)
    result = annotate_peaks([peak], rules)

    ann = result.annotations[0]
    assert [c.confidence for c in ann.top_candidates] == pytest.approx([0.70, 0.68])
    assert ann.is_ambiguous
    assert len(result.ambiguities) == 1
    assert result.ambiguities[0].confidence_gap == pytest.approx(0.02)
    assert result.summary == {"totalPeaks": 1, "annotatedPeaks": 1, "ambiguousPeaks": 1}


def test_separated_candidates_are_not_ambiguous():
    rules = carbonyl_rules(
        subtype("ketone", (1700, 1730), confidence=0.65),
        subtype("acid", (1700, 1730), confidence=0.55),
    )
    result = annotate_peaks([make_peak(1715.0)], rules)
    assert not result.annotations[0].is_ambiguous
    assert result.ambiguities == ()


def test_empty_peak_list_gives_empty_result():
    result = annotate_peaks([], carbonyl_rules())
    assert result.annotations == ()
    assert result.summary["totalPeaks"] == 0
