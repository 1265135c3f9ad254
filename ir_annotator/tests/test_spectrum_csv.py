import numpy as np
import pytest

from ir_annotator.engine.records import Spectrum
from ir_annotator.engine.validation import ErrorKind
from ir_annotator.io.spectrum_csv import (
    clean_spectrum,
    is_header_line,
    parse_spectrum_file,
    parse_spectrum_text,
    sniff_locale,
    spectrum_info,
)
from ir_annotator.tests.spectrum_test_utils import spectrum_csv_text, synthetic_spectrum


def _small_spectrum(points=20):
    return synthetic_spectrum([(1715.0, 0.8, 30.0)], start=1500.0, stop=1900.0, points=points)


def test_parses_headered_comma_file():
    result = parse_spectrum_text(spectrum_csv_text(_small_spectrum()))
    assert result.ok
    assert result.warnings == []
    assert result.spectrum.wavenumber.size == 20
    assert result.spectrum.wavenumber[0] == pytest.approx(1500.0)
    assert result.spectrum.meta["delimiter"] == ","


def test_header_detection():
    assert is_header_line("Wavenumber (cm-1),%T")
    assert is_header_line("x;y")
    assert not is_header_line("4000.0,95.1")


def test_semicolon_file_with_decimal_commas():
    lines = [f"{1000 + 10 * i},{i % 7}5;{50 + i},25" for i in range(15)]
    assert sniff_locale("\n".join(lines)) == {"decimal": ",", "delimiter": ";"}
    result = parse_spectrum_text("\n".join(lines))
    assert result.ok
    assert result.spectrum.wavenumber[0] == pytest.approx(1000.05)
    assert result.spectrum.transmittance[0] == pytest.approx(50.25)


def test_tab_separated_without_header():
    lines = [f"{1000.0 + i}\t{40.0 + (i % 3)}" for i in range(12)]
    result = parse_spectrum_text("\n".join(lines))
    assert result.ok
    assert result.spectrum.wavenumber.size == 12


def test_invalid_rows_are_skipped_with_warnings():
    text = spectrum_csv_text(_small_spectrum())
    text += "abc,def\n6000.0,50.0\n1800.0,150.0\n1801.0\n"
    result = parse_spectrum_text(text)
    assert result.ok
    assert len(result.warnings) == 4
    assert result.spectrum.meta["skipped_rows"] == 4


def test_strict_mode_reports_first_bad_row():
    text = spectrum_csv_text(_small_spectrum()) + "1800.0,150.0\n"
    result = parse_spectrum_text(text, skip_invalid_rows=False)
    assert not result.ok
    assert result.issue.kind is ErrorKind.RANGE_VIOLATION

    result = parse_spectrum_text("wavenumber,T\n1000,abc\n1001,50\n", skip_invalid_rows=False)
    assert result.issue.kind is ErrorKind.PARSE_FAILURE


def test_too_little_data():
    assert parse_spectrum_text("").issue.kind is ErrorKind.INSUFFICIENT_DATA
    assert parse_spectrum_text("wavenumber,T\n").issue.kind is ErrorKind.INSUFFICIENT_DATA
    result = parse_spectrum_text("wavenumber,T\n1000,50\n1001,40\n1002,50\n")
    assert result.issue.kind is ErrorKind.INSUFFICIENT_DATA


def test_no_valid_rows_is_a_parse_failure():
    result = parse_spectrum_text("wavenumber,T\nfoo,bar\nbaz,qux\n", has_header=True)
    assert result.issue.kind is ErrorKind.PARSE_FAILURE


def test_degenerate_signal_is_reported():
    lines = ["wavenumber,T"] + [f"{1000 + i},100" for i in range(12)]
    result = parse_spectrum_text("\n".join(lines))
    assert result.issue.kind is ErrorKind.DEGENERATE_SIGNAL


def test_file_parsing_and_missing_file(tmp_path):
    path = tmp_path / "sample.csv"
    path.write_text(spectrum_csv_text(_small_spectrum()), encoding="utf-8")
    result = parse_spectrum_file(path)
    assert result.ok
    assert result.spectrum.meta["source_file"] == str(path)

    missing = parse_spectrum_file(tmp_path / "nope.csv")
    assert missing.issue.kind is ErrorKind.PARSE_FAILURE


def test_clean_spectrum_sorts_and_dedupes():
    spectrum = Spectrum(
        wavenumber=np.array([1300.0, 1100.0, 1200.0, 1200.001]),
        transmittance=np.array([30.0, 10.0, 20.0, 99.0]),
        meta={"source_file": "x.csv"},
    )
    cleaned = clean_spectrum(spectrum)
    assert cleaned.wavenumber.tolist() == [1100.0, 1200.0, 1300.0]
    assert cleaned.transmittance.tolist() == [10.0, 20.0, 30.0]
    assert cleaned.meta == {"source_file": "x.csv"}
    assert spectrum.wavenumber[0] == 1300.0


def test_spectrum_info():
    info = spectrum_info(_small_spectrum())
    assert info["data_points"] == 20
    assert info["wavenumber_range"] == pytest.approx((1500.0, 1900.0))


def test_whitespace_separated_file_without_header():
    spectrum = synthetic_spectrum([(1715.0, 0.8, 30.0)], points=200)
    result = parse_spectrum_text(spectrum_csv_text(spectrum, header=None, sep=" "))
    assert result.ok
    assert result.warnings == []
    assert result.spectrum.wavenumber.size == 200
    assert result.spectrum.meta["delimiter"] == "whitespace"
    assert result.spectrum.transmittance[0] == pytest.approx(spectrum.transmittance[0], abs=1e-4)


def test_runs_of_spaces_with_header():
    spectrum = synthetic_spectrum([(1715.0, 0.8, 30.0)], points=200)
    result = parse_spectrum_text(spectrum_csv_text(spectrum, header="cm-1   %T", sep="   "))
    assert result.ok
    assert result.spectrum.wavenumber.size == 200
    assert result.spectrum.wavenumber[-1] == pytest.approx(4000.0)


def test_extra_columns_keep_the_first_two_values():
    text = spectrum_csv_text(_small_spectrum()) + "1899.5,42.0,note\n"
    result = parse_spectrum_text(text)
    assert result.ok
    assert result.warnings == []
    assert result.spectrum.wavenumber.size == 21
    assert result.spectrum.transmittance[-1] == pytest.approx(42.0)
