"""Detect and annotate peaks in FTIR transmittance spectra."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Sequence

from ir_annotator.engine import excel_writer
from ir_annotator.engine.pipeline import AnalysisResult, run_analysis, run_batch
from ir_annotator.engine.recipe_model import PROFILES, Recipe
from ir_annotator.engine.records import Spectrum
from ir_annotator.engine.rule_database import load_default_rules, load_rule_database
from ir_annotator.engine.validation import InvalidInput
from ir_annotator.io.spectrum_csv import parse_spectrum_file

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INVALID = 2


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="ir-annotator", description=__doc__)
    parser.add_argument("spectra", nargs="+", help="Two-column wavenumber/%%T text files.")
    parser.add_argument("--rules", help="Rule catalog (.json or .yaml); defaults to the bundled catalog.")
    parser.add_argument("--recipe", help="YAML recipe with peak and matching parameters.")
    parser.add_argument(
        "--profile",
        choices=tuple(PROFILES),
        help="Named parameter profile applied before the recipe file.",
    )
    parser.add_argument(
        "--ambiguity-threshold",
        dest="ambiguity_threshold",
        type=float,
        help="Confidence gap at or below which a peak is flagged ambiguous.",
    )
    parser.add_argument("--json", dest="json_out", help="Write the full analysis as JSON.")
    parser.add_argument("--csv", dest="csv_out", help="Write the annotation table as CSV.")
    parser.add_argument("--xlsx", dest="xlsx_out", help="Write peaks, annotations and audit to a workbook.")
    parser.add_argument("--workers", type=int, default=None, help="Worker processes for several spectra.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def build_recipe(args: argparse.Namespace) -> Recipe:
    recipe = Recipe.from_profile(args.profile) if args.profile else Recipe()
    if args.recipe:
        recipe = recipe.with_overrides(Recipe.from_yaml(args.recipe).params)
    if args.ambiguity_threshold is not None:
        recipe = recipe.with_overrides({"matching": {"ambiguity_threshold": args.ambiguity_threshold}})
    return recipe


def _summary_line(label: str, result: AnalysisResult) -> str:
    summary = result.annotation.summary
    return (
        f"{label}: {summary['totalPeaks']} peaks, "
        f"{summary['annotatedPeaks']} annotated, {summary['ambiguousPeaks']} ambiguous"
    )


def _print_annotations(result: AnalysisResult) -> None:
    for row in excel_writer.annotation_rows(result.annotation.annotations):
        flag = " *" if row["Ambiguous"] == "Yes" else ""
        sys.stdout.write(
            f"{row['Position (cm-1)']:>9.2f}  {row['Top Match']} / {row['Source']}  {row['Confidence']}{flag}\n"
        )


def _write_outputs(args: argparse.Namespace, spectrum: Spectrum, result: AnalysisResult) -> None:
    annotation = result.annotation
    if args.json_out:
        excel_writer.write_analysis_json(
            args.json_out,
            spectrum=spectrum,
            peaks=result.peaks,
            annotations=annotation.annotations,
            ambiguities=annotation.ambiguities,
            summary=annotation.summary,
        )
    if args.csv_out:
        excel_writer.write_annotations_csv(args.csv_out, annotation.annotations)
    if args.xlsx_out:
        excel_writer.write_analysis_workbook(
            args.xlsx_out,
            result.peaks,
            annotation.annotations,
            annotation.ambiguities,
            result.audit,
        )


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
    )

    try:
        recipe = build_recipe(args)
        rules = load_rule_database(args.rules) if args.rules else load_default_rules()
    except (OSError, ValueError) as exc:
        logger.error("Configuration error: %s", exc)
        return EXIT_INVALID
    errors = recipe.validate()
    if errors:
        for err in errors:
            logger.error("Recipe error: %s", err)
        return EXIT_INVALID

    spectra: List[Spectrum] = []
    for path in args.spectra:
        ingest = parse_spectrum_file(path)
        if not ingest.ok:
            logger.error("Could not load %s: [%s] %s", path, ingest.issue.kind.value, ingest.issue.message)
            return EXIT_INVALID
        spectra.append(ingest.spectrum)

    if len(spectra) > 1:
        if args.json_out or args.csv_out or args.xlsx_out:
            logger.error("Export options take a single spectrum")
            return EXIT_INVALID
        failed = 0
        for entry in run_batch(spectra, rules, recipe, max_workers=args.workers):
            if entry.ok:
                sys.stdout.write(_summary_line(Path(entry.label).name, entry.result) + "\n")
            else:
                failed += 1
                sys.stdout.write(f"{Path(entry.label).name}: failed ({entry.error})\n")
        return EXIT_INVALID if failed else EXIT_OK

    spectrum = spectra[0]
    try:
        result = run_analysis(spectrum, rules, recipe)
    except InvalidInput as exc:
        logger.error("Invalid spectrum [%s]: %s", exc.kind.value, exc)
        return EXIT_INVALID

    sys.stdout.write(_summary_line(Path(args.spectra[0]).name, result) + "\n")
    _print_annotations(result)
    try:
        _write_outputs(args, spectrum, result)
    except OSError as exc:
        logger.error("Export failed: %s", exc)
        return 1
    if args.verbose:
        logger.debug("Summary %s", json.dumps(result.annotation.summary))
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
