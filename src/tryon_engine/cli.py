#!/usr/bin/env python3
# CLI entry point for the try-on quality validator
# Scores a generated try-on image against its garment reference offline

import argparse
import json
import sys
from pathlib import Path

from tryon_engine.errors import ValidationError
from tryon_engine.imaging import DEFAULT_SAMPLE_PIXELS, sample_pixels
from tryon_engine.state import QualityReport, Recommendation
from tryon_engine.validators import QualityValidator, ValidationConfig


def score_files(
    garment_path: Path,
    result_path: Path,
    sample_size: int = DEFAULT_SAMPLE_PIXELS,
) -> QualityReport:
    """Score two local image files.

    Args:
        garment_path: Garment reference image
        result_path: Generated try-on image
        sample_size: Number of leading pixels to sample from each image

    Returns:
        The quality report
    """
    validator = QualityValidator(ValidationConfig(sample_pixels=sample_size))
    garment = sample_pixels(garment_path.read_bytes(), sample_size)
    result = sample_pixels(result_path.read_bytes(), sample_size)
    return validator.assess(garment, result)


def _print_report(report: QualityReport) -> None:
    color = report.color_metric
    print(f"Score:          {report.overall_score}/100 ({report.grade})")
    print(f"Recommendation: {report.recommendation.value}")
    print(f"Colour:         dE={color.delta_e:.1f} accuracy={color.accuracy}")
    print(f"Structure:      similarity={report.structure_metric.similarity:.2f}")
    if report.issues:
        print("Issues:")
        for issue in report.issues:
            print(f"  [{issue.severity.value}] {issue.kind.value}: {issue.description}")
    print(report.user_message)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="Score a try-on result image against its garment image"
    )
    parser.add_argument("garment", help="Path to the garment reference image")
    parser.add_argument("result", help="Path to the generated try-on image")
    parser.add_argument(
        "--sample-pixels",
        type=int,
        default=DEFAULT_SAMPLE_PIXELS,
        help=f"Leading pixels sampled per image (default: {DEFAULT_SAMPLE_PIXELS})",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the report as JSON",
    )

    args = parser.parse_args(argv)

    garment_path = Path(args.garment)
    result_path = Path(args.result)
    for path in (garment_path, result_path):
        if not path.is_file():
            print(f"Error: File does not exist: {path}", file=sys.stderr)
            sys.exit(2)

    if args.sample_pixels < 1:
        print("Error: --sample-pixels must be at least 1", file=sys.stderr)
        sys.exit(2)

    try:
        report = score_files(garment_path, result_path, args.sample_pixels)
    except ValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        _print_report(report)

    acceptable = report.recommendation in (Recommendation.ACCEPT, Recommendation.REVIEW)
    sys.exit(0 if acceptable else 1)


if __name__ == "__main__":
    main()
