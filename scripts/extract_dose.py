"""
extract_dose.py - Read a CT dose screen and write its dose report.

Usage
-----
    python scripts/extract_dose.py SCREEN [IMAGES [OUTPUT [DICTIONARY [NEW_GLYPHS]]]]

Any argument may be "-" to leave it out:

    SCREEN      dose screen file or folder of pages
    IMAGES      file or folder of reconstructed CT images of the same study
    OUTPUT      YAML file for the report
    DICTIONARY  glyph dictionary to start from (default from config.yaml)
    NEW_GLYPHS  enables training; the updated dictionary is written here

Examples
--------
    python scripts/extract_dose.py data/ge_dose_screen.dcm - report.yaml
    python scripts/extract_dose.py - data/study/ report.yaml
    python scripts/extract_dose.py screen.png - - - glyphs_new.xml

A DLP chart is saved to the reports folder whenever a report is built.
The exit status is non-zero only when a file cannot be read or written.
"""

import logging
import os
import sys

# Ensure repo root is on sys.path regardless of launch directory
_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _REPO_ROOT)

import matplotlib
matplotlib.use("Agg")

import yaml

from doseocr.config import CONFIG, resolve_path
from doseocr.errors import DoseOCRError
from doseocr.pipeline import NotADoseScreen, extract_dose
from doseocr.visualization import plot_dlp_by_acquisition

logging.basicConfig(
    level=getattr(logging, str(CONFIG["logging"]["level"]).upper(), logging.INFO),
    format="%(levelname)-8s %(message)s",
)
logger = logging.getLogger(__name__)

ARGUMENT_NAMES = ("screen", "images", "output", "dictionary", "new_glyphs")


def parse_arguments(argv: list[str]) -> dict[str, str]:
    """Positional arguments by name; "-" and missing ones are left out."""
    if len(argv) > len(ARGUMENT_NAMES):
        raise SystemExit(__doc__)
    return {name: value for name, value in zip(ARGUMENT_NAMES, argv) if value != "-"}


def main(argv: list[str]) -> int:
    args = parse_arguments(argv)
    if "screen" not in args and "images" not in args:
        print(__doc__)
        return 2

    try:
        outcome = extract_dose(
            screen=args.get("screen"),
            images=args.get("images"),
            dictionary_path=args.get("dictionary"),
            new_glyphs_path=args.get("new_glyphs"),
        )
    except (OSError, DoseOCRError) as exc:
        logger.error("%s", exc)
        return 1

    if isinstance(outcome, NotADoseScreen):
        logger.warning(outcome.summary())
        return 0

    report = outcome.report
    print("=" * 60)
    print("DOSE REPORT")
    print("=" * 60)
    print(report)
    print()

    if "output" in args:
        try:
            with open(args["output"], "w") as f:
                yaml.safe_dump(report.to_dict(), f, sort_keys=False)
        except OSError as exc:
            logger.error("Cannot write %s: %s", args["output"], exc)
            return 1
        print(f"  Saved: {args['output']}")

    if report.acquisitions:
        reports_folder = resolve_path(CONFIG["paths"]["reports_folder"])
        os.makedirs(reports_folder, exist_ok=True)
        path = os.path.join(reports_folder, "dlp_by_acquisition.png")
        fig = plot_dlp_by_acquisition(report)
        fig.savefig(path, dpi=100, bbox_inches="tight")
        print(f"  Saved: {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
