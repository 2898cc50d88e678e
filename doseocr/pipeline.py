"""
pipeline.py - Dose screen recognition, from files to a DoseReport.

Steps for one screen (one or more pages):

    read -> binarize -> segment + recognize -> assemble text
         -> pick dialect -> parse -> reconcile

A screen may span several instances of one series; pages are read in
InstanceNumber order and their text concatenated before parsing, because
a dialect's tables often continue from one page to the next.

Problems with a single page (undecodable file, a component too big to be
text) skip that page with a warning and the rest of the series is still
read. A dataset that is not a dose screen at all gives a NotADoseScreen
result instead of an exception.
"""

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

import numpy as np
import pydicom
from PIL import Image, UnidentifiedImageError
from pydicom.dataset import Dataset
from pydicom.errors import InvalidDicomError

from doseocr.acquired_images import AcquiredImages
from doseocr.assembler import MultiPageText, page_text
from doseocr.binarize import binarize_array, binarize_dataset
from doseocr.config import CONFIG, resolve_path
from doseocr.dialects import detect_dialect
from doseocr.dialects.detection import is_dose_screen_instance
from doseocr.dictionary import GlyphDictionary, Recognizer, TrainingRecognizer
from doseocr.errors import ConnectivityOverflow, ImageDecodeError
from doseocr.exposure_dose import has_exposure_dose_sequence, report_from_exposure_dose_sequence
from doseocr.glyphs import Glyph
from doseocr.model import DoseReport
from doseocr.reconcile import build_report
from doseocr.segmenter import GlyphLookup, PageSegmentation, segment_page, tolerance_for

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class NotADoseScreen:
    """Outcome for input that no dialect claims."""
    path: Optional[str]
    reason: str = "no dialect matches the header"

    def summary(self) -> str:
        return f"Not a dose screen: {self.path} ({self.reason})"


@dataclass
class RecognitionResult:
    """Everything produced while reading one dose screen series."""
    dialect: str
    pages: list[str] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)
    text: MultiPageText = field(default_factory=MultiPageText)
    unrecognized_glyphs: int = 0
    dataset: Optional[Dataset] = None
    report: Optional[DoseReport] = None
    elapsed_s: float = 0.0

    def summary(self) -> str:
        lines = [
            "=" * 50,
            "DOSE SCREEN SUMMARY",
            "=" * 50,
            f"Dialect             : {self.dialect}",
            f"Pages read          : {len(self.pages)}",
            f"Pages skipped       : {len(self.skipped)}",
            f"Unrecognized glyphs : {self.unrecognized_glyphs}",
            f"Total time          : {self.elapsed_s:.2f}s",
        ]
        if self.report is not None:
            lines.append(f"Acquisitions        : {len(self.report.acquisitions)}")
            lines.append(f"Total DLP           : {self.report.dlp_total_to_use} mGy.cm")
        if self.skipped:
            lines.append("\nSkipped pages:")
            for path, reason in self.skipped.items():
                lines.append(f"  - {path}: {reason}")
        return "\n".join(lines)


Outcome = Union[RecognitionResult, NotADoseScreen]


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------

def read_header(path: str) -> Optional[Dataset]:
    """The DICOM header of *path*, or None if it is not a DICOM file."""
    try:
        return pydicom.dcmread(path, stop_before_pixels=True)
    except (InvalidDicomError, OSError):
        return None


def load_raster(path: str) -> tuple[Optional[Dataset], np.ndarray]:
    """
    Read *path* as DICOM, else as a plain image, and binarize it.

    Returns
    -------
    (Dataset or None, np.ndarray)
        The header (None for a plain image) and the bitmap.

    Raises
    ------
    ImageDecodeError
        If neither pydicom nor Pillow can decode the pixels.
    """
    try:
        ds = pydicom.dcmread(path)
    except InvalidDicomError:
        ds = None
    except OSError as exc:
        raise ImageDecodeError(f"Cannot read {path}: {exc}") from exc

    if ds is not None:
        try:
            return ds, binarize_dataset(ds)
        except Exception as exc:
            raise ImageDecodeError(f"Cannot decode pixel data of {path}: {exc}") from exc

    try:
        with Image.open(path) as img:
            pixels = np.asarray(img.convert("L"))
    except (UnidentifiedImageError, OSError) as exc:
        raise ImageDecodeError(f"{path} is neither DICOM nor a readable image: {exc}") from exc
    return None, binarize_array(pixels, bits_stored=8)


def list_files(path: str) -> list[str]:
    if os.path.isdir(path):
        found = []
        for root, dirs, files in os.walk(path):
            dirs.sort()
            found.extend(os.path.join(root, f) for f in sorted(files) if not f.startswith("."))
        return found
    return [path]


def order_dose_screen_pages(paths: list[str]) -> list[str]:
    """
    Dose screen pages among *paths*, in InstanceNumber order, first series only.

    A single explicit path is returned as is, so that a plain raster with
    no header can be read as one page.
    """
    if len(paths) == 1:
        return list(paths)

    candidates = []
    for path in paths:
        ds = read_header(path)
        if ds is None or not is_dose_screen_instance(ds):
            continue
        instance_number = ds.get("InstanceNumber")
        try:
            number = int(instance_number) if instance_number not in (None, "") else -1
        except (TypeError, ValueError):
            number = -1
        candidates.append((number, str(ds.get("SeriesInstanceUID", "")), path))

    if not candidates:
        return []

    first_series = candidates[0][1]
    pages = []
    seen_numbers = set()
    for number, series_uid, path in sorted(candidates, key=lambda c: c[0]):
        if series_uid != first_series:
            logger.warning("Ignoring %s from another dose screen series %s", path, series_uid)
            continue
        if number in seen_numbers:
            logger.warning("Duplicate instance number %d for %s", number, path)
        seen_numbers.add(number)
        pages.append(path)
    return pages


# ---------------------------------------------------------------------------
# Recognition
# ---------------------------------------------------------------------------

def recognize_page(bitmap: np.ndarray, dialect: str, lookup: GlyphLookup) -> PageSegmentation:
    """Segment one bitmap with the dialect's gap tolerances."""
    return segment_page(
        bitmap,
        lookup,
        tolerance_for(dialect),
        CONFIG["segmentation"]["max_component_pixels"],
    )


def recognize_series(paths: list[str], lookup: GlyphLookup) -> Outcome:
    """
    Read every page in *paths* into one multi-page text.

    The dialect comes from the first page that decodes; a page with no
    header is read as a GE screen.
    """
    start = time.time()
    result: Optional[RecognitionResult] = None
    skipped: dict[str, str] = {}

    for path in paths:
        try:
            ds, bitmap = load_raster(path)
        except ImageDecodeError as exc:
            logger.warning("Skipping %s: %s", path, exc)
            skipped[path] = str(exc)
            continue

        if result is None:
            dialect = detect_dialect(ds)
            if dialect is None:
                return NotADoseScreen(path)
            result = RecognitionResult(dialect=dialect, dataset=ds)
            logger.info("Reading %s dose screen", dialect)

        try:
            segmentation = recognize_page(bitmap, result.dialect, lookup)
        except ConnectivityOverflow as exc:
            logger.warning("Skipping %s: %s", path, exc)
            skipped[path] = str(exc)
            continue

        result.pages.append(path)
        result.unrecognized_glyphs += len(segmentation.unrecognized)
        result.text.append_page(page_text(segmentation.placements))

    if result is None:
        return NotADoseScreen(paths[0] if paths else None, "no readable page")
    result.skipped = skipped
    result.elapsed_s = time.time() - start
    return result


def extract_dose(
    screen: Optional[str] = None,
    images: Optional[str] = None,
    dictionary_path: Optional[str] = None,
    new_glyphs_path: Optional[str] = None,
    prompt: Optional[Callable[[Glyph], str]] = None,
    confirm: Optional[Callable[[Glyph, str], bool]] = None,
) -> Outcome:
    """
    Recognize a dose screen and build its DoseReport.

    Parameters
    ----------
    screen : str, optional
        Dose screen file or folder of pages. When omitted, the first dose
        screen found among *images* is used.
    images : str, optional
        File or folder of reconstructed CT images of the same study.
    dictionary_path : str, optional
        Glyph dictionary to bootstrap from (default from config).
    new_glyphs_path : str, optional
        Enables training: unknown glyphs are asked for on the console and
        the updated dictionary is written here.
    prompt, confirm : callable, optional
        Replacements for the console prompts in training mode.

    Returns
    -------
    RecognitionResult or NotADoseScreen
    """
    acquired_images = AcquiredImages.from_path(images) if images else None

    if screen is not None:
        pages = order_dose_screen_pages(list_files(screen))
    elif acquired_images is not None:
        pages = acquired_images.dose_screen_files[:1]
    else:
        pages = []
    if not pages:
        return NotADoseScreen(screen, "no dose screen found")

    dictionary = GlyphDictionary.load(dictionary_path or resolve_path(CONFIG["paths"]["dictionary"]))
    recognizer = Recognizer(dictionary)
    lookup: GlyphLookup = TrainingRecognizer(recognizer, prompt) if new_glyphs_path else recognizer

    outcome = recognize_series(pages, lookup)

    if isinstance(lookup, TrainingRecognizer):
        dictionary.merge(lookup.confirmed_delta(confirm))
        dictionary.save(new_glyphs_path)

    if isinstance(outcome, NotADoseScreen):
        # structured dose without a rendered screen we know how to read
        ds = read_header(pages[0])
        if not has_exposure_dose_sequence(ds):
            return outcome
        result = RecognitionResult(dialect="structured", dataset=ds)
        result.report = report_from_exposure_dose_sequence(ds)
        return result

    outcome.report = build_report(
        outcome.dataset,
        outcome.text.text,
        outcome.dialect,
        acquired_images=acquired_images,
    )
    logger.info(outcome.summary())
    return outcome
