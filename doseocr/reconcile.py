"""
reconcile.py - Turn recognized dose screen text into a DoseReport.

The dialect parser supplies acquisitions and totals. The reconciler
wraps them in a report carrying the study context from the header, then
enriches them from two other sources when they are available:

- acquisition parameters from the reconstructed images, matched by the
  dialect's lookup key, and
- a structured ExposureDoseSequence in the same dataset, merged
  acquisition by acquisition.

A reported total that does not agree with the sum over acquisitions is
logged but not corrected; both values stay available on the report.
"""

import logging
from typing import Optional

from pydicom.dataset import Dataset

from doseocr.acquired_images import AcquiredImages
from doseocr.dialects import get_parser
from doseocr.exposure_dose import (
    header_string,
    has_exposure_dose_sequence,
    report_from_exposure_dose_sequence,
    start_date_time_from,
)
from doseocr.model import DoseReport, SourceOfDoseInformation

logger = logging.getLogger(__name__)


def new_report(
    ds: Optional[Dataset],
    start_date_time: Optional[str] = None,
    end_date_time: Optional[str] = None,
) -> DoseReport:
    """An empty OCR-sourced report with study context taken from *ds*."""
    if ds is None:
        return DoseReport(
            start_date_time=start_date_time,
            end_date_time=end_date_time,
            source=SourceOfDoseInformation.DERIVED_FROM_HUMAN_READABLE_REPORTS,
        )
    if not start_date_time or not start_date_time.strip():
        start_date_time = start_date_time_from(ds)
    return DoseReport(
        scope_uid=header_string(ds, "StudyInstanceUID"),
        start_date_time=start_date_time,
        end_date_time=end_date_time,
        description=header_string(ds, "StudyDescription"),
        source=SourceOfDoseInformation.DERIVED_FROM_HUMAN_READABLE_REPORTS,
    )


def attach_acquisition_parameters(report: DoseReport, dialect: str, acquired_images: AcquiredImages) -> int:
    """
    Attach parameters from reconstructed images to each matching acquisition.

    Returns
    -------
    int
        Number of acquisitions that found a match.
    """
    parser = get_parser(dialect)
    if parser is None:
        return 0
    matched = 0
    for acquisition in report.acquisitions:
        key = parser.reconciliation_key(acquisition)
        parameters = acquired_images.lookup(dialect, key)
        if parameters is None:
            logger.debug("No reconstructed images for key %s", key)
            continue
        parameters = parameters.copy()
        parameters.derive_scanning_length_if_greater(acquisition.dlp, acquisition.ctdivol)
        if acquisition.scan_type is not None:
            parameters.scan_type = acquisition.scan_type
        acquisition.acquisition_parameters = parameters
        matched += 1
    return matched


def build_report(
    ds: Optional[Dataset],
    text: str,
    dialect: str,
    start_date_time: Optional[str] = None,
    end_date_time: Optional[str] = None,
    acquired_images: Optional[AcquiredImages] = None,
) -> DoseReport:
    """
    Parse *text* in *dialect* and reconcile the result with other sources.

    Parameters
    ----------
    ds : pydicom.dataset.Dataset or None
        Header of (the first page of) the dose screen; None for a plain raster.
    text : str
        Multi-page text from the assembler.
    dialect : str
        "ge", "siemens" or "toshiba".
    start_date_time, end_date_time : str, optional
        Study window; the start falls back to StudyDate + StudyTime.
    acquired_images : AcquiredImages, optional
        Reconstructed images of the same study.

    Returns
    -------
    DoseReport

    Raises
    ------
    ValueError
        If *dialect* has no parser.
    """
    parser = get_parser(dialect)
    if parser is None:
        raise ValueError(f"No parser for dialect {dialect!r}")

    if acquired_images is not None and ds is not None and not start_date_time:
        study_uid = header_string(ds, "StudyInstanceUID")
        start_date_time = acquired_images.earliest_acquisition_date_time(study_uid)
        end_date_time = end_date_time or acquired_images.latest_acquisition_date_time(study_uid)

    report = new_report(ds, start_date_time, end_date_time)
    parser.parse(text, report)
    logger.info("%s screen: %d acquisitions recognized", dialect, len(report.acquisitions))

    if acquired_images is not None:
        matched = attach_acquisition_parameters(report, dialect, acquired_images)
        logger.info("Matched %d of %d acquisitions to reconstructed images", matched, len(report.acquisitions))

    if has_exposure_dose_sequence(ds):
        structured = report_from_exposure_dose_sequence(ds, report.start_date_time, report.end_date_time)
        read_from_screen = bool(report.acquisitions)
        report.merge(structured)
        if not read_from_screen and report.acquisitions:
            # every acquisition came from the header
            report.source = SourceOfDoseInformation.COPIED_FROM_IMAGE_ATTRIBUTES
        if report.dlp_total is None and structured.dlp_total is not None:
            report.set_dlp_total(structured.dlp_total)

    if not report.specified_dlp_total_matches:
        logger.warning(
            "specified DLP total (%s) does not match DLP total from acquisitions (%s)",
            report.dlp_total, report.dlp_total_from_acquisitions,
        )
    return report
