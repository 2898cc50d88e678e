"""
exposure_dose.py - Dose values copied from the DICOM header.

Some screens (Philips in particular, GE occasionally) carry the same
information as the rendered text in machine-readable form: an
ExposureDoseSequence with one item per acquisition, a private DLP
element and a free-text CommentsOnRadiationDose. A DoseReport built from
these has source COPIED_FROM_IMAGE_ATTRIBUTES and is merged into the
OCR report by the reconciler.

References
----------
DICOM PS3.3 C.8.7.8 "Exposure Dose Sequence"; the DLP lives in the
ELSCINT1 private block at (00E1,1021).
"""

import logging
import re
from typing import Optional

from pydicom.dataset import Dataset

from doseocr.model import (
    AcquisitionParameters,
    DoseAcquisition,
    DoseReport,
    PhantomType,
    ScanType,
    SourceOfDoseInformation,
)

logger = logging.getLogger(__name__)

PRIVATE_DLP_TAG = (0x00E1, 0x1021)

PHANTOM_CODES = {
    "113691": PhantomType.BODY32,  # IEC Body Dosimetry Phantom
    "113690": PhantomType.HEAD16,  # IEC Head Dosimetry Phantom
}

# Lines of CommentsOnRadiationDose, upper-cased
COMMENT_SERIES = re.compile(
    r"[ \t]*SERIES #[ \t]*([0-9]+)[ \t]*.*CTDIVOL[ \t]*=[ \t]*([0-9]*[.][0-9]*)[ \t]+DLP[ \t]*=[ \t]*([0-9]*[.][0-9]*).*"
)
COMMENT_EVENT = re.compile(r"[ \t]*EVENT=[ \t]*([0-9]+)[ \t]*DLP[ \t]*=[ \t]*([0-9]*[.][0-9]*).*")
COMMENT_TOTAL = re.compile(r"[ \t]*TOTAL[ \t]*DLP=[ \t]*([0-9]*[.][0-9]*).*")


def _format_number(value: float) -> str:
    text = f"{value:f}".rstrip("0")
    return text.rstrip(".") if text.endswith(".") else text


def header_string(ds: Dataset, keyword: str) -> str:
    value = ds.get(keyword)
    if value is None:
        return ""
    if hasattr(value, "__iter__") and not isinstance(value, (str, bytes)):
        values = list(value)
        value = values[0] if values else ""
    return str(value).strip()


def _float_or_zero(ds: Dataset, keyword: str) -> float:
    try:
        return float(header_string(ds, keyword) or 0)
    except ValueError:
        return 0.0


def private_dlp(ds: Dataset) -> str:
    """DLP from (00E1,1021), which arrives as raw bytes when the private dictionary is unknown."""
    element = ds.get(PRIVATE_DLP_TAG)
    if element is None or element.value is None:
        return ""
    value = element.value
    if isinstance(value, bytes):
        text = value.decode("ascii", errors="ignore").strip("\0 ")
        if not text:
            return ""
        try:
            return _format_number(float(text))
        except ValueError:
            logger.warning("Unreadable private DLP value %r", text)
            return ""
    if hasattr(value, "__iter__") and not isinstance(value, str):
        values = list(value)
        value = values[0] if values else ""
    return str(value).strip()


def values_from_comments(ds: Dataset) -> tuple[dict[str, str], dict[str, str], str]:
    """
    Per-series DLP and CTDIvol and the total DLP from CommentsOnRadiationDose.

    Returns
    -------
    (dlp_by_series, ctdivol_by_series, total_dlp)
        total_dlp is "" when no total line is present.
    """
    dlp_by_series: dict[str, str] = {}
    ctdivol_by_series: dict[str, str] = {}
    total = ""
    comments = header_string(ds, "CommentsOnRadiationDose").upper()
    for line in comments.splitlines():
        if "SERIES" in line:
            # Philips
            m = COMMENT_SERIES.fullmatch(line)
            if m and m.group(1):
                ctdivol_by_series[m.group(1)] = m.group(2)
                dlp_by_series[m.group(1)] = m.group(3)
        if "EVENT" in line:
            # GE
            m = COMMENT_EVENT.fullmatch(line)
            if m and m.group(1):
                dlp_by_series[m.group(1)] = m.group(2)
        elif "TOTAL" in line:
            m = COMMENT_TOTAL.fullmatch(line)
            if m:
                total = m.group(1)
    return dlp_by_series, ctdivol_by_series, total


def has_exposure_dose_sequence(ds: Optional[Dataset]) -> bool:
    return ds is not None and len(ds.get("ExposureDoseSequence", [])) > 0


def _phantom(item: Dataset) -> Optional[PhantomType]:
    codes = item.get("CTDIPhantomTypeCodeSequence")
    if not codes:
        return None
    return PHANTOM_CODES.get(header_string(codes[0], "CodeValue"))


def start_date_time_from(ds: Dataset) -> Optional[str]:
    """StudyDate, followed by StudyTime when StudyDate is a full YYYYMMDD date."""
    study_date = header_string(ds, "StudyDate")
    if len(study_date) != 8:
        return study_date or None
    return study_date + header_string(ds, "StudyTime")


def report_from_exposure_dose_sequence(
    ds: Dataset,
    start_date_time: Optional[str] = None,
    end_date_time: Optional[str] = None,
) -> DoseReport:
    """
    Build a DoseReport from the structured dose attributes of *ds*.

    Parameters
    ----------
    ds : pydicom.dataset.Dataset
        Dose screen or localizer carrying an ExposureDoseSequence.
    start_date_time, end_date_time : str, optional
        Acquisition window from the reconstructed images, if known.

    Returns
    -------
    DoseReport
        Acquisitions are series numbered with the item's own SeriesNumber.
    """
    report = DoseReport(
        scope_uid=header_string(ds, "StudyInstanceUID"),
        start_date_time=start_date_time or start_date_time_from(ds),
        end_date_time=end_date_time,
        description=header_string(ds, "StudyDescription"),
        source=SourceOfDoseInformation.COPIED_FROM_IMAGE_ATTRIBUTES,
    )

    dlp_by_series, ctdivol_by_series, comments_total = values_from_comments(ds)
    report.set_dlp_total(private_dlp(ds) or comments_total or None)

    # The top level SeriesDescription describes the screen, not the acquisition
    default_protocol = header_string(ds, "ProtocolName")

    for counter, item in enumerate(ds.get("ExposureDoseSequence", []), start=1):
        series_number = header_string(item, "SeriesNumber")
        # GE leaves SeriesNumber out; the position matches the comment events
        lookup_number = series_number or str(counter)
        ctdivol = header_string(item, "CTDIvol") or ctdivol_by_series.get(lookup_number, "")
        dlp = private_dlp(item) or dlp_by_series.get(lookup_number, "")

        exposure_ms = _float_or_zero(item, "ExposureTime")
        tube_current_ua = _float_or_zero(item, "XRayTubeCurrentInuA")
        scan_type = ScanType.from_description(header_string(item, "AcquisitionType"))
        scan_length = header_string(item, "ScanLength") or None

        parameters = AcquisitionParameters(
            scan_type=scan_type,
            protocol=header_string(item, "ProtocolName") or default_protocol or None,
            comment=header_string(item, "SeriesDescription") or None,
            exposure_time_s=_format_number(exposure_ms / 1000) if exposure_ms > 0 else None,
            scanning_length_mm=scan_length,
            # edge to edge already, no slice thickness to add
            length_of_reconstructable_volume_mm=scan_length if scan_type != ScanType.LOCALIZER else None,
            nominal_single_collimation_width_mm=header_string(item, "SingleCollimationWidth") or None,
            nominal_total_collimation_width_mm=header_string(item, "TotalCollimationWidth") or None,
            pitch_factor=header_string(item, "SpiralPitchFactor") or None,
            kvp=header_string(item, "KVP") or None,
            tube_current_ma=_format_number(tube_current_ua / 1000) if tube_current_ua > 0 else None,
        )
        acquisition = DoseAcquisition(
            scope_uid=report.scope_uid,
            is_series=True,
            number=series_number or None,
            scan_type=scan_type,
            scan_range=None,
            ctdivol=ctdivol,
            dlp=dlp,
            phantom=_phantom(item),
            exposure_time_s=parameters.exposure_time_s,
            acquisition_parameters=parameters,
        )
        if acquisition.ctdivol is not None and acquisition.dlp is not None:
            parameters.derive_scanning_length_if_greater(acquisition.dlp, acquisition.ctdivol)
        report.add_acquisition(acquisition)

    logger.info(
        "Structured dose: %d acquisitions, total DLP %s",
        len(report.acquisitions), report.dlp_total,
    )
    return report
