"""
detection.py - Decide which renderer produced a dose screen.

Each vendor saves its dose screen as a secondary capture with a
recognisable combination of Manufacturer, ImageType, SeriesNumber and
(for Toshiba) a binary display window. An image that matches none of
them is not a dose screen as far as this package is concerned.
"""

import logging
from typing import Optional

from pydicom.dataset import Dataset

logger = logging.getLogger(__name__)

GE = "ge"
SIEMENS = "siemens"
TOSHIBA = "toshiba"

GE_SERIES_NUMBERS = ("999", "10999")
SIEMENS_SERIES_NUMBERS = ("501", "503")
TOSHIBA_SERIES_NUMBERS = ("1000", "9000")


def _string(ds: Optional[Dataset], keyword: str) -> str:
    if ds is None:
        return ""
    value = ds.get(keyword)
    if value is None:
        return ""
    if hasattr(value, "__iter__") and not isinstance(value, str):
        values = list(value)
        return str(values[0]).strip() if values else ""
    return str(value).strip()


def _image_type(ds: Optional[Dataset]) -> str:
    if ds is None:
        return ""
    value = ds.get("ImageType")
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return "\\".join(str(v) for v in value).strip()


def _int_or_default(ds: Optional[Dataset], keyword: str, default: int) -> int:
    text = _string(ds, keyword)
    try:
        return int(float(text))
    except ValueError:
        return default


def _manufacturer_matches(manufacturer: Optional[str], token: str) -> bool:
    return not manufacturer or token in manufacturer.upper()


# ---------------------------------------------------------------------------
# Series-level checks (from query responses, before any image is read)
# ---------------------------------------------------------------------------

def is_possibly_ge_dose_screen_series(manufacturer, modality, series_number, series_description=None) -> bool:
    series_number = (series_number or "").strip()
    return (
        _manufacturer_matches(manufacturer, "GE MEDICAL SYSTEMS")
        and modality == "CT"
        and series_number in GE_SERIES_NUMBERS
    )


def is_possibly_siemens_dose_screen_series(manufacturer, modality, series_number, series_description=None) -> bool:
    return (
        _manufacturer_matches(manufacturer, "SIEMENS")
        and modality == "CT"
        and series_number is not None
        and series_number.strip() in SIEMENS_SERIES_NUMBERS
    )


def is_possibly_toshiba_dose_screen_series(manufacturer, modality, series_number, series_description=None) -> bool:
    # Not always series 1000 or 9000, but anything looser matches every CT series
    by_number = series_number is not None and series_number.strip() in TOSHIBA_SERIES_NUMBERS
    by_description = series_description is not None and "SUMMARY" in series_description.upper()
    return (
        _manufacturer_matches(manufacturer, "TOSHIBA")
        and modality == "CT"
        and (by_number or by_description)
    )


def is_possibly_dose_screen_series(manufacturer, modality, series_number, series_description=None) -> bool:
    return (
        is_possibly_ge_dose_screen_series(manufacturer, modality, series_number, series_description)
        or is_possibly_siemens_dose_screen_series(manufacturer, modality, series_number, series_description)
        or is_possibly_toshiba_dose_screen_series(manufacturer, modality, series_number, series_description)
    )


# ---------------------------------------------------------------------------
# Instance-level checks
# ---------------------------------------------------------------------------

def is_ge_dose_screen_instance(ds: Dataset) -> bool:
    image_type = _image_type(ds)
    return (
        _manufacturer_matches(_string(ds, "Manufacturer"), "GE MEDICAL SYSTEMS")
        and (not image_type or image_type.startswith("DERIVED\\SECONDARY\\SCREEN SAVE"))
        and _string(ds, "SeriesNumber") in GE_SERIES_NUMBERS
    )


def is_siemens_dose_screen_instance(ds: Dataset) -> bool:
    return (
        _manufacturer_matches(_string(ds, "Manufacturer"), "SIEMENS")
        and _image_type(ds) == "DERIVED\\SECONDARY\\OTHER\\CT_SOM5 PROT"
        and _string(ds, "SeriesNumber") in SIEMENS_SERIES_NUMBERS
    )


def is_toshiba_dose_screen_instance(ds: Dataset) -> bool:
    # The binary window separates the dose screen from other secondary captures
    return (
        _manufacturer_matches(_string(ds, "Manufacturer"), "TOSHIBA")
        and _image_type(ds).startswith("DERIVED\\SECONDARY")
        and _int_or_default(ds, "WindowWidth", -1) == 1
        and _int_or_default(ds, "WindowCenter", -1) == 0
    )


def is_dose_screen_instance(ds: Dataset) -> bool:
    return detect_dialect(ds) is not None


def detect_dialect(ds: Optional[Dataset]) -> Optional[str]:
    """
    Name of the dialect that rendered *ds*, or None if it is not a dose screen.

    A raster with no header at all is assumed to be a GE screen.
    """
    if ds is None:
        return GE
    if is_ge_dose_screen_instance(ds):
        return GE
    if is_siemens_dose_screen_instance(ds):
        return SIEMENS
    if is_toshiba_dose_screen_instance(ds):
        return TOSHIBA
    return None
