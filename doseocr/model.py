"""
model.py - Canonical CT dose report data model.

Values are kept as the strings read from the screen or the header
(e.g. "17.95", "1299.58") so that no precision is invented or lost
along the way. Numeric conversion happens only where a sum or a ratio
is needed, and sums are formatted back to two decimal places.

WHY STRINGS
-----------
A dose screen shows "1299.58"; a float round-trip could print
"1299.5799999999999". The report handed to downstream consumers must
carry exactly what the scanner displayed.
"""

import logging
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)

# A head phantom DLP contributes half as much as a body phantom DLP
# when the two are combined into one body-referenced total.
HEAD_TO_BODY_DLP_CONVERSION_FACTOR = 0.5


def format_decimal(value: float, places: int = 2) -> str:
    """Fixed-point format without grouping, e.g. 1299.5 -> "1299.50"."""
    return f"{value:.{places}f}"


def normalize_dose_value(value: Optional[str]) -> Optional[str]:
    """
    Trim a CTDIvol/DLP string and map empty or literal "0" to None.

    A reported zero usually marks a non-dose acquisition such as a
    localizer rather than a real zero dose.
    """
    if value is None:
        return None
    value = value.strip()
    if value == "" or value == "0":
        return None
    return value


def _parse_float(value: Optional[str]) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except ValueError:
        logger.error("Could not parse %r as a number", value)
        return None


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class ScanType(Enum):
    LOCALIZER = "Localizer"
    HELICAL = "Helical"
    AXIAL = "Axial"
    STATIONARY = "Stationary"
    FREE = "Free"
    CONEBEAM = "Cone Beam"
    UNKNOWN = "Unknown"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_description(cls, description: Optional[str]) -> "ScanType":
        """Map a vendor's scan type wording to a ScanType (UNKNOWN if unmatched)."""
        if description is None:
            return cls.UNKNOWN
        d = description.strip().upper()
        if d in ("HELICAL", "SPIRAL", "CARDIAC HELICAL"):
            return cls.HELICAL
        if d in ("AXIAL", "SEQUENCED", "NORMAL"):
            return cls.AXIAL
        if d in ("FREE", "SMARTVIEW"):
            return cls.FREE
        if d in ("STATIONARY", "CINE", "DYNAMIC", "VOLUME", "SMARTSTEP"):
            return cls.STATIONARY
        if d in ("LOCALIZER", "SCOUT", "CONSTANT_ANGLE", "TOPOGRAM", "SCANOSCOPE"):
            return cls.LOCALIZER
        if d in ("CONE BEAM", "CONEBEAM"):
            return cls.CONEBEAM
        return cls.UNKNOWN


class PhantomType(Enum):
    HEAD16 = "HEAD16"
    BODY32 = "BODY32"
    MIXED = "MIXED"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_description(cls, description: Optional[str]) -> Optional["PhantomType"]:
        if description is None:
            return None
        d = description.strip().upper()
        if d in ("HEAD16", "HEAD"):
            return cls.HEAD16
        if d in ("BODY32", "BODY"):
            return cls.BODY32
        if d == "MIXED":
            return cls.MIXED
        return None


class SourceOfDoseInformation(Enum):
    DERIVED_FROM_HUMAN_READABLE_REPORTS = ("Derived From Human-Readable Reports", "OCR")
    COPIED_FROM_IMAGE_ATTRIBUTES = ("Copied From Image Attributes", "HDR")

    @property
    def description(self) -> str:
        return self.value[0]

    @property
    def abbreviation(self) -> str:
        return self.value[1]

    def __str__(self) -> str:
        return self.description


# ---------------------------------------------------------------------------
# Scan range
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ScanRange:
    """Start and end table positions, each with an S (superior) or I (inferior) direction."""
    start_direction: str
    start_location: str
    end_direction: str
    end_location: str

    @classmethod
    def from_signed(cls, signed_start: str, signed_end: str) -> "ScanRange":
        """Build from signed positions such as "+19.25" / "-658.25" (negative is I)."""
        def split(signed: str) -> tuple[str, str]:
            direction = "I" if signed.startswith("-") else "S"
            location = signed
            if signed[:1] in ("+", "-"):
                location = signed[1:]
            return direction, location

        start_direction, start_location = split(signed_start)
        end_direction, end_location = split(signed_end)
        return cls(start_direction, start_location, end_direction, end_location)

    @property
    def absolute_range_mm(self) -> float:
        start = float(self.start_location)
        if self.start_direction == "I":
            start = -start
        end = float(self.end_location)
        if self.end_direction == "I":
            end = -end
        return abs(start - end)

    @property
    def absolute_range(self) -> str:
        return format_decimal(self.absolute_range_mm, 3)

    @property
    def is_stationary(self) -> bool:
        return self.absolute_range_mm < 0.0001

    def __str__(self) -> str:
        return f"{self.start_direction}{self.start_location}-{self.end_direction}{self.end_location}"


# ---------------------------------------------------------------------------
# Acquisition parameters
# ---------------------------------------------------------------------------

@dataclass
class AcquisitionParameters:
    """Technique factors for one irradiation event, mostly from reconstructed images."""
    irradiation_event_uid: Optional[str] = None
    scan_type: Optional[ScanType] = None
    protocol: Optional[str] = None
    comment: Optional[str] = None
    exposure_time_s: Optional[str] = None
    scanning_length_mm: Optional[str] = None
    length_of_reconstructable_volume_mm: Optional[str] = None
    exposed_range_mm: Optional[str] = None
    top_z_of_reconstructable_volume: Optional[str] = None
    bottom_z_of_reconstructable_volume: Optional[str] = None
    top_z_of_scanning_length: Optional[str] = None
    bottom_z_of_scanning_length: Optional[str] = None
    frame_of_reference_uid: Optional[str] = None
    nominal_single_collimation_width_mm: Optional[str] = None
    nominal_total_collimation_width_mm: Optional[str] = None
    pitch_factor: Optional[str] = None
    kvp: Optional[str] = None
    tube_current_ma: Optional[str] = None
    tube_current_maximum_ma: Optional[str] = None
    exposure_time_per_rotation_s: Optional[str] = None

    def merge(self, other: Optional["AcquisitionParameters"]) -> None:
        """Override our values with every non-empty value from *other*."""
        if other is None:
            return
        for f in fields(self):
            value = getattr(other, f.name)
            if value is not None and value != "":
                setattr(self, f.name, value)

    def copy(self) -> "AcquisitionParameters":
        return AcquisitionParameters(**{f.name: getattr(self, f.name) for f in fields(self)})

    def derive_scanning_length_if_greater(self, dlp: Optional[str], ctdivol: Optional[str]) -> None:
        """
        Replace the scanning length with DLP / CTDIvol when that is larger.

        Sequenced and over-ranged acquisitions under-report the length on
        the images; the dose values imply the length actually irradiated.

        Parameters
        ----------
        dlp : str, optional
            DLP in mGy.cm.
        ctdivol : str, optional
            CTDIvol in mGy.
        """
        dlp_value = _parse_float(dlp)
        ctdivol_value = _parse_float(ctdivol)
        if dlp_value is None or ctdivol_value is None or ctdivol_value <= 0:
            return
        derived_mm = dlp_value / ctdivol_value * 10.0
        existing_mm = _parse_float(self.scanning_length_mm)
        derived = format_decimal(derived_mm)
        if existing_mm is None or derived_mm > existing_mm:
            logger.debug("Scanning length %s replaced by derived %s", self.scanning_length_mm, derived)
            self.scanning_length_mm = derived
        else:
            logger.info("not overriding %s with smaller %s", self.scanning_length_mm, derived)

    def to_dict(self) -> dict[str, Any]:
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            result[f.name] = str(value) if isinstance(value, ScanType) else value
        return result


# ---------------------------------------------------------------------------
# Dose acquisition
# ---------------------------------------------------------------------------

@dataclass
class DoseAcquisition:
    """One irradiation event as reported on a dose screen or in the header."""
    scope_uid: Optional[str]
    is_series: bool
    number: Optional[str]
    scan_type: Optional[ScanType]
    scan_range: Optional[ScanRange] = None
    ctdivol: Optional[str] = None
    dlp: Optional[str] = None
    phantom: Optional[PhantomType] = None
    exposure_time_s: Optional[str] = None
    total_mas: Optional[str] = None
    acquisition_parameters: Optional[AcquisitionParameters] = None

    def __post_init__(self):
        self.ctdivol = normalize_dose_value(self.ctdivol)
        self.dlp = normalize_dose_value(self.dlp)

    def matches_for_merge(self, other: "DoseAcquisition") -> bool:
        """True when *other* describes the same event (scan type, CTDIvol, phantom)."""
        interchangeable = (ScanType.STATIONARY, ScanType.AXIAL)
        same_type = (
            self.scan_type == other.scan_type
            or (self.scan_type in interchangeable and other.scan_type in interchangeable)
        )
        if self.ctdivol is None or other.ctdivol is None:
            same_ctdivol = self.ctdivol is None and other.ctdivol is None
        elif self.ctdivol == other.ctdivol:
            same_ctdivol = True
        else:
            # "17.9" and "17.90" are the same value
            ours, theirs = _parse_float(self.ctdivol), _parse_float(other.ctdivol)
            same_ctdivol = ours is not None and ours == theirs
        return same_type and same_ctdivol and self.phantom == other.phantom

    def merge(self, other: Optional["DoseAcquisition"]) -> None:
        """Absorb acquisition parameters (and DLP) from a structured equivalent."""
        if other is None:
            return
        if other.acquisition_parameters is not None:
            if self.acquisition_parameters is None:
                self.acquisition_parameters = other.acquisition_parameters.copy()
            else:
                self.acquisition_parameters.merge(other.acquisition_parameters)
        if other.dlp is not None:
            self.dlp = other.dlp

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "series" if self.is_series else "acquisition": self.number,
            "scan_type": str(self.scan_type) if self.scan_type is not None else None,
            "scan_range": str(self.scan_range) if self.scan_range is not None else None,
            "ctdivol_mgy": self.ctdivol,
            "dlp_mgycm": self.dlp,
            "phantom": str(self.phantom) if self.phantom is not None else None,
        }
        if self.exposure_time_s is not None:
            result["exposure_time_s"] = self.exposure_time_s
        if self.total_mas is not None:
            result["total_mas"] = self.total_mas
        if self.acquisition_parameters is not None:
            result["acquisition_parameters"] = self.acquisition_parameters.to_dict()
        return result

    def __str__(self) -> str:
        label = ("Series" if self.is_series else "Acq") + "=" + (self.number or "")
        parts = [
            label,
            str(self.scan_type),
            f"Range={self.scan_range} mm",
            f"CTDIvol={self.ctdivol} mGy",
            f"DLP={self.dlp} mGy.cm",
            f"Phantom={self.phantom}",
        ]
        return "\t" + "\t".join(parts)


# ---------------------------------------------------------------------------
# Dose report
# ---------------------------------------------------------------------------

@dataclass
class DoseReport:
    """Study-wide dose report assembled from one dose screen series."""
    scope_uid: Optional[str] = None
    start_date_time: Optional[str] = None
    end_date_time: Optional[str] = None
    description: Optional[str] = None
    source: Optional[SourceOfDoseInformation] = None
    acquisitions: list[DoseAcquisition] = field(default_factory=list)
    dlp_total: Optional[str] = None
    dlp_total_phantom: Optional[PhantomType] = None
    dlp_subtotal_head: Optional[str] = None
    dlp_subtotal_body: Optional[str] = None
    _phantom_fixed_by_total: bool = field(default=False, init=False, repr=False)

    def add_acquisition(self, acquisition: DoseAcquisition) -> None:
        self.acquisitions.append(acquisition)
        if self._phantom_fixed_by_total:
            return
        phantom = acquisition.phantom
        if phantom is None:
            return
        if self.dlp_total_phantom is None:
            self.dlp_total_phantom = phantom
        elif self.dlp_total_phantom != phantom:
            self.dlp_total_phantom = PhantomType.MIXED

    def set_dlp_total(self, value: Optional[str], phantom: Optional[PhantomType] = None) -> None:
        """Record the screen's total; a phantom given here wins over the acquisitions' phantoms."""
        self.dlp_total = value
        if phantom is not None:
            self.dlp_total_phantom = phantom
            self._phantom_fixed_by_total = True

    def set_dlp_total_head_and_body(self, head: Optional[str], body: Optional[str]) -> None:
        """Record a head/body split total; the combined total is body-referenced."""
        self.dlp_subtotal_head = head
        self.dlp_subtotal_body = body
        self.dlp_total = combine_head_and_body_dlp(head, body)
        self.dlp_total_phantom = PhantomType.BODY32
        self._phantom_fixed_by_total = True

    @property
    def dlp_total_from_acquisitions(self) -> str:
        total = 0.0
        head = 0.0
        body = 0.0
        unspecified = 0.0
        common: Optional[PhantomType] = None
        for acquisition in self.acquisitions:
            dlp = _parse_float(acquisition.dlp)
            if dlp is None:
                continue
            phantom = acquisition.phantom
            if phantom is None:
                unspecified += dlp
                continue
            if common is None:
                common = phantom
                total += dlp
            elif common == phantom:
                total += dlp
            else:
                common = PhantomType.MIXED
                total = 0.0
            if phantom == PhantomType.HEAD16:
                head += dlp
            elif phantom == PhantomType.BODY32:
                body += dlp
        if common is None:
            return format_decimal(unspecified)
        if unspecified > 0:
            logger.warning(
                "DLP %s of acquisitions without a phantom left out of the %s total",
                format_decimal(unspecified), common.value,
            )
        if common == PhantomType.MIXED and total == 0 and head > 0 and body > 0:
            total = head * HEAD_TO_BODY_DLP_CONVERSION_FACTOR + body
        return format_decimal(total)

    @property
    def specified_dlp_total_matches(self) -> bool:
        """Whether the reported total equals the sum over acquisitions (diagnostic only)."""
        if self.dlp_total is None:
            return not self.acquisitions
        return self.dlp_total == self.dlp_total_from_acquisitions

    @property
    def dlp_total_to_use(self) -> str:
        return self.dlp_total if self.dlp_total is not None else self.dlp_total_from_acquisitions

    @property
    def dlp_total_phantom_to_use(self) -> Optional[PhantomType]:
        # A computed mixed total is converted to body reference, an explicit one is not
        if self.dlp_total_phantom == PhantomType.MIXED:
            return PhantomType.BODY32 if self.dlp_total is None else None
        return self.dlp_total_phantom

    def merge(self, other: Optional["DoseReport"]) -> None:
        """
        Merge a structured report into this one.

        With no acquisitions of our own the other report's acquisitions are
        adopted. Otherwise both lists are walked in step, skipping
        localizers, and each matching pair is merged; the walk stops at the
        first pair that does not match.
        """
        if other is None or not other.acquisitions:
            return
        if not self.acquisitions:
            for acquisition in other.acquisitions:
                self.add_acquisition(acquisition)
            return
        ours_index = 0
        theirs_index = 0
        while ours_index < len(self.acquisitions) and theirs_index < len(other.acquisitions):
            ours = self.acquisitions[ours_index]
            if ours.scan_type is None or ours.scan_type == ScanType.LOCALIZER:
                ours_index += 1
                continue
            theirs = other.acquisitions[theirs_index]
            if theirs.scan_type is None or theirs.scan_type == ScanType.LOCALIZER:
                theirs_index += 1
                continue
            if not ours.matches_for_merge(theirs):
                logger.warning(
                    "Stopped merging at unmatched acquisitions %s and %s",
                    str(ours).strip(), str(theirs).strip(),
                )
                break
            ours.merge(theirs)
            ours_index += 1
            theirs_index += 1

    def to_dict(self) -> dict[str, Any]:
        phantom = self.dlp_total_phantom_to_use
        return {
            "study_instance_uid": self.scope_uid,
            "start_date_time": self.start_date_time,
            "end_date_time": self.end_date_time,
            "description": self.description,
            "source": self.source.abbreviation if self.source is not None else None,
            "dlp_total_mgycm": self.dlp_total_to_use,
            "dlp_total_phantom": str(phantom) if phantom is not None else None,
            "dlp_subtotal_head": self.dlp_subtotal_head,
            "dlp_subtotal_body": self.dlp_subtotal_body,
            "specified_dlp_total_matches": self.specified_dlp_total_matches,
            "acquisitions": [a.to_dict() for a in self.acquisitions],
        }

    def __str__(self) -> str:
        lines = [
            f"Dose\tStart={self.start_date_time}\tModality=CT\tDescription={self.description}"
            f"\tSource={self.source.abbreviation if self.source else None}"
        ]
        lines.extend(str(a) for a in self.acquisitions)
        lines.append(f"\tTotal DLP={self.dlp_total_to_use} mGy.cm {self.dlp_total_phantom_to_use or ''}".rstrip())
        return "\n".join(lines)


def combine_head_and_body_dlp(head: Optional[str], body: Optional[str]) -> Optional[str]:
    """Body-referenced total from head and body subtotals (missing counts as zero)."""
    try:
        head_value = float(head) if head is not None else 0.0
        body_value = float(body) if body is not None else 0.0
    except ValueError:
        logger.error("Could not combine DLP subtotals head=%r body=%r", head, body)
        return None
    return format_decimal(head_value * HEAD_TO_BODY_DLP_CONVERSION_FACTOR + body_value)
