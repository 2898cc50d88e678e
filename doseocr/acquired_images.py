"""
acquired_images.py - Technique factors recovered from reconstructed CT images.

A dose screen lists CTDIvol and DLP but says little about how each
acquisition was made. The reconstructed slices of the same study do:
kVp, tube current, pitch, collimation, slice positions. Slices are grouped
into irradiation events (by IrradiationEventUID where the scanner writes
one, else by study and series), and for each event the values every slice
agrees on are kept. A value that differs between slices of one event is
dropped rather than guessed.

The reconciler looks events up with the same keys the dialect parsers
produce, so that each acquisition on the screen picks up the parameters
of its own event.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Iterable, Optional

import pydicom
from pydicom.dataset import Dataset

from doseocr.dialects.detection import is_dose_screen_instance
from doseocr.exposure_dose import header_string
from doseocr.model import AcquisitionParameters, ScanType, format_decimal

logger = logging.getLogger(__name__)

CT_IMAGE_STORAGE = "1.2.840.10008.5.1.4.1.1.2"


def _float(text: str) -> Optional[float]:
    try:
        return float(text)
    except ValueError:
        return None


def location_signed(value: float) -> str:
    return format_decimal(value, 3)


def location_is(value: Optional[float]) -> str:
    """Slice location as on a GE screen: "I" for negative, "S" otherwise."""
    if value is None:
        return ""
    text = location_signed(value)
    return "I" + text[1:] if text.startswith("-") else "S" + text


@dataclass
class IrradiationEvent:
    """Values accumulated over the slices of one irradiation event."""
    uid: str
    values: dict[str, str] = field(default_factory=dict)
    conflicting: set[str] = field(default_factory=set)
    slice_locations: list[float] = field(default_factory=list)
    tube_currents: list[float] = field(default_factory=list)

    def note(self, name: str, value: str) -> None:
        if not value or name in self.conflicting:
            return
        existing = self.values.get(name)
        if existing is None:
            self.values[name] = value
        elif existing != value:
            logger.debug("Event %s has more than one %s (%s, %s)", self.uid, name, existing, value)
            self.conflicting.add(name)
            del self.values[name]

    def get(self, name: str) -> Optional[str]:
        return self.values.get(name)

    @property
    def is_localizer(self) -> bool:
        return (self.get("image_type_3") or "").upper() == "LOCALIZER"

    def parameters(self) -> AcquisitionParameters:
        """AcquisitionParameters for this event; slice extent padded by half a slice at each end."""
        top_z = bottom_z = length = None
        if not self.is_localizer and self.slice_locations:
            low, high = min(self.slice_locations), max(self.slice_locations)
            thickness = _float(self.get("slice_thickness") or "") or 0.0
            bottom_z = location_signed(low - thickness / 2)
            top_z = location_signed(high + thickness / 2)
            length = format_decimal(high - low + thickness)

        tube_current = tube_current_max = None
        if self.tube_currents:
            tube_current = format_decimal(sum(self.tube_currents) / len(self.tube_currents))
            tube_current_max = format_decimal(max(self.tube_currents))

        return AcquisitionParameters(
            irradiation_event_uid=self.uid,
            scan_type=ScanType.LOCALIZER if self.is_localizer else ScanType.UNKNOWN,
            protocol=self.get("protocol"),
            comment=self.get("series_description"),
            # under-estimates a helical scan; the reconciler lengthens it from DLP / CTDIvol
            scanning_length_mm=length,
            length_of_reconstructable_volume_mm=length,
            top_z_of_reconstructable_volume=top_z,
            bottom_z_of_reconstructable_volume=bottom_z,
            frame_of_reference_uid=self.get("frame_of_reference_uid"),
            nominal_single_collimation_width_mm=self.get("single_collimation_width"),
            nominal_total_collimation_width_mm=self.get("total_collimation_width"),
            pitch_factor=self.get("pitch_factor"),
            kvp=self.get("kvp"),
            tube_current_ma=tube_current,
            tube_current_maximum_ma=tube_current_max,
            exposure_time_per_rotation_s=self.get("revolution_time"),
        )


class AcquiredImages:
    """Irradiation events and dose screen files found among a set of DICOM files."""

    def __init__(self):
        self.events: dict[str, IrradiationEvent] = {}
        self.dose_screen_files: list[str] = []
        self._earliest: dict[str, str] = {}
        self._latest: dict[str, str] = {}

    @classmethod
    def from_path(cls, path: str) -> "AcquiredImages":
        images = cls()
        images.add_path(path)
        logger.info(
            "Found %d irradiation events and %d dose screens under %s",
            len(images.events), len(images.dose_screen_files), path,
        )
        return images

    def add_path(self, path: str) -> None:
        if os.path.isdir(path):
            for root, dirs, files in os.walk(path):
                dirs.sort()
                for fname in sorted(files):
                    if fname.startswith(".") or fname.upper() == "DICOMDIR":
                        continue
                    self.add_file(os.path.join(root, fname))
        elif os.path.isfile(path):
            self.add_file(path)
        else:
            logger.error("Images path not found: %s", path)

    def add_file(self, path: str) -> None:
        try:
            ds = pydicom.dcmread(path, stop_before_pixels=True)
        except Exception as exc:
            # not every file in a study folder is DICOM
            logger.debug("Skipping %s: %s", path, exc)
            return
        self.add_dataset(ds, path)

    def add_dataset(self, ds: Dataset, path: Optional[str] = None) -> None:
        if is_dose_screen_instance(ds):
            if path is not None:
                self.dose_screen_files.append(path)
            return
        if header_string(ds, "SOPClassUID") != CT_IMAGE_STORAGE:
            return
        self._add_slice(ds)

    def _add_slice(self, ds: Dataset) -> None:
        study_uid = header_string(ds, "StudyInstanceUID")
        uid = header_string(ds, "IrradiationEventUID") or f"{study_uid}+{header_string(ds, 'SeriesNumber')}"
        event = self.events.get(uid)
        if event is None:
            event = self.events[uid] = IrradiationEvent(uid)

        image_type = ds.get("ImageType")
        if image_type is not None and not isinstance(image_type, str) and len(image_type) > 2:
            event.note("image_type_3", str(image_type[2]))
        event.note("study_instance_uid", study_uid)
        event.note("series_number", header_string(ds, "SeriesNumber"))
        event.note("acquisition_number", header_string(ds, "AcquisitionNumber"))
        event.note("series_description", header_string(ds, "SeriesDescription"))
        event.note("protocol", header_string(ds, "ProtocolName"))
        event.note("frame_of_reference_uid", header_string(ds, "FrameOfReferenceUID"))
        event.note("kvp", header_string(ds, "KVP"))
        event.note("slice_thickness", header_string(ds, "SliceThickness"))
        event.note("pitch_factor", header_string(ds, "SpiralPitchFactor"))
        event.note("single_collimation_width", header_string(ds, "SingleCollimationWidth"))
        event.note("total_collimation_width", header_string(ds, "TotalCollimationWidth"))
        event.note("revolution_time", header_string(ds, "RevolutionTime"))

        location = _float(header_string(ds, "SliceLocation"))
        if location is not None:
            event.slice_locations.append(location)
        current = _float(header_string(ds, "XRayTubeCurrent"))
        if current is not None:
            event.tube_currents.append(current)

        date_time = header_string(ds, "AcquisitionDateTime") or (
            header_string(ds, "AcquisitionDate") + header_string(ds, "AcquisitionTime")
        )
        if study_uid and date_time:
            if study_uid not in self._earliest or date_time < self._earliest[study_uid]:
                self._earliest[study_uid] = date_time
            if study_uid not in self._latest or date_time > self._latest[study_uid]:
                self._latest[study_uid] = date_time

    # -----------------------------------------------------------------------
    # Lookups
    # -----------------------------------------------------------------------

    def earliest_acquisition_date_time(self, study_uid: Optional[str]) -> Optional[str]:
        return self._earliest.get(study_uid or "")

    def latest_acquisition_date_time(self, study_uid: Optional[str]) -> Optional[str]:
        return self._latest.get(study_uid or "")

    def _ge_key(self, event: IrradiationEvent) -> str:
        start = location_is(max(event.slice_locations)) if event.slice_locations else ""
        end = location_is(min(event.slice_locations)) if event.slice_locations else ""
        return "+".join([
            event.get("series_number") or "",
            start,
            end,
            event.get("study_instance_uid") or "",
        ])

    def _siemens_key(self, event: IrradiationEvent) -> str:
        return (event.get("acquisition_number") or "") + "+" + (event.get("study_instance_uid") or "")

    def by_series_and_scan_range(self, key: str) -> Optional[AcquisitionParameters]:
        """Parameters for a GE key "series+S19.250+I658.250+studyUID"."""
        found = None
        for event in self.events.values():
            if self._ge_key(event) != key:
                continue
            if found is not None:
                logger.info("More than one event for %s, using the first", key)
                break
            found = event.parameters()
        return found

    def by_acquisition_number(self, key: str) -> Optional[AcquisitionParameters]:
        """
        Parameters for a Siemens key "acquisition+studyUID".

        When several events share the key a non-localizer beats a
        localizer, and otherwise the longer reconstructed volume wins.
        """
        best = None
        for event in self.events.values():
            if self._siemens_key(event) != key:
                continue
            candidate = event.parameters()
            if best is None or _prefer(candidate, best):
                best = candidate
        return best

    def lookup(self, dialect: str, key: Optional[str]) -> Optional[AcquisitionParameters]:
        if not key:
            return None
        if dialect == "ge":
            return self.by_series_and_scan_range(key)
        return self.by_acquisition_number(key)


def _prefer(new: AcquisitionParameters, existing: AcquisitionParameters) -> bool:
    new_localizer = new.scan_type == ScanType.LOCALIZER
    existing_localizer = existing.scan_type == ScanType.LOCALIZER
    if new_localizer != existing_localizer:
        return existing_localizer
    return (_float(new.length_of_reconstructable_volume_mm or "") or 0.0) > (
        _float(existing.length_of_reconstructable_volume_mm or "") or 0.0
    )


def dose_screen_files(paths: Iterable[str]) -> list[str]:
    """Dose screen files among *paths* (files or folders), in walk order."""
    images = AcquiredImages()
    for path in paths:
        images.add_path(path)
    return images.dose_screen_files
