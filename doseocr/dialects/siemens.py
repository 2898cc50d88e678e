"""
siemens.py - Siemens "Patient Protocol" dose screen dialect.

Each acquisition is one line: protocol name, acquisition number, kV,
effective mAs (optionally "/ reference mAs"), CTDIvol (optionally with a
phantom letter in brackets), DLP, rotation time and slice collimation.
Topograms carry a dose too but no reference mAs.

The screen gives no scan range or scan type, so acquisitions are
UNKNOWN except topograms, and they are numbered by acquisition rather
than by series.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from doseocr.dialects.base import DialectParser, full_match
from doseocr.model import DoseAcquisition, DoseReport, PhantomType, ScanType

logger = logging.getLogger(__name__)

_NUMBER = r"([0-9]*[.]*[0-9]*)"

EVENT_WITH_REF_EXPOSURE_AND_PHANTOM = re.compile(
    r"(.*)[ \t]+([0-9A-Z-]+)[ \t]+([0-9]+)[ \t]+([0-9]+)[ \t]+/[ \t]*([0-9]+)[ \t]+" + _NUMBER
    + r"[(]*[ \t]*([ABLS])[)]*[ \t]+" + _NUMBER + r"[ \t]+" + _NUMBER + r"[ \t]+" + _NUMBER + r".*"
)
EVENT_WITH_REF_EXPOSURE = re.compile(
    r"(.*)[ \t]+([0-9A-Z-]+)[ \t]+([0-9]+)[ \t]+([0-9]+)[ \t]+/[ \t]*([0-9]+)[ \t]+" + _NUMBER
    + r"[ \t]+" + _NUMBER + r"[ \t]+" + _NUMBER + r"[ \t]+" + _NUMBER + r".*"
)
EVENT_WITHOUT_REF_EXPOSURE = re.compile(
    r"(.*)[ \t]+([0-9A-Z-]+)[ \t]+([0-9]+)[ \t]+([0-9]+)[ \t]+" + _NUMBER
    + r"[ \t]+" + _NUMBER + r"[ \t]+" + _NUMBER + r"[ \t]+" + _NUMBER + r".*"
)
EVENT_LOCALIZER_WITH_DOSE_AND_PHANTOM = re.compile(
    r"(.*TOPOGRAM.*)[ \t]+([0-9A-Z-]+)[ \t]+([0-9]+)[ \t]+([0-9]+)[ \t]*MA[ \t]+" + _NUMBER
    + r"[(]*[ \t]*([ABLS])[)]*[ \t]+" + _NUMBER + r"[ \t]+" + _NUMBER + r"[ \t]+" + _NUMBER + r".*"
)

# Spacing is sometimes packed, sometimes not; units at the end are ignored
TOTAL_MAS_THEN_DLP = re.compile(
    r"[ \t]*TOTAL[ \t]*MAS[ \t]*" + _NUMBER + r"[ \t]+TOTAL[ \t]*DLP[ \t]*" + _NUMBER + r".*"
)
TOTAL_WORDS_SWAPPED = re.compile(
    r"[ \t]*MAS[ \t]*TOTAL[ \t]*" + _NUMBER + r"[ \t]+DLP[ \t]*TOTAL[ \t]*" + _NUMBER + r".*"
)

PHANTOM_LETTERS = {
    "A": PhantomType.BODY32,
    "L": PhantomType.BODY32,
    "B": PhantomType.HEAD16,
    "S": PhantomType.HEAD16,
}


@dataclass(frozen=True)
class EventLayout:
    """Group numbers of one event pattern (None where the layout lacks the field)."""
    pattern: re.Pattern
    ctdivol: int
    dlp: int
    phantom: Optional[int]
    scan_type: Optional[ScanType]


# Tried in this order; the first full match wins
EVENT_LAYOUTS = (
    EventLayout(EVENT_WITH_REF_EXPOSURE_AND_PHANTOM, ctdivol=6, dlp=8, phantom=7, scan_type=None),
    EventLayout(EVENT_WITH_REF_EXPOSURE, ctdivol=6, dlp=7, phantom=None, scan_type=None),
    EventLayout(EVENT_WITHOUT_REF_EXPOSURE, ctdivol=5, dlp=6, phantom=None, scan_type=None),
    EventLayout(EVENT_LOCALIZER_WITH_DOSE_AND_PHANTOM, ctdivol=5, dlp=7, phantom=6, scan_type=ScanType.LOCALIZER),
)


def _with_decimals(dlp: str) -> str:
    # Siemens often prints an integer DLP; a bare "0" is left for normalization
    if dlp in ("", "0") or "." in dlp:
        return dlp
    return dlp + ".00"


class SiemensParser(DialectParser):
    name = "siemens"

    def parse_line(self, line: str, report: DoseReport) -> None:
        if "TOTALDLP" in line:
            self._total(TOTAL_MAS_THEN_DLP, line, report)
        elif "DLPTOTAL" in line:
            self._total(TOTAL_WORDS_SWAPPED, line, report)
        else:
            self._event(line, report)

    def _total(self, pattern: re.Pattern, line: str, report: DoseReport) -> None:
        m = full_match(pattern, line)
        if m:
            logger.debug("Total mAs = %s", m.group(1))
            report.set_dlp_total(_with_decimals(m.group(2)))

    def _event(self, line: str, report: DoseReport) -> None:
        for layout in EVENT_LAYOUTS:
            m = full_match(layout.pattern, line)
            if not m:
                continue
            protocol = m.group(1).strip()
            # not the series number; sometimes carries a letter suffix
            acquisition_number = re.sub(r"[A-Z]", "", m.group(2))
            phantom = PHANTOM_LETTERS.get(m.group(layout.phantom)) if layout.phantom else None
            logger.debug("protocol = %s, acquisition = %s, kV = %s", protocol, acquisition_number, m.group(3))
            report.add_acquisition(DoseAcquisition(
                scope_uid=report.scope_uid,
                is_series=False,
                number=acquisition_number,
                scan_type=layout.scan_type or ScanType.UNKNOWN,
                scan_range=None,
                ctdivol=m.group(layout.ctdivol),
                dlp=_with_decimals(m.group(layout.dlp)),
                phantom=phantom,
            ))
            return

    def reconciliation_key(self, acquisition: DoseAcquisition) -> Optional[str]:
        if acquisition.number is None:
            return None
        return f"{acquisition.number}+{acquisition.scope_uid}"
