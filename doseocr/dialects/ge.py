"""
ge.py - GE dose screen dialect.

A GE dose screen lists one acquisition per line:

    Series  Type     Scan Range         CTDIvol  DLP      Phantom
    2       HELICAL  S19.250-I658.250   17.95    1299.58  BODY 32

followed by a "Total Exam DLP: n" line. Localizers are left out of the
report; a range that starts and ends at the same position is a
stationary acquisition whatever the type column says.
"""

import logging
import re
from typing import Optional

from doseocr.dialects.base import DialectParser, full_match
from doseocr.model import DoseAcquisition, DoseReport, PhantomType, ScanRange, ScanType

logger = logging.getLogger(__name__)

EVENT = re.compile(
    r"[ \t]*([0-9]+)[ \t]+([A-Z \t]+)[ \t]+([SI])([0-9]*[.]*[0-9]*)[-]([SI])([0-9]*[.]*[0-9]*)"
    r"[ \t]+([0-9]*[.]*[0-9]*)[ \t]+([0-9]*[.]*[0-9]*)[ \t]+(.*)[ \t]*"
)
TOTAL = re.compile(r"[ \t]*TOTAL[ \t]*EXAM[ \t]*DLP:[ \t]*([0-9]*[.]*[0-9]*)[ \t]*")


class GEParser(DialectParser):
    name = "ge"

    def parse_line(self, line: str, report: DoseReport) -> None:
        if "TOTAL" in line:
            m = full_match(TOTAL, line)
            if m:
                logger.debug("Total DLP = %s mGy-cm", m.group(1))
                report.set_dlp_total(m.group(1))
            return

        m = full_match(EVENT, line)
        if not m:
            return
        series = m.group(1)
        # collapse "CARDIAC   HELICAL"
        scan_type_text = re.sub(r"[ \t]+", " ", m.group(2)).strip()
        scan_range = ScanRange(m.group(3), m.group(4), m.group(5), m.group(6))
        phantom = re.sub(r"[ \t]+", "", m.group(9))
        scan_type = _scan_type_for(scan_range, scan_type_text)
        if scan_type == ScanType.LOCALIZER:
            logger.debug("Skipping localizer series %s", series)
            return
        report.add_acquisition(DoseAcquisition(
            scope_uid=report.scope_uid,
            is_series=True,
            number=series,
            scan_type=scan_type,
            scan_range=scan_range,
            ctdivol=m.group(7),
            dlp=m.group(8),
            phantom=PhantomType.from_description(phantom),
        ))

    def reconciliation_key(self, acquisition: DoseAcquisition) -> Optional[str]:
        r = acquisition.scan_range
        if r is None:
            return None
        return (
            f"{acquisition.number}"
            f"+{r.start_direction}{r.start_location}"
            f"+{r.end_direction}{r.end_location}"
            f"+{acquisition.scope_uid}"
        )


def _scan_type_for(scan_range: ScanRange, description: str) -> ScanType:
    """STATIONARY for a zero-length range, otherwise the type named by *description*."""
    try:
        stationary = scan_range.is_stationary
    except ValueError:
        logger.warning("Unreadable scan range %s", scan_range)
        stationary = False
    return ScanType.STATIONARY if stationary else ScanType.from_description(description)
