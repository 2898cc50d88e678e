"""
base.py - Shared shape of a dose screen dialect parser.

A parser reads the assembled multi-page text one line at a time,
upper-cased, and adds acquisitions and totals to a DoseReport. Patterns
are always tried in a fixed order and the first full match wins.
"""

import logging
import re
from typing import Optional

from doseocr.model import DoseAcquisition, DoseReport

logger = logging.getLogger(__name__)


def full_match(pattern: re.Pattern, line: str) -> Optional[re.Match]:
    match = pattern.fullmatch(line)
    if match is not None:
        logger.debug("matches %s", pattern.pattern)
    return match


class DialectParser:
    """Base class; subclasses implement ``parse_line``."""

    name = ""

    def parse(self, text: str, report: DoseReport) -> DoseReport:
        """
        Feed every line of *text* through the parser.

        Parameters
        ----------
        text : str
            Multi-page text from the assembler.
        report : DoseReport
            Report to fill; its scope UID is used for every acquisition.

        Returns
        -------
        DoseReport
            The same *report*, for chaining.
        """
        for raw in text.splitlines():
            line = raw.upper()
            logger.debug(line)
            self.parse_line(line, report)
        self.finish(report)
        return report

    def parse_line(self, line: str, report: DoseReport) -> None:
        raise NotImplementedError

    def finish(self, report: DoseReport) -> None:
        """Called once after the last line."""

    def reconciliation_key(self, acquisition: DoseAcquisition) -> Optional[str]:
        """Key matching this acquisition to events found in reconstructed images."""
        return None
