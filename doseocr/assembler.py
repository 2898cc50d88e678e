"""
assembler.py - Rebuild text lines from recognized glyph placements.

Placements are sorted by (row, column). Glyphs whose top rows are equal
form one line. A tab is written between two glyphs when the gap from the
end of one to the start of the next is wider than the spacing constant,
which is what separates "KVP" from "120" for the dialect parsers.

Only recognized placements produce text; an unrecognized glyph is simply
absent from its line.
"""

import logging
from typing import Iterable, Optional

from doseocr.config import CONFIG
from doseocr.glyphs import Placement

logger = logging.getLogger(__name__)

FIELD_SEPARATOR = "\t"


def assemble_lines(
    placements: Iterable[Placement],
    spacing: Optional[int] = None,
) -> list[str]:
    """
    Group placements into text lines.

    Parameters
    ----------
    placements : iterable of Placement
        Placements for one page, in any order.
    spacing : int, optional
        Gap in pixel columns above which a separator is inserted
        (default from config, 5).

    Returns
    -------
    list[str]
        One string per line, top to bottom.
    """
    spacing = CONFIG["assembly"]["spacing"] if spacing is None else spacing
    lines: list[str] = []
    current: list[str] = []
    last_row = None
    last_end = 0
    for placement in sorted(p for p in placements if p.recognized):
        if placement.row != last_row:
            if last_row is not None:
                lines.append("".join(current))
            current = []
            last_row = placement.row
            last_end = 0
        if placement.column - last_end > spacing:
            current.append(FIELD_SEPARATOR)
        current.append(placement.text)
        last_end = placement.end_column
    if last_row is not None:
        lines.append("".join(current))
    return lines


def page_text(placements: Iterable[Placement], spacing: Optional[int] = None) -> str:
    """Lines of one page joined by newlines, always ending in a newline."""
    return "\n".join(assemble_lines(placements, spacing)) + "\n"


def page_text_with_locations(placements: Iterable[Placement], spacing: Optional[int] = None) -> str:
    """Debug form: each line prefixed by its row and quoted."""
    spacing = CONFIG["assembly"]["spacing"] if spacing is None else spacing
    recognized = sorted(p for p in placements if p.recognized)
    rows = sorted({p.row for p in recognized})
    out = []
    for row in rows:
        line = assemble_lines([p for p in recognized if p.row == row], spacing)
        out.append(f'{row}: "{line[0]}"')
    return "\n".join(out) + "\n"


class MultiPageText:
    """Running text buffer for a series of dose screen pages."""

    def __init__(self):
        self._pages: list[str] = []

    def append_page(self, text: str) -> None:
        self._pages.append(text)
        logger.debug("Appended page %d (%d characters)", len(self._pages), len(text))

    @property
    def page_count(self) -> int:
        return len(self._pages)

    @property
    def text(self) -> str:
        return "".join(self._pages)

    def lines(self) -> list[str]:
        return self.text.splitlines()

    def __str__(self) -> str:
        return self.text
