"""
glyphs.py - Glyph bitmaps and their placements on a page.

A Glyph is the tight bounding box of one connected ink region, stored as
the row-major indices of its set pixels. Two glyphs are equal only when
width, height and every bit agree; there is no fuzzy matching, which is
what lets the dictionary be a plain dict.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional

import numpy as np


@dataclass(frozen=True)
class Glyph:
    width: int
    height: int
    bits: tuple[int, ...]
    from_dictionary: bool = field(default=False, compare=False)

    @classmethod
    def from_array(cls, region: np.ndarray, from_dictionary: bool = False) -> "Glyph":
        """Build a glyph from a boolean array already trimmed to its bounding box."""
        region = np.asarray(region, dtype=bool)
        height, width = region.shape
        bits = tuple(int(i) for i in np.flatnonzero(region.ravel()))
        return cls(width=width, height=height, bits=bits, from_dictionary=from_dictionary)

    @classmethod
    def from_bits(cls, width: int, bits: Iterable[int], from_dictionary: bool = False) -> "Glyph":
        """
        Rebuild a glyph from its persisted form (width plus set-bit indices).

        The height is implied by the highest set bit.
        """
        bits = tuple(sorted(set(int(b) for b in bits)))
        if width <= 0 or not bits:
            raise ValueError(f"Glyph needs a positive width and at least one bit, got width={width}.")
        height = bits[-1] // width + 1
        return cls(width=width, height=height, bits=bits, from_dictionary=from_dictionary)

    def to_array(self) -> np.ndarray:
        flat = np.zeros(self.width * self.height, dtype=bool)
        flat[list(self.bits)] = True
        return flat.reshape(self.height, self.width)

    def render(self, text: Optional[str] = None) -> str:
        """Draw the glyph as rows of "# " and ". ", optionally followed by its text."""
        rows = []
        for row in self.to_array():
            rows.append("".join("# " if on else ". " for on in row))
        rendered = "\n".join(rows) + "\n"
        if text is not None:
            rendered += f'String: "{text}"\n'
        return rendered


@dataclass(frozen=True, order=True)
class Placement:
    """A glyph found at (row, column), with its recognized text if any."""
    row: int
    column: int
    glyph: Glyph = field(compare=False)
    text: Optional[str] = field(default=None, compare=False)

    @property
    def recognized(self) -> bool:
        return self.text is not None

    @property
    def end_column(self) -> int:
        return self.column + self.glyph.width
