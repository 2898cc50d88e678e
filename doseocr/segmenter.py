"""
segmenter.py - Connected-component glyph segmentation.

A component is grown from a seed pixel by accepting any foreground pixel
within H columns and V rows of a pixel already in the component, not just
its 4 or 8 neighbours. With the right (H, V) for a renderer, the dots and
strokes of one character join while neighbouring characters stay apart.

Segmentation runs in two passes:

1. Row-major over the whole bitmap with the dialect's tolerances. Each
   component is looked up in the dictionary.
2. For every component that was not recognized, the pixels inside its
   bounding box are segmented again with (1, 1) tolerances, column-major,
   to split characters that the first pass merged. The texts of the
   recognized pieces are concatenated into one word for the whole box.

A component larger than the pixel cap means the bitmap is not text
(usually a badly thresholded image), and ConnectivityOverflow is raised
for the whole page.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

import numpy as np

from doseocr.config import CONFIG
from doseocr.errors import ConnectivityOverflow
from doseocr.glyphs import Glyph, Placement

logger = logging.getLogger(__name__)


class GlyphLookup(Protocol):
    def recognize(self, glyph: Glyph) -> Optional[str]: ...

    def learn(self, glyph: Glyph, text: str) -> None: ...


@dataclass(frozen=True)
class GapTolerance:
    horizontal: int
    vertical: int


@dataclass
class Component:
    """One connected pixel set: its top-left corner, its glyph and its pixels."""
    row: int
    column: int
    glyph: Glyph
    pixels: np.ndarray  # (n, 2) array of absolute (row, column)


@dataclass
class PageSegmentation:
    """Result of segmenting one bitmap."""
    recognized: list[Placement] = field(default_factory=list)
    unrecognized: list[Placement] = field(default_factory=list)

    @property
    def placements(self) -> list[Placement]:
        return sorted(self.recognized + self.unrecognized)


def tolerance_for(dialect: str) -> GapTolerance:
    """Configured gap tolerance for a dialect name ("ge", "siemens", "toshiba")."""
    entry = CONFIG["segmentation"]["tolerances"][dialect]
    return GapTolerance(int(entry["horizontal"]), int(entry["vertical"]))


def grow_component(
    bitmap: np.ndarray,
    visited: np.ndarray,
    row: int,
    column: int,
    tolerance: GapTolerance,
    max_pixels: int,
) -> np.ndarray:
    """
    Collect every pixel reachable from (row, column) within the gap tolerance.

    Uses an explicit stack, so component size is limited only by
    *max_pixels*. Pixels are marked in *visited* as they are taken.

    Returns
    -------
    np.ndarray
        (n, 2) array of (row, column) pixel coordinates.

    Raises
    ------
    ConnectivityOverflow
        If the component grows beyond *max_pixels*.
    """
    height, width = bitmap.shape
    dv, dh = tolerance.vertical, tolerance.horizontal
    visited[row, column] = True
    stack = [(row, column)]
    found = []
    while stack:
        y, x = stack.pop()
        found.append((y, x))
        if len(found) > max_pixels:
            raise ConnectivityOverflow(row, column, max_pixels)
        y0, y1 = max(y - dv, 0), min(y + dv + 1, height)
        x0, x1 = max(x - dh, 0), min(x + dh + 1, width)
        window = bitmap[y0:y1, x0:x1] & ~visited[y0:y1, x0:x1]
        for ny, nx in zip(*np.nonzero(window)):
            ny += y0
            nx += x0
            visited[ny, nx] = True
            stack.append((int(ny), int(nx)))
    return np.array(found, dtype=np.intp)


def component_from_pixels(pixels: np.ndarray) -> Component:
    """Trim a pixel set to its tight bounding box and build its glyph."""
    top, left = pixels.min(axis=0)
    bottom, right = pixels.max(axis=0)
    region = np.zeros((bottom - top + 1, right - left + 1), dtype=bool)
    region[pixels[:, 0] - top, pixels[:, 1] - left] = True
    return Component(int(top), int(left), Glyph.from_array(region), pixels)


def find_components(
    bitmap: np.ndarray,
    tolerance: GapTolerance,
    max_pixels: Optional[int] = None,
    visited: Optional[np.ndarray] = None,
    box: Optional[tuple[int, int, int, int]] = None,
    column_major: bool = False,
) -> list[Component]:
    """
    Segment *bitmap* into components, in scan order of their seed pixels.

    Parameters
    ----------
    bitmap : np.ndarray
        Boolean foreground array.
    tolerance : GapTolerance
        Horizontal and vertical gap accepted between pixels of one component.
    max_pixels : int, optional
        Component size cap (default from config).
    visited : np.ndarray, optional
        Shared visited mask; pixels already set are never revisited.
    box : (top, left, bottom, right), optional
        Inclusive region to seed from. Components may grow past it.
    column_major : bool
        Scan columns first (left to right, then top to bottom in each column).

    Returns
    -------
    list[Component]
    """
    if max_pixels is None:
        max_pixels = int(CONFIG["segmentation"]["max_component_pixels"])
    bitmap = np.asarray(bitmap, dtype=bool)
    if visited is None:
        visited = np.zeros(bitmap.shape, dtype=bool)

    if box is None:
        top, left = 0, 0
        bottom, right = bitmap.shape[0] - 1, bitmap.shape[1] - 1
    else:
        top, left, bottom, right = box
    seeds = np.argwhere(bitmap[top:bottom + 1, left:right + 1])
    if column_major and len(seeds):
        seeds = seeds[np.lexsort((seeds[:, 0], seeds[:, 1]))]

    components = []
    for y, x in seeds:
        y += top
        x += left
        if visited[y, x]:
            continue
        pixels = grow_component(bitmap, visited, int(y), int(x), tolerance, max_pixels)
        components.append(component_from_pixels(pixels))
    return components


def segment_page(
    bitmap: np.ndarray,
    lookup: GlyphLookup,
    tolerance: GapTolerance,
    max_pixels: Optional[int] = None,
) -> PageSegmentation:
    """
    Segment a page and recognize its glyphs in two passes.

    Parameters
    ----------
    bitmap : np.ndarray
        Boolean foreground array from the binarizer.
    lookup : GlyphLookup
        Recognizer (read-only or training) used for every glyph.
    tolerance : GapTolerance
        First-pass gap tolerance for the page's dialect.
    max_pixels : int, optional
        Component size cap.

    Returns
    -------
    PageSegmentation

    Raises
    ------
    ConnectivityOverflow
        If any component exceeds the size cap.
    """
    bitmap = np.asarray(bitmap, dtype=bool)
    result = PageSegmentation()
    first_pass_unrecognized: list[Component] = []

    for component in find_components(bitmap, tolerance, max_pixels):
        text = lookup.recognize(component.glyph)
        if text:
            result.recognized.append(Placement(component.row, component.column, component.glyph, text))
        else:
            first_pass_unrecognized.append(component)

    logger.debug(
        "First pass: %d recognized, %d unrecognized",
        len(result.recognized), len(first_pass_unrecognized),
    )
    if not first_pass_unrecognized:
        return result

    # Second pass may not touch pixels that already belong to recognized glyphs
    visited = np.zeros(bitmap.shape, dtype=bool)
    for placement in result.recognized:
        glyph_pixels = np.argwhere(placement.glyph.to_array())
        visited[glyph_pixels[:, 0] + placement.row, glyph_pixels[:, 1] + placement.column] = True

    minimal = GapTolerance(1, 1)
    for component in first_pass_unrecognized:
        box = (
            component.row,
            component.column,
            component.row + component.glyph.height - 1,
            component.column + component.glyph.width - 1,
        )
        word = ""
        for piece in find_components(bitmap, minimal, max_pixels, visited, box, column_major=True):
            piece_text = lookup.recognize(piece.glyph)
            if piece_text:
                word += piece_text
            else:
                result.unrecognized.append(Placement(piece.row, piece.column, piece.glyph))
        if word:
            lookup.learn(component.glyph, word)
            result.recognized.append(Placement(component.row, component.column, component.glyph, word))
        else:
            logger.debug("Unrecognized glyph at (%d, %d)", component.row, component.column)

    return result
