"""Tests for doseocr/segmenter.py."""

import numpy as np
import pytest

from doseocr.errors import ConnectivityOverflow
from doseocr.glyphs import Glyph
from doseocr.segmenter import GapTolerance, find_components, segment_page, tolerance_for

BLOCK = np.ones((3, 3), dtype=bool)
BAR = np.ones((3, 2), dtype=bool)


def _page(height: int, width: int, *stamps) -> np.ndarray:
    """Blank bitmap with each (shape, row, column) stamp drawn in."""
    bitmap = np.zeros((height, width), dtype=bool)
    for shape, row, column in stamps:
        h, w = shape.shape
        bitmap[row:row + h, column:column + w] |= shape
    return bitmap


class FakeLookup:
    def __init__(self, known=None):
        self.known = dict(known or {})
        self.learned = {}

    def recognize(self, glyph):
        return self.known.get(glyph)

    def learn(self, glyph, text):
        self.learned[glyph] = text


class TestToleranceFor:
    def test_dialect_profiles(self):
        assert tolerance_for("ge") == GapTolerance(6, 4)
        assert tolerance_for("siemens") == GapTolerance(6, 2)
        assert tolerance_for("toshiba") == GapTolerance(13, 6)


class TestFindComponents:
    def test_separate_components_get_tight_boxes(self):
        bitmap = _page(10, 30, (BLOCK, 2, 1), (BAR, 2, 15))
        components = find_components(bitmap, GapTolerance(6, 4))
        assert [(c.row, c.column) for c in components] == [(2, 1), (2, 15)]
        assert components[0].glyph == Glyph.from_array(BLOCK)
        assert components[1].glyph == Glyph.from_array(BAR)

    def test_horizontal_gap_within_tolerance_joins(self):
        bitmap = _page(5, 20, (BLOCK, 0, 0), (BLOCK, 0, 7))
        components = find_components(bitmap, GapTolerance(6, 4))
        assert len(components) == 1
        assert components[0].glyph.width == 10

    def test_horizontal_gap_beyond_tolerance_splits(self):
        bitmap = _page(5, 20, (BLOCK, 0, 0), (BLOCK, 0, 10))
        assert len(find_components(bitmap, GapTolerance(6, 4))) == 2

    def test_dotted_letter_joins_only_with_vertical_tolerance(self):
        dot = np.ones((1, 1), dtype=bool)
        stem = np.ones((3, 1), dtype=bool)
        bitmap = _page(8, 5, (dot, 0, 2), (stem, 2, 2))
        assert len(find_components(bitmap, GapTolerance(6, 4))) == 1
        assert len(find_components(bitmap, GapTolerance(1, 1))) == 2

    def test_size_cap_raises(self):
        bitmap = np.ones((10, 10), dtype=bool)
        with pytest.raises(ConnectivityOverflow, match="exceeds 50 pixels"):
            find_components(bitmap, GapTolerance(1, 1), max_pixels=50)

    def test_empty_bitmap(self):
        assert find_components(np.zeros((4, 4), dtype=bool), GapTolerance(1, 1)) == []


class TestSegmentPage:
    def test_known_glyphs_are_recognized(self):
        bitmap = _page(10, 30, (BLOCK, 2, 1), (BAR, 2, 15))
        lookup = FakeLookup({Glyph.from_array(BLOCK): "8", Glyph.from_array(BAR): "1"})
        result = segment_page(bitmap, lookup, GapTolerance(6, 4))
        assert [p.text for p in result.placements] == ["8", "1"]
        assert result.unrecognized == []

    def test_unknown_glyph_is_kept_without_text(self):
        bitmap = _page(10, 30, (BLOCK, 2, 1), (BAR, 2, 15))
        lookup = FakeLookup({Glyph.from_array(BLOCK): "8"})
        result = segment_page(bitmap, lookup, GapTolerance(6, 4))
        assert [p.text for p in result.recognized] == ["8"]
        assert len(result.unrecognized) == 1
        assert result.unrecognized[0].column == 15
        assert result.unrecognized[0].text is None

    def test_second_pass_splits_merged_glyphs(self):
        # 3 blank columns: joined at (6, 4), apart at (1, 1)
        bitmap = _page(10, 30, (BLOCK, 2, 1), (BAR, 2, 7))
        lookup = FakeLookup({Glyph.from_array(BLOCK): "1", Glyph.from_array(BAR): "2"})
        result = segment_page(bitmap, lookup, GapTolerance(6, 4))
        assert len(result.recognized) == 1
        word = result.recognized[0]
        assert (word.row, word.column, word.text) == (2, 1, "12")
        assert word.glyph.width == 8
        assert lookup.learned == {word.glyph: "12"}

    def test_second_pass_keeps_unknown_pieces(self):
        bitmap = _page(10, 30, (BLOCK, 2, 1), (BAR, 2, 7))
        lookup = FakeLookup({Glyph.from_array(BLOCK): "1"})
        result = segment_page(bitmap, lookup, GapTolerance(6, 4))
        assert [p.text for p in result.recognized] == ["1"]
        assert [(p.row, p.column) for p in result.unrecognized] == [(2, 7)]

    def test_overflow_propagates(self):
        with pytest.raises(ConnectivityOverflow):
            segment_page(np.ones((20, 20), dtype=bool), FakeLookup(), GapTolerance(6, 4), max_pixels=100)

    def test_is_deterministic(self):
        bitmap = _page(10, 40, (BLOCK, 2, 1), (BAR, 2, 7), (BLOCK, 6, 25))
        lookup = FakeLookup({Glyph.from_array(BLOCK): "1", Glyph.from_array(BAR): "2"})
        first = segment_page(bitmap, lookup, GapTolerance(6, 4)).placements
        second = segment_page(bitmap, lookup, GapTolerance(6, 4)).placements
        assert [(p.row, p.column, p.text) for p in first] == [(p.row, p.column, p.text) for p in second]
