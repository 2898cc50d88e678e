"""Tests for doseocr/assembler.py."""

import numpy as np

from doseocr.assembler import MultiPageText, assemble_lines, page_text, page_text_with_locations
from doseocr.glyphs import Glyph, Placement

NARROW = Glyph.from_array(np.ones((5, 3), dtype=bool))


def _at(row: int, column: int, text=None) -> Placement:
    return Placement(row, column, NARROW, text)


class TestAssembleLines:
    def test_close_glyphs_join_without_separator(self):
        # each glyph ends at column + 3; a gap of 2 stays in one field
        placements = [_at(0, 0, "1"), _at(0, 5, "2"), _at(0, 10, ".")]
        assert assemble_lines(placements, spacing=5) == ["12."]

    def test_wide_gap_inserts_tab(self):
        placements = [_at(0, 0, "KVP"), _at(0, 20, "120")]
        assert assemble_lines(placements, spacing=5) == ["KVP\t120"]

    def test_leading_indent_inserts_tab(self):
        assert assemble_lines([_at(0, 40, "X")], spacing=5) == ["\tX"]

    def test_rows_break_lines_in_order(self):
        placements = [_at(12, 0, "B"), _at(0, 0, "A"), _at(12, 5, "C")]
        assert assemble_lines(placements, spacing=5) == ["A", "BC"]

    def test_unrecognized_placements_are_absent(self):
        placements = [_at(0, 0, "1"), _at(0, 5), _at(0, 10, "3")]
        assert assemble_lines(placements, spacing=5) == ["1\t3"]

    def test_order_of_input_does_not_matter(self):
        placements = [_at(0, 5, "2"), _at(0, 0, "1")]
        assert assemble_lines(placements, spacing=5) == assemble_lines(list(reversed(placements)), spacing=5)


class TestPageText:
    def test_ends_with_newline(self):
        assert page_text([_at(0, 0, "A"), _at(9, 0, "B")], spacing=5) == "A\nB\n"

    def test_empty_page(self):
        assert page_text([], spacing=5) == "\n"

    def test_with_locations(self):
        text = page_text_with_locations([_at(0, 0, "A"), _at(9, 0, "B")], spacing=5)
        assert text == '0: "A"\n9: "B"\n'


class TestMultiPageText:
    def test_pages_concatenate(self):
        text = MultiPageText()
        text.append_page("A\n")
        text.append_page("B\n")
        assert text.page_count == 2
        assert text.text == "A\nB\n"
        assert text.lines() == ["A", "B"]
        assert str(text) == text.text
