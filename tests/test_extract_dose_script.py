"""Tests for scripts/extract_dose.py."""

import importlib.util
import os

import numpy as np
import pytest
import yaml
from PIL import Image

from doseocr.dictionary import GlyphDictionary
from doseocr.glyphs import Glyph

_SCRIPT = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "scripts", "extract_dose.py")
_spec = importlib.util.spec_from_file_location("extract_dose_script", _SCRIPT)
script = importlib.util.module_from_spec(_spec)
_spec.loader.exec_module(script)


def _ge_screen(tmp_path) -> tuple[str, str]:
    """A one-line GE screen as a PNG plus the dictionary that reads it."""
    texts = {1: "3", 2: "AXIAL", 3: "S10.000-S10.000", 4: "5.50", 5: "11.00", 6: "HEAD 16"}
    pixels = np.zeros((8, 100), dtype=np.uint8)
    column = 2
    dictionary = GlyphDictionary()
    for width, text in texts.items():
        pixels[2:5, column:column + width] = 255
        column += width + 10
        dictionary.add(Glyph.from_array(np.ones((3, width), dtype=bool)), text)
    screen = str(tmp_path / "screen.png")
    Image.fromarray(pixels).save(screen)
    glyphs = str(tmp_path / "glyphs.xml")
    dictionary.save(glyphs)
    return screen, glyphs


class TestParseArguments:
    def test_dash_leaves_argument_out(self):
        assert script.parse_arguments(["screen.dcm", "-", "out.yaml"]) == {
            "screen": "screen.dcm",
            "output": "out.yaml",
        }

    def test_too_many_arguments(self):
        with pytest.raises(SystemExit):
            script.parse_arguments(["a", "b", "c", "d", "e", "f"])


class TestMain:
    def test_usage_without_inputs(self, capsys):
        assert script.main([]) == 2
        assert "Usage" in capsys.readouterr().out

    def test_no_dose_screen_is_not_an_error(self, tmp_path):
        assert script.main(["-", str(tmp_path)]) == 0

    def test_writes_report_and_chart(self, tmp_path, monkeypatch):
        monkeypatch.setitem(script.CONFIG["paths"], "reports_folder", str(tmp_path / "reports"))
        screen, glyphs = _ge_screen(tmp_path)
        output = str(tmp_path / "report.yaml")

        assert script.main([screen, "-", output, glyphs]) == 0

        with open(output) as f:
            saved = yaml.safe_load(f)
        acquisition = saved["acquisitions"][0]
        assert acquisition["series"] == "3"
        assert acquisition["scan_type"] == "Stationary"
        assert acquisition["phantom"] == "HEAD16"
        assert os.path.exists(tmp_path / "reports" / "dlp_by_acquisition.png")
