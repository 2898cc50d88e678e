"""Vendor dose screen dialects: detection and line parsers."""

from typing import Optional

from doseocr.dialects.base import DialectParser
from doseocr.dialects.detection import GE, SIEMENS, TOSHIBA, detect_dialect
from doseocr.dialects.ge import GEParser
from doseocr.dialects.siemens import SiemensParser
from doseocr.dialects.toshiba import ToshibaParser

PARSERS = {
    GE: GEParser,
    SIEMENS: SiemensParser,
    TOSHIBA: ToshibaParser,
}


def get_parser(dialect: Optional[str]) -> Optional[DialectParser]:
    """A fresh parser for *dialect*, or None for an unknown name."""
    parser_class = PARSERS.get(dialect)
    return parser_class() if parser_class is not None else None


__all__ = ["PARSERS", "DialectParser", "detect_dialect", "get_parser"]
