"""doseocr - recover CT dose values from dose screen captures."""

__version__ = "0.3.0"
