"""
errors.py - Exception types raised by the recognition pipeline.

Only conditions that abort work on one image are raised. Unrecognized
glyphs, partial parses and total mismatches are reported through return
values and log messages instead.
"""


class DoseOCRError(Exception):
    """Base class for all dose OCR failures."""


class ImageDecodeError(DoseOCRError):
    """The raster could not be built from the input file."""


class ConnectivityOverflow(DoseOCRError):
    """A connected component grew past the pixel cap.

    Signals an image that was not thresholded into text, so segmentation
    of that image is abandoned.
    """

    def __init__(self, row: int, column: int, limit: int):
        self.row = row
        self.column = column
        self.limit = limit
        super().__init__(
            f"Component starting at ({row}, {column}) exceeds {limit} pixels."
        )


class DictionaryFormatError(DoseOCRError):
    """The glyph dictionary file could not be parsed."""
