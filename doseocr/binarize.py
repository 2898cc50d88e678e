"""
binarize.py - Turn a dose screen raster into a foreground/background bitmap.

WHY THIS MATTERS
----------------
Dose screens are saved as 8, 12 or 16 bit grayscale (occasionally as a
1-bit overlay). The glyph segmenter only understands "ink" and "paper",
so every raster is first rendered to 8 bits and thresholded:

    foreground = rendered_value > 127

A window supplied in the header is usually tuned for viewing and can
clip the text, so it is discarded and replaced by a statistical window
(min..max of the pixel data). The exception is a window of width 1,
which a renderer only writes when it already produced a binary image.

Screens that have been edited (patient details blacked out) often carry
a padding value (-32768 when signed, 0x8000 when unsigned); it is masked
before the statistics so the window is not stretched by it.

References
----------
- DICOM PS3.3 C.11.2.1.2: linear VOI LUT function
- DICOM PS3.3 C.9: overlay planes (6000,3000)
"""

import logging
from typing import Optional

import numpy as np
from pydicom.dataset import Dataset

from doseocr.config import CONFIG

logger = logging.getLogger(__name__)

# Padding assumed for 16 bit screens that do not declare one
DEFAULT_16_BIT_PADDING = -32768
DEFAULT_16_BIT_UNSIGNED_PADDING = 0x8000

OVERLAY_GROUP = 0x6000


def rescale(
    pixel_array: np.ndarray,
    slope: float = 1.0,
    intercept: float = 0.0,
) -> np.ndarray:
    """
    Convert stored pixel values to output units.

    Parameters
    ----------
    pixel_array : np.ndarray
        Raw pixel data as returned by ``ds.pixel_array``.
    slope : float
        RescaleSlope from the DICOM header (default 1.0).
    intercept : float
        RescaleIntercept from the DICOM header (default 0.0).

    Returns
    -------
    np.ndarray
        Float array, same shape as *pixel_array*.
    """
    return pixel_array.astype(np.float64) * slope + intercept


def apply_window(
    values: np.ndarray,
    center: float,
    width: float,
) -> np.ndarray:
    """
    Render values to 0..255 with the DICOM linear window function.

    A width of 1 degenerates to a step at ``center - 0.5``: everything
    above it is 255, everything else 0.

    Parameters
    ----------
    values : np.ndarray
        Rescaled pixel values.
    center : float
        Window centre.
    width : float
        Window width, must be >= 1.

    Returns
    -------
    np.ndarray
        uint8 array, same shape as *values*.
    """
    if width < 1:
        raise ValueError(f"Window width must be >= 1, got width={width}.")
    if width == 1:
        return np.where(values > center - 0.5, 255, 0).astype(np.uint8)
    scaled = ((values - (center - 0.5)) / (width - 1) + 0.5) * 255.0
    return np.clip(scaled, 0, 255).astype(np.uint8)


def statistical_window(
    values: np.ndarray,
    mask: Optional[np.ndarray] = None,
) -> Optional[tuple[float, float]]:
    """
    Return (center, width) spanning min..max of the unmasked values.

    Returns None when there is nothing to span (no unmasked pixels).
    """
    selected = values if mask is None else values[mask]
    if selected.size == 0:
        return None
    low = float(selected.min())
    high = float(selected.max())
    width = max(high - low + 1.0, 1.0)
    center = low + width / 2.0
    return center, width


def threshold(image8: np.ndarray, level: Optional[int] = None) -> np.ndarray:
    """Foreground where an 8-bit rendering exceeds *level* (default from config)."""
    level = CONFIG["binarize"]["threshold"] if level is None else level
    bitmap = np.asarray(image8) > level
    bitmap.setflags(write=False)
    return bitmap


def binarize_array(
    pixels: np.ndarray,
    bits_stored: int = 8,
    slope: float = 1.0,
    intercept: float = 0.0,
    window: Optional[tuple[float, float]] = None,
    padding: Optional[int] = None,
    pixel_representation: Optional[int] = None,
) -> np.ndarray:
    """
    Build a bitmap from a bare raster and optional window/padding hints.

    Parameters
    ----------
    pixels : np.ndarray
        2-D array of stored pixel values.
    bits_stored : int
        Bit depth of *pixels*. A depth of 1 is thresholded at 0.
    slope, intercept : float
        Rescale parameters applied before windowing.
    window : (center, width), optional
        Supplied display window; honoured only when its width is 1.
    padding : int, optional
        Stored value to ignore when computing the statistical window.
    pixel_representation : int, optional
        0 for unsigned, 1 for signed stored values. Picks the default
        16 bit padding; taken from the dtype of *pixels* when omitted.

    Returns
    -------
    np.ndarray
        Read-only boolean array, same shape as *pixels*.
    """
    pixels = np.asarray(pixels)
    if pixels.ndim != 2:
        raise ValueError(f"Expected a single 2-D frame, got shape {pixels.shape}.")

    if bits_stored == 1:
        return threshold(pixels, 0)

    values = rescale(pixels, slope=slope, intercept=intercept)

    if window is not None and window[1] == 1:
        center, width = window
        logger.debug("Using supplied binary window: centre=%.1f, width=%.1f", center, width)
        return threshold(apply_window(values, center, width))

    if padding is None and bits_stored == 16:
        if pixel_representation is None:
            pixel_representation = 0 if np.issubdtype(pixels.dtype, np.unsignedinteger) else 1
        padding = DEFAULT_16_BIT_UNSIGNED_PADDING if pixel_representation == 0 else DEFAULT_16_BIT_PADDING
    mask = None
    if padding is not None:
        mask = pixels != padding

    stats = statistical_window(values, mask)
    if stats is None:
        logger.warning("Raster holds only padding; bitmap is empty.")
        return threshold(np.zeros(pixels.shape, dtype=np.uint8))
    center, width = stats
    logger.debug("Applying statistical window: centre=%.1f, width=%.1f", center, width)
    image8 = apply_window(values, center, width)
    if mask is not None:
        image8[~mask] = 0
    return threshold(image8)


def _first_value(value) -> Optional[float]:
    if value is None:
        return None
    # WindowCenter/Width can be a MultiValue list; take the first element
    if hasattr(value, "__iter__") and not isinstance(value, str):
        value = list(value)[0]
    return float(value)


def has_overlay(ds: Dataset) -> bool:
    return (OVERLAY_GROUP, 0x3000) in ds


def binarize_dataset(ds: Dataset) -> np.ndarray:
    """
    Build a bitmap from a DICOM dose screen.

    Priority:
    1. An overlay plane in group 6000, used directly as a 1-bit image.
    2. A supplied window of width 1.
    3. A statistical window over the non-padding pixel values.

    Parameters
    ----------
    ds : Dataset
        Loaded pydicom Dataset with pixel data or an overlay.

    Returns
    -------
    np.ndarray
        Read-only boolean array of shape (Rows, Columns).
    """
    if has_overlay(ds):
        logger.debug("Using overlay plane as the bitmap")
        return threshold(ds.overlay_array(OVERLAY_GROUP), 0)

    pixels = ds.pixel_array
    if pixels.ndim == 3 and getattr(ds, "SamplesPerPixel", 1) == 1:
        pixels = pixels[0]
    elif pixels.ndim == 3:
        # colour screen capture: take the luminance-ish mean of the channels
        pixels = pixels.mean(axis=2)

    width = _first_value(getattr(ds, "WindowWidth", None))
    center = _first_value(getattr(ds, "WindowCenter", None))
    window = (center, width) if width is not None and center is not None else None

    padding = getattr(ds, "PixelPaddingValue", None)
    return binarize_array(
        pixels,
        bits_stored=int(getattr(ds, "BitsStored", 8)),
        slope=float(getattr(ds, "RescaleSlope", 1.0)),
        intercept=float(getattr(ds, "RescaleIntercept", 0.0)),
        window=window,
        padding=int(padding) if padding is not None else None,
        pixel_representation=int(getattr(ds, "PixelRepresentation", 0)),
    )
