"""
visualization.py - matplotlib views for checking recognition by eye.

Every function returns the Figure so callers can save or display it.
"""

import logging

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.patches import Rectangle

from doseocr.glyphs import Glyph
from doseocr.model import DoseReport
from doseocr.segmenter import PageSegmentation

logger = logging.getLogger(__name__)

plt.rcParams.update({"figure.dpi": 100, "axes.titlesize": 11})


def plot_segmentation(bitmap: np.ndarray, segmentation: PageSegmentation, title: str = "Dose screen") -> plt.Figure:
    """
    Show a binarized page with a box around every placed glyph.

    Recognized glyphs are outlined in green, unrecognized ones in red.

    Parameters
    ----------
    bitmap : np.ndarray
        2-D page from the binarizer, nonzero for foreground.
    segmentation : PageSegmentation
        Result of segmenting the same page.
    title : str
        Plot title.

    Returns
    -------
    plt.Figure
    """
    height, width = bitmap.shape
    fig, ax = plt.subplots(figsize=(max(6, width / 100), max(4, height / 100)))
    ax.imshow(bitmap > 0, cmap="gray_r", interpolation="nearest")

    for placement, color in (
        [(p, "tab:green") for p in segmentation.recognized]
        + [(p, "tab:red") for p in segmentation.unrecognized]
    ):
        ax.add_patch(Rectangle(
            (placement.column - 0.5, placement.row - 0.5),
            placement.glyph.width,
            placement.glyph.height,
            fill=False,
            edgecolor=color,
            linewidth=0.8,
        ))

    ax.set_title(
        f"{title}\n{len(segmentation.recognized)} recognized, "
        f"{len(segmentation.unrecognized)} unrecognized"
    )
    ax.axis("off")
    fig.tight_layout()
    return fig


def plot_glyph(glyph: Glyph, text: str = "") -> plt.Figure:
    """One glyph, pixel by pixel, as shown when asking for its text."""
    fig, ax = plt.subplots(figsize=(max(1.5, glyph.width / 4), max(1.5, glyph.height / 4)))
    ax.imshow(glyph.to_array(), cmap="gray_r", interpolation="nearest")
    ax.set_title(repr(text) if text else f"{glyph.width}x{glyph.height}")
    ax.set_xticks([])
    ax.set_yticks([])
    return fig


def plot_dlp_by_acquisition(report: DoseReport) -> plt.Figure:
    """
    Bar chart of DLP per acquisition, with the screen's total for comparison.

    Acquisitions without a DLP are drawn as zero-height bars so that the
    x positions still match the order on the screen.
    """
    labels = []
    values = []
    for index, acquisition in enumerate(report.acquisitions, start=1):
        label = acquisition.number or str(index)
        if acquisition.scan_type is not None:
            label += f"\n{acquisition.scan_type.value}"
        labels.append(label)
        try:
            values.append(float(acquisition.dlp) if acquisition.dlp else 0.0)
        except ValueError:
            logger.warning("Unreadable DLP %r for acquisition %s", acquisition.dlp, label)
            values.append(0.0)

    fig, ax = plt.subplots(figsize=(max(6, len(labels) * 0.8), 4))
    positions = np.arange(len(labels))
    ax.bar(positions, values, color="steelblue")
    ax.set_xticks(positions)
    ax.set_xticklabels(labels, fontsize=8)
    ax.set_ylabel("DLP (mGy.cm)")

    total = report.dlp_total_to_use
    if total:
        ax.axhline(float(total), color="tab:orange", linestyle="--", label=f"Total {total}")
        ax.legend()

    ax.set_title(f"DLP per acquisition ({report.source.description if report.source else 'unknown source'})")
    fig.tight_layout()
    return fig
