"""Tests for doseocr/binarize.py."""

import numpy as np
import pytest
import pydicom
from pydicom.dataset import Dataset, FileDataset
from pydicom.uid import ExplicitVRLittleEndian

from doseocr.binarize import apply_window, binarize_array, binarize_dataset, statistical_window


def _make_ds_with_pixels(pixels: np.ndarray, **kwargs) -> Dataset:
    """Create a minimal 16 bit pydicom Dataset with pixel_array support."""
    file_meta = pydicom.Dataset()
    file_meta.MediaStorageSOPClassUID = pydicom.uid.UID("1.2.840.10008.5.1.4.1.1.7")
    file_meta.MediaStorageSOPInstanceUID = pydicom.uid.generate_uid()
    file_meta.TransferSyntaxUID = ExplicitVRLittleEndian

    ds = FileDataset(filename_or_obj=None, dataset={}, file_meta=file_meta, preamble=b"\0" * 128)
    ds.Rows, ds.Columns = pixels.shape
    ds.SamplesPerPixel = 1
    ds.PhotometricInterpretation = "MONOCHROME2"
    ds.PixelRepresentation = 0
    ds.BitsAllocated = 16
    ds.BitsStored = 16
    ds.HighBit = 15
    ds.PixelData = pixels.astype(np.uint16).tobytes()
    for key, value in kwargs.items():
        setattr(ds, key, value)
    return ds


class TestApplyWindow:
    def test_width_one_is_a_step(self):
        out = apply_window(np.array([-1.0, 0.0, 1.0]), center=0, width=1)
        np.testing.assert_array_equal(out, [0, 255, 255])

    def test_width_below_one_raises(self):
        with pytest.raises(ValueError, match="Window width"):
            apply_window(np.array([0.0]), center=0, width=0.5)

    def test_output_is_uint8(self):
        out = apply_window(np.linspace(-100, 100, 11), center=0, width=50)
        assert out.dtype == np.uint8
        assert out.min() == 0
        assert out.max() == 255


class TestStatisticalWindow:
    def test_spans_min_to_max(self):
        center, width = statistical_window(np.array([[10.0, 20.0]]))
        assert width == 11.0
        assert center == 15.5

    def test_all_masked_returns_none(self):
        values = np.array([[1.0, 2.0]])
        assert statistical_window(values, np.zeros(values.shape, dtype=bool)) is None


class TestBinarizeArray:
    def test_eight_bit_threshold(self):
        bitmap = binarize_array(np.array([[0, 255], [0, 0]], dtype=np.uint8))
        np.testing.assert_array_equal(bitmap, [[False, True], [False, False]])

    def test_is_deterministic(self):
        pixels = np.random.default_rng(7).integers(0, 256, size=(20, 30), dtype=np.uint8)
        np.testing.assert_array_equal(binarize_array(pixels), binarize_array(pixels))

    def test_bitmap_is_read_only(self):
        bitmap = binarize_array(np.array([[0, 255]], dtype=np.uint8))
        assert not bitmap.flags.writeable

    def test_one_bit_raster(self):
        bitmap = binarize_array(np.array([[0, 1, 0]]), bits_stored=1)
        np.testing.assert_array_equal(bitmap, [[False, True, False]])

    def test_padding_does_not_stretch_window(self):
        pixels = np.array([[-2000, 0, 100]], dtype=np.int16)
        masked = binarize_array(pixels, bits_stored=16, padding=-2000)
        np.testing.assert_array_equal(masked, [[False, False, True]])

    def test_unmasked_padding_stretches_window(self):
        # Without the mask, the padding pulls the background above threshold
        pixels = np.array([[-2000, 0, 100]], dtype=np.int16)
        unmasked = binarize_array(pixels, bits_stored=16)
        assert unmasked[0, 1]

    def test_binary_window_is_honoured(self):
        pixels = np.array([[0, 5, 10]], dtype=np.uint8)
        bitmap = binarize_array(pixels, window=(5, 1))
        np.testing.assert_array_equal(bitmap, [[False, True, True]])

    def test_viewing_window_is_discarded(self):
        pixels = np.array([[0, 5, 10]], dtype=np.uint8)
        # a statistical window over 0..10 puts 5 just below threshold
        bitmap = binarize_array(pixels, window=(5, 400))
        np.testing.assert_array_equal(bitmap, [[False, False, True]])

    def test_unsigned_default_padding(self):
        pixels = np.array([[32768, 0, 200, 0]], dtype=np.uint16)
        bitmap = binarize_array(pixels, bits_stored=16)
        np.testing.assert_array_equal(bitmap, [[False, False, True, False]])

    def test_signed_default_padding(self):
        pixels = np.array([[-32768, 0, 200, 0]], dtype=np.int16)
        bitmap = binarize_array(pixels, bits_stored=16, pixel_representation=1)
        np.testing.assert_array_equal(bitmap, [[False, False, True, False]])

    def test_only_padding_gives_empty_bitmap(self):
        pixels = np.full((3, 3), -2000, dtype=np.int16)
        assert not binarize_array(pixels, bits_stored=16, padding=-2000).any()

    def test_rejects_multi_frame(self):
        with pytest.raises(ValueError, match="2-D"):
            binarize_array(np.zeros((2, 3, 3)))


class TestBinarizeDataset:
    def test_sixteen_bit_screen(self):
        pixels = np.array([[0, 1000], [0, 0]])
        ds = _make_ds_with_pixels(pixels, WindowCenter="40", WindowWidth="400")
        bitmap = binarize_dataset(ds)
        np.testing.assert_array_equal(bitmap, [[False, True], [False, False]])

    def test_unsigned_padding_from_pixel_representation(self):
        # PixelRepresentation 0 and no PixelPaddingValue: 0x8000 is padding
        pixels = np.array([[32768, 0], [200, 0]])
        ds = _make_ds_with_pixels(pixels)
        np.testing.assert_array_equal(binarize_dataset(ds), [[False, False], [True, False]])

    def test_binary_window_from_header(self):
        pixels = np.array([[0, 1, 2]])
        ds = _make_ds_with_pixels(pixels, WindowCenter="1", WindowWidth="1")
        np.testing.assert_array_equal(binarize_dataset(ds), [[False, True, True]])
