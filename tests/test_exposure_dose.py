"""Tests for doseocr/exposure_dose.py."""

from pydicom.dataset import Dataset
from pydicom.sequence import Sequence

from doseocr.exposure_dose import (
    PRIVATE_DLP_TAG,
    has_exposure_dose_sequence,
    private_dlp,
    report_from_exposure_dose_sequence,
    start_date_time_from,
    values_from_comments,
)
from doseocr.model import PhantomType, ScanType, SourceOfDoseInformation


def _item(**kwargs) -> Dataset:
    item = Dataset()
    for key, value in kwargs.items():
        setattr(item, key, value)
    return item


def _phantom_code(value: str) -> Sequence:
    code = Dataset()
    code.CodeValue = value
    code.CodingSchemeDesignator = "DCM"
    return Sequence([code])


def _make_dataset(comments: str = "", items=None) -> Dataset:
    ds = Dataset()
    ds.StudyInstanceUID = "1.2.3"
    ds.StudyDate = "20230601"
    ds.StudyTime = "120000"
    ds.StudyDescription = "CT ABDOMEN"
    ds.ProtocolName = "Abdomen"
    if comments:
        ds.CommentsOnRadiationDose = comments
    if items is not None:
        ds.ExposureDoseSequence = Sequence(items)
    return ds


class TestComments:
    def test_ge_events_and_total(self):
        ds = _make_dataset("Event=1 DLP=123.45\nEvent=2 DLP=67.80\nTotal DLP=191.25\n")
        dlp, ctdivol, total = values_from_comments(ds)
        assert dlp == {"1": "123.45", "2": "67.80"}
        assert ctdivol == {}
        assert total == "191.25"

    def test_philips_series(self):
        ds = _make_dataset("Series #3 Helical CTDIvol = 12.5 DLP = 400.0\n")
        dlp, ctdivol, total = values_from_comments(ds)
        assert dlp == {"3": "400.0"}
        assert ctdivol == {"3": "12.5"}
        assert total == ""

    def test_no_comments(self):
        assert values_from_comments(_make_dataset()) == ({}, {}, "")


class TestPrivateDLP:
    def test_decimal_string(self):
        ds = _make_dataset()
        ds.add_new(PRIVATE_DLP_TAG, "DS", "250.5")
        assert private_dlp(ds) == "250.5"

    def test_raw_bytes(self):
        ds = _make_dataset()
        ds.add_new(PRIVATE_DLP_TAG, "UN", b"250.50 ")
        assert private_dlp(ds) == "250.5"

    def test_absent(self):
        assert private_dlp(_make_dataset()) == ""


class TestReportFromExposureDoseSequence:
    def test_builds_acquisitions(self):
        items = [
            _item(
                AcquisitionType="SPIRAL",
                CTDIvol=12.5,
                KVP="120",
                ExposureTime="5000",
                XRayTubeCurrentInuA="200000",
                ScanLength="300",
                CTDIPhantomTypeCodeSequence=_phantom_code("113691"),
            ),
            _item(
                AcquisitionType="CONSTANT_ANGLE",
                CTDIvol=0.5,
                CTDIPhantomTypeCodeSequence=_phantom_code("113690"),
            ),
        ]
        ds = _make_dataset("Event=1 DLP=123.45\nEvent=2 DLP=1.20\nTotal DLP=124.65\n", items)
        assert has_exposure_dose_sequence(ds)

        report = report_from_exposure_dose_sequence(ds)
        assert report.source is SourceOfDoseInformation.COPIED_FROM_IMAGE_ATTRIBUTES
        assert report.scope_uid == "1.2.3"
        assert report.start_date_time == "20230601120000"
        assert report.dlp_total == "124.65"

        helical, localizer = report.acquisitions
        assert helical.is_series
        assert helical.number is None
        assert helical.scan_type is ScanType.HELICAL
        assert helical.ctdivol == "12.5"
        assert helical.dlp == "123.45"
        assert helical.phantom is PhantomType.BODY32

        parameters = helical.acquisition_parameters
        assert parameters.exposure_time_s == "5"
        assert parameters.tube_current_ma == "200"
        assert parameters.kvp == "120"
        assert parameters.protocol == "Abdomen"
        assert parameters.length_of_reconstructable_volume_mm == "300"
        # 123.45 / 12.5 * 10 is shorter than the reported 300 mm
        assert parameters.scanning_length_mm == "300"

        assert localizer.scan_type is ScanType.LOCALIZER
        assert localizer.phantom is PhantomType.HEAD16
        assert localizer.acquisition_parameters.length_of_reconstructable_volume_mm is None

    def test_private_total_wins_over_comments(self):
        ds = _make_dataset("Total DLP=100.00\n", [_item(AcquisitionType="AXIAL", CTDIvol=10.0)])
        ds.add_new(PRIVATE_DLP_TAG, "DS", "99.5")
        assert report_from_exposure_dose_sequence(ds).dlp_total == "99.5"

    def test_without_sequence(self):
        assert not has_exposure_dose_sequence(_make_dataset())
        assert not has_exposure_dose_sequence(None)


class TestStartDateTime:
    def test_date_and_time(self):
        assert start_date_time_from(_make_dataset()) == "20230601120000"

    def test_short_date_is_kept_alone(self):
        ds = _make_dataset()
        ds.StudyDate = "2023"
        assert start_date_time_from(ds) == "2023"
