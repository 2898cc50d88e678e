"""Tests for doseocr/dialects/toshiba.py."""

import pytest

from doseocr.dialects.toshiba import DetailState, ToshibaParser, clean_protocol, clean_type
from doseocr.model import DoseReport, PhantomType, ScanType

DETAIL = (
    "<<Detail Information>>\n"
    "1.Abdomen\n"
    "Exposure Time CTDIvol DLP Total mAs\n"
    "12.30(Body) 456.70(Body)\n"
    "Helical 5.0 120.0\n"
)


def _parse(text: str, parser: ToshibaParser = None) -> DoseReport:
    return (parser or ToshibaParser()).parse(text, DoseReport(scope_uid="1.2.3"))


def _detail(*lines: str) -> str:
    """A detail section for one protocol holding *lines*."""
    return "<<Detail Information>>\n1.Abdomen\n" + "".join(line + "\n" for line in lines)


class TestDoseInformation:
    def test_head_and_body_on_one_line(self):
        report = _parse("<<Dose Information>>\nDLP(mGycm) (Head): 100.0 (Body): 200.0\n")
        assert report.dlp_subtotal_head == "100.0"
        assert report.dlp_subtotal_body == "200.0"
        assert report.dlp_total == "250.00"
        assert report.dlp_total_phantom is PhantomType.BODY32

    def test_head_and_body_on_next_line(self):
        report = _parse("<<Dose Information>>\nDLP(mGycm) (Head): (Body):\n100.0 200.0\n")
        assert report.dlp_total == "250.00"

    def test_body_only_with_value(self):
        report = _parse("<<Dose Information>>\nDLP(mGycm) (Head): - (Body): 300.5\n")
        assert report.dlp_total == "300.5"
        assert report.dlp_total_phantom is PhantomType.BODY32

    def test_head_only_on_next_line(self):
        report = _parse("<<Dose Information>>\nDLP(mGycm) (Head): (Body): -\n88.8\n")
        assert report.dlp_total == "88.8"
        assert report.dlp_total_phantom is PhantomType.HEAD16

    def test_total_phantom_survives_acquisitions(self):
        text = "<<Dose Information>>\nDLP(mGycm) (Head): (Body): -\n88.8\n" + DETAIL
        report = _parse(text)
        assert len(report.acquisitions) == 1
        assert report.dlp_total_phantom is PhantomType.HEAD16

    def test_dotted_i_header(self):
        report = _parse("<<Dose .Informat.ion>>\nDLP(mGycm) (Head): - (Body): 12.5\n")
        assert report.dlp_total == "12.5"

    def test_total_eff_dlp(self):
        report = _parse("<<Dose Information>>\nEff. DLP (mGycm) : 123.4\n")
        assert report.dlp_total == "123.4"

    def test_total_dlp_without_section(self):
        report = _parse("Total DLP mGycm : 123.4\n")
        assert report.dlp_total == "123.4"


class TestDetailInformation:
    def test_values_then_type_row(self):
        report = _parse(DETAIL)
        assert len(report.acquisitions) == 1
        acquisition = report.acquisitions[0]
        assert not acquisition.is_series
        assert acquisition.scan_type is ScanType.HELICAL
        assert acquisition.ctdivol == "12.30"
        assert acquisition.dlp == "456.70"
        assert acquisition.phantom is PhantomType.BODY32

    def test_total_mas_first_layout(self):
        text = (
            "<<Detail Information>>\n"
            "2.Chest\n"
            "Total mAs Exposure Time CTDIvol DLP\n"
            "8.1(Body) 250.0(Body)\n"
            "Helical 150 5.5\n"
        )
        acquisition = _parse(text).acquisitions[0]
        assert acquisition.total_mas == "150"
        assert acquisition.exposure_time_s == "5.5"
        assert acquisition.dlp == "250.0"

    def test_partial_record_at_end_of_input(self):
        text = DETAIL.rsplit("\n", 2)[0] + "\n"  # drop the type row
        report = _parse(text)
        assert len(report.acquisitions) == 1
        acquisition = report.acquisitions[0]
        assert acquisition.ctdivol == "12.30"
        assert acquisition.dlp == "456.70"
        assert acquisition.scan_type is ScanType.UNKNOWN

    def test_partial_record_flushed_by_next_protocol(self):
        text = (
            "<<Detail Information>>\n"
            "1.Abdomen\n"
            "Exposure Time CTDIvol DLP Total mAs\n"
            "12.30(Body) 456.70(Body)\n"
            "2.Pelvis\n"
            "Exposure Time CTDIvol DLP Total mAs\n"
            "9.10(Body) 300.00(Body)\n"
            "Helical 4.0 90.0\n"
        )
        report = _parse(text)
        assert [a.dlp for a in report.acquisitions] == ["456.70", "300.00"]

    def test_contrast_section_is_ignored(self):
        text = "<<Contrast Enhance Information>>\n12.30(Body) 456.70(Body)\nHelical 5.0 120.0\n"
        assert _parse(text).acquisitions == []

    def test_parser_is_reusable(self):
        parser = ToshibaParser()
        _parse(DETAIL.rsplit("\n", 2)[0] + "\n", parser)
        report = _parse("Total DLP mGycm : 1.0\n", parser)
        assert report.acquisitions == []
        assert parser.state is DetailState.NONE


class TestDetailLayouts:
    EFF_DLP_HEADERS = (
        "Exposure Time CTDIvol DLP Total mAs",
        "Eff.DLP(mGycm)",
        "Dose Red. Mode Start Pos. End Pos.",
        "Tot. Dose Red.(%)",
    )
    BOOST_HEADERS = (
        "Exposure Time CTDIvol DLP Total mAs",
        "Start Pos. End Pos. CTDIair DLPair",
        "Eff. CTDIvol Mean Eff. DLP Modulation SD",
        "Boost QDS Dose Red. Mode Tot. Dose Red.",
        "Total Image Number",
    )

    def test_eff_dlp_rows(self):
        text = _detail(
            *self.EFF_DLP_HEADERS,
            "12.30(Body) 456.70(Body)",
            "Helical 5.0 120.0",
            "15 AIDR +10.0 -200.0",
            "25",
        )
        report = _parse(text)
        assert len(report.acquisitions) == 1
        acquisition = report.acquisitions[0]
        assert acquisition.scan_type is ScanType.HELICAL
        assert acquisition.ctdivol == "12.30"
        assert acquisition.dlp == "456.70"
        assert acquisition.phantom is PhantomType.BODY32
        assert acquisition.total_mas == "5.0"
        assert acquisition.exposure_time_s == "120.0"
        assert str(acquisition.scan_range) == "S10.0-I200.0"

    def test_eff_dlp_missing_third_row(self):
        text = _detail(
            *self.EFF_DLP_HEADERS,
            "12.30(Body) 456.70(Body)",
            "Helical 5.0 120.0",
            "15 AIDR +10.0 -200.0",
            "9.10(Body) 300.00(Body)",
            "Helical 4.0 90.0",
        )
        report = _parse(text)
        assert [a.dlp for a in report.acquisitions] == ["456.70", "300.00"]
        assert str(report.acquisitions[0].scan_range) == "S10.0-I200.0"
        assert report.acquisitions[1].total_mas == "4.0"
        assert report.acquisitions[1].scan_range is None

    def test_protocol_line_records_half_filled_acquisition(self):
        parser = ToshibaParser()
        text = _detail(
            *self.EFF_DLP_HEADERS,
            "12.30(Body) 456.70(Body)",
            "Helical 5.0 120.0",
            "15 AIDR +10.0 -200.0",
            "2.Chest",
        )
        report = _parse(text, parser)
        assert len(report.acquisitions) == 1
        assert str(report.acquisitions[0].scan_range) == "S10.0-I200.0"
        assert parser.protocol == "2.CHEST"
        assert parser.state is DetailState.NONE

    def test_start_pos_ctdiair_dlpair_boost_rows(self):
        text = _detail(
            *self.BOOST_HEADERS,
            "12.30(Body) 456.70(Body)",
            "+10.0 -200.0 5.0 6.0",
            "1.0 2.0 AIDR 12",
            "On Off STD 30",
            "120",
        )
        parser = ToshibaParser()
        report = _parse(text, parser)
        assert len(report.acquisitions) == 1
        acquisition = report.acquisitions[0]
        assert acquisition.ctdivol == "12.30"
        assert acquisition.dlp == "456.70"
        assert acquisition.phantom is PhantomType.BODY32
        assert str(acquisition.scan_range) == "S10.0-I200.0"
        assert parser.state is DetailState.BOOST_FIRST_ROW

    def test_truncated_boost_rows_recorded_at_end(self):
        text = _detail(
            *self.BOOST_HEADERS,
            "12.30(Body) 456.70(Body)",
            "+10.0 -200.0 5.0 6.0",
        )
        report = _parse(text)
        assert len(report.acquisitions) == 1
        assert report.acquisitions[0].dlp == "456.70"
        assert str(report.acquisitions[0].scan_range) == "S10.0-I200.0"

    def test_start_pos_end_pos_rows(self):
        text = _detail(
            "Start Pos. End Pos. Exposure Time Total mAs",
            "Eff. CTDIvol Mean Eff. DLP SD",
            "Helical +10.0 -200.0 5.0 120",
            "12.3 456.7 10.0",
        )
        report = _parse(text)
        assert len(report.acquisitions) == 1
        acquisition = report.acquisitions[0]
        assert acquisition.scan_type is ScanType.HELICAL
        assert str(acquisition.scan_range) == "S10.0-I200.0"
        assert acquisition.exposure_time_s == "5.0"
        assert acquisition.total_mas == "120"
        assert acquisition.ctdivol == "12.3"
        assert acquisition.dlp == "456.7"

    def test_dose_reduction_mode_modulation_rows(self):
        # "Tota.l": the dot of a misread "l"
        text = _detail(
            "Tota.l mAs Exposure Time CTDIvol.e DLP.e",
            "Tot. Dose Red. Dose Red. Mode Modulation",
            "8.10(Body) 250.00(Body)",
            "Helical 150 5.5",
            "25 AIDR3D On",
        )
        parser = ToshibaParser()
        report = _parse(text, parser)
        assert len(report.acquisitions) == 1
        acquisition = report.acquisitions[0]
        assert acquisition.scan_type is ScanType.HELICAL
        assert acquisition.total_mas == "150"
        assert acquisition.ctdivol == "8.10"
        assert acquisition.dlp == "250.00"
        assert parser.state is DetailState.TOTAL_MAS_E_DOSE_REDUCTION_MODE_MODULATION

    def test_total_dose_reduction_rows(self):
        text = _detail(
            "Tota.l mAs Exposure Time CTDIvol.e DLP.e",
            "Tot. Dose Red.",
            "8.10(Body) 250.00(Body)",
            "Helical 150 5.5",
            "25",
        )
        report = _parse(text)
        assert len(report.acquisitions) == 1
        assert report.acquisitions[0].total_mas == "150"
        assert report.acquisitions[0].dlp == "250.00"

    def test_exposure_time_ctdivol_dlp_sd(self):
        text = _detail(
            "Exposure Time CTDIvol DLP SD",
            "12.30(Body) 456.70(Body)",
            "Helical 5.0 12.0",
        )
        acquisition = _parse(text).acquisitions[0]
        assert acquisition.exposure_time_s == "5.0"
        assert acquisition.total_mas is None
        assert acquisition.dlp == "456.70"

    @pytest.mark.parametrize("headers", [
        ("Total mAs CTDIvol DLP SD",),
        ("CTDIvol (mGy) DLP (mGycm)", "Total mAs SD"),
    ])
    def test_total_mas_ctdivol_dlp_sd(self, headers):
        text = _detail(
            *headers,
            "12.30(Body) 456.70(Body)",
            "Helical 150 12.0",
            "9.10(Head) 300.00(Head)",
            "Axial 80 10.0",
        )
        report = _parse(text)
        assert [a.total_mas for a in report.acquisitions] == ["150", "80"]
        assert [a.scan_type for a in report.acquisitions] == [ScanType.HELICAL, ScanType.AXIAL]
        assert report.acquisitions[1].phantom is PhantomType.HEAD16

    def test_ctdivol_dlp_sd_type_row_without_sd(self):
        text = _detail(
            "CTDIvol DLP SD",
            "12.30(Body) 456.70(Body)",
            "Helical 12.0",
            "9.10(Body) 300.00(Body)",
            "Helical",
        )
        report = _parse(text)
        assert [a.dlp for a in report.acquisitions] == ["456.70", "300.00"]
        assert all(a.scan_type is ScanType.HELICAL for a in report.acquisitions)

    def test_scanoscope_is_skipped(self):
        text = _detail(
            "SD CTDIvol.e DLP.e",
            "2.10(Body) 5.00(Body)",
            "Scanoscope",
            "12.30(Body) 456.70(Body)",
            "Helical 12.0",
        )
        report = _parse(text)
        assert len(report.acquisitions) == 1
        assert report.acquisitions[0].scan_type is ScanType.HELICAL
        assert report.acquisitions[0].dlp == "456.70"

    def test_type_with_four_numbers_on_one_row(self):
        text = _detail(
            "Total mAs Exposure Time CTDIvol DLP",
            "Helical 150 5.5 8.10(Body) 250.00(Body)",
        )
        acquisition = _parse(text).acquisitions[0]
        assert acquisition.total_mas == "150"
        assert acquisition.exposure_time_s == "5.5"
        assert acquisition.ctdivol == "8.10"
        assert acquisition.phantom is PhantomType.BODY32


class TestCleaners:
    def test_clean_type(self):
        assert clean_type("HELICAL_CT") == "HELICAL"
        assert clean_type("DYNAMLC") == "DYNAMIC"
        assert clean_type("HELLCAL") == "HELICAL"

    def test_clean_protocol(self):
        assert clean_protocol("  1.ABDOMEN BML ") == "1.ABDOMEN BMI"
