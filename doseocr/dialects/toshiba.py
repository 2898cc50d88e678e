"""
toshiba.py - Toshiba (Canon) dose screen dialect.

The Toshiba screen is split into sections, each introduced by a header
in double angle brackets:

    <<Dose Information>>            study totals, head and/or body
    <<Contrast Enhance Information>> ignored
    <<Detail Information>>          one block per protocol, several rows
                                    per acquisition

The detail section comes in many layouts depending on scanner software.
A column header line (e.g. "Exposure Time  CTDIvol  DLP  Total mAs")
selects a layout, and the value rows that follow are read according to
it. Tall glyphs such as parentheses can push part of a header or a row
onto a line of its own, so several layouts wait for a second (or fifth)
header or value line before they are complete.

DETAIL_TRANSITIONS holds every header and value row of the detail state
machine, each with the states it applies in and what it records.

GLYPH AMBIGUITY
---------------
In the screen font a lower-case "i" is drawn with a separate dot and
"l" looks like "I", so the patterns accept "[.]?[IL]" wherever an I
appears in a word.
"""

import logging
import re
from dataclasses import dataclass, fields
from enum import Enum, auto
from typing import Callable, Optional

from doseocr.dialects.base import DialectParser, full_match
from doseocr.model import DoseAcquisition, DoseReport, PhantomType, ScanRange, ScanType

logger = logging.getLogger(__name__)

_NUM = r"([0-9]+[.]*[0-9]*)"
_POS = r"([+-][0-9]+[.]*[0-9]*)"
_TYPE = r"([^ \t0-9][^ \t]*)"
_SEP = r"(:|..)"

# ---------------------------------------------------------------------------
# Section headers
# ---------------------------------------------------------------------------

DOSE_INFORMATION_HEADER = re.compile(
    r"[ \t]*<<[ \t]*DOSE[ \t]*[.]?[IL]NFORMAT[.]?[IL]ON[ \t]*>>[ \t]*"
)
CONTRAST_ENHANCE_INFORMATION_HEADER = re.compile(
    r"[ \t]*<<[ \t]*CONTRAST[ \t]*[/]*[ \t]*ENHANCE[ \t]*INFORMATION[ \t]*>>[ \t]*"
)
DETAIL_INFORMATION_HEADER = re.compile(
    r"[ \t]*<<[ \t]*DETA[.]?[IL][.]?[IL][ \t]*[.]?[IL]NFORMAT[.]?[IL]ON[ \t]*>>.*"
)

# ---------------------------------------------------------------------------
# Dose information section
# ---------------------------------------------------------------------------

_DLP_UNITS = r"[ \t]*D[.]?[IL]P([.]E)?[ \t]*\(MGYCM\)[ \t]*\(HEAD\)" + _SEP + r"[ \t]*"
_CTDIVOL_UNITS = r"[ \t]*CTD[.]?[IL]VOL([.]E)?[ \t]*\(MGY\)[ \t]*\(HEAD\)" + _SEP + r"[ \t]*"

BODY_ONLY = re.compile(r"[ \t]*\(HEAD\)" + _SEP + r"[ \t]*-[ \t]*\(BODY\)" + _SEP + r"[ \t]*")
HEAD_ONLY = re.compile(r"[ \t]*\(HEAD\)" + _SEP + r"[ \t]*\(BODY\)" + _SEP + r"[ \t]*-[ \t]*")
DLP_BODY_ONLY = re.compile(_DLP_UNITS + r"-[ \t]*\(BODY\)" + _SEP + r"[ \t]*")
DLP_HEAD_ONLY = re.compile(_DLP_UNITS + r"\(BODY\)" + _SEP + r"[ \t]*-[ \t]*")
DLP_HEAD_AND_BODY = re.compile(_DLP_UNITS + r"\(BODY\)" + _SEP + r"[ \t]*")
CTDIVOL_BODY_ONLY = re.compile(_CTDIVOL_UNITS + r"-[ \t]*\(BODY\)" + _SEP + r"[ \t]*")
CTDIVOL_HEAD_ONLY = re.compile(_CTDIVOL_UNITS + r"\(BODY\)" + _SEP + r"[ \t]*-[ \t]*")
CTDIVOL_HEAD_AND_BODY = re.compile(_CTDIVOL_UNITS + r"\(BODY\)" + _SEP + r"[ \t]*")

ONE_DECIMAL_NUMBER = re.compile(r"[ \t]*" + _NUM + r"[ \t]*")
CTDIVOL_AND_ONE_DECIMAL_NUMBER = re.compile(r"[ \t]*CTD[.]?[IL]VOL[ \t]*" + _NUM + r"[ \t]*")
DLP_AND_ONE_DECIMAL_NUMBER = re.compile(r"[ \t]*D[.]?[IL]P[ \t]*" + _NUM + r"[ \t]*")

TOTAL_DLP_ONLY = re.compile(
    r"[ \t]*TOTA[.]?[IL][ \t]*D[.]?[IL]P[ \t]*MGYCM[ \t]*" + _SEP + r"[ \t]*" + _NUM + r"[ \t]*"
)
TOTAL_EFF_DLP_ONLY = re.compile(
    r"[ \t]*EFF[ \t]*[.][ \t]*D[.]?[IL]P[ \t]*[(]*MGYCM[)]*[ \t]*" + _SEP + r"[ \t]*" + _NUM + r"[ \t]*"
)
DLP_BODY_ONLY_WITH_VALUE = re.compile(_DLP_UNITS + r"-[ \t]*\(BODY\)" + _SEP + r"[ \t]*" + _NUM + r"[ \t]*")
DLP_HEAD_ONLY_WITH_VALUE = re.compile(_DLP_UNITS + _NUM + r"[ \t]*\(BODY\)" + _SEP + r"[ \t]*-[ \t]*")
DLP_HEAD_AND_BODY_WITH_VALUES = re.compile(
    _DLP_UNITS + _NUM + r"[ \t]*\(BODY\)" + _SEP + r"[ \t]*" + _NUM + r"[ \t]*"
)


class DoseInformationMode(Enum):
    NONE = auto()
    BODY_ONLY = auto()
    HEAD_ONLY = auto()
    DLP_BODY_ONLY = auto()
    DLP_HEAD_ONLY = auto()
    DLP_HEAD_AND_BODY = auto()
    CTDIVOL_BODY_ONLY = auto()
    CTDIVOL_HEAD_ONLY = auto()
    CTDIVOL_HEAD_AND_BODY = auto()


# Header line -> what the next line holds; tried in order
DOSE_INFORMATION_HEADERS = (
    (BODY_ONLY, DoseInformationMode.BODY_ONLY),
    (HEAD_ONLY, DoseInformationMode.HEAD_ONLY),
    (DLP_BODY_ONLY, DoseInformationMode.DLP_BODY_ONLY),
    (DLP_HEAD_ONLY, DoseInformationMode.DLP_HEAD_ONLY),
    (DLP_HEAD_AND_BODY, DoseInformationMode.DLP_HEAD_AND_BODY),
    (CTDIVOL_BODY_ONLY, DoseInformationMode.CTDIVOL_BODY_ONLY),
    (CTDIVOL_HEAD_ONLY, DoseInformationMode.CTDIVOL_HEAD_ONLY),
    (CTDIVOL_HEAD_AND_BODY, DoseInformationMode.CTDIVOL_HEAD_AND_BODY),
)

# ---------------------------------------------------------------------------
# Detail information section: column headers
# ---------------------------------------------------------------------------

_TIME = r"EXPOSURE[ \t]*T[.]?[IL][.]?ME"

PROTOCOL_LINE = re.compile(r"[ \t]*[0-9]+[.].*")
TOTAL_MAS_EXPOSURE_TIME_CTDIVOL_DLP_WITHOUT_UNITS = re.compile(
    r"[ \t]*TOTA[.]?[IL][ \t]*MAS[ \t]*" + _TIME + r"[ \t]*CTD[.]?[IL]VO[.]?[IL][ \t]*D[.]?[IL]P[ \t]*"
)
EXPOSURE_TIME_CTDIVOL_DLP_WITH_UNITS = re.compile(
    r"[ \t]*" + _TIME + r"[ \t]*CTD[.]?[IL]VOL\(MGY\)[ \t]*D[.]?[IL]P\(MGYCM\)[ \t]*"
)
EXPOSURE_TIME_CTDIVOL_DLP_TOTAL_MAS = re.compile(
    r"[ \t]*" + _TIME + r"[ \t]*CTD[.]?[IL]VOL([.]E)?[ \t]*D[.]?[IL]P([.]E)?[ \t]*TOTA[.]?[IL][ \t]*MAS[ \t]*"
)
EXPOSURE_TIME_CTDIVOL_DLP_SD = re.compile(
    r"[ \t]*" + _TIME + r"[ \t]*CTD[.]?[IL]VOL([.]E)?[ \t]*D[.]?[IL]P([.]E)?[ \t]*SD[ \t]*"
)
TOTAL_MAS_EXPOSURE_TIME_CTDIVOL_DLP = re.compile(
    r"[ \t]*TOTAL[ \t]*MAS[ \t]*" + _TIME + r"[ \t]*CTD[.]?[IL]VOL([.]E)?[ \t]*D[.]?[IL]P([.]E)?[ \t]*"
)
TOTAL_MAS = re.compile(r"[ \t]*TOTAL[ \t]*MAS[ \t]*")
TOTAL_MAS_EXPOSURE_TIME_CTDIVOLE_DLPE = re.compile(
    r"[ \t]*TOTA[.]?[IL][ \t]*MAS[ \t]*" + _TIME + r"[ \t]*CTD[.]?[IL]VOL[.]E[ \t]*D[.]?[IL]P[.]E[ \t]*"
)
TOTAL_DOSE_REDUCTION_DOSE_REDUCTION_MODE_MODULATION = re.compile(
    r"[ \t]*TOT[.][ \t]*DOSE[ \t]*RED[.][ \t]*DOSE[ \t]*RED[.][ \t]*MODE[ \t]*MODU[.]?[IL]ATION[ \t]*"
)
TOTAL_DOSE_REDUCTION_ONLY = re.compile(r"[ \t]*TOT[.][ \t]*DOSE[ \t]*RED[.][ \t]*")
START_POS_END_POS_EXPOSURE_TIME_TOTAL_MAS = re.compile(
    r"[ \t]*START[ \t]*POS[.][ \t]*END[ \t]*POS[.][ \t]*" + _TIME + r"[ \t]*TOTA[.]?[IL][ \t]*MAS[ \t]*"
)
EFF_CTDIVOL_MEAN_EFF_DLP_SD = re.compile(
    r"[ \t]*EFF[.][ \t]*CTD[.]?[IL]VOL[ \t]*MEAN[ \t]*EFF[.][ \t]*D[.]?[IL]P[ \t]*SD[ \t]*"
)
EFF_DLP_WITH_UNITS = re.compile(r"[ \t]*EFF[.]D[.]?[IL]P\(MGYCM\)[ \t]*")
DOSE_RED_MODE_START_POS_END_POS = re.compile(
    r"[ \t]*DOSE[ \t]*RED[.][ \t]*MODE[ \t]*START[ \t]*POS[.][ \t]*END[ \t]*POS[.][ \t]*"
)
TOT_DOSE_RED = re.compile(r"[ \t]*TOT[.][ \t]*DOSE[ \t]*RED[.]?[(]?%?[)]?[ \t]*")
START_POS_END_POS_CTDIAIR_DLPAIR = re.compile(
    r"[ \t]*START[ \t]*POS[.][ \t]*END[ \t]*POS[.][ \t]*CTD[.]?[IL]AIR[ \t]*D[.]?[IL]PA[.]?[IL]R[ \t]*"
)
EFF_CTDIVOL_MEAN_EFF_DLP_MODULATION_SD = re.compile(
    r"[ \t]*EFF[.][ \t]*CTD[.]?[IL]VOL[ \t]*MEAN[ \t]*EFF[.][ \t]*D[.]?[IL]P[ \t]*MODU[.]?[IL]AT[.]?[IL]ON[ \t]*SD[ \t]*"
)
BOOST_QDS_DOSE_RED_MODE_TOT_DOSE_RED = re.compile(
    r"[ \t]*BOOST[ \t]*QDS[ \t]*DOSE[ \t]*RED[.][ \t]*MODE[ \t]*TOT[.][ \t]*DOSE[ \t]*RED[.][ \t]*"
)
TOTAL_IMAGE_NUMBER = re.compile(r"[ \t]*TOTA[.]?[IL][ \t]*[.]?[IL]MAGE[ \t]*NUMBER[ \t]*")
CTDIVOL_DLP_WITH_UNITS = re.compile(r"[ \t]*CTD[.]?[IL]VOL[ \t]*\(MGY\)[ \t]*D[.]?[IL]P[ \t]*\(MGYCM\)[ \t]*")
TOTAL_MAS_SD = re.compile(r"[ \t]*TOTA[.]?[IL][ \t]*MAS[ \t]*SD[ \t]*")
TOTAL_MAS_CTDIVOL_DLP_WITHOUT_UNITS_SD = re.compile(
    r"[ \t]*TOTA[.]?[IL][ \t]*MAS[ \t]*CTD[.]?[IL]VOL([.]E)?[ \t]*D[.]?[IL]P([.]E)?[ \t]*SD[ \t]*"
)
SD_CTDIVOLE_DLPE = re.compile(
    r"[ \t]*SD[ \t]*CTD[.]?[IL]VOL[.]E([ \t]*MEAN)?[ \t]*D[.]?[IL]P[.]E[ \t]*"
)
CTDIVOL_DLP_SD = re.compile(r"[ \t]*CTD[.]?[IL]VOL[ \t]*D[.]?[IL]P[ \t]*SD[ \t]*")

# ---------------------------------------------------------------------------
# Detail information section: value rows
# ---------------------------------------------------------------------------

_PHANTOM = r"\((BODY|HEAD)\)"

TYPE_AND_FOUR_NUMBERS_LAST_TWO_WITH_PHANTOM = re.compile(
    r"[ \t]*" + _TYPE + r"[ \t]+" + _NUM + r"[ \t]+" + _NUM + r"[ \t]+"
    + _NUM + _PHANTOM + r"[ \t]*" + _NUM + _PHANTOM + r"[ \t]*"
)
TYPE_AND_TWO_NUMBERS_WITH_PHANTOM = re.compile(
    r"[ \t]*" + _TYPE + r"[ \t]+" + _NUM + _PHANTOM + r"[ \t]*" + _NUM + _PHANTOM + r"[ \t]*"
)
TWO_NUMBERS_WITH_PHANTOM = re.compile(r"[ \t]*" + _NUM + _PHANTOM + r"[ \t]*" + _NUM + _PHANTOM + r"[ \t]*")
TYPE_AND_ONE_OR_TWO_NUMBERS = re.compile(r"[ \t]*" + _TYPE + r"[ \t]+" + _NUM + r"([ \t]+)?" + _NUM + r"?[ \t]*")
TYPE_AND_TWO_POSITIONS_AND_TWO_NUMBERS = re.compile(
    r"[ \t]*" + _TYPE + r"[ \t]+" + _POS + r"[ \t]+" + _POS + r"[ \t]+" + _NUM + r"[ \t]+" + _NUM + r"[ \t]*"
)
TWO_POSITIONS_AND_TWO_NUMBERS = re.compile(
    r"[ \t]*" + _POS + r"[ \t]+" + _POS + r"[ \t]+" + _NUM + r"[ \t]+" + _NUM + r"[ \t]*"
)
TWO_NUMBERS = re.compile(r"[ \t]*" + _NUM + r"[ \t]+" + _NUM + r"[ \t]*")
THREE_NUMBERS = re.compile(r"[ \t]*" + _NUM + r"[ \t]+" + _NUM + r"[ \t]+" + _NUM + r"[ \t]*")
# May not start with a digit, which keeps it apart from a protocol line
TYPE_ALONE = re.compile(r"[ \t]*" + _TYPE + r"[ \t]*")
SCANOSCOPE_ALONE = re.compile(r"[ \t]*(SCANOSCOPE[^ \t]*)[ \t]*")
DOSE_REDUCTION_MODE_MODULATION = re.compile(r"[ \t]*" + _NUM + r"[ \t]+([A-Z0-9]+)[ \t]+([A-Z0-9]+)[ \t]*")
ONE_NUMBER_DOSE_REDUCTION_MODE_AND_TWO_POSITIONS = re.compile(
    r"[ \t]*" + _NUM + r"[ \t]+([A-Z0-9]*)[ \t]*" + _POS + r"[ \t]+" + _POS + r"[ \t]*"
)
TWO_NUMBERS_DOSE_REDUCTION_MODE_AND_ONE_NUMBER = re.compile(
    r"[ \t]*" + _NUM + r"[ \t]+" + _NUM + r"[ \t]+([A-Z0-9]*)[ \t]*" + _NUM + r"[ \t]*"
)
THREE_STRINGS_AND_ONE_NUMBER = re.compile(
    r"[ \t]*([A-Z0-9-]+)[ \t]+([A-Z0-9-]+)[ \t]+([A-Z0-9-]+)[ \t]+" + _NUM + r"[ \t]*"
)


class Section(Enum):
    NONE = auto()
    DOSE_INFORMATION = auto()
    CONTRAST_ENHANCE_INFORMATION = auto()
    DETAIL_INFORMATION = auto()


class DetailState(Enum):
    """Which detail layout is in effect and which header or row comes next."""
    NONE = auto()

    # Exposure Time / CTDIvol / DLP, then Total mAs on its own line
    EXPOSURE_TIME_CTDIVOL_DLP_AWAITING_TOTAL_MAS = auto()
    EXPOSURE_TIME_CTDIVOL_DLP_TOTAL_MAS = auto()
    EXPOSURE_TIME_CTDIVOL_DLP_SD = auto()
    TOTAL_MAS_EXPOSURE_TIME_CTDIVOL_DLP = auto()

    CTDIVOL_DLP_AWAITING_TOTAL_MAS_SD = auto()
    TOTAL_MAS_CTDIVOL_DLP_SD_FIRST_ROW = auto()
    TOTAL_MAS_CTDIVOL_DLP_SD_SECOND_ROW = auto()

    SD_CTDIVOLE_DLPE = auto()
    CTDIVOL_DLP_SD_FIRST_ROW = auto()
    CTDIVOL_DLP_SD_SECOND_ROW = auto()

    # Total mAs / Exposure Time / CTDIvol.e / DLP.e, then a dose reduction header
    TOTAL_MAS_E_AWAITING_DOSE_REDUCTION = auto()
    TOTAL_MAS_E_DOSE_REDUCTION_MODE_MODULATION = auto()
    TOTAL_MAS_E_DOSE_REDUCTION = auto()

    START_POS_END_POS_AWAITING_EFF_CTDIVOL = auto()
    START_POS_FIRST_ROW = auto()
    START_POS_SECOND_ROW = auto()

    # Eff. DLP(mGycm), Dose Red. Mode / Start Pos. / End Pos., Tot. Dose Red.
    EFF_DLP_AWAITING_DOSE_RED_MODE = auto()
    EFF_DLP_AWAITING_TOT_DOSE_RED = auto()
    EFF_DLP_FIRST_ROW = auto()
    EFF_DLP_SECOND_PART_OF_FIRST_ROW = auto()
    EFF_DLP_SECOND_ROW = auto()
    EFF_DLP_THIRD_ROW = auto()

    # Start Pos. / End Pos. / CTDIair / DLPair, Eff. CTDIvol ..., Boost QDS ..., Total Image Number
    BOOST_AWAITING_EFF_CTDIVOL = auto()
    BOOST_AWAITING_BOOST_QDS = auto()
    BOOST_AWAITING_TOTAL_IMAGE_NUMBER = auto()
    BOOST_FIRST_ROW = auto()
    BOOST_SECOND_ROW = auto()
    BOOST_THIRD_ROW = auto()
    BOOST_FOURTH_ROW = auto()
    BOOST_FIFTH_ROW = auto()


S = DetailState

VALUE_STATES = frozenset({
    S.EXPOSURE_TIME_CTDIVOL_DLP_TOTAL_MAS,
    S.TOTAL_MAS_EXPOSURE_TIME_CTDIVOL_DLP,
    S.EXPOSURE_TIME_CTDIVOL_DLP_SD,
    S.SD_CTDIVOLE_DLPE,
    S.CTDIVOL_DLP_SD_FIRST_ROW,
    S.CTDIVOL_DLP_SD_SECOND_ROW,
    S.EFF_DLP_FIRST_ROW,
    S.EFF_DLP_SECOND_PART_OF_FIRST_ROW,
    S.EFF_DLP_SECOND_ROW,
    S.EFF_DLP_THIRD_ROW,
    S.TOTAL_MAS_E_DOSE_REDUCTION_MODE_MODULATION,
    S.TOTAL_MAS_E_DOSE_REDUCTION,
    S.START_POS_FIRST_ROW,
    S.START_POS_SECOND_ROW,
    S.TOTAL_MAS_CTDIVOL_DLP_SD_FIRST_ROW,
    S.TOTAL_MAS_CTDIVOL_DLP_SD_SECOND_ROW,
    S.BOOST_FIRST_ROW,
    S.BOOST_SECOND_ROW,
    S.BOOST_THIRD_ROW,
    S.BOOST_FOURTH_ROW,
    S.BOOST_FIFTH_ROW,
})

HEADER_STATES = frozenset(DetailState) - VALUE_STATES

EFF_DLP_ROWS = frozenset({
    S.EFF_DLP_SECOND_PART_OF_FIRST_ROW,
    S.EFF_DLP_SECOND_ROW,
    S.EFF_DLP_THIRD_ROW,
})


def clean_type(text: str) -> str:
    """Strip a trailing suffix such as "_CT" and fix the usual misreadings."""
    text = re.sub(r"[^A-Z].*$", "", text, count=1)
    return text.replace("DYNAMLC", "DYNAMIC", 1).replace("HELLCAL", "HELICAL", 1)


def clean_protocol(line: str) -> str:
    return line.strip().replace(".I", "I").replace("BML", "BMI", 1)


@dataclass(frozen=True)
class Transition:
    """
    One row of the detail section state machine.

    The first row whose *states* hold the current state and whose
    *pattern* fully matches the line is taken. Taking it flushes a
    partial acquisition if *resets*, moves to *next_state*, stores the
    match groups named in *values* on the current acquisition, closes the
    acquisition if *completes* and finally runs *action*.
    """
    pattern: re.Pattern
    states: frozenset
    next_state: Optional[DetailState] = None
    values: tuple = ()
    completes: bool = False
    resets: bool = False
    action: Optional[Callable] = None


def _header(pattern, next_state, guard=None, resets=False) -> Transition:
    """A column header; unguarded headers apply whenever no values are expected."""
    states = HEADER_STATES if guard is None else frozenset({guard})
    return Transition(pattern, states, next_state, resets=resets)


def _row(pattern, states=VALUE_STATES, next_state=None, completes=False, resets=False, action=None, **values) -> Transition:
    """A value row; *values* maps acquisition fields to match group numbers."""
    return Transition(pattern, frozenset(states), next_state, tuple(values.items()), completes, resets, action)


# ---------------------------------------------------------------------------
# Row actions beyond storing values
# ---------------------------------------------------------------------------

def _close_scanoscope(parser: "ToshibaParser", m: re.Match, report: DoseReport) -> None:
    # a scanoscope has no second row
    parser.started = True
    if parser.event.type is not None and parser.event.type.startswith("SCANOSCOPE"):
        parser.complete = True


def _drop_scanoscope(parser: "ToshibaParser", m: re.Match, report: DoseReport) -> None:
    # nothing to record, and its values would run into the next acquisition
    parser.started = False


def _type_after_missing_row(parser: "ToshibaParser", m: re.Match, report: DoseReport) -> None:
    # the row that would have completed the previous acquisition is missing
    if parser.started:
        parser._emit(report)
    # does not start an acquisition: may be a page number or similar
    parser.event.type = clean_type(m.group(1))


def _type_closes_acquisition(parser: "ToshibaParser", m: re.Match, report: DoseReport) -> None:
    if parser.started:
        parser.event.type = clean_type(m.group(1))
    _type_after_missing_row(parser, m, report)


def _new_protocol(parser: "ToshibaParser", m: re.Match, report: DoseReport) -> None:
    parser._flush_partial(report)
    parser.protocol = clean_protocol(m.group(0))
    logger.debug("protocol = %s", parser.protocol)


_PHANTOM_VALUES = {"ctdivol": 1, "ctdivol_phantom": 2, "dlp": 3, "dlp_phantom": 4}
_TYPE_AND_PHANTOM_VALUES = {"type": 1, "ctdivol": 2, "ctdivol_phantom": 3, "dlp": 4, "dlp_phantom": 5}

# Tried in this order. Headers come first, so that the two second header
# lines of the EXPOSURE_TIME_CTDIVOL_DLP_TOTAL_MAS layout win over its
# value rows; within one pattern the state-specific rows precede the
# catch-all for every value state.
DETAIL_TRANSITIONS = (
    # column headers
    _header(EXPOSURE_TIME_CTDIVOL_DLP_WITH_UNITS, S.EXPOSURE_TIME_CTDIVOL_DLP_AWAITING_TOTAL_MAS),
    _header(TOTAL_MAS_EXPOSURE_TIME_CTDIVOL_DLP_WITHOUT_UNITS, S.TOTAL_MAS_EXPOSURE_TIME_CTDIVOL_DLP, resets=True),
    _header(TOTAL_MAS, S.EXPOSURE_TIME_CTDIVOL_DLP_TOTAL_MAS,
            guard=S.EXPOSURE_TIME_CTDIVOL_DLP_AWAITING_TOTAL_MAS, resets=True),
    _header(EXPOSURE_TIME_CTDIVOL_DLP_TOTAL_MAS, S.EXPOSURE_TIME_CTDIVOL_DLP_TOTAL_MAS, resets=True),
    _header(EXPOSURE_TIME_CTDIVOL_DLP_SD, S.EXPOSURE_TIME_CTDIVOL_DLP_SD, resets=True),
    _header(TOTAL_MAS_EXPOSURE_TIME_CTDIVOL_DLP, S.TOTAL_MAS_EXPOSURE_TIME_CTDIVOL_DLP, resets=True),
    _header(TOTAL_MAS_EXPOSURE_TIME_CTDIVOLE_DLPE, S.TOTAL_MAS_E_AWAITING_DOSE_REDUCTION),
    _header(TOTAL_DOSE_REDUCTION_DOSE_REDUCTION_MODE_MODULATION, S.TOTAL_MAS_E_DOSE_REDUCTION_MODE_MODULATION,
            guard=S.TOTAL_MAS_E_AWAITING_DOSE_REDUCTION, resets=True),
    _header(TOTAL_DOSE_REDUCTION_ONLY, S.TOTAL_MAS_E_DOSE_REDUCTION,
            guard=S.TOTAL_MAS_E_AWAITING_DOSE_REDUCTION, resets=True),
    _header(START_POS_END_POS_EXPOSURE_TIME_TOTAL_MAS, S.START_POS_END_POS_AWAITING_EFF_CTDIVOL),
    _header(EFF_CTDIVOL_MEAN_EFF_DLP_SD, S.START_POS_FIRST_ROW,
            guard=S.START_POS_END_POS_AWAITING_EFF_CTDIVOL, resets=True),
    _header(CTDIVOL_DLP_WITH_UNITS, S.CTDIVOL_DLP_AWAITING_TOTAL_MAS_SD),
    _header(EFF_DLP_WITH_UNITS, S.EFF_DLP_AWAITING_DOSE_RED_MODE, guard=S.EXPOSURE_TIME_CTDIVOL_DLP_TOTAL_MAS),
    _header(DOSE_RED_MODE_START_POS_END_POS, S.EFF_DLP_AWAITING_TOT_DOSE_RED, guard=S.EFF_DLP_AWAITING_DOSE_RED_MODE),
    _header(TOT_DOSE_RED, S.EFF_DLP_FIRST_ROW, guard=S.EFF_DLP_AWAITING_TOT_DOSE_RED),
    _header(START_POS_END_POS_CTDIAIR_DLPAIR, S.BOOST_AWAITING_EFF_CTDIVOL, guard=S.EXPOSURE_TIME_CTDIVOL_DLP_TOTAL_MAS),
    _header(EFF_CTDIVOL_MEAN_EFF_DLP_MODULATION_SD, S.BOOST_AWAITING_BOOST_QDS, guard=S.BOOST_AWAITING_EFF_CTDIVOL),
    _header(BOOST_QDS_DOSE_RED_MODE_TOT_DOSE_RED, S.BOOST_AWAITING_TOTAL_IMAGE_NUMBER, guard=S.BOOST_AWAITING_BOOST_QDS),
    _header(TOTAL_IMAGE_NUMBER, S.BOOST_FIRST_ROW, guard=S.BOOST_AWAITING_TOTAL_IMAGE_NUMBER),
    _header(TOTAL_MAS_SD, S.TOTAL_MAS_CTDIVOL_DLP_SD_FIRST_ROW, guard=S.CTDIVOL_DLP_AWAITING_TOTAL_MAS_SD, resets=True),
    _header(TOTAL_MAS_CTDIVOL_DLP_WITHOUT_UNITS_SD, S.TOTAL_MAS_CTDIVOL_DLP_SD_FIRST_ROW, resets=True),
    _header(SD_CTDIVOLE_DLPE, S.SD_CTDIVOLE_DLPE, resets=True),
    _header(CTDIVOL_DLP_SD, S.CTDIVOL_DLP_SD_FIRST_ROW, resets=True),

    # value rows
    _row(ONE_NUMBER_DOSE_REDUCTION_MODE_AND_TWO_POSITIONS, {S.EFF_DLP_SECOND_ROW}, S.EFF_DLP_THIRD_ROW,
         dose_reduction_mode=2, start_pos=3, end_pos=4),
    _row(ONE_NUMBER_DOSE_REDUCTION_MODE_AND_TWO_POSITIONS, dose_reduction_mode=2, start_pos=3, end_pos=4),
    _row(TWO_NUMBERS_DOSE_REDUCTION_MODE_AND_ONE_NUMBER, {S.BOOST_THIRD_ROW}, S.BOOST_FOURTH_ROW,
         dose_reduction_mode=3, sd=4),
    _row(THREE_STRINGS_AND_ONE_NUMBER, {S.BOOST_FOURTH_ROW}, S.BOOST_FIFTH_ROW,
         dose_reduction_mode=3, total_dose_reduction=4),

    # the third row was missing and this is the next acquisition
    _row(TWO_NUMBERS_WITH_PHANTOM, {S.EFF_DLP_THIRD_ROW}, S.EFF_DLP_SECOND_PART_OF_FIRST_ROW, resets=True,
         **_PHANTOM_VALUES),
    _row(TWO_NUMBERS_WITH_PHANTOM, {S.EFF_DLP_FIRST_ROW}, S.EFF_DLP_SECOND_PART_OF_FIRST_ROW, **_PHANTOM_VALUES),
    _row(TWO_NUMBERS_WITH_PHANTOM, {S.TOTAL_MAS_CTDIVOL_DLP_SD_FIRST_ROW}, S.TOTAL_MAS_CTDIVOL_DLP_SD_SECOND_ROW,
         **_PHANTOM_VALUES),
    _row(TWO_NUMBERS_WITH_PHANTOM, {S.BOOST_FIRST_ROW}, S.BOOST_SECOND_ROW, **_PHANTOM_VALUES),
    _row(TWO_NUMBERS_WITH_PHANTOM, {S.CTDIVOL_DLP_SD_FIRST_ROW}, S.CTDIVOL_DLP_SD_SECOND_ROW, **_PHANTOM_VALUES),
    _row(TWO_NUMBERS_WITH_PHANTOM, **_PHANTOM_VALUES),

    _row(TYPE_AND_ONE_OR_TWO_NUMBERS, {S.CTDIVOL_DLP_SD_SECOND_ROW}, S.CTDIVOL_DLP_SD_FIRST_ROW, completes=True,
         type=1, sd=2),
    _row(TYPE_AND_ONE_OR_TWO_NUMBERS, {S.SD_CTDIVOLE_DLPE}, completes=True, type=1, sd=2),
    _row(TYPE_AND_ONE_OR_TWO_NUMBERS, {S.TOTAL_MAS_EXPOSURE_TIME_CTDIVOL_DLP, S.EXPOSURE_TIME_CTDIVOL_DLP_TOTAL_MAS},
         completes=True, type=1, total_mas=2, exposure_time=4),
    _row(TYPE_AND_ONE_OR_TWO_NUMBERS, {S.EXPOSURE_TIME_CTDIVOL_DLP_SD}, completes=True,
         type=1, exposure_time=2, sd=4),
    _row(TYPE_AND_ONE_OR_TWO_NUMBERS, {S.EFF_DLP_FIRST_ROW, S.EFF_DLP_SECOND_PART_OF_FIRST_ROW}, S.EFF_DLP_SECOND_ROW,
         type=1, total_mas=2, exposure_time=4),
    _row(TYPE_AND_ONE_OR_TWO_NUMBERS, {S.TOTAL_MAS_CTDIVOL_DLP_SD_SECOND_ROW}, S.TOTAL_MAS_CTDIVOL_DLP_SD_FIRST_ROW,
         completes=True, type=1, total_mas=2, sd=4),
    _row(TYPE_AND_ONE_OR_TWO_NUMBERS, type=1, total_mas=2),

    _row(TYPE_AND_TWO_NUMBERS_WITH_PHANTOM, {S.EFF_DLP_FIRST_ROW}, S.EFF_DLP_SECOND_PART_OF_FIRST_ROW,
         **_TYPE_AND_PHANTOM_VALUES),
    _row(TYPE_AND_TWO_NUMBERS_WITH_PHANTOM, **_TYPE_AND_PHANTOM_VALUES),

    _row(TWO_NUMBERS, {S.START_POS_FIRST_ROW}, action=_close_scanoscope, exposure_time=1, total_mas=2),
    _row(TWO_NUMBERS, {S.START_POS_SECOND_ROW}, S.START_POS_FIRST_ROW, completes=True, ctdivol=1, dlp=2),
    _row(TWO_NUMBERS, {S.EFF_DLP_SECOND_PART_OF_FIRST_ROW}, S.EFF_DLP_SECOND_ROW, action=_close_scanoscope,
         total_mas=1, exposure_time=2),
    _row(TWO_NUMBERS, {S.BOOST_THIRD_ROW}, S.BOOST_FOURTH_ROW, action=_close_scanoscope),
    _row(TWO_NUMBERS, {S.TOTAL_MAS_EXPOSURE_TIME_CTDIVOL_DLP, S.EXPOSURE_TIME_CTDIVOL_DLP_TOTAL_MAS},
         completes=True, total_mas=1, exposure_time=2),
    _row(TWO_NUMBERS, action=_close_scanoscope, total_mas=1, exposure_time=2),

    _row(TYPE_AND_TWO_POSITIONS_AND_TWO_NUMBERS, {S.START_POS_FIRST_ROW}, S.START_POS_SECOND_ROW,
         type=1, start_pos=2, end_pos=3, exposure_time=4, total_mas=5),
    _row(TWO_POSITIONS_AND_TWO_NUMBERS, {S.BOOST_SECOND_ROW}, S.BOOST_THIRD_ROW, start_pos=1, end_pos=2),
    _row(THREE_NUMBERS, {S.START_POS_SECOND_ROW}, S.START_POS_FIRST_ROW, completes=True, ctdivol=1, dlp=2),

    _row(ONE_DECIMAL_NUMBER, {S.TOTAL_MAS_CTDIVOL_DLP_SD_FIRST_ROW}, completes=True, total_mas=1),
    _row(ONE_DECIMAL_NUMBER, {S.EFF_DLP_THIRD_ROW}, S.EFF_DLP_FIRST_ROW, completes=True, total_dose_reduction=1),
    _row(ONE_DECIMAL_NUMBER, {S.TOTAL_MAS_E_DOSE_REDUCTION}, completes=True, total_dose_reduction=1),
    _row(ONE_DECIMAL_NUMBER, {S.BOOST_FIFTH_ROW}, S.BOOST_FIRST_ROW, completes=True),
    # a lone number anywhere else is ignored
    _row(ONE_DECIMAL_NUMBER),

    _row(TYPE_AND_FOUR_NUMBERS_LAST_TWO_WITH_PHANTOM, completes=True,
         type=1, total_mas=2, exposure_time=3, ctdivol=4, ctdivol_phantom=5, dlp=6, dlp_phantom=7),

    _row(SCANOSCOPE_ALONE, {S.SD_CTDIVOLE_DLPE}, action=_drop_scanoscope),
    _row(TYPE_ALONE, {S.BOOST_FOURTH_ROW}, S.BOOST_FIFTH_ROW),
    _row(TYPE_ALONE, {S.CTDIVOL_DLP_SD_SECOND_ROW}, S.CTDIVOL_DLP_SD_FIRST_ROW, action=_type_closes_acquisition),
    _row(TYPE_ALONE, EFF_DLP_ROWS, S.EFF_DLP_FIRST_ROW, action=_type_after_missing_row),
    _row(TYPE_ALONE, action=_type_after_missing_row),

    _row(DOSE_REDUCTION_MODE_MODULATION, {S.TOTAL_MAS_E_DOSE_REDUCTION_MODE_MODULATION}, completes=True,
         total_dose_reduction=1, dose_reduction_mode=2, modulation=3),

    # every protocol is followed by its own header
    Transition(PROTOCOL_LINE, frozenset(DetailState), S.NONE, action=_new_protocol),
)


@dataclass
class _Event:
    """Values collected for the acquisition currently being read."""
    dlp: Optional[str] = None
    dlp_phantom: Optional[str] = None
    ctdivol: Optional[str] = None
    ctdivol_phantom: Optional[str] = None
    type: Optional[str] = None
    total_mas: Optional[str] = None
    exposure_time: Optional[str] = None
    total_dose_reduction: Optional[str] = None
    dose_reduction_mode: Optional[str] = None
    modulation: Optional[str] = None
    start_pos: Optional[str] = None
    end_pos: Optional[str] = None
    sd: Optional[str] = None

    def clear(self) -> None:
        for f in fields(self):
            setattr(self, f.name, None)

    def to_acquisition(self, scope_uid: Optional[str]) -> DoseAcquisition:
        scan_range = None
        if self.start_pos is not None and self.end_pos is not None:
            scan_range = ScanRange.from_signed(self.start_pos, self.end_pos)
        return DoseAcquisition(
            scope_uid=scope_uid,
            is_series=False,
            number=None,
            scan_type=ScanType.from_description(self.type),
            scan_range=scan_range,
            ctdivol=self.ctdivol,
            dlp=self.dlp,
            # assumed to be the same as the CTDIvol phantom
            phantom=PhantomType.from_description(self.dlp_phantom),
            exposure_time_s=self.exposure_time,
            total_mas=self.total_mas,
        )


class ToshibaParser(DialectParser):
    name = "toshiba"

    def __init__(self):
        self._reset()

    def _reset(self) -> None:
        self.section = Section.NONE
        self.dose_mode = DoseInformationMode.NONE
        self.state = DetailState.NONE
        self.protocol: Optional[str] = None
        self.event = _Event()
        self.started = False
        self.complete = False
        self.total_dlp_head: Optional[str] = None
        self.total_dlp_body: Optional[str] = None
        self.total_ctdivol_head: Optional[str] = None
        self.total_ctdivol_body: Optional[str] = None

    def parse(self, text: str, report: DoseReport) -> DoseReport:
        self._reset()
        return super().parse(text, report)

    def parse_line(self, line: str, report: DoseReport) -> None:
        if full_match(DOSE_INFORMATION_HEADER, line):
            self.section = Section.DOSE_INFORMATION
            self.total_dlp_head = None
            self.total_dlp_body = None
            self.total_ctdivol_head = None
            self.total_ctdivol_body = None
        elif full_match(CONTRAST_ENHANCE_INFORMATION_HEADER, line):
            self.section = Section.CONTRAST_ENHANCE_INFORMATION
        elif full_match(DETAIL_INFORMATION_HEADER, line):
            self.section = Section.DETAIL_INFORMATION
        elif self.section == Section.DOSE_INFORMATION:
            self._dose_information(line, report)
        elif self.section == Section.DETAIL_INFORMATION:
            self._detail_information(line, report)
        elif self.section == Section.NONE:
            # a single page of "name : value" lines
            m = full_match(TOTAL_DLP_ONLY, line)
            if m:
                report.set_dlp_total(m.group(2))

    def finish(self, report: DoseReport) -> None:
        # Truncated screens sometimes lose the last row of an acquisition
        if self.started and not self.complete:
            logger.debug("Recording incomplete last acquisition")
            self._emit(report)

    # -----------------------------------------------------------------------
    # Dose information
    # -----------------------------------------------------------------------

    def _dose_information(self, line: str, report: DoseReport) -> None:
        mode = self.dose_mode
        self.dose_mode = DoseInformationMode.NONE

        if mode in (DoseInformationMode.BODY_ONLY, DoseInformationMode.HEAD_ONLY):
            body = mode == DoseInformationMode.BODY_ONLY
            m = full_match(CTDIVOL_AND_ONE_DECIMAL_NUMBER, line)
            if m:
                if body:
                    self.total_ctdivol_body = m.group(1)
                else:
                    self.total_ctdivol_head = m.group(1)
                return
            m = full_match(DLP_AND_ONE_DECIMAL_NUMBER, line)
            if m:
                self._set_single_phantom_total(m.group(1), body, report)
            return

        if mode in (DoseInformationMode.DLP_BODY_ONLY, DoseInformationMode.DLP_HEAD_ONLY):
            m = full_match(ONE_DECIMAL_NUMBER, line)
            if m:
                self._set_single_phantom_total(m.group(1), mode == DoseInformationMode.DLP_BODY_ONLY, report)
            return

        if mode == DoseInformationMode.DLP_HEAD_AND_BODY:
            m = full_match(TWO_NUMBERS, line)
            if m:
                self.total_dlp_head, self.total_dlp_body = m.group(1), m.group(2)
                report.set_dlp_total_head_and_body(self.total_dlp_head, self.total_dlp_body)
            return

        if mode == DoseInformationMode.CTDIVOL_BODY_ONLY:
            m = full_match(ONE_DECIMAL_NUMBER, line)
            if m:
                self.total_ctdivol_body = m.group(1)
            return
        if mode == DoseInformationMode.CTDIVOL_HEAD_ONLY:
            m = full_match(ONE_DECIMAL_NUMBER, line)
            if m:
                self.total_ctdivol_head = m.group(1)
            return
        if mode == DoseInformationMode.CTDIVOL_HEAD_AND_BODY:
            m = full_match(TWO_NUMBERS, line)
            if m:
                self.total_ctdivol_head, self.total_ctdivol_body = m.group(1), m.group(2)
            return

        for pattern, next_mode in DOSE_INFORMATION_HEADERS:
            if full_match(pattern, line):
                self.dose_mode = next_mode
                return

        # label and value(s) on the same line
        m = full_match(TOTAL_EFF_DLP_ONLY, line)
        if m:
            report.set_dlp_total(m.group(2))
            return
        m = full_match(DLP_BODY_ONLY_WITH_VALUE, line)
        if m:
            self._set_single_phantom_total(m.group(4), True, report)
            return
        m = full_match(DLP_HEAD_ONLY_WITH_VALUE, line)
        if m:
            self._set_single_phantom_total(m.group(3), False, report)
            return
        m = full_match(DLP_HEAD_AND_BODY_WITH_VALUES, line)
        if m:
            self.total_dlp_head, self.total_dlp_body = m.group(3), m.group(5)
            report.set_dlp_total_head_and_body(self.total_dlp_head, self.total_dlp_body)

    def _set_single_phantom_total(self, value: str, body: bool, report: DoseReport) -> None:
        if body:
            self.total_dlp_body = value
        else:
            self.total_dlp_head = value
        report.set_dlp_total(value, PhantomType.BODY32 if body else PhantomType.HEAD16)

    # -----------------------------------------------------------------------
    # Detail information
    # -----------------------------------------------------------------------

    def _detail_information(self, line: str, report: DoseReport) -> None:
        for transition in DETAIL_TRANSITIONS:
            if self.state not in transition.states:
                continue
            m = full_match(transition.pattern, line)
            if m is None:
                continue
            self._take(transition, m, report)
            break
        else:
            if self.state in VALUE_STATES:
                logger.debug("Unrecognized detail line %r in state %s", line, self.state.name)
            else:
                self.state = S.NONE

        if self.complete:
            self._emit(report)
        logger.debug("Detail state now %s", self.state.name)

    def _take(self, transition: Transition, m: re.Match, report: DoseReport) -> None:
        if transition.resets:
            self._flush_partial(report)
        if transition.next_state is not None:
            self.state = transition.next_state
        if transition.values:
            self.started = True
            for name, group in transition.values:
                value = m.group(group)
                setattr(self.event, name, clean_type(value) if name == "type" else value)
        if transition.completes:
            self.started = True
            self.complete = True
        if transition.action is not None:
            transition.action(self, m, report)

    # -----------------------------------------------------------------------
    # Recording
    # -----------------------------------------------------------------------

    def _flush_partial(self, report: DoseReport) -> None:
        if self.started:
            logger.debug("New header before acquisition was complete, recording what was read")
            self._emit(report)
        else:
            self.event.clear()
            self.complete = False

    def _emit(self, report: DoseReport) -> None:
        logger.debug("Event: protocol = %s, %s", self.protocol, self.event)
        report.add_acquisition(self.event.to_acquisition(report.scope_uid))
        self.event.clear()
        self.started = False
        self.complete = False
