"""
dictionary.py - Glyph dictionary, read-only recognizer and training recognizer.

The dictionary is an exact-match map from glyph bitmaps to the text they
stand for. It is persisted as a flat XML list:

    <glyphs>
    	<glyph>
    		<bits>
    			<bit>0</bit>
    			...
    		</bits>
    		<width>5</width>
    		<string>8</string>
    	</glyph>
    </glyphs>

Bits are row-major indices over the glyph's own width and height. The
height is not stored; it is implied by the last bit.

Recognition comes in two modes. A Recognizer only reads a snapshot of
the dictionary and can be shared. A TrainingRecognizer asks for the text
of every unknown glyph and keeps the answers in a delta, which the
caller confirms and persists. Only one training run may write to a
dictionary at a time.
"""

import logging
import os
import xml.etree.ElementTree as ET
from types import MappingProxyType
from typing import Callable, Iterator, Mapping, Optional

from doseocr.errors import DictionaryFormatError
from doseocr.glyphs import Glyph

logger = logging.getLogger(__name__)

DEFAULT_DICTIONARY_NAME = "OCR_Glyphs_DoseScreen.xml"

MATCH_PROMPT = "Please enter string match: "
CONFIRM_PROMPT = "Record it in dictionary, Y or N [N]: "


class GlyphDictionary:
    """Mapping of glyph -> text, with XML load and save."""

    def __init__(self, entries: Optional[Mapping[Glyph, str]] = None):
        self._entries: dict[Glyph, str] = {}
        for glyph, text in (entries or {}).items():
            self.add(glyph, text)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, glyph: Glyph) -> bool:
        return glyph in self._entries

    def __iter__(self) -> Iterator[Glyph]:
        return iter(self._entries)

    def items(self):
        return self._entries.items()

    def lookup(self, glyph: Glyph) -> Optional[str]:
        return self._entries.get(glyph)

    def add(self, glyph: Glyph, text: str) -> None:
        previous = self._entries.get(glyph)
        if previous is not None and previous != text:
            logger.warning("Glyph previously recorded as %r now recorded as %r", previous, text)
        self._entries[glyph] = text

    def merge(self, delta: Mapping[Glyph, str]) -> None:
        for glyph, text in delta.items():
            self.add(glyph, text)

    def snapshot(self) -> Mapping[Glyph, str]:
        """Read-only copy of the current entries."""
        return MappingProxyType(dict(self._entries))

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_xml(self) -> str:
        root = ET.Element("glyphs")
        for glyph, text in self._entries.items():
            node = ET.SubElement(root, "glyph")
            bits = ET.SubElement(node, "bits")
            for bit in glyph.bits:
                ET.SubElement(bits, "bit").text = str(bit)
            ET.SubElement(node, "width").text = str(glyph.width)
            ET.SubElement(node, "string").text = text
        ET.indent(root, space="\t")
        return ET.tostring(root, encoding="unicode") + "\n"

    @classmethod
    def from_xml(cls, text: str) -> "GlyphDictionary":
        """
        Parse the persisted XML form.

        Records with no width, no bits or an empty string are skipped.

        Raises
        ------
        DictionaryFormatError
            If the document is not well-formed or its root is not <glyphs>.
        """
        try:
            root = ET.fromstring(text)
        except ET.ParseError as exc:
            raise DictionaryFormatError(f"Glyph dictionary is not valid XML: {exc}") from exc
        if root.tag.lower() != "glyphs":
            raise DictionaryFormatError(f"Expected <glyphs> root element, got <{root.tag}>.")

        dictionary = cls()
        skipped = 0
        for node in root:
            if node.tag.lower() != "glyph":
                continue
            width = 0
            string = ""
            bits: list[int] = []
            try:
                for child in node:
                    name = child.tag.lower()
                    if name == "bits":
                        bits.extend(int((b.text or "").strip()) for b in child if b.tag.lower() == "bit")
                    elif name == "width":
                        width = int((child.text or "").strip())
                    elif name == "string":
                        string = (child.text or "").strip()
            except ValueError as exc:
                raise DictionaryFormatError(f"Bad number in glyph record: {exc}") from exc
            if width > 0 and string and bits:
                dictionary.add(Glyph.from_bits(width, bits, from_dictionary=True), string)
            else:
                skipped += 1
        if skipped:
            logger.debug("Skipped %d incomplete glyph records", skipped)
        return dictionary

    @classmethod
    def load(cls, path: Optional[str]) -> "GlyphDictionary":
        """Load from *path*; a missing path gives an empty dictionary."""
        if not path or not os.path.exists(path):
            logger.warning("Glyph dictionary not found at %s; starting empty.", path)
            return cls()
        with open(path, "r", encoding="utf-8") as f:
            dictionary = cls.from_xml(f.read())
        logger.info("Loaded %d glyphs from %s", len(dictionary), path)
        return dictionary

    def save(self, path: str) -> None:
        with open(path, "w", encoding="utf-8") as f:
            f.write(self.to_xml())
        logger.info("Saved %d glyphs to %s", len(self), path)


# ---------------------------------------------------------------------------
# Recognizers
# ---------------------------------------------------------------------------

class Recognizer:
    """Read-only exact lookup over a dictionary snapshot."""

    def __init__(self, dictionary: GlyphDictionary):
        self._known = dictionary.snapshot()

    def recognize(self, glyph: Glyph) -> Optional[str]:
        return self._known.get(glyph)

    def learn(self, glyph: Glyph, text: str) -> None:
        # read-only: combined second-pass words are not remembered
        pass


def _console_prompt(glyph: Glyph) -> str:
    return input(glyph.render() + MATCH_PROMPT)


def _console_confirm(glyph: Glyph, text: str) -> bool:
    response = input(glyph.render(text) + CONFIRM_PROMPT)
    return response.strip().upper() == "Y"


class TrainingRecognizer:
    """
    Recognizer that asks for the text of unknown glyphs.

    New pairs are buffered in ``delta`` and never written back to the
    wrapped dictionary; the caller decides what to persist.

    Parameters
    ----------
    recognizer : Recognizer
        Lookup for already known glyphs.
    prompt : callable, optional
        ``prompt(glyph) -> str``; an empty answer leaves the glyph
        unrecognized. Defaults to a console prompt.
    """

    def __init__(
        self,
        recognizer: Recognizer,
        prompt: Optional[Callable[[Glyph], str]] = None,
    ):
        self._recognizer = recognizer
        self._prompt = prompt or _console_prompt
        self.delta: dict[Glyph, str] = {}

    def recognize(self, glyph: Glyph) -> Optional[str]:
        text = self._recognizer.recognize(glyph)
        if text is not None:
            return text
        text = self.delta.get(glyph)
        if text is not None:
            return text
        answer = self._prompt(glyph)
        if not answer:
            return None
        self.delta[glyph] = answer
        return answer

    def learn(self, glyph: Glyph, text: str) -> None:
        if self._recognizer.recognize(glyph) is None:
            self.delta[glyph] = text

    def confirmed_delta(
        self,
        confirm: Optional[Callable[[Glyph, str], bool]] = None,
    ) -> dict[Glyph, str]:
        """Return the delta entries the *confirm* callable accepts (default: ask on console)."""
        confirm = confirm or _console_confirm
        accepted = {}
        for glyph, text in self.delta.items():
            if confirm(glyph, text):
                logger.debug("Recorded %r", text)
                accepted[glyph] = text
        return accepted
