"""
Ruby renderers.

A renderer decides which reading a base character gets and draws that reading
with the glyphs of a separate ruby font. Outlines are converted to TrueType
quadratics so they can be stored in 'glyf'.
"""

import logging
from pathlib import Path

import yaml
from fontTools.pens.cu2quPen import Cu2QuPen
from fontTools.pens.recordingPen import DecomposingRecordingPen
from fontTools.pens.ttGlyphPen import TTGlyphPen
from fontTools.ttLib import TTFont

from .errors import ConfigError, RendererUnsupported
from .injector import AnnotationRequest, Position, RubyShape
from .tables.glyf import ON_CURVE_POINT, SimpleGlyph

logger = logging.getLogger(__name__)

CJK_RANGE = range(0x4E00, 0xA000)
HIRAGANA_RANGE = range(0x3040, 0x30A0)
KATAKANA_RANGE = range(0x30A0, 0x3100)

# Maximum error, in ruby font units, when approximating cubic curves.
CU2QU_MAX_ERR = 1.0


def outline_from_pen(pen: TTGlyphPen) -> SimpleGlyph | None:
    glyph = pen.glyph()
    if glyph.numberOfContours <= 0:
        return None
    return SimpleGlyph(
        list(glyph.endPtsOfContours),
        [(int(x), int(y)) for x, y in glyph.coordinates],
        [bool(flag & ON_CURVE_POINT) for flag in glyph.flags],
    )


class RubyRenderer:
    """Base renderer: draws ruby text with a ruby font; subclasses supply readings."""

    kind = None
    ranges = ()

    def __init__(self, font_path, position=Position.TOP):
        self.font_path = Path(font_path)
        self.font = TTFont(self.font_path, fontNumber=0, lazy=True)
        self.units_per_em = self.font["head"].unitsPerEm
        self.cmap = self.font.getBestCmap() or {}
        self.glyph_set = self.font.getGlyphSet()
        self.is_cff = "CFF " in self.font or "CFF2" in self.font
        self.position = Position(position)
        self._shapes = {}

    def supports(self, codepoint: int) -> bool:
        return any(codepoint in r for r in self.ranges)

    def codepoints(self):
        for r in self.ranges:
            yield from r

    def reading(self, codepoint: int) -> str:
        raise NotImplementedError

    def request(self, codepoint: int) -> AnnotationRequest:
        if not self.supports(codepoint):
            raise RendererUnsupported(f"U+{codepoint:04X} is outside the {self.kind} ranges")
        text = self.reading(codepoint)
        if not text:
            raise RendererUnsupported(f"No {self.kind} reading for U+{codepoint:04X}")
        return AnnotationRequest(codepoint, text, self.position)

    def requests(self, codepoints) -> list:
        """Requests for every codepoint that has a reading; others are skipped."""
        result = []
        for codepoint in sorted(codepoints):
            if not self.supports(codepoint):
                continue
            try:
                result.append(self.request(codepoint))
            except RendererUnsupported as exc:
                logger.debug("%s", exc)
        return result

    def render(self, codepoint: int, kind: str) -> list:
        if kind != self.kind:
            raise RendererUnsupported(f"{type(self).__name__} does not render {kind}")
        return self.shapes(self.request(codepoint).ruby_text)

    def shapes(self, text: str) -> list:
        """One RubyShape per character of text; RendererUnsupported if the ruby font lacks one."""
        return [self._shape(char) for char in text]

    def _shape(self, char: str) -> RubyShape:
        if char not in self._shapes:
            name = self.cmap.get(ord(char))
            if name is None or name == ".notdef":
                raise RendererUnsupported(f"Ruby font {self.font_path.name} has no glyph for {char!r}")
            glyph = self.glyph_set[name]
            recording = DecomposingRecordingPen(self.glyph_set)
            glyph.draw(recording)
            pen = TTGlyphPen(None)
            recording.replay(Cu2QuPen(pen, CU2QU_MAX_ERR, reverse_direction=self.is_cff))
            self._shapes[char] = RubyShape(char, outline_from_pen(pen), glyph.width, self.units_per_em)
        return self._shapes[char]


class PinyinRenderer(RubyRenderer):
    kind = "pinyin"
    ranges = (CJK_RANGE,)

    def __init__(self, font_path, position=Position.TOP):
        super().__init__(font_path, position)
        try:
            import pypinyin
        except ImportError as exc:
            raise ConfigError("The pinyin renderer needs pypinyin (pip install rubyfont[pinyin])") from exc
        self._pypinyin = pypinyin

    def reading(self, codepoint: int) -> str:
        syllables = self._pypinyin.lazy_pinyin(
            chr(codepoint), style=self._pypinyin.Style.TONE, errors="ignore"
        )
        return syllables[0] if syllables else ""


class RomajiRenderer(RubyRenderer):
    kind = "romaji"
    ranges = (CJK_RANGE, HIRAGANA_RANGE, KATAKANA_RANGE)

    def __init__(self, font_path, position=Position.TOP):
        super().__init__(font_path, position)
        try:
            import pykakasi
        except ImportError as exc:
            raise ConfigError("The romaji renderer needs pykakasi (pip install rubyfont[romaji])") from exc
        self._kakasi = pykakasi.kakasi()

    def reading(self, codepoint: int) -> str:
        char = chr(codepoint)
        romaji = "".join(item["hepburn"] for item in self._kakasi.convert(char))
        if romaji in (char, "-"):
            return ""
        return romaji


class TableRenderer(RubyRenderer):
    """Readings from a YAML mapping of character to ruby text."""

    kind = "table"

    def __init__(self, font_path, readings_path, position=Position.TOP):
        super().__init__(font_path, position)
        self.readings = load_readings(readings_path)
        self.ranges = tuple(range(cp, cp + 1) for cp in sorted(self.readings))

    def supports(self, codepoint: int) -> bool:
        return codepoint in self.readings

    def reading(self, codepoint: int) -> str:
        return self.readings.get(codepoint, "")


def load_readings(path) -> dict:
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot read readings table {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Readings table {path} must be a mapping of character to reading")

    readings = {}
    for key, value in data.items():
        if isinstance(key, int):
            codepoint = key
        elif isinstance(key, str) and len(key) == 1:
            codepoint = ord(key)
        elif isinstance(key, str) and key.upper().startswith("U+"):
            codepoint = int(key[2:], 16)
        else:
            raise ConfigError(f"Readings table {path}: key {key!r} is not a single character")
        readings[codepoint] = str(value)
    return readings


def create_renderer(config) -> RubyRenderer:
    """Build the renderer a RubyConfig asks for."""
    if config.font is None:
        raise ConfigError("A ruby font is required (ruby.font or --ruby-font)")
    if not Path(config.font).is_file():
        raise ConfigError(f"Ruby font not found: {config.font}")
    if config.kind == "pinyin":
        return PinyinRenderer(config.font, config.position)
    if config.kind == "romaji":
        return RomajiRenderer(config.font, config.position)
    if config.kind == "table":
        if config.readings is None:
            raise ConfigError("The table renderer needs a readings file (ruby.readings or --readings)")
        return TableRenderer(config.font, config.readings, config.position)
    raise ConfigError(f"Unknown ruby kind {config.kind!r}")
