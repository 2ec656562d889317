"""
Decoded, mutable view of the glyph-indexed tables of one font.

Pipeline stages mutate a FontEdit and record which tables they touched; the
rebuilder then re-encodes those tables and commits them to the Font in one step.
Until that commit the Font itself is never modified.
"""

import logging

from .errors import InconsistentGlyphSet, MalformedFont, UnsupportedTableFormat
from .sfnt import Font
from .tables import cmap, gsub, head, hhea, hmtx, maxp, post
from .tables.glyf import GlyfTable

logger = logging.getLogger(__name__)

VARIATION_TABLES = ("fvar", "gvar", "avar", "HVAR", "VVAR", "MVAR", "cvar")


def check_supported(font: Font):
    """Reject fonts whose outlines or variations the pipeline cannot rewrite."""
    present = [tag for tag in VARIATION_TABLES if tag in font]
    if present:
        raise UnsupportedTableFormat(f"Variable fonts are not supported (found {', '.join(present)})")
    if "glyf" not in font:
        kind = "CFF" if "CFF " in font or "CFF2" in font else "non-TrueType"
        raise UnsupportedTableFormat(f"{kind} outlines are not supported; convert to TrueType first")


class FontEdit:
    def __init__(self, font: Font):
        check_supported(font)
        self.font = font
        self.head = head.decode(font.get_table("head"))
        self.maxp = maxp.decode(font.get_table("maxp"))
        self.hhea = hhea.decode(font.get_table("hhea"))
        num_glyphs = self.maxp.numGlyphs

        self.glyphs = GlyfTable.decode(
            font.get_table("glyf"), font.get_table("loca"), num_glyphs, self.head.indexToLocFormat
        )
        try:
            self.glyphs.validate()
        except InconsistentGlyphSet as exc:
            raise MalformedFont(str(exc)) from exc
        self.hmetrics = hmtx.decode(font.get_table("hmtx"), num_glyphs, self.hhea.numberOfHMetrics)

        self.vhea = None
        self.vmetrics = None
        if "vhea" in font and "vmtx" in font:
            self.vhea = hhea.decode(font.get_table("vhea"), "vhea")
            self.vmetrics = hmtx.decode(
                font.get_table("vmtx"), num_glyphs, self.vhea.numberOfHMetrics, "vmtx"
            )

        self.touched: set = set()
        self.dropped: set = set()
        self.glyph_count_changed = False

        self.post = post.decode(font.get_table("post")) if "post" in font else None
        if self.post is not None and self.post.has_names and len(self.post.names) != num_glyphs:
            logger.warning(
                "'post' names %d glyphs but maxp has %d; dropping glyph names",
                len(self.post.names),
                num_glyphs,
            )
            self.post.drop_names()
            self.touched.add("post")

        self.cmap = cmap.decode(font.get_table("cmap"))

        self.substitutions = None
        self.foreign_layout = False
        if "GSUB" in font:
            try:
                self.substitutions = gsub.decode(font.get_table("GSUB"), num_glyphs)
            except UnsupportedTableFormat as exc:
                logger.debug("Keeping existing GSUB as foreign: %s", exc)
                self.foreign_layout = True

    @property
    def num_glyphs(self) -> int:
        return len(self.glyphs)

    @property
    def units_per_em(self) -> int:
        return self.head.unitsPerEm

    def glyph_name(self, gid: int) -> str:
        if self.post is not None and self.post.has_names:
            return self.post.names[gid]
        return f"glyph{gid:05d}"

    def advance(self, gid: int) -> int:
        return self.hmetrics[gid][0]

    def add_glyph(self, glyph, advance: int, name: str = None, vertical: tuple = None) -> int:
        """Append a glyph with freshly allocated index and return that index.

        The left side bearing is filled in by the rebuilder from the outline.
        """
        gid = self.glyphs.append(glyph)
        self.hmetrics.append((advance, 0))
        if self.vmetrics is not None:
            self.vmetrics.append(vertical or (0, 0))
        if self.post is not None and self.post.has_names:
            self.post.names.append(name or f"glyph{gid:05d}")
        self.glyph_count_changed = True
        self.touched.update(("glyf", "hmtx", "post"))
        return gid

    def map_codepoint(self, codepoint: int, gid: int):
        self.cmap.mapping[codepoint] = gid
        self.touched.add("cmap")

    def set_substitution(self, base: int, sequence: list, feature: str):
        if self.substitutions is None:
            self.substitutions = gsub.RubySubstitutions(feature=feature)
        self.substitutions.mapping[base] = list(sequence)
        self.touched.add("GSUB")

    def drop_table(self, tag: str):
        if tag in self.font:
            self.dropped.add(tag)
