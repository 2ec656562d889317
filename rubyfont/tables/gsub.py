"""
'GSUB' codec for ruby substitutions.

The ruby layout edit is a single multiple-substitution lookup mapping each
annotated base glyph to a glyph sequence (the base plus its ruby glyphs).
feaLib compiles it and fontTools decompiles it again, both against a bare
TTFont that only knows the glyph order.
"""

from dataclasses import dataclass, field

from fontTools.feaLib.builder import addOpenTypeFeaturesFromString
from fontTools.ttLib import TTFont, newTable

from ..errors import MalformedFont, UnsupportedTableFormat

DEFAULT_FEATURE = "ccmp"
MULTIPLE_SUBSTITUTION = 2
EXTENSION_SUBSTITUTION = 7


@dataclass
class RubySubstitutions:
    mapping: dict = field(default_factory=dict)
    feature: str = DEFAULT_FEATURE


def glyph_names(num_glyphs: int) -> list:
    return [".notdef"] + [f"glyph{gid:05d}" for gid in range(1, num_glyphs)]


def _glyph_order_font(num_glyphs: int) -> TTFont:
    font = TTFont()
    font.setGlyphOrder(glyph_names(num_glyphs))
    return font


def generate_fea(subs: RubySubstitutions, num_glyphs: int) -> str:
    names = glyph_names(num_glyphs)
    lines = [
        "languagesystem DFLT dflt;",
        "",
        f"feature {subs.feature} {{",
        "    lookup ruby {",
    ]
    for base in sorted(subs.mapping):
        sequence = " ".join(names[gid] for gid in subs.mapping[base])
        lines.append(f"        sub {names[base]} by {sequence};")
    lines.append("    } ruby;")
    lines.append(f"}} {subs.feature};")
    return "\n".join(lines)


def encode(subs: RubySubstitutions, num_glyphs: int) -> bytes:
    font = _glyph_order_font(num_glyphs)
    addOpenTypeFeaturesFromString(font, generate_fea(subs, num_glyphs), tables=["GSUB"])
    return font["GSUB"].compile(font)


def _check_ruby_layout(gsub):
    """Only the single-feature DFLT layout written by encode() counts as ruby."""
    if getattr(gsub, "FeatureVariations", None) is not None:
        raise UnsupportedTableFormat("'GSUB' has feature variations")
    features = gsub.FeatureList.FeatureRecord if gsub.FeatureList else []
    lookups = gsub.LookupList.Lookup if gsub.LookupList else []
    if len(features) != 1 or len(lookups) != 1:
        raise UnsupportedTableFormat(
            f"'GSUB' has {len(features)} features and {len(lookups)} lookups, not a ruby layout"
        )
    if features[0].Feature.LookupListIndex != [0]:
        raise UnsupportedTableFormat("'GSUB' feature does not use the ruby lookup alone")
    scripts = gsub.ScriptList.ScriptRecord if gsub.ScriptList else []
    if [record.ScriptTag for record in scripts] != ["DFLT"]:
        raise UnsupportedTableFormat("'GSUB' has script-specific features")
    script = scripts[0].Script
    if script.LangSysRecord or script.DefaultLangSys is None:
        raise UnsupportedTableFormat("'GSUB' has language-specific features")
    if script.DefaultLangSys.FeatureIndex != [0] or script.DefaultLangSys.ReqFeatureIndex != 0xFFFF:
        raise UnsupportedTableFormat("'GSUB' default language system is not a ruby layout")


def decode(data: bytes, num_glyphs: int) -> RubySubstitutions:
    """Read back a ruby GSUB.

    Anything other than one multiple-substitution lookup under one feature for
    DFLT/dflt is a font's own layout and raises UnsupportedTableFormat.
    """
    font = _glyph_order_font(num_glyphs)
    table = newTable("GSUB")
    table.decompile(data, font)
    gsub = table.table
    ids = font.getReverseGlyphMap()

    def glyph_id(name):
        if name not in ids:
            raise MalformedFont(f"'GSUB' references glyph {name} beyond {num_glyphs} glyphs")
        return ids[name]

    _check_ruby_layout(gsub)
    (lookup,) = gsub.LookupList.Lookup
    mapping = {}
    for subtable in lookup.SubTable:
        lookup_type = lookup.LookupType
        if lookup_type == EXTENSION_SUBSTITUTION:
            lookup_type = subtable.ExtensionLookupType
            subtable = subtable.ExtSubTable
        if lookup_type != MULTIPLE_SUBSTITUTION:
            raise UnsupportedTableFormat(f"'GSUB' lookup type {lookup_type} is not a ruby lookup")
        for base, sequence in subtable.mapping.items():
            mapping[glyph_id(base)] = [glyph_id(name) for name in sequence]

    return RubySubstitutions(mapping, gsub.FeatureList.FeatureRecord[0].FeatureTag)
