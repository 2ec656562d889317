import struct

import pytest
from fontTools.feaLib.builder import addOpenTypeFeaturesFromString

from rubyfont.errors import InconsistentGlyphSet, MalformedFont, UnsupportedTableFormat
from rubyfont.tables import cmap, gsub, head, hhea, hmtx, maxp, post
from rubyfont.tables.glyf import (
    ARGS_ARE_XY_VALUES,
    Component,
    CompositeGlyph,
    GlyfTable,
    SimpleGlyph,
    decode_glyph,
    decode_loca,
    encode_glyph,
    encode_loca,
)
from rubyfont.tables.head import LONG_OFFSETS, SHORT_OFFSETS

BASE_GLYPH_ORDER = [".notdef", "space", "A", "acute", "Aacute", "uni4E2D", "uni6587", "uni4E00"]


def _glyf_table(font):
    header = head.decode(font.get_table("head"))
    profile = maxp.decode(font.get_table("maxp"))
    return GlyfTable.decode(
        font.get_table("glyf"), font.get_table("loca"), profile.numGlyphs, header.indexToLocFormat
    )


# ---------------------------------------------------------------------------
# head / hhea / maxp / hmtx
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "tag, codec",
    [("head", head), ("hhea", hhea), ("maxp", maxp)],
)
def test_fixed_tables_reencode_identically(base_font, tag, codec):
    data = base_font.get_table(tag)
    assert codec.encode(codec.decode(data)) == data


def test_head_fields(base_font):
    header = head.decode(base_font.get_table("head"))
    assert header.magicNumber == 0x5F0F3CF5
    assert header.unitsPerEm == 1000


def test_truncated_head_is_malformed():
    with pytest.raises(MalformedFont, match="truncated"):
        head.decode(bytes(20))


def test_maxp_version_05():
    data = struct.pack(">IH", maxp.VERSION_0_5, 7)
    profile = maxp.decode(data)
    assert profile.numGlyphs == 7
    assert maxp.encode(profile) == data


def test_maxp_unknown_version():
    with pytest.raises(UnsupportedTableFormat):
        maxp.decode(struct.pack(">IH", 0x00020000, 1))


def test_hmtx_folds_trailing_advances():
    metrics = [(500, 0), (600, 10), (600, 20), (600, -5)]
    data, num_long = hmtx.encode(metrics)
    assert num_long == 2
    assert len(data) == 2 * 4 + 2 * 2
    assert hmtx.decode(data, 4, num_long) == metrics


def test_hmtx_fixture_round_trip(base_font):
    header = hhea.decode(base_font.get_table("hhea"))
    metrics = hmtx.decode(base_font.get_table("hmtx"), len(BASE_GLYPH_ORDER), header.numberOfHMetrics)
    assert metrics[5] == (800, 0)
    data, num_long = hmtx.encode(metrics)
    assert hmtx.decode(data, len(metrics), num_long) == metrics


def test_hmtx_truncated():
    with pytest.raises(MalformedFont):
        hmtx.decode(bytes(6), 4, 2)


# ---------------------------------------------------------------------------
# post
# ---------------------------------------------------------------------------

def test_post_format2_names(base_font):
    table = post.decode(base_font.get_table("post"))
    assert table.formatType == post.FORMAT_2
    assert table.names == BASE_GLYPH_ORDER
    assert post.decode(post.encode(table)) == table


def test_post_drop_names(base_font):
    table = post.decode(base_font.get_table("post"))
    table.drop_names()
    data = post.encode(table)
    assert len(data) == post.POST_HEADER.size
    assert not post.decode(data).has_names


def test_post_bad_name_index(base_font):
    table = post.decode(base_font.get_table("post"))
    data = post.encode(table)
    header_size = post.POST_HEADER.size
    broken = data[:header_size + 2] + struct.pack(">H", 999) + data[header_size + 4:]
    with pytest.raises(MalformedFont):
        post.decode(broken)


# ---------------------------------------------------------------------------
# cmap
# ---------------------------------------------------------------------------

def test_cmap_fixture(base_font):
    table = cmap.decode(base_font.get_table("cmap"))
    assert table.mapping[0x4E2D] == 5
    assert table.mapping[0x41] == 2
    assert table.mapping[0xC1] == 4
    assert cmap.decode(cmap.encode(table)) == table


def test_cmap_mixed_segments_round_trip():
    mapping = {0x41: 5, 0x42: 3, 0x43: 9}
    mapping.update({code: 10 + code - 0x61 for code in range(0x61, 0x7B)})
    table = cmap.Cmap(mapping)
    assert cmap.decode(cmap.encode(table)).mapping == mapping


def _encoding_records(data):
    _, count = struct.unpack_from(">HH", data, 0)
    return [struct.unpack_from(">HHI", data, 4 + 8 * i)[:2] for i in range(count)]


def test_cmap_non_bmp_adds_format12():
    table = cmap.Cmap({0x41: 1, 0x1F600: 2})
    data = cmap.encode(table)
    assert _encoding_records(data) == [(0, 3), (0, 4), (3, 1), (3, 10)]
    assert cmap.decode(data) == table


def test_cmap_bmp_only_uses_format4():
    data = cmap.encode(cmap.Cmap({0x41: 1, 0x4E2D: 2}))
    assert _encoding_records(data) == [(0, 3), (3, 1)]


def test_cmap_format4_overflow_falls_back_to_format12():
    mapping = {0x100 + i: (i * 7919) % 60000 + 1 for i in range(40000)}
    assert cmap.encode_format4(mapping) is None
    data = cmap.encode(cmap.Cmap(mapping))
    assert _encoding_records(data) == [(0, 4), (3, 10)]
    assert cmap.decode(data).mapping == mapping


def test_cmap_variations_are_carried():
    variations = struct.pack(">HII", 14, 10, 0)
    table = cmap.Cmap({0x41: 1}, variations)
    data = cmap.encode(table)
    assert (0, 5) in _encoding_records(data)
    assert cmap.decode(data).variations == variations


def test_cmap_format6():
    subtable = struct.pack(">HHHHH2H", 6, 14, 0, 0x41, 2, 3, 4)
    data = struct.pack(">HH", 0, 1) + struct.pack(">HHI", 3, 1, 12) + subtable
    assert cmap.decode(data).mapping == {0x41: 3, 0x42: 4}


def test_cmap_without_unicode_subtable():
    subtable = struct.pack(">HHH", 0, 262, 0) + bytes(range(256))
    data = struct.pack(">HH", 0, 1) + struct.pack(">HHI", 1, 0, 12) + subtable
    with pytest.raises(UnsupportedTableFormat):
        cmap.decode(data)


def test_cmap_truncated():
    with pytest.raises(MalformedFont):
        cmap.decode(b"\x00")
    with pytest.raises(MalformedFont):
        cmap.decode(struct.pack(">HH", 0, 3))


# ---------------------------------------------------------------------------
# glyf / loca
# ---------------------------------------------------------------------------

def test_glyf_untouched_bytes_are_identical(base_font):
    table = _glyf_table(base_font)
    glyf, loca, fmt = table.encode()
    assert glyf == base_font.get_table("glyf")
    assert loca == base_font.get_table("loca")
    assert fmt == SHORT_OFFSETS


def test_glyf_decodes_simple_composite_and_empty(base_font):
    table = _glyf_table(base_font)
    assert table[1] is None
    assert isinstance(table[5], SimpleGlyph)
    aacute = table[4]
    assert isinstance(aacute, CompositeGlyph)
    assert [(c.glyph_index, c.dx, c.dy) for c in aacute.components] == [(2, 0, 0), (3, 100, 0)]
    assert table.components(4) == [2, 3]
    assert table.is_composite(4)
    assert not table.is_composite(5)


def test_glyf_modified_glyph_round_trip(base_font):
    table = _glyf_table(base_font)
    glyph = table[5]
    table[5] = SimpleGlyph(list(glyph.end_points), list(glyph.coordinates), list(glyph.on_curve))
    assert table.is_modified(5)
    glyf, loca, fmt = table.encode()
    again = GlyfTable.decode(glyf, loca, len(table), fmt)
    assert again == table
    assert again[5].bounds() == (0, -100, 700, 700)


def test_composite_round_trip_with_transforms():
    glyph = CompositeGlyph(
        [
            Component(2, 10, -20),
            Component(3, 300, 5, (0.5, 0, 0, 0.5)),
            Component(1, 0, 0, (1.0, 0.25, -0.25, 1.0)),
            Component(4, 0, 0, (0.75, 0, 0, 1.5)),
            Component(2, 1, 3, flags=0),
        ],
        b"\x01\x02",
        (0, -20, 400, 600),
    )
    decoded = decode_glyph(encode_glyph(glyph))
    assert decoded == glyph
    assert decoded.components[0].flags == ARGS_ARE_XY_VALUES
    assert not decoded.components[4].is_offset


def test_simple_glyph_round_trip_with_large_deltas():
    glyph = SimpleGlyph(
        [2, 5],
        [(0, 0), (1000, -1000), (1001, 5), (-300, 300), (-300, 300), (-299, 301)],
        [True, False, True, True, True, False],
        b"\xb0\x00",
        True,
    )
    assert decode_glyph(encode_glyph(glyph)) == glyph


def test_zero_contour_glyph_decodes_as_empty():
    assert decode_glyph(struct.pack(">hhhhh", 0, 0, 0, 0, 0)) is None
    assert encode_glyph(None) == b""


def test_truncated_glyph_is_malformed():
    with pytest.raises(MalformedFont):
        decode_glyph(struct.pack(">hhhhh", 1, 0, 0, 10, 10))


def test_long_loca_is_chosen_for_large_glyf():
    count = 40000
    coordinates = [(0, 0) if i % 2 == 0 else (1000, 1000) for i in range(count)]
    table = GlyfTable()
    table.append(None)
    table.append(SimpleGlyph([count - 1], coordinates, [True] * count))
    glyf, loca, fmt = table.encode()
    assert len(glyf) > 0x1FFFE
    assert fmt == LONG_OFFSETS
    assert decode_loca(loca, 2, fmt) == [0, 0, len(glyf)]


def test_loca_format_can_be_forced(base_font):
    table = _glyf_table(base_font)
    glyf, loca, fmt = table.encode(LONG_OFFSETS)
    assert fmt == LONG_OFFSETS
    assert len(loca) == 4 * (len(table) + 1)
    assert GlyfTable.decode(glyf, loca, len(table), fmt) == table


def test_loca_must_be_monotonic():
    loca = encode_loca([0, 10, 4], SHORT_OFFSETS)
    with pytest.raises(MalformedFont, match="monotonic"):
        decode_loca(loca, 2, SHORT_OFFSETS)


def test_loca_past_glyf_is_malformed():
    loca = encode_loca([0, 100], LONG_OFFSETS)
    with pytest.raises(MalformedFont):
        GlyfTable.decode(bytes(10), loca, 1, LONG_OFFSETS)


def test_compute_bounds_matches_stored_bbox(base_font):
    table = _glyf_table(base_font)
    assert table.compute_bounds(4) == table.header_bounds(4)


def test_decompose_composite(base_font):
    table = _glyf_table(base_font)
    flat = table.decompose(4)
    a, acute = table[2], table[3]
    assert flat.num_contours == a.num_contours + acute.num_contours
    assert flat.coordinates[: len(a.coordinates)] == a.coordinates
    assert flat.coordinates[len(a.coordinates):] == [(x + 100, y) for x, y in acute.coordinates]


def test_decompose_rejects_point_matching():
    table = GlyfTable()
    table.append(None)
    table.append(CompositeGlyph([Component(0, 1, 2, flags=0)]))
    with pytest.raises(UnsupportedTableFormat):
        table.decompose(1)


def test_cycle_is_detected():
    table = GlyfTable()
    table.append(None)
    table.append(CompositeGlyph([Component(2)]))
    table.append(CompositeGlyph([Component(1)]))
    with pytest.raises(MalformedFont, match="cycle"):
        table.validate()


def test_self_reference_is_detected():
    table = GlyfTable()
    table.append(None)
    table.append(CompositeGlyph([Component(1)]))
    with pytest.raises(MalformedFont, match="cycle"):
        table.validate()


def test_excessive_nesting_is_rejected():
    table = GlyfTable()
    table.append(None)
    for gid in range(1, 80):
        table.append(CompositeGlyph([Component(gid + 1)]))
    table.append(SimpleGlyph([3], [(0, 0), (0, 1), (1, 1), (1, 0)], [True] * 4))
    with pytest.raises(MalformedFont, match="deeper"):
        table.validate()


def test_missing_component_is_inconsistent():
    table = GlyfTable()
    table.append(None)
    table.append(CompositeGlyph([Component(7)]))
    with pytest.raises(InconsistentGlyphSet):
        table.validate()


def test_missing_component_bounds_are_malformed():
    table = GlyfTable()
    table.append(None)
    table.append(CompositeGlyph([Component(7)]))
    with pytest.raises(MalformedFont, match="Glyph 7 is out of range"):
        table.compute_bounds(1)


def test_outline_stats(base_font):
    table = _glyf_table(base_font)
    cache = {}
    a_points, a_contours, _, _ = table.outline_stats(2, cache)
    acute_points, acute_contours, _, _ = table.outline_stats(3, cache)
    assert table.outline_stats(4, cache) == (
        a_points + acute_points,
        a_contours + acute_contours,
        2,
        1,
    )


def test_subset_renumbers_components(base_font):
    table = _glyf_table(base_font)
    order = [0, 2, 3, 4]
    subset = table.subset(order, {old: new for new, old in enumerate(order)})
    assert len(subset) == 4
    assert subset.components(3) == [1, 2]
    assert subset[1] == table[2]


# ---------------------------------------------------------------------------
# GSUB
# ---------------------------------------------------------------------------

def test_gsub_round_trip():
    subs = gsub.RubySubstitutions({5: [5, 8, 9], 6: [10, 6]}, "ccmp")
    data = gsub.encode(subs, 11)
    assert gsub.decode(data, 11) == subs


def test_gsub_feature_text():
    fea = gsub.generate_fea(gsub.RubySubstitutions({5: [5, 8]}, "rclt"), 9)
    assert "feature rclt {" in fea
    assert "sub glyph00005 by glyph00005 glyph00008;" in fea


def test_foreign_gsub_is_unsupported(gsub_font_path):
    from rubyfont.sfnt import load

    font = load(gsub_font_path.read_bytes())
    with pytest.raises(UnsupportedTableFormat):
        gsub.decode(font.get_table("GSUB"), len(BASE_GLYPH_ORDER))


def test_font_decomposition_features_are_not_ruby(ccmp_font_path):
    from rubyfont.sfnt import load

    font = load(ccmp_font_path.read_bytes())
    with pytest.raises(UnsupportedTableFormat, match="2 features"):
        gsub.decode(font.get_table("GSUB"), len(BASE_GLYPH_ORDER))


def test_ruby_gsub_under_another_script_is_not_ruby():
    subs = gsub.RubySubstitutions({5: [5, 8]}, "ccmp")
    fea = gsub.generate_fea(subs, 9).replace("languagesystem DFLT dflt;", "languagesystem hani dflt;")
    font = gsub._glyph_order_font(9)
    addOpenTypeFeaturesFromString(font, fea, tables=["GSUB"])
    with pytest.raises(UnsupportedTableFormat, match="script"):
        gsub.decode(font["GSUB"].compile(font), 9)
