import io

import pytest
from fontTools.ttLib import TTFont

from rubyfont.encoder import compress_woff2, encode_font, write_atomic, write_outputs
from rubyfont.sfnt import SFNT_HEADER, TABLE_RECORD, calc_checksum, load
from rubyfont.tables.head import CHECKSUM_MAGIC


def test_whole_file_checksum(base_font):
    data = encode_font(base_font)
    assert calc_checksum(data) == CHECKSUM_MAGIC


def test_output_passes_fonttools_checksum_check(base_font):
    tt = TTFont(io.BytesIO(encode_font(base_font)), checkChecksums=2)
    for tag in tt.keys():
        if tag != "GlyphOrder":
            tt[tag]


def test_tables_are_sorted_and_aligned(base_font):
    data = encode_font(base_font)
    _, num_tables, search_range, entry_selector, range_shift = SFNT_HEADER.unpack_from(data, 0)
    assert num_tables == len(base_font.tags())
    assert search_range == 16 * 2 ** entry_selector <= 16 * num_tables
    assert range_shift == 16 * num_tables - search_range

    records = [
        TABLE_RECORD.unpack_from(data, SFNT_HEADER.size + i * TABLE_RECORD.size)
        for i in range(num_tables)
    ]
    tags = [tag for tag, _, _, _ in records]
    assert tags == sorted(tags)
    for tag, checksum, offset, length in records:
        assert offset % 4 == 0, f"{tag!r} at unaligned offset {offset}"
        if tag != b"head":
            assert checksum == calc_checksum(data[offset:offset + length])


def test_reencoding_is_stable(base_font):
    data = encode_font(base_font)
    assert encode_font(load(data)) == data


def test_woff2(base_font):
    woff2 = compress_woff2(encode_font(base_font))
    assert woff2[:4] == b"wOF2"
    tt = TTFont(io.BytesIO(woff2))
    assert tt.flavor == "woff2"
    assert tt.getBestCmap()[0x4E2D] == "uni4E2D"
    assert tt["maxp"].numGlyphs == 8


def test_write_atomic_replaces_file(tmp_path):
    path = tmp_path / "sub" / "font.ttf"
    write_atomic(path, b"first")
    write_atomic(path, b"second")
    assert path.read_bytes() == b"second"
    assert [p.name for p in path.parent.iterdir()] == ["font.ttf"]


def test_write_outputs_rolls_back(tmp_path):
    blocker = tmp_path / "blocked.ttf"
    blocker.mkdir()
    first = tmp_path / "first.ttf"
    with pytest.raises(OSError):
        write_outputs([(first, b"data"), (blocker, b"data")])
    assert not first.exists()
    assert sorted(p.name for p in tmp_path.iterdir()) == ["blocked.ttf"]
