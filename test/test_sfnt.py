import struct

import pytest

from rubyfont.errors import MalformedFont, TableNotFound
from rubyfont.sfnt import (
    SFNT_HEADER,
    TABLE_RECORD,
    Collection,
    Font,
    calc_checksum,
    load,
    table_checksum,
)


def _directory_entries(data):
    _, num_tables, _, _, _ = SFNT_HEADER.unpack_from(data, 0)
    return [
        TABLE_RECORD.unpack_from(data, SFNT_HEADER.size + i * TABLE_RECORD.size)
        for i in range(num_tables)
    ]


def test_load_font_reads_every_table(base_font_path):
    data = base_font_path.read_bytes()
    font = load(data)
    assert isinstance(font, Font)
    for raw_tag, _, offset, length in _directory_entries(data):
        tag = raw_tag.decode("latin-1")
        assert font.get_table(tag) == data[offset:offset + length]


def test_tags_keep_directory_order(base_font_path):
    data = base_font_path.read_bytes()
    expected = tuple(raw.decode("latin-1") for raw, _, _, _ in _directory_entries(data))
    assert load(data).tags() == expected


def test_missing_table_raises_table_not_found(base_font):
    with pytest.raises(TableNotFound) as excinfo:
        base_font.get_table("GPOS")
    assert excinfo.value.tag == "GPOS"
    assert isinstance(excinfo.value, KeyError)
    assert "GPOS" in str(excinfo.value)


def test_set_table_and_delete(base_font):
    base_font.set_table("TEST", b"abc")
    assert "TEST" in base_font
    assert base_font.get_table("TEST") == b"abc"
    base_font.del_table("TEST")
    assert "TEST" not in base_font


def test_set_table_rejects_bad_tag(base_font):
    with pytest.raises(ValueError):
        base_font.set_table("TOOLONG", b"")


def test_head_checksum_ignores_adjustment():
    head = bytes(8) + b"\x12\x34\x56\x78" + bytes(42)
    assert table_checksum("head", head) == 0
    assert calc_checksum(head) == 0x12345678


def test_checksum_pads_to_four_bytes():
    assert calc_checksum(b"\x01") == 0x01000000
    assert calc_checksum(b"\x00\x00\x00\x01\x00\x00\x00\x02") == 3


@pytest.mark.parametrize(
    "data",
    [b"", b"\x00\x01", b"wOF2" + bytes(40), b"\xde\xad\xbe\xef" + bytes(8)],
)
def test_bad_magic_is_rejected(data):
    with pytest.raises(MalformedFont):
        load(data)


def test_table_past_end_of_file_is_rejected(base_font_path):
    data = bytearray(base_font_path.read_bytes())
    record = SFNT_HEADER.size
    tag, checksum, offset, _ = TABLE_RECORD.unpack_from(data, record)
    TABLE_RECORD.pack_into(data, record, tag, checksum, offset, len(data))
    with pytest.raises(MalformedFont, match="past end of file"):
        load(bytes(data))


def test_directory_longer_than_file_is_rejected(base_font_path):
    data = base_font_path.read_bytes()
    truncated = data[:SFNT_HEADER.size + TABLE_RECORD.size]
    with pytest.raises(MalformedFont):
        load(truncated)


def test_duplicate_tag_is_rejected(base_font_path):
    data = bytearray(base_font_path.read_bytes())
    first = TABLE_RECORD.unpack_from(data, SFNT_HEADER.size)
    second_offset = SFNT_HEADER.size + TABLE_RECORD.size
    _, checksum, offset, length = TABLE_RECORD.unpack_from(data, second_offset)
    TABLE_RECORD.pack_into(data, second_offset, first[0], checksum, offset, length)
    with pytest.raises(MalformedFont, match="Duplicate"):
        load(bytes(data))


def test_collection_marks_shared_tables(collection_path):
    collection = load(collection_path.read_bytes())
    assert isinstance(collection, Collection)
    assert len(collection) == 2
    shared = collection.shared_tags(0)
    assert "glyf" in shared
    assert collection[0].entry("glyf").shared_with == frozenset({1})
    assert "GSUB" not in collection[0]
    assert not collection[1].entry("GSUB").shared


def test_set_table_breaks_sharing(collection_path):
    collection = load(collection_path.read_bytes())
    original = collection[1].get_table("cmap")
    collection[0].set_table("cmap", b"changed")
    assert not collection[0].entry("cmap").shared
    assert collection[1].get_table("cmap") == original


def test_copy_is_unshared(collection_path):
    collection = load(collection_path.read_bytes())
    clone = collection[0].copy()
    assert clone.tags() == collection[0].tags()
    assert not any(clone.entry(tag).shared for tag in clone.tags())


def test_collection_with_bad_offset_is_rejected(collection_path):
    data = bytearray(collection_path.read_bytes())
    struct.pack_into(">I", data, 12, len(data) + 100)
    with pytest.raises(MalformedFont):
        load(bytes(data))


def test_collection_without_fonts_is_rejected():
    with pytest.raises(MalformedFont, match="no fonts"):
        load(b"ttcf\x00\x01\x00\x00\x00\x00\x00\x00")


def test_font_from_bytes_rejects_collection(collection_path):
    with pytest.raises(MalformedFont):
        Font.from_bytes(collection_path.read_bytes())
