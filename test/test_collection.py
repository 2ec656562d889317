import io

import pytest
from fontTools.ttLib import TTCollection

from rubyfont.collection import split_collection
from rubyfont.encoder import encode_collection, encode_font
from rubyfont.errors import MalformedFont
from rubyfont.sfnt import Collection, load


@pytest.fixture
def collection(collection_path):
    return load(collection_path.read_bytes())


def test_split_copies_every_table(collection):
    fonts = split_collection(collection)
    assert len(fonts) == 2
    for member, font in zip(collection, fonts):
        assert font.tags() == member.tags()
        for tag in member.tags():
            assert font.get_table(tag) == member.get_table(tag)
            assert not font.entry(tag).shared


def test_split_members_are_independent(collection):
    first, second = split_collection(collection)
    first.set_table("glyf", b"")
    assert second.get_table("glyf") == collection[1].get_table("glyf")
    assert collection[0].get_table("glyf") != b""


def test_split_rejects_member_without_required_tables(collection):
    collection[1].del_table("hmtx")
    with pytest.raises(MalformedFont, match="hmtx"):
        split_collection(collection)


def test_collection_round_trip_shares_identical_tables(collection):
    data = encode_collection(list(collection))
    again = load(data)
    assert isinstance(again, Collection)
    assert len(again) == 2
    for before, after in zip(collection, again):
        assert sorted(after.tags()) == sorted(before.tags())
        for tag in before.tags():
            if tag != "head":
                assert after.get_table(tag) == before.get_table(tag)
    assert again[0].entry("glyf").shared_with == frozenset({1})
    assert len(data) < sum(len(encode_font(font)) for font in collection)


def test_collection_output_loads_in_fonttools(collection):
    tt = TTCollection(io.BytesIO(encode_collection(list(collection))))
    assert len(tt.fonts) == 2
    assert "GSUB" in tt.fonts[1]
    assert "GSUB" not in tt.fonts[0]
    assert tt.fonts[0].getBestCmap()[0x4E2D] == "uni4E2D"


def test_collection_members_keep_standalone_checksums(collection):
    again = load(encode_collection(list(collection)))
    for member in again:
        standalone = encode_font(member)
        assert load(standalone).get_table("head") == member.get_table("head")
