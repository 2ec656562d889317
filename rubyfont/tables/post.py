"""
'post' PostScript table codec.

Format 2.0 carries one glyph name per glyph and is decoded into a name list.
Formats 1.0 and 3.0 carry no per-glyph data. Formats 2.5 and 4.0 keep their
trailing bytes opaquely and are downgraded to 3.0 whenever the glyph set changes.
"""

import struct
from dataclasses import dataclass, field

from fontTools.ttLib.standardGlyphOrder import standardGlyphOrder

from ..errors import MalformedFont

POST_HEADER = struct.Struct(">IihhIIIII")

FORMAT_1 = 0x00010000
FORMAT_2 = 0x00020000
FORMAT_2_5 = 0x00025000
FORMAT_3 = 0x00030000
FORMAT_4 = 0x00040000

_STANDARD_INDEX = {name: i for i, name in enumerate(standardGlyphOrder)}


@dataclass
class Post:
    formatType: int
    italicAngle: int
    underlinePosition: int
    underlineThickness: int
    isFixedPitch: int
    minMemType42: int
    maxMemType42: int
    minMemType1: int
    maxMemType1: int
    names: list = None
    extra: bytes = field(default=b"", repr=False)

    @property
    def has_names(self) -> bool:
        return self.formatType == FORMAT_2 and self.names is not None

    def drop_names(self):
        """Switch to format 3.0, which needs no per-glyph data."""
        self.formatType = FORMAT_3
        self.names = None
        self.extra = b""


def decode(data: bytes) -> Post:
    if len(data) < POST_HEADER.size:
        raise MalformedFont("'post' table is truncated")
    post = Post(*POST_HEADER.unpack_from(data, 0))
    body = data[POST_HEADER.size:]
    if post.formatType == FORMAT_2:
        post.names = _decode_names(body)
    elif post.formatType in (FORMAT_2_5, FORMAT_4):
        post.extra = bytes(body)
    return post


def _decode_names(body: bytes) -> list:
    if len(body) < 2:
        raise MalformedFont("'post' format 2.0 is truncated")
    (num_glyphs,) = struct.unpack_from(">H", body, 0)
    if len(body) < 2 + 2 * num_glyphs:
        raise MalformedFont("'post' glyph name index is truncated")
    indices = struct.unpack_from(f">{num_glyphs}H", body, 2)

    strings = []
    pos = 2 + 2 * num_glyphs
    while pos < len(body):
        length = body[pos]
        if pos + 1 + length > len(body):
            raise MalformedFont("'post' glyph name string runs past the table")
        strings.append(body[pos + 1:pos + 1 + length].decode("latin-1"))
        pos += 1 + length

    names = []
    for index in indices:
        if index < len(standardGlyphOrder):
            names.append(standardGlyphOrder[index])
        elif index - len(standardGlyphOrder) < len(strings):
            names.append(strings[index - len(standardGlyphOrder)])
        else:
            raise MalformedFont(f"'post' glyph name index {index} out of range")
    return names


def encode(post: Post) -> bytes:
    header = POST_HEADER.pack(
        post.formatType,
        post.italicAngle,
        post.underlinePosition,
        post.underlineThickness,
        post.isFixedPitch,
        post.minMemType42,
        post.maxMemType42,
        post.minMemType1,
        post.maxMemType1,
    )
    if post.formatType == FORMAT_2:
        return header + _encode_names(post.names or [])
    if post.formatType in (FORMAT_2_5, FORMAT_4):
        return header + post.extra
    return header


def _encode_names(names: list) -> bytes:
    indices = []
    extra = {}
    for name in names:
        if name in _STANDARD_INDEX:
            indices.append(_STANDARD_INDEX[name])
        else:
            if name not in extra:
                extra[name] = len(standardGlyphOrder) + len(extra)
            indices.append(extra[name])
    data = struct.pack(f">H{len(indices)}H", len(indices), *indices)
    for name in extra:
        raw = name.encode("latin-1")[:255]
        data += bytes([len(raw)]) + raw
    return data
