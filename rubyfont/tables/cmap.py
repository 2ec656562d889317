"""
'cmap' character-to-glyph mapping codec.

Decoding merges every Unicode subtable into one codepoint -> glyph index dict.
Encoding always writes the most compact standard arrangement for the mapping:
a format 4 subtable for the BMP, plus a format 12 subtable when codepoints
beyond U+FFFF exist or format 4 would overflow its 16-bit length.
"""

import logging
import struct
from dataclasses import dataclass

from ..errors import MalformedFont, UnsupportedTableFormat

logger = logging.getLogger(__name__)

CMAP_HEADER = struct.Struct(">HH")
ENCODING_RECORD = struct.Struct(">HHI")
FORMAT4_HEADER = struct.Struct(">HHHHHHH")
FORMAT12_HEADER = struct.Struct(">HHIII")
GROUP = struct.Struct(">III")

MAX_CODEPOINT = 0x10FFFF

# Constant-delta runs at least this long get their own format 4 segment.
MIN_DELTA_RUN = 4


@dataclass
class Cmap:
    """Unicode mapping of a font.

    mapping is kept as a plain dict; encode() emits it in codepoint order.
    variations holds a raw format 14 subtable, if the font had one.
    """

    mapping: dict
    variations: bytes = None


def _is_unicode(platform_id: int, encoding_id: int) -> bool:
    if platform_id == 0:
        return encoding_id != 5
    return platform_id == 3 and encoding_id in (1, 10)


def decode(data: bytes) -> Cmap:
    if len(data) < CMAP_HEADER.size:
        raise MalformedFont("'cmap' table is truncated")
    _, num_tables = CMAP_HEADER.unpack_from(data, 0)
    if CMAP_HEADER.size + num_tables * ENCODING_RECORD.size > len(data):
        raise MalformedFont("'cmap' encoding records exceed the table")

    candidates = []
    variations = None
    unsupported = []
    for i in range(num_tables):
        platform_id, encoding_id, offset = ENCODING_RECORD.unpack_from(
            data, CMAP_HEADER.size + i * ENCODING_RECORD.size
        )
        if offset + 2 > len(data):
            raise MalformedFont(f"'cmap' subtable ({platform_id}, {encoding_id}) is out of bounds")
        (fmt,) = struct.unpack_from(">H", data, offset)
        if fmt == 14:
            variations = _slice_format14(data, offset)
            continue
        if not _is_unicode(platform_id, encoding_id):
            continue
        if fmt not in _DECODERS:
            unsupported.append(fmt)
            continue
        candidates.append((fmt, offset))

    if not candidates:
        if unsupported:
            raise UnsupportedTableFormat(
                f"'cmap' has only unsupported Unicode subtable formats {sorted(set(unsupported))}"
            )
        raise UnsupportedTableFormat("'cmap' has no Unicode subtable")

    # Full-repertoire subtables first; later ones only fill gaps.
    candidates.sort(key=lambda c: c[0] != 12)
    mapping = {}
    decoded_offsets = set()
    for fmt, offset in candidates:
        if offset in decoded_offsets:
            continue
        decoded_offsets.add(offset)
        for codepoint, glyph in _DECODERS[fmt](data, offset).items():
            if glyph:
                mapping.setdefault(codepoint, glyph)
    return Cmap(mapping, variations)


def _slice_format14(data: bytes, offset: int) -> bytes:
    if offset + 6 > len(data):
        raise MalformedFont("'cmap' format 14 subtable is truncated")
    (length,) = struct.unpack_from(">I", data, offset + 2)
    if offset + length > len(data):
        raise MalformedFont("'cmap' format 14 subtable is out of bounds")
    return bytes(data[offset:offset + length])


def _decode_format0(data: bytes, offset: int) -> dict:
    if offset + 6 + 256 > len(data):
        raise MalformedFont("'cmap' format 0 subtable is truncated")
    return {code: glyph for code, glyph in enumerate(data[offset + 6:offset + 262])}


def _decode_format4(data: bytes, offset: int) -> dict:
    if offset + FORMAT4_HEADER.size > len(data):
        raise MalformedFont("'cmap' format 4 subtable is truncated")
    _, length, _, seg_count_x2, _, _, _ = FORMAT4_HEADER.unpack_from(data, offset)
    seg_count = seg_count_x2 // 2
    end = min(offset + length, len(data))
    end_off = offset + FORMAT4_HEADER.size
    start_off = end_off + seg_count_x2 + 2
    delta_off = start_off + seg_count_x2
    range_off = delta_off + seg_count_x2
    if range_off + seg_count_x2 > end:
        raise MalformedFont("'cmap' format 4 segment arrays exceed the subtable")

    end_codes = struct.unpack_from(f">{seg_count}H", data, end_off)
    start_codes = struct.unpack_from(f">{seg_count}H", data, start_off)
    deltas = struct.unpack_from(f">{seg_count}H", data, delta_off)
    range_offsets = struct.unpack_from(f">{seg_count}H", data, range_off)

    mapping = {}
    for seg in range(seg_count):
        start, stop = start_codes[seg], end_codes[seg]
        if start > stop:
            raise MalformedFont(f"'cmap' format 4 segment {seg} has start > end")
        if start == 0xFFFF:
            continue
        delta, ro = deltas[seg], range_offsets[seg]
        for code in range(start, stop + 1):
            if ro == 0:
                glyph = (code + delta) & 0xFFFF
            else:
                addr = range_off + seg * 2 + ro + (code - start) * 2
                if addr + 2 > end:
                    glyph = 0
                else:
                    (glyph,) = struct.unpack_from(">H", data, addr)
                    if glyph:
                        glyph = (glyph + delta) & 0xFFFF
            mapping[code] = glyph
    return mapping


def _decode_format6(data: bytes, offset: int) -> dict:
    if offset + 10 > len(data):
        raise MalformedFont("'cmap' format 6 subtable is truncated")
    first_code, entry_count = struct.unpack_from(">HH", data, offset + 6)
    if offset + 10 + 2 * entry_count > len(data):
        raise MalformedFont("'cmap' format 6 glyph array is truncated")
    glyphs = struct.unpack_from(f">{entry_count}H", data, offset + 10)
    return {first_code + i: glyph for i, glyph in enumerate(glyphs)}


def _decode_format12(data: bytes, offset: int) -> dict:
    if offset + FORMAT12_HEADER.size > len(data):
        raise MalformedFont("'cmap' format 12 subtable is truncated")
    _, _, _, _, num_groups = FORMAT12_HEADER.unpack_from(data, offset)
    groups_off = offset + FORMAT12_HEADER.size
    if groups_off + num_groups * GROUP.size > len(data):
        raise MalformedFont("'cmap' format 12 groups exceed the table")
    mapping = {}
    for i in range(num_groups):
        start, stop, start_glyph = GROUP.unpack_from(data, groups_off + i * GROUP.size)
        if start > stop or stop > MAX_CODEPOINT:
            raise MalformedFont(f"'cmap' format 12 group {start:#x}-{stop:#x} is invalid")
        for code in range(start, stop + 1):
            mapping[code] = start_glyph + code - start
    return mapping


_DECODERS = {
    0: _decode_format0,
    4: _decode_format4,
    6: _decode_format6,
    12: _decode_format12,
}


def encode(cmap: Cmap) -> bytes:
    mapping = cmap.mapping
    bmp = {code: glyph for code, glyph in mapping.items() if code < 0xFFFF}
    format4 = encode_format4(bmp)
    needs_format12 = format4 is None or len(bmp) != len(mapping)

    records = []
    if format4 is not None:
        records += [(0, 3, format4), (3, 1, format4)]
    if needs_format12:
        if format4 is None:
            logger.debug("Format 4 cmap overflows; using format 12 only")
        format12 = encode_format12(mapping)
        records += [(0, 4, format12), (3, 10, format12)]
    if cmap.variations is not None:
        records.append((0, 5, cmap.variations))
    records.sort(key=lambda r: (r[0], r[1]))

    header = CMAP_HEADER.pack(0, len(records))
    offset = CMAP_HEADER.size + len(records) * ENCODING_RECORD.size
    body = b""
    offsets = {}
    for _, _, subtable in records:
        if id(subtable) not in offsets:
            offsets[id(subtable)] = offset + len(body)
            body += subtable
    directory = b"".join(
        ENCODING_RECORD.pack(platform_id, encoding_id, offsets[id(subtable)])
        for platform_id, encoding_id, subtable in records
    )
    return header + directory + body


def _format4_segments(mapping: dict) -> list:
    """Split the mapping into (start, end, delta) segments; delta None means glyph array."""
    runs = []
    for code in sorted(mapping):
        if runs and code == runs[-1][-1] + 1:
            runs[-1].append(code)
        else:
            runs.append([code])

    segments = []
    for run in runs:
        pieces = []
        for code in run:
            delta = mapping[code] - code
            if pieces and pieces[-1][2] == delta:
                pieces[-1][1] = code
            else:
                pieces.append([code, code, delta])

        pending = []

        def flush():
            if len(pending) == 1:
                segments.append(tuple(pending[0]))
            elif pending:
                segments.append((pending[0][0], pending[-1][1], None))
            pending.clear()

        for piece in pieces:
            if piece[1] - piece[0] + 1 >= MIN_DELTA_RUN:
                flush()
                segments.append(tuple(piece))
            else:
                pending.append(piece)
        flush()
    return segments


def encode_format4(mapping: dict) -> bytes:
    """Encode a BMP mapping as format 4; None if it exceeds the 16-bit length."""
    segments = _format4_segments(mapping)
    segments.append((0xFFFF, 0xFFFF, 1))
    seg_count = len(segments)

    end_codes, start_codes, deltas, range_offsets, glyph_array = [], [], [], [], []
    for i, (start, stop, delta) in enumerate(segments):
        start_codes.append(start)
        end_codes.append(stop)
        if delta is None:
            deltas.append(0)
            range_offsets.append(2 * (seg_count - i) + 2 * len(glyph_array))
            glyph_array.extend(mapping[code] for code in range(start, stop + 1))
        else:
            deltas.append(delta & 0xFFFF)
            range_offsets.append(0)

    length = FORMAT4_HEADER.size + 2 + 8 * seg_count + 2 * len(glyph_array)
    if length > 0xFFFF:
        return None
    entry_selector = seg_count.bit_length() - 1
    search_range = 2 * (1 << entry_selector)
    header = FORMAT4_HEADER.pack(
        4, length, 0, 2 * seg_count, search_range, entry_selector, 2 * seg_count - search_range
    )
    return (
        header
        + struct.pack(f">{seg_count}H", *end_codes)
        + b"\0\0"
        + struct.pack(f">{seg_count}H", *start_codes)
        + struct.pack(f">{seg_count}H", *deltas)
        + struct.pack(f">{seg_count}H", *range_offsets)
        + struct.pack(f">{len(glyph_array)}H", *glyph_array)
    )


def encode_format12(mapping: dict) -> bytes:
    groups = []
    for code in sorted(mapping):
        glyph = mapping[code]
        if groups and code == groups[-1][1] + 1 and glyph == groups[-1][2] + code - groups[-1][0]:
            groups[-1][1] = code
        else:
            groups.append([code, code, glyph])
    length = FORMAT12_HEADER.size + GROUP.size * len(groups)
    data = FORMAT12_HEADER.pack(12, 0, length, 0, len(groups))
    return data + b"".join(GROUP.pack(*group) for group in groups)
