"""
Output encoder.

Serializes Fonts and Collections to SFNT/TTC bytes with fresh table checksums
and head.checkSumAdjustment, optionally compresses to WOFF2 with fontTools, and
writes files atomically.
"""

import io
import logging
import os
import struct
import tempfile
from pathlib import Path

from fontTools.ttLib import TTFont
from fontTools.ttLib.woff2 import WOFF2FlavorData

from .sfnt import (
    SFNT_HEADER,
    TABLE_RECORD,
    TTC_HEADER,
    TTC_TAG,
    Font,
    calc_checksum,
    table_checksum,
    tag_to_bytes,
)
from .tables.head import CHECKSUM_ADJUSTMENT_OFFSET, CHECKSUM_MAGIC

logger = logging.getLogger(__name__)


def _pad(data: bytes) -> bytes:
    return data + b"\0" * (-len(data) % 4)


def _search_params(num_tables: int) -> tuple:
    entry_selector = max(num_tables.bit_length() - 1, 0)
    search_range = 16 * (1 << entry_selector)
    return search_range, entry_selector, num_tables * 16 - search_range


def _offset_table(font: Font, records: list) -> bytes:
    """Offset table plus directory; records are (tag, checksum, offset, length) sorted by tag."""
    header = SFNT_HEADER.pack(font.sfnt_version, len(records), *_search_params(len(records)))
    return header + b"".join(
        TABLE_RECORD.pack(tag_to_bytes(tag), checksum, offset, length)
        for tag, checksum, offset, length in records
    )


def encode_font(font: Font) -> bytes:
    """Serialize one font; tables are written in tag order, each 4-byte aligned."""
    tags = sorted(font.tags())
    offset = SFNT_HEADER.size + TABLE_RECORD.size * len(tags)
    records = []
    body = []
    head_offset = None
    for tag in tags:
        data = font.get_table(tag)
        if tag == "head":
            data = data[:CHECKSUM_ADJUSTMENT_OFFSET] + b"\0\0\0\0" + data[CHECKSUM_ADJUSTMENT_OFFSET + 4:]
            head_offset = offset
        records.append((tag, table_checksum(tag, data), offset, len(data)))
        padded = _pad(data)
        body.append(padded)
        offset += len(padded)

    out = bytearray(_offset_table(font, records) + b"".join(body))
    if head_offset is not None:
        adjustment = (CHECKSUM_MAGIC - calc_checksum(bytes(out))) & 0xFFFFFFFF
        struct.pack_into(">I", out, head_offset + CHECKSUM_ADJUSTMENT_OFFSET, adjustment)
    return bytes(out)


def encode_collection(fonts: list) -> bytes:
    """Serialize fonts as a version 1.0 TTC.

    Each member's head carries the adjustment it would have as a standalone
    file. Tables with identical tag and bytes are stored once.
    """
    members = [Font.from_bytes(encode_font(font)) for font in fonts]
    header_size = TTC_HEADER.size + 4 * len(members)
    directory_sizes = [SFNT_HEADER.size + TABLE_RECORD.size * len(m.tags()) for m in members]

    font_offsets = []
    offset = header_size
    for size in directory_sizes:
        font_offsets.append(offset)
        offset += size
    offset += -offset % 4

    stored = {}
    body = []
    directories = []
    for member in members:
        records = []
        for tag in sorted(member.tags()):
            data = member.get_table(tag)
            key = (tag, data)
            if key not in stored:
                stored[key] = offset
                padded = _pad(data)
                body.append(padded)
                offset += len(padded)
            records.append((tag, table_checksum(tag, data), stored[key], len(data)))
        directories.append(_offset_table(member, records))

    shared = sum(len(m.tags()) for m in members) - len(stored)
    logger.debug("TTC with %d fonts shares %d table(s)", len(members), shared)

    header = TTC_HEADER.pack(TTC_TAG, 1, 0, len(members))
    header += struct.pack(f">{len(members)}I", *font_offsets)
    prefix = header + b"".join(directories)
    return prefix + b"\0" * (-len(prefix) % 4) + b"".join(body)


def compress_woff2(data: bytes) -> bytes:
    """Wrap SFNT bytes as WOFF2 with the glyf/loca transform."""
    font = TTFont(io.BytesIO(data), recalcBBoxes=False, recalcTimestamp=False)
    font.flavor = "woff2"
    font.flavorData = WOFF2FlavorData(data=font.flavorData, transformedTables=["glyf", "loca"])
    out = io.BytesIO()
    font.save(out, reorderTables=False)
    return out.getvalue()


def write_atomic(path: Path, data: bytes):
    """Write via a temporary file in the same directory, then rename over path."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def write_outputs(outputs: list) -> list:
    """Write (path, bytes) pairs; on failure remove the ones already written."""
    written = []
    try:
        for path, data in outputs:
            write_atomic(path, data)
            written.append(Path(path))
    except BaseException:
        for path in written:
            path.unlink(missing_ok=True)
        raise
    return written
