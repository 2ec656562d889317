"""
In-memory model of SFNT fonts and TrueType Collections.

A Font is an ordered mapping of 4-character table tags to table payloads. The
table directory read from the input is treated as untrusted: every offset and
length is bounds-checked before a payload is sliced, and stored checksums are
ignored. Checksums are recomputed from the payload whenever they are needed.
"""

import logging
import struct
from dataclasses import dataclass

from .errors import MalformedFont, TableNotFound

logger = logging.getLogger(__name__)

TRUETYPE_VERSION = b"\x00\x01\x00\x00"
SFNT_VERSIONS = (TRUETYPE_VERSION, b"true", b"OTTO")
TTC_TAG = b"ttcf"

SFNT_HEADER = struct.Struct(">4sHHHH")
TABLE_RECORD = struct.Struct(">4sIII")
TTC_HEADER = struct.Struct(">4sHHI")


def calc_checksum(data: bytes) -> int:
    """Sum of the big-endian uint32 words of data, zero padded, modulo 2**32."""
    padded = data + b"\0" * (-len(data) % 4)
    words = struct.unpack(f">{len(padded) // 4}I", padded)
    return sum(words) & 0xFFFFFFFF


def table_checksum(tag: str, data: bytes) -> int:
    """Checksum of one table; head is summed with checkSumAdjustment zeroed."""
    if tag == "head" and len(data) >= 12:
        data = data[:8] + b"\0\0\0\0" + data[12:]
    return calc_checksum(data)


def tag_to_bytes(tag: str) -> bytes:
    raw = tag.encode("latin-1")
    if len(raw) != 4:
        raise ValueError(f"Table tag must be 4 characters: {tag!r}")
    return raw


@dataclass
class TableEntry:
    """One table payload.

    shared_with holds the indices of the other collection members whose
    directory points at the same bytes. It is a back-reference only: a member
    that changes the table gets a fresh entry via Font.set_table.
    """

    tag: str
    data: bytes
    shared_with: frozenset = frozenset()

    @property
    def shared(self) -> bool:
        return bool(self.shared_with)


class Font:
    """A single SFNT font: sfntVersion plus its tables in directory order."""

    def __init__(self, sfnt_version: bytes = TRUETYPE_VERSION, tables=None):
        self.sfnt_version = sfnt_version
        self._tables: dict[str, TableEntry] = {}
        for tag, data in (tables or {}).items():
            self.set_table(tag, data)

    def __repr__(self):
        return f"<Font {self.sfnt_version!r} tables={list(self._tables)}>"

    def __contains__(self, tag: str) -> bool:
        return tag in self._tables

    def tags(self) -> tuple:
        return tuple(self._tables)

    def entry(self, tag: str) -> TableEntry:
        try:
            return self._tables[tag]
        except KeyError:
            raise TableNotFound(tag) from None

    def get_table(self, tag: str) -> bytes:
        return self.entry(tag).data

    def set_table(self, tag: str, data: bytes):
        tag_to_bytes(tag)
        self._tables[tag] = TableEntry(tag, bytes(data))

    def del_table(self, tag: str):
        self._tables.pop(tag, None)

    def checksum(self, tag: str) -> int:
        return table_checksum(tag, self.get_table(tag))

    def copy(self) -> "Font":
        """Return a standalone copy whose entries are not shared with anything."""
        clone = Font(self.sfnt_version)
        for tag, entry in self._tables.items():
            clone._tables[tag] = TableEntry(tag, bytes(entry.data))
        return clone

    @classmethod
    def from_bytes(cls, data: bytes) -> "Font":
        if data[:4] == TTC_TAG:
            raise MalformedFont("Expected a single font, got a TrueType Collection")
        font, _ = _parse_font(data, 0)
        return font


class Collection:
    """The member fonts of a TrueType Collection, in header order."""

    def __init__(self, fonts=None, version: tuple = (1, 0)):
        self.fonts: list[Font] = list(fonts or [])
        self.version = version

    def __len__(self):
        return len(self.fonts)

    def __iter__(self):
        return iter(self.fonts)

    def __getitem__(self, index: int) -> Font:
        return self.fonts[index]

    def shared_tags(self, index: int) -> list[str]:
        """Tags of member `index` whose bytes alias another member's table."""
        font = self.fonts[index]
        return [tag for tag in font.tags() if font.entry(tag).shared]

    @classmethod
    def from_bytes(cls, data: bytes) -> "Collection":
        if len(data) < TTC_HEADER.size:
            raise MalformedFont("File too short for a TTC header")
        tag, major, minor, num_fonts = TTC_HEADER.unpack_from(data, 0)
        if tag != TTC_TAG:
            raise MalformedFont(f"Bad TTC tag {tag!r}")
        if major not in (1, 2):
            raise MalformedFont(f"Unsupported TTC version {major}.{minor}")
        if num_fonts == 0:
            raise MalformedFont("TTC contains no fonts")
        offsets_end = TTC_HEADER.size + 4 * num_fonts
        if offsets_end > len(data):
            raise MalformedFont(f"TTC offset table for {num_fonts} fonts exceeds file size")
        offsets = struct.unpack_from(f">{num_fonts}I", data, TTC_HEADER.size)

        fonts = []
        directories = []
        spans: dict[tuple, set] = {}
        for index, offset in enumerate(offsets):
            font, records = _parse_font(data, offset)
            fonts.append(font)
            directories.append(records)
            for tag, table_offset, length in records:
                spans.setdefault((table_offset, length), set()).add(index)
        for index, font in enumerate(fonts):
            for tag, table_offset, length in directories[index]:
                owners = spans[(table_offset, length)]
                if len(owners) > 1:
                    font._tables[tag].shared_with = frozenset(owners - {index})
        logger.debug("Parsed TTC %d.%d with %d fonts", major, minor, num_fonts)
        return cls(fonts, (major, minor))


def _directory(data: bytes, offset: int) -> list:
    """Read and bounds-check a table directory; return (tag, offset, length) triples."""
    if offset + SFNT_HEADER.size > len(data):
        raise MalformedFont(f"Offset table at {offset} lies outside the file")
    version, num_tables, _, _, _ = SFNT_HEADER.unpack_from(data, offset)
    if version not in SFNT_VERSIONS:
        raise MalformedFont(f"Bad sfnt version {version!r} at offset {offset}")
    records_start = offset + SFNT_HEADER.size
    if records_start + num_tables * TABLE_RECORD.size > len(data):
        raise MalformedFont(f"Table directory of {num_tables} entries exceeds file size")

    records = []
    seen = set()
    for i in range(num_tables):
        raw_tag, _checksum, table_offset, length = TABLE_RECORD.unpack_from(
            data, records_start + i * TABLE_RECORD.size
        )
        tag = raw_tag.decode("latin-1")
        if tag in seen:
            raise MalformedFont(f"Duplicate table '{tag}' in directory")
        if table_offset + length > len(data):
            raise MalformedFont(
                f"Table '{tag}' ({table_offset}+{length}) extends past end of file ({len(data)})"
            )
        seen.add(tag)
        records.append((tag, table_offset, length))
    return records


def _parse_font(data: bytes, offset: int) -> tuple:
    records = _directory(data, offset)
    font = Font(bytes(data[offset:offset + 4]))
    for tag, table_offset, length in records:
        font._tables[tag] = TableEntry(tag, bytes(data[table_offset:table_offset + length]))
    return font, records


def load(data: bytes):
    """Parse data as a Collection when it starts with 'ttcf', else as a Font."""
    if len(data) < 4:
        raise MalformedFont("File too short to be a font")
    magic = bytes(data[:4])
    if magic == TTC_TAG:
        return Collection.from_bytes(data)
    if magic not in SFNT_VERSIONS:
        raise MalformedFont(f"Unrecognised font magic {magic!r}")
    return Font.from_bytes(data)
