"""'maxp' maximum profile codec (versions 0.5 and 1.0)."""

import struct
from dataclasses import dataclass, fields

from ..errors import MalformedFont, UnsupportedTableFormat

VERSION_0_5 = 0x00005000
VERSION_1_0 = 0x00010000

HEADER = struct.Struct(">IH")
TRUETYPE_FIELDS = struct.Struct(">13H")


@dataclass
class Maxp:
    version: int
    numGlyphs: int
    maxPoints: int = 0
    maxContours: int = 0
    maxCompositePoints: int = 0
    maxCompositeContours: int = 0
    maxZones: int = 2
    maxTwilightPoints: int = 0
    maxStorage: int = 0
    maxFunctionDefs: int = 0
    maxInstructionDefs: int = 0
    maxStackElements: int = 0
    maxSizeOfInstructions: int = 0
    maxComponentElements: int = 0
    maxComponentDepth: int = 0


def decode(data: bytes) -> Maxp:
    if len(data) < HEADER.size:
        raise MalformedFont("'maxp' table is truncated")
    version, num_glyphs = HEADER.unpack_from(data, 0)
    if version == VERSION_0_5:
        return Maxp(version, num_glyphs)
    if version != VERSION_1_0:
        raise UnsupportedTableFormat(f"'maxp' version 0x{version:08X}")
    if len(data) < HEADER.size + TRUETYPE_FIELDS.size:
        raise MalformedFont("'maxp' 1.0 table is truncated")
    return Maxp(version, num_glyphs, *TRUETYPE_FIELDS.unpack_from(data, HEADER.size))


def encode(maxp: Maxp) -> bytes:
    data = HEADER.pack(maxp.version, maxp.numGlyphs)
    if maxp.version == VERSION_1_0:
        values = [getattr(maxp, f.name) for f in fields(maxp)[2:]]
        data += TRUETYPE_FIELDS.pack(*values)
    return data
