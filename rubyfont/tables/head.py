"""'head' font header codec."""

import struct
from dataclasses import dataclass

from . import pack_struct, unpack_struct

HEAD_FORMAT = struct.Struct(">HHiIIHHqqhhhhHHhhh")
CHECKSUM_ADJUSTMENT_OFFSET = 8
CHECKSUM_MAGIC = 0xB1B0AFBA

SHORT_OFFSETS = 0
LONG_OFFSETS = 1


@dataclass
class Head:
    majorVersion: int
    minorVersion: int
    fontRevision: int
    checkSumAdjustment: int
    magicNumber: int
    flags: int
    unitsPerEm: int
    created: int
    modified: int
    xMin: int
    yMin: int
    xMax: int
    yMax: int
    macStyle: int
    lowestRecPPEM: int
    fontDirectionHint: int
    indexToLocFormat: int
    glyphDataFormat: int


def decode(data: bytes) -> Head:
    return unpack_struct(Head, HEAD_FORMAT, data, "head")


def encode(head: Head) -> bytes:
    return pack_struct(head, HEAD_FORMAT)
