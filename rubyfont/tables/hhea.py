"""
'hhea' and 'vhea' codec.

Both headers share one 36-byte layout; for 'vhea' the fields read as their
vertical counterparts (ascender is vertTypoAscender, numberOfHMetrics is
numOfLongVerMetrics, and so on).
"""

import struct
from dataclasses import dataclass

from . import pack_struct, unpack_struct

HHEA_FORMAT = struct.Struct(">HHhhhHhhhhhhhhhhhH")


@dataclass
class MetricsHeader:
    majorVersion: int
    minorVersion: int
    ascender: int
    descender: int
    lineGap: int
    advanceWidthMax: int
    minLeftSideBearing: int
    minRightSideBearing: int
    xMaxExtent: int
    caretSlopeRise: int
    caretSlopeRun: int
    caretOffset: int
    reserved0: int
    reserved1: int
    reserved2: int
    reserved3: int
    metricDataFormat: int
    numberOfHMetrics: int


def decode(data: bytes, tag: str = "hhea") -> MetricsHeader:
    return unpack_struct(MetricsHeader, HHEA_FORMAT, data, tag)


def encode(header: MetricsHeader) -> bytes:
    return pack_struct(header, HHEA_FORMAT)
