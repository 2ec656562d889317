"""
Per-table codecs.

Every module exposes decode(bytes, ...) -> typed table and encode(table) -> bytes
for the tables the pipeline reads or rewrites.
"""

import struct
from dataclasses import astuple

from ..errors import MalformedFont


def unpack_struct(cls, fmt: struct.Struct, data: bytes, tag: str):
    """Build dataclass `cls` from the fixed-size record at the start of data."""
    if len(data) < fmt.size:
        raise MalformedFont(f"'{tag}' table is truncated ({len(data)} < {fmt.size} bytes)")
    return cls(*fmt.unpack_from(data, 0))


def pack_struct(obj, fmt: struct.Struct) -> bytes:
    return fmt.pack(*astuple(obj))
