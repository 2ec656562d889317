"""
'hmtx' and 'vmtx' long-metrics codec.

Glyphs beyond the long-metric count repeat the last advance and store only a
side bearing.
"""

import struct

from ..errors import MalformedFont

LONG_METRIC = struct.Struct(">Hh")


def decode(data: bytes, num_glyphs: int, num_long: int, tag: str = "hmtx") -> list:
    """Return one (advance, side_bearing) pair per glyph."""
    if num_glyphs and not num_long:
        raise MalformedFont(f"'{tag}' has no long metrics for {num_glyphs} glyphs")
    num_long = min(num_long, num_glyphs)
    num_short = num_glyphs - num_long
    needed = num_long * 4 + num_short * 2
    if len(data) < needed:
        raise MalformedFont(f"'{tag}' table is truncated ({len(data)} < {needed} bytes)")

    metrics = [LONG_METRIC.unpack_from(data, i * 4) for i in range(num_long)]
    if num_short:
        last_advance = metrics[-1][0]
        bearings = struct.unpack_from(f">{num_short}h", data, num_long * 4)
        metrics.extend((last_advance, bearing) for bearing in bearings)
    return metrics


def encode(metrics: list) -> tuple:
    """Return (table bytes, number of long metrics) with trailing advances folded."""
    num_long = len(metrics)
    while num_long > 1 and metrics[num_long - 1][0] == metrics[num_long - 2][0]:
        num_long -= 1
    data = b"".join(LONG_METRIC.pack(advance, bearing) for advance, bearing in metrics[:num_long])
    tail = [bearing for _, bearing in metrics[num_long:]]
    if tail:
        data += struct.pack(f">{len(tail)}h", *tail)
    return data, num_long
