"""
'glyf' and 'loca' codec.

GlyfTable keeps the original bytes of every glyph and only decodes a glyph when
somebody asks for it, so untouched glyphs (and their hinting instructions) are
written back byte for byte. Composite component lists can be read straight from
the raw bytes, which is all the closure and cycle checks need.
"""

import struct
from dataclasses import dataclass, field, replace

from ..errors import InconsistentGlyphSet, MalformedFont, UnsupportedTableFormat
from .head import LONG_OFFSETS, SHORT_OFFSETS

GLYPH_HEADER = struct.Struct(">hhhhh")

# Simple glyph point flags
ON_CURVE_POINT = 0x01
X_SHORT_VECTOR = 0x02
Y_SHORT_VECTOR = 0x04
REPEAT_FLAG = 0x08
X_IS_SAME_OR_POSITIVE = 0x10
Y_IS_SAME_OR_POSITIVE = 0x20
OVERLAP_SIMPLE = 0x40

# Composite component flags
ARG_1_AND_2_ARE_WORDS = 0x0001
ARGS_ARE_XY_VALUES = 0x0002
ROUND_XY_TO_GRID = 0x0004
WE_HAVE_A_SCALE = 0x0008
MORE_COMPONENTS = 0x0020
WE_HAVE_AN_X_AND_Y_SCALE = 0x0040
WE_HAVE_A_TWO_BY_TWO = 0x0080
WE_HAVE_INSTRUCTIONS = 0x0100
USE_MY_METRICS = 0x0200
OVERLAP_COMPOUND = 0x0400
SCALED_COMPONENT_OFFSET = 0x0800
UNSCALED_COMPONENT_OFFSET = 0x1000

# Flags describing the component itself; size/transform flags are derived on encode.
COMPONENT_KEEP_FLAGS = (
    ARGS_ARE_XY_VALUES
    | ROUND_XY_TO_GRID
    | USE_MY_METRICS
    | OVERLAP_COMPOUND
    | SCALED_COMPONENT_OFFSET
    | UNSCALED_COMPONENT_OFFSET
)

IDENTITY = (1.0, 0.0, 0.0, 1.0)

MAX_COMPONENT_DEPTH = 64
MAX_SHORT_GLYF_LENGTH = 0x1FFFE


@dataclass
class SimpleGlyph:
    """Contours as absolute points; end_points index the last point of each contour."""

    end_points: list
    coordinates: list
    on_curve: list
    instructions: bytes = b""
    overlap: bool = False

    @property
    def num_contours(self) -> int:
        return len(self.end_points)

    def bounds(self):
        if not self.coordinates:
            return None
        xs = [x for x, _ in self.coordinates]
        ys = [y for _, y in self.coordinates]
        return min(xs), min(ys), max(xs), max(ys)


@dataclass
class Component:
    """One reference of a composite glyph.

    transform is (xx, xy, yx, yy): x' = xx*x + yx*y + dx, y' = xy*x + yy*y + dy.
    When ARGS_ARE_XY_VALUES is clear, dx and dy are point numbers to match.
    """

    glyph_index: int
    dx: int = 0
    dy: int = 0
    transform: tuple = IDENTITY
    flags: int = ARGS_ARE_XY_VALUES

    @property
    def is_offset(self) -> bool:
        return bool(self.flags & ARGS_ARE_XY_VALUES)


@dataclass
class CompositeGlyph:
    components: list
    instructions: bytes = b""
    bbox: tuple = field(default=(0, 0, 0, 0))

    @property
    def num_contours(self) -> int:
        return -1


def _f2dot14(value: int) -> float:
    return value / 16384.0


def _to_f2dot14(value: float) -> int:
    fixed = round(value * 16384)
    if not -0x8000 <= fixed <= 0x7FFF:
        raise ValueError(f"Component scale {value} does not fit F2Dot14")
    return fixed


def decode_glyph(data: bytes):
    """Decode one glyph record; empty data is the empty glyph (None)."""
    if not data:
        return None
    if len(data) < GLYPH_HEADER.size:
        raise MalformedFont(f"Glyph record of {len(data)} bytes is shorter than its header")
    num_contours, x_min, y_min, x_max, y_max = GLYPH_HEADER.unpack_from(data, 0)
    if num_contours == 0:
        return None
    if num_contours > 0:
        return _decode_simple(data, num_contours)
    components, instructions = _decode_components(data)
    return CompositeGlyph(components, instructions, (x_min, y_min, x_max, y_max))


def _decode_simple(data: bytes, num_contours: int) -> SimpleGlyph:
    pos = GLYPH_HEADER.size
    if pos + 2 * num_contours + 2 > len(data):
        raise MalformedFont("Glyph contour end points are truncated")
    end_points = list(struct.unpack_from(f">{num_contours}H", data, pos))
    pos += 2 * num_contours
    if any(b < a for a, b in zip(end_points, end_points[1:])):
        raise MalformedFont("Glyph contour end points are not increasing")
    num_points = end_points[-1] + 1

    (instruction_length,) = struct.unpack_from(">H", data, pos)
    pos += 2
    if pos + instruction_length > len(data):
        raise MalformedFont("Glyph instructions are truncated")
    instructions = bytes(data[pos:pos + instruction_length])
    pos += instruction_length

    flags = []
    while len(flags) < num_points:
        if pos >= len(data):
            raise MalformedFont("Glyph flags are truncated")
        flag = data[pos]
        pos += 1
        repeat = 0
        if flag & REPEAT_FLAG:
            if pos >= len(data):
                raise MalformedFont("Glyph flag repeat count is truncated")
            repeat = data[pos]
            pos += 1
        flags.extend([flag] * (repeat + 1))
    if len(flags) > num_points:
        raise MalformedFont("Glyph flag repeat overruns the point count")

    xs, pos = _decode_deltas(data, pos, flags, X_SHORT_VECTOR, X_IS_SAME_OR_POSITIVE)
    ys, pos = _decode_deltas(data, pos, flags, Y_SHORT_VECTOR, Y_IS_SAME_OR_POSITIVE)
    return SimpleGlyph(
        end_points,
        list(zip(xs, ys)),
        [bool(f & ON_CURVE_POINT) for f in flags],
        instructions,
        bool(flags[0] & OVERLAP_SIMPLE),
    )


def _decode_deltas(data: bytes, pos: int, flags: list, short_bit: int, same_bit: int) -> tuple:
    values = []
    value = 0
    for flag in flags:
        if flag & short_bit:
            if pos >= len(data):
                raise MalformedFont("Glyph coordinates are truncated")
            delta = data[pos]
            pos += 1
            if not flag & same_bit:
                delta = -delta
        elif flag & same_bit:
            delta = 0
        else:
            if pos + 2 > len(data):
                raise MalformedFont("Glyph coordinates are truncated")
            (delta,) = struct.unpack_from(">h", data, pos)
            pos += 2
        value += delta
        values.append(value)
    return values, pos


def _decode_components(data: bytes) -> tuple:
    components = []
    pos = GLYPH_HEADER.size
    flags = MORE_COMPONENTS
    while flags & MORE_COMPONENTS:
        if pos + 4 > len(data):
            raise MalformedFont("Composite glyph component is truncated")
        flags, glyph_index = struct.unpack_from(">HH", data, pos)
        pos += 4
        if flags & ARG_1_AND_2_ARE_WORDS:
            fmt = ">hh" if flags & ARGS_ARE_XY_VALUES else ">HH"
            size = 4
        else:
            fmt = ">bb" if flags & ARGS_ARE_XY_VALUES else ">BB"
            size = 2
        if pos + size > len(data):
            raise MalformedFont("Composite glyph arguments are truncated")
        arg1, arg2 = struct.unpack_from(fmt, data, pos)
        pos += size

        transform = IDENTITY
        if flags & WE_HAVE_A_SCALE:
            count = 1
        elif flags & WE_HAVE_AN_X_AND_Y_SCALE:
            count = 2
        elif flags & WE_HAVE_A_TWO_BY_TWO:
            count = 4
        else:
            count = 0
        if count:
            if pos + 2 * count > len(data):
                raise MalformedFont("Composite glyph transform is truncated")
            values = [_f2dot14(v) for v in struct.unpack_from(f">{count}h", data, pos)]
            pos += 2 * count
            if count == 1:
                transform = (values[0], 0.0, 0.0, values[0])
            elif count == 2:
                transform = (values[0], 0.0, 0.0, values[1])
            else:
                transform = tuple(values)
        components.append(
            Component(glyph_index, arg1, arg2, transform, flags & COMPONENT_KEEP_FLAGS)
        )

    instructions = b""
    if flags & WE_HAVE_INSTRUCTIONS:
        if pos + 2 > len(data):
            raise MalformedFont("Composite glyph instruction length is truncated")
        (length,) = struct.unpack_from(">H", data, pos)
        pos += 2
        if pos + length > len(data):
            raise MalformedFont("Composite glyph instructions are truncated")
        instructions = bytes(data[pos:pos + length])
    return components, instructions


def component_indices(data: bytes) -> list:
    """Glyph indices referenced by a raw glyph record (empty for simple glyphs)."""
    if len(data) < GLYPH_HEADER.size:
        return []
    (num_contours,) = struct.unpack_from(">h", data, 0)
    if num_contours >= 0:
        return []
    components, _ = _decode_components(data)
    return [c.glyph_index for c in components]


def encode_glyph(glyph) -> bytes:
    if glyph is None:
        return b""
    if isinstance(glyph, CompositeGlyph):
        return _encode_composite(glyph)
    return _encode_simple(glyph)


def _check_int16(value: int):
    if not -0x8000 <= value <= 0x7FFF:
        raise ValueError(f"Coordinate {value} does not fit a 16-bit glyph record")


def _encode_simple(glyph: SimpleGlyph) -> bytes:
    if not glyph.end_points:
        return b""
    x_min, y_min, x_max, y_max = glyph.bounds()
    for value in (x_min, y_min, x_max, y_max):
        _check_int16(value)
    data = GLYPH_HEADER.pack(len(glyph.end_points), x_min, y_min, x_max, y_max)
    data += struct.pack(f">{len(glyph.end_points)}H", *glyph.end_points)
    data += struct.pack(">H", len(glyph.instructions)) + glyph.instructions

    flags = []
    x_data = bytearray()
    y_data = bytearray()
    last_x = last_y = 0
    for i, ((x, y), on_curve) in enumerate(zip(glyph.coordinates, glyph.on_curve)):
        flag = ON_CURVE_POINT if on_curve else 0
        if i == 0 and glyph.overlap:
            flag |= OVERLAP_SIMPLE
        flag |= _encode_delta(x - last_x, x_data, X_SHORT_VECTOR, X_IS_SAME_OR_POSITIVE)
        flag |= _encode_delta(y - last_y, y_data, Y_SHORT_VECTOR, Y_IS_SAME_OR_POSITIVE)
        last_x, last_y = x, y
        flags.append(flag)

    flag_data = bytearray()
    i = 0
    while i < len(flags):
        run = 1
        while i + run < len(flags) and flags[i + run] == flags[i] and run < 256:
            run += 1
        if run > 2:
            flag_data += bytes([flags[i] | REPEAT_FLAG, run - 1])
        else:
            flag_data += bytes(flags[i:i + run])
        i += run
    return data + bytes(flag_data) + bytes(x_data) + bytes(y_data)


def _encode_delta(delta: int, out: bytearray, short_bit: int, same_bit: int) -> int:
    if delta == 0:
        return same_bit
    if -255 <= delta <= 255:
        out.append(abs(delta))
        return short_bit | (same_bit if delta > 0 else 0)
    _check_int16(delta)
    out += struct.pack(">h", delta)
    return 0


def _encode_composite(glyph: CompositeGlyph) -> bytes:
    data = GLYPH_HEADER.pack(-1, *glyph.bbox)
    for i, component in enumerate(glyph.components):
        flags = component.flags & COMPONENT_KEEP_FLAGS
        if i < len(glyph.components) - 1:
            flags |= MORE_COMPONENTS
        elif glyph.instructions:
            flags |= WE_HAVE_INSTRUCTIONS

        if component.is_offset:
            small = -128 <= component.dx <= 127 and -128 <= component.dy <= 127
            args = (">bb", ">hh")
        else:
            small = component.dx <= 255 and component.dy <= 255
            args = (">BB", ">HH")
        if not small:
            flags |= ARG_1_AND_2_ARE_WORDS

        xx, xy, yx, yy = component.transform
        if (xx, xy, yx, yy) == IDENTITY:
            scale = ()
        elif xy == 0 and yx == 0 and xx == yy:
            flags |= WE_HAVE_A_SCALE
            scale = (xx,)
        elif xy == 0 and yx == 0:
            flags |= WE_HAVE_AN_X_AND_Y_SCALE
            scale = (xx, yy)
        else:
            flags |= WE_HAVE_A_TWO_BY_TWO
            scale = (xx, xy, yx, yy)

        data += struct.pack(">HH", flags, component.glyph_index)
        data += struct.pack(args[0] if small else args[1], component.dx, component.dy)
        if scale:
            data += struct.pack(f">{len(scale)}h", *(_to_f2dot14(v) for v in scale))
    if glyph.instructions:
        data += struct.pack(">H", len(glyph.instructions)) + glyph.instructions
    return data


def transform_point(transform: tuple, dx: float, dy: float, x: float, y: float) -> tuple:
    xx, xy, yx, yy = transform
    return xx * x + yx * y + dx, xy * x + yy * y + dy


class GlyfTable:
    """Glyph arena indexed by dense glyph id."""

    def __init__(self, records=None):
        self._raw = list(records or [])
        self._decoded = {}

    @classmethod
    def decode(cls, glyf: bytes, loca: bytes, num_glyphs: int, loca_format: int) -> "GlyfTable":
        offsets = decode_loca(loca, num_glyphs, loca_format)
        if offsets[-1] > len(glyf):
            raise MalformedFont(f"'loca' points past the end of 'glyf' ({offsets[-1]} > {len(glyf)})")
        return cls(glyf[start:end] for start, end in zip(offsets, offsets[1:]))

    def __len__(self):
        return len(self._raw)

    def __eq__(self, other):
        if not isinstance(other, GlyfTable):
            return NotImplemented
        return len(self) == len(other) and all(self[gid] == other[gid] for gid in range(len(self)))

    def __getitem__(self, gid: int):
        if not 0 <= gid < len(self._raw):
            raise MalformedFont(f"Glyph {gid} is out of range for {len(self._raw)} glyphs")
        if gid not in self._decoded:
            self._decoded[gid] = decode_glyph(self._raw[gid])
        return self._decoded[gid]

    def __setitem__(self, gid: int, glyph):
        self._decoded[gid] = glyph
        self._raw[gid] = None

    def append(self, glyph) -> int:
        self._raw.append(None)
        gid = len(self._raw) - 1
        self._decoded[gid] = glyph
        return gid

    def raw(self, gid: int) -> bytes:
        if self._raw[gid] is None:
            self._raw[gid] = encode_glyph(self._decoded[gid])
        return self._raw[gid]

    def is_modified(self, gid: int) -> bool:
        return self._raw[gid] is None

    def components(self, gid: int) -> list:
        if gid in self._decoded:
            glyph = self._decoded[gid]
            if isinstance(glyph, CompositeGlyph):
                return [c.glyph_index for c in glyph.components]
            return []
        return component_indices(self._raw[gid])

    def is_composite(self, gid: int) -> bool:
        if gid in self._decoded:
            return isinstance(self._decoded[gid], CompositeGlyph)
        raw = self._raw[gid]
        return len(raw) >= 2 and struct.unpack_from(">h", raw, 0)[0] < 0

    def header_bounds(self, gid: int):
        """Bounding box as stored (or as it will be stored); None for empty glyphs."""
        if gid in self._decoded:
            glyph = self._decoded[gid]
            if glyph is None:
                return None
            if isinstance(glyph, CompositeGlyph):
                return glyph.bbox
            return glyph.bounds()
        raw = self._raw[gid]
        if len(raw) < GLYPH_HEADER.size:
            return None
        num_contours, *bbox = GLYPH_HEADER.unpack_from(raw, 0)
        if num_contours == 0:
            return None
        return tuple(bbox)

    def compute_bounds(self, gid: int, depth: int = 0):
        """Bounding box computed from outlines, resolving component transforms."""
        if depth > MAX_COMPONENT_DEPTH:
            raise MalformedFont(f"Composite nesting deeper than {MAX_COMPONENT_DEPTH} at glyph {gid}")
        glyph = self[gid]
        if glyph is None:
            return None
        if isinstance(glyph, SimpleGlyph):
            return glyph.bounds()
        box = None
        for component in glyph.components:
            child = self.compute_bounds(component.glyph_index, depth + 1)
            if child is None:
                continue
            dx, dy = (component.dx, component.dy) if component.is_offset else (0, 0)
            corners = [
                transform_point(component.transform, dx, dy, x, y)
                for x in (child[0], child[2])
                for y in (child[1], child[3])
            ]
            xs = [round(x) for x, _ in corners]
            ys = [round(y) for _, y in corners]
            part = (min(xs), min(ys), max(xs), max(ys))
            box = part if box is None else (
                min(box[0], part[0]), min(box[1], part[1]),
                max(box[2], part[2]), max(box[3], part[3]),
            )
        return box

    def outline_stats(self, gid: int, cache: dict, depth: int = 0) -> tuple:
        """Return (points, contours, component elements, nesting depth) for maxp."""
        if gid in cache:
            return cache[gid]
        if depth > MAX_COMPONENT_DEPTH:
            raise MalformedFont(f"Composite nesting deeper than {MAX_COMPONENT_DEPTH} at glyph {gid}")
        if not self.is_composite(gid):
            if gid in self._decoded:
                glyph = self._decoded[gid]
                stats = (len(glyph.coordinates), glyph.num_contours, 0, 0) if glyph else (0, 0, 0, 0)
            else:
                stats = _raw_simple_stats(self._raw[gid])
        else:
            refs = self.components(gid)
            points = contours = 0
            child_depth = 0
            for ref in refs:
                p, c, _, d = self.outline_stats(ref, cache, depth + 1)
                points += p
                contours += c
                child_depth = max(child_depth, d)
            stats = (points, contours, len(refs), child_depth + 1)
        cache[gid] = stats
        return stats

    def validate(self, max_depth: int = MAX_COMPONENT_DEPTH):
        """Check every component reference exists and the composite graph is acyclic."""
        count = len(self)
        state = {}
        for root in range(count):
            if root in state or not self.is_composite(root):
                continue
            stack = [(root, iter(self.components(root)))]
            state[root] = "open"
            while stack:
                gid, children = stack[-1]
                child = next(children, None)
                if child is None:
                    state[gid] = "done"
                    stack.pop()
                    continue
                if child >= count:
                    raise InconsistentGlyphSet(f"Glyph {gid} references missing glyph {child}")
                if state.get(child) == "open":
                    raise MalformedFont(f"Composite glyph cycle through glyph {child}")
                if state.get(child) == "done":
                    continue
                if len(stack) >= max_depth:
                    raise MalformedFont(f"Composite nesting deeper than {max_depth} at glyph {root}")
                state[child] = "open"
                stack.append((child, iter(self.components(child))))

    def decompose(self, gid: int, depth: int = 0) -> SimpleGlyph:
        """Flatten a glyph into one simple outline; component hinting is dropped."""
        if depth > MAX_COMPONENT_DEPTH:
            raise MalformedFont(f"Composite nesting deeper than {MAX_COMPONENT_DEPTH} at glyph {gid}")
        glyph = self[gid]
        if glyph is None:
            return SimpleGlyph([], [], [])
        if isinstance(glyph, SimpleGlyph):
            return glyph
        end_points, coordinates, on_curve = [], [], []
        for component in glyph.components:
            if not component.is_offset:
                raise UnsupportedTableFormat(
                    f"Glyph {gid} positions a component by point matching; cannot decompose"
                )
            child = self.decompose(component.glyph_index, depth + 1)
            base = len(coordinates)
            for x, y in child.coordinates:
                tx, ty = transform_point(component.transform, component.dx, component.dy, x, y)
                coordinates.append((round(tx), round(ty)))
            on_curve.extend(child.on_curve)
            end_points.extend(base + end for end in child.end_points)
        return SimpleGlyph(end_points, coordinates, on_curve)

    def subset(self, order: list, mapping: dict) -> "GlyfTable":
        """New table holding the glyphs of order, component indices renumbered by mapping."""
        table = GlyfTable()
        for old in order:
            if self.is_composite(old):
                glyph = self[old]
                components = []
                for component in glyph.components:
                    if component.glyph_index not in mapping:
                        raise InconsistentGlyphSet(
                            f"Glyph {old} references glyph {component.glyph_index} outside the subset"
                        )
                    components.append(replace(component, glyph_index=mapping[component.glyph_index]))
                table.append(CompositeGlyph(components, glyph.instructions, glyph.bbox))
            elif self._raw[old] is None:
                table.append(self._decoded[old])
            else:
                table._raw.append(self._raw[old])
        return table

    def encode(self, loca_format: int = None) -> tuple:
        """Return (glyf, loca, indexToLocFormat).

        Records are padded to even length. The short loca format is chosen
        whenever the total glyf length allows it, unless a format is forced.
        """
        chunks = []
        offsets = [0]
        for gid in range(len(self)):
            data = self.raw(gid)
            if len(data) % 2:
                data += b"\0"
            chunks.append(data)
            offsets.append(offsets[-1] + len(data))
        glyf = b"".join(chunks)
        if loca_format is None:
            loca_format = SHORT_OFFSETS if len(glyf) <= MAX_SHORT_GLYF_LENGTH else LONG_OFFSETS
        return glyf, encode_loca(offsets, loca_format), loca_format


def _raw_simple_stats(raw: bytes) -> tuple:
    if len(raw) < GLYPH_HEADER.size:
        return 0, 0, 0, 0
    (num_contours,) = struct.unpack_from(">h", raw, 0)
    if num_contours <= 0:
        return 0, 0, 0, 0
    last_end_offset = GLYPH_HEADER.size + 2 * (num_contours - 1)
    if last_end_offset + 2 > len(raw):
        raise MalformedFont("Glyph contour end points are truncated")
    (last_end,) = struct.unpack_from(">H", raw, last_end_offset)
    return last_end + 1, num_contours, 0, 0


def decode_loca(loca: bytes, num_glyphs: int, loca_format: int) -> list:
    if loca_format == SHORT_OFFSETS:
        size, fmt, scale = 2, "H", 2
    elif loca_format == LONG_OFFSETS:
        size, fmt, scale = 4, "I", 1
    else:
        raise MalformedFont(f"Unknown indexToLocFormat {loca_format}")
    if len(loca) < size * (num_glyphs + 1):
        raise MalformedFont(f"'loca' is too short for {num_glyphs} glyphs")
    offsets = [v * scale for v in struct.unpack_from(f">{num_glyphs + 1}{fmt}", loca, 0)]
    if any(b < a for a, b in zip(offsets, offsets[1:])):
        raise MalformedFont("'loca' offsets are not monotonically non-decreasing")
    return offsets


def encode_loca(offsets: list, loca_format: int) -> bytes:
    if loca_format == SHORT_OFFSETS:
        return struct.pack(f">{len(offsets)}H", *(offset // 2 for offset in offsets))
    return struct.pack(f">{len(offsets)}I", *offsets)
