"""
Annotation injector.

Takes AnnotationRequests for base codepoints, asks the renderer for the ruby
outlines, positions them relative to the base glyph and adds them to the glyph
set, either as composite glyphs the cmap points at, or as zero-advance glyphs
inserted after the base by a GSUB multiple substitution.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

from fontTools.misc.roundTools import otRound
from fontTools.misc.transform import Transform

from .edit import FontEdit
from .errors import RendererUnsupported
from .tables.glyf import Component, CompositeGlyph, SimpleGlyph

logger = logging.getLogger(__name__)

# Vertical distance between stacked side glyphs, as a fraction of the ruby size.
SIDE_STEP = 0.8

# Name suffix of composite glyphs that carry ruby; such bases are not annotated twice.
RUBY_SUFFIX = ".ruby"


class Position(str, Enum):
    TOP = "top"
    BOTTOM = "bottom"
    LEFT_DOWN = "leftdown"
    LEFT_UP = "leftup"
    RIGHT_DOWN = "rightdown"
    RIGHT_UP = "rightup"

    @property
    def is_side(self) -> bool:
        return self not in (Position.TOP, Position.BOTTOM)

    @property
    def is_left(self) -> bool:
        return self in (Position.LEFT_DOWN, Position.LEFT_UP)

    @property
    def is_down(self) -> bool:
        return self in (Position.LEFT_DOWN, Position.RIGHT_DOWN)


class Strategy(str, Enum):
    COMPOSITE = "composite"
    LAYOUT = "layout"
    AUTO = "auto"


class SideAdvance(str, Enum):
    KEEP = "keep"
    WIDEN = "widen"


@dataclass(frozen=True)
class AnnotationRequest:
    base_codepoint: int
    ruby_text: str
    position: Position = Position.TOP

    def __post_init__(self):
        object.__setattr__(self, "position", Position(self.position))


@dataclass
class RubyShape:
    """One ruby character as drawn by the renderer, in the ruby font's units."""

    key: str
    outline: SimpleGlyph | None
    advance: int
    units_per_em: int


@dataclass
class RubyGlyph:
    """A scaled ruby outline and its offset from the base glyph origin."""

    shape: RubyShape
    outline: SimpleGlyph | None
    advance: int
    scale: float
    dx: int = 0
    dy: int = 0

    def placed_bounds(self):
        if self.outline is None:
            return None
        x_min, y_min, x_max, y_max = self.outline.bounds()
        return x_min + self.dx, y_min + self.dy, x_max + self.dx, y_max + self.dy


@dataclass
class _Target:
    request: AnnotationRequest
    gid: int
    advance: int
    box: tuple
    rubies: list = field(default_factory=list)

    @property
    def ruby_extent(self) -> tuple:
        """Lowest and highest point of the unplaced ruby outlines."""
        boxes = [r.outline.bounds() for r in self.rubies if r.outline is not None]
        if not boxes:
            return 0, 0
        return min(b[1] for b in boxes), max(b[3] for b in boxes)


def translated(outline: SimpleGlyph, dx: int, dy: int) -> SimpleGlyph:
    return SimpleGlyph(
        list(outline.end_points),
        [(x + dx, y + dy) for x, y in outline.coordinates],
        list(outline.on_curve),
    )


def scaled(shape: RubyShape, scale: float) -> RubyGlyph:
    outline = None
    if shape.outline is not None and shape.outline.coordinates:
        transform = Transform().scale(scale)
        coordinates = []
        for point in shape.outline.coordinates:
            x, y = transform.transformPoint(point)
            coordinates.append((otRound(x), otRound(y)))
        outline = SimpleGlyph(list(shape.outline.end_points), coordinates, list(shape.outline.on_curve))
    return RubyGlyph(shape, outline, otRound(shape.advance * scale), scale)


class AnnotationInjector:
    """Adds ruby glyphs to one font.

    config is a RubyConfig; renderer is anything with a shapes(text) method
    returning RubyShapes (or raising RendererUnsupported).
    """

    def __init__(self, edit: FontEdit, renderer, config):
        self.edit = edit
        self.renderer = renderer
        self.config = config
        self.upem = edit.units_per_em
        self.strategy = self.choose_strategy()
        self._shared = {}

    def choose_strategy(self) -> Strategy:
        strategy = Strategy(self.config.strategy)
        if strategy == Strategy.AUTO:
            return Strategy.COMPOSITE if "GSUB" in self.edit.font else Strategy.LAYOUT
        if strategy == Strategy.LAYOUT and self.edit.foreign_layout:
            logger.warning("Font has its own GSUB lookups; using composite ruby glyphs instead")
            return Strategy.COMPOSITE
        return strategy

    def em(self, value: float) -> float:
        return value * self.upem

    def inject(self, requests) -> int:
        """Annotate every requested codepoint the font maps; returns how many were annotated."""
        requests = list(requests)
        targets = self.collect(requests)
        self.place(targets)
        commit = self._commit_layout if self.strategy == Strategy.LAYOUT else self._commit_composite
        count = sum(1 for target in targets if commit(target))
        logger.info(
            "Annotated %d of %d requested characters (%s)", count, len(requests), self.strategy.value
        )
        return count

    def collect(self, requests) -> list:
        by_codepoint = {}
        for request in requests:
            by_codepoint.setdefault(request.base_codepoint, request)

        targets = []
        for codepoint in sorted(by_codepoint):
            request = by_codepoint[codepoint]
            gid = self.edit.cmap.mapping.get(codepoint)
            if gid is None:
                continue
            if self.edit.glyph_name(gid).endswith(RUBY_SUFFIX):
                logger.debug("U+%04X is already annotated; skipping", codepoint)
                continue
            try:
                shapes = self.renderer.shapes(request.ruby_text)
            except RendererUnsupported as exc:
                logger.debug("Skipping U+%04X: %s", codepoint, exc)
                continue
            if not shapes:
                continue
            advance = self.edit.advance(gid)
            box = self.edit.glyphs.compute_bounds(gid) or (0, 0, advance, 0)
            rubies = [scaled(shape, self.config.scale * self.upem / shape.units_per_em) for shape in shapes]
            targets.append(_Target(request, gid, advance, box, rubies))
        return targets

    def place(self, targets: list):
        """Set dx/dy of every ruby glyph.

        Unless tight placement is requested, all top annotations share one
        baseline (high enough for the tallest base glyph) and all bottom
        annotations share another, so the result does not depend on order.
        """
        gutter = self.em(self.config.gutter)
        offset = self.em(self.config.baseline_offset)

        def top_line(t):
            return t.box[3] + gutter + offset - t.ruby_extent[0]

        def bottom_line(t):
            return t.box[1] - gutter - offset - t.ruby_extent[1]

        tops = [t for t in targets if t.request.position == Position.TOP]
        bottoms = [t for t in targets if t.request.position == Position.BOTTOM]
        shared_top = max(map(top_line, tops), default=0)
        shared_bottom = min(map(bottom_line, bottoms), default=0)

        for target in targets:
            position = target.request.position
            if position == Position.TOP:
                self._center(target, top_line(target) if self.config.tight else shared_top)
            elif position == Position.BOTTOM:
                self._center(target, bottom_line(target) if self.config.tight else shared_bottom)
            else:
                self._stack(target)

    def _center(self, target: _Target, dy: float):
        total = sum(r.advance for r in target.rubies)
        x = (target.advance - total) / 2
        for ruby in target.rubies:
            ruby.dx = otRound(x)
            ruby.dy = otRound(dy)
            x += ruby.advance

    def _stack(self, target: _Target):
        position = target.request.position
        gutter = self.em(self.config.gutter)
        step = self.em(self.config.scale * SIDE_STEP + self.config.spacing)
        widest = max(r.advance for r in target.rubies)
        start_x = -(widest + gutter) if position.is_left else target.advance + gutter
        center = (target.box[1] + target.box[3]) / 2
        low, high = target.ruby_extent
        middle = (low + high) / 2
        half = (len(target.rubies) - 1) / 2
        for i, ruby in enumerate(target.rubies):
            slot = half - i if position.is_down else i - half
            ruby.dx = otRound(start_x + (widest - ruby.advance) / 2)
            ruby.dy = otRound(center + slot * step - middle)

    def overflow(self, target: _Target) -> tuple:
        """(left, right) amount by which side ruby sticks out of the advance when widening."""
        if not target.request.position.is_side or self.config.side_advance != SideAdvance.WIDEN:
            return 0, 0
        boxes = [r.placed_bounds() for r in target.rubies]
        boxes = [b for b in boxes if b is not None]
        if not boxes:
            return 0, 0
        left = max(0, -min(b[0] for b in boxes))
        right = max(0, max(b[2] for b in boxes) - target.advance)
        return left, right

    def _vertical(self, target: _Target):
        """Vertical metrics of the annotated glyph; the base glyph's vertical origin stays put."""
        if self.edit.vmetrics is None:
            return None
        advance_height, tsb = self.edit.vmetrics[target.gid]
        tops = [b[3] for b in (r.placed_bounds() for r in target.rubies) if b is not None]
        top = max([target.box[3], *tops])
        return advance_height, tsb - (top - target.box[3])

    def _shared_ruby(self, ruby: RubyGlyph) -> int:
        key = ruby.shape.key
        if key not in self._shared:
            name = f"ruby.{ord(key):04X}" if len(key) == 1 else f"ruby.{key}"
            self._shared[key] = self.edit.add_glyph(ruby.outline, 0, name)
        return self._shared[key]

    def _commit_composite(self, target: _Target) -> bool:
        left, right = self.overflow(target)
        components = [Component(target.gid, left, 0)]
        for ruby in target.rubies:
            if ruby.outline is not None:
                components.append(Component(self._shared_ruby(ruby), ruby.dx + left, ruby.dy))
        if len(components) == 1:
            return False
        gid = self.edit.add_glyph(
            CompositeGlyph(components),
            target.advance + left + right,
            self.edit.glyph_name(target.gid) + RUBY_SUFFIX,
            self._vertical(target),
        )
        self.edit.map_codepoint(target.request.base_codepoint, gid)
        return True

    def _commit_layout(self, target: _Target) -> bool:
        subs = self.edit.substitutions
        if subs is not None and target.gid in subs.mapping:
            logger.debug(
                "Glyph %d already carries ruby; skipping U+%04X", target.gid, target.request.base_codepoint
            )
            return False
        visible = [r for r in target.rubies if r.outline is not None]
        if not visible:
            return False

        left, right = self.overflow(target)
        base_name = self.edit.glyph_name(target.gid)
        glyphs = []
        for i, ruby in enumerate(visible):
            last = i == len(visible) - 1
            if left:
                # Ruby comes first in the run; the last one advances the pen to the base.
                outline = translated(ruby.outline, ruby.dx + left, ruby.dy)
                advance = left if last else 0
            else:
                outline = translated(ruby.outline, ruby.dx - target.advance, ruby.dy)
                advance = right if last else 0
            glyphs.append(self.edit.add_glyph(outline, advance, f"{base_name}.ruby{i}"))

        sequence = glyphs + [target.gid] if left else [target.gid] + glyphs
        self.edit.set_substitution(target.gid, sequence, self.config.feature)
        return True
