"""
Table rebuilder.

Re-encodes every table a FontEdit touched, recomputes the derived fields
(maxp statistics, head bounding box and loca format, hhea/vhea extrema and
long-metric counts) and commits the new tables to the Font in one step. If any
stage fails, the Font keeps all of its previous tables.
"""

import logging

from .edit import FontEdit
from .errors import InconsistentGlyphSet
from .tables import cmap, gsub, head, hhea, hmtx, maxp, post
from .tables.glyf import CompositeGlyph

logger = logging.getLogger(__name__)

# Tables indexed by glyph that are dropped rather than rebuilt.
GLYPH_COUNT_TABLES = ("hdmx", "LTSH")


def check_references(edit: FontEdit):
    """Every glyph index stored in any table must be below the glyph count."""
    count = edit.num_glyphs
    for codepoint, gid in edit.cmap.mapping.items():
        if not 0 <= gid < count:
            raise InconsistentGlyphSet(f"cmap maps U+{codepoint:04X} to missing glyph {gid}")
    if edit.substitutions is not None:
        for base, sequence in edit.substitutions.mapping.items():
            for gid in (base, *sequence):
                if not 0 <= gid < count:
                    raise InconsistentGlyphSet(f"GSUB references missing glyph {gid}")
    if len(edit.hmetrics) != count:
        raise InconsistentGlyphSet(f"hmtx has {len(edit.hmetrics)} entries for {count} glyphs")
    if edit.vmetrics is not None and len(edit.vmetrics) != count:
        raise InconsistentGlyphSet(f"vmtx has {len(edit.vmetrics)} entries for {count} glyphs")
    if edit.post is not None and edit.post.has_names and len(edit.post.names) != count:
        raise InconsistentGlyphSet(f"post names {len(edit.post.names)} glyphs, font has {count}")


def _union(boxes):
    boxes = [box for box in boxes if box is not None]
    if not boxes:
        return 0, 0, 0, 0
    return (
        min(b[0] for b in boxes),
        min(b[1] for b in boxes),
        max(b[2] for b in boxes),
        max(b[3] for b in boxes),
    )


def _update_maxp(edit: FontEdit):
    profile = edit.maxp
    profile.numGlyphs = edit.num_glyphs
    if profile.version != maxp.VERSION_1_0:
        return
    cache = {}
    simple_points = simple_contours = 0
    composite_points = composite_contours = 0
    elements = depth = 0
    for gid in range(edit.num_glyphs):
        points, contours, refs, nesting = edit.glyphs.outline_stats(gid, cache)
        if edit.glyphs.is_composite(gid):
            composite_points = max(composite_points, points)
            composite_contours = max(composite_contours, contours)
            elements = max(elements, refs)
            depth = max(depth, nesting)
        else:
            simple_points = max(simple_points, points)
            simple_contours = max(simple_contours, contours)
    profile.maxPoints = simple_points
    profile.maxContours = simple_contours
    profile.maxCompositePoints = composite_points
    profile.maxCompositeContours = composite_contours
    profile.maxComponentElements = elements
    profile.maxComponentDepth = depth


def _update_metrics_header(header, metrics: list, boxes: list, axis: int):
    """Recompute advance max and side-bearing extrema along one axis (0 = x, 1 = y)."""
    header.advanceWidthMax = max((advance for advance, _ in metrics), default=0)
    inked = [(advance, bearing, box) for (advance, bearing), box in zip(metrics, boxes) if box]
    if not inked:
        header.minLeftSideBearing = header.minRightSideBearing = header.xMaxExtent = 0
        return
    extents = [box[axis + 2] - box[axis] for _, _, box in inked]
    header.minLeftSideBearing = min(bearing for _, bearing, _ in inked)
    header.minRightSideBearing = min(
        advance - bearing - extent for (advance, bearing, _), extent in zip(inked, extents)
    )
    header.xMaxExtent = max(bearing + extent for (_, bearing, _), extent in zip(inked, extents))


def rebuild(edit: FontEdit) -> bool:
    """Commit the edit to its Font; returns False when nothing was touched."""
    if not edit.touched and not edit.dropped:
        return False

    check_references(edit)
    font = edit.font
    tables = {}
    drops = set(edit.dropped)
    glyphs = edit.glyphs
    count = edit.num_glyphs
    modified = [gid for gid in range(count) if glyphs.is_modified(gid)]

    if "glyf" in edit.touched:
        glyphs.validate()
        for gid in modified:
            if isinstance(glyphs[gid], CompositeGlyph):
                glyphs[gid].bbox = glyphs.compute_bounds(gid) or (0, 0, 0, 0)
        tables["glyf"], tables["loca"], edit.head.indexToLocFormat = glyphs.encode()
        _update_maxp(edit)
        edit.touched.update(("hmtx", "vmtx"))

    boxes = [glyphs.header_bounds(gid) for gid in range(count)]
    head_box = _union(boxes)
    edit.head.xMin, edit.head.yMin, edit.head.xMax, edit.head.yMax = head_box

    if "hmtx" in edit.touched:
        for gid in modified:
            advance, _ = edit.hmetrics[gid]
            edit.hmetrics[gid] = (advance, boxes[gid][0] if boxes[gid] else 0)
        tables["hmtx"], edit.hhea.numberOfHMetrics = hmtx.encode(edit.hmetrics)
        _update_metrics_header(edit.hhea, edit.hmetrics, boxes, 0)
        tables["hhea"] = hhea.encode(edit.hhea)

    if "vmtx" in edit.touched and edit.vmetrics is not None:
        # Vertical extrema are measured downward from the top, so flip the boxes.
        flipped = [(b[0], -b[3], b[2], -b[1]) if b else None for b in boxes]
        tables["vmtx"], edit.vhea.numberOfHMetrics = hmtx.encode(edit.vmetrics)
        _update_metrics_header(edit.vhea, edit.vmetrics, flipped, 1)
        tables["vhea"] = hhea.encode(edit.vhea)

    if "post" in edit.touched and edit.post is not None:
        # Formats 1.0, 2.5 and 4.0 describe a fixed glyph order.
        fixed_order = (post.FORMAT_1, post.FORMAT_2_5, post.FORMAT_4)
        if edit.glyph_count_changed and edit.post.formatType in fixed_order:
            logger.debug("Downgrading 'post' format 0x%08X to 3.0", edit.post.formatType)
            edit.post.drop_names()
        tables["post"] = post.encode(edit.post)

    if "cmap" in edit.touched:
        tables["cmap"] = cmap.encode(edit.cmap)

    if "GSUB" in edit.touched:
        if edit.substitutions is not None and edit.substitutions.mapping:
            tables["GSUB"] = gsub.encode(edit.substitutions, count)
        else:
            drops.add("GSUB")

    if edit.glyph_count_changed:
        drops.update(tag for tag in GLYPH_COUNT_TABLES if tag in font)
    # Any signature is invalid once a single byte changes.
    drops.add("DSIG")

    edit.maxp.numGlyphs = count
    tables["maxp"] = maxp.encode(edit.maxp)
    edit.head.checkSumAdjustment = 0
    tables["head"] = head.encode(edit.head)

    for tag in sorted(drops):
        if tag in font and tag not in tables:
            logger.debug("Dropping table '%s'", tag)
            font.del_table(tag)
    for tag, data in tables.items():
        font.set_table(tag, data)

    edit.touched.clear()
    edit.dropped.clear()
    edit.glyph_count_changed = False
    return True
