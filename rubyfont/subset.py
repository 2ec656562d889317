"""
Glyph subsetter.

Keeps the glyphs reachable from a set of required codepoints (through cmap,
ruby substitutions and composite components), renumbers them densely in their
original order and rewrites every table that stores glyph indices.
"""

import logging
from dataclasses import dataclass

from .edit import FontEdit
from .errors import EmptySubset
from .rebuild import rebuild
from .sfnt import Font

logger = logging.getLogger(__name__)

# Tables that either hold no glyph indices or are rewritten by the subsetter.
SAFE_TABLES = frozenset(
    (
        "head", "hhea", "maxp", "OS/2", "name", "cmap", "post",
        "glyf", "loca", "hmtx", "vhea", "vmtx",
        "cvt ", "fpgm", "prep", "gasp", "meta",
    )
)


@dataclass(frozen=True)
class SubsetSpec:
    codepoints: frozenset
    composite_closure: bool = True


def glyph_closure(edit: FontEdit, roots, composite_closure: bool = True) -> set:
    """Every glyph reachable from roots; glyph 0 is always included."""
    substitutions = edit.substitutions.mapping if edit.substitutions else {}
    keep = set()
    work = [0, *roots]
    while work:
        gid = work.pop()
        if gid in keep:
            continue
        keep.add(gid)
        for sub in substitutions.get(gid, ()):
            if sub not in keep:
                work.append(sub)
        if composite_closure:
            for ref in edit.glyphs.components(gid):
                if ref not in keep:
                    work.append(ref)
    return keep


def subset_font(font: Font, spec: SubsetSpec) -> dict:
    """Subset font in place; returns the old -> new glyph index mapping."""
    edit = FontEdit(font)
    edit.glyphs.validate()
    roots = {gid for cp, gid in edit.cmap.mapping.items() if cp in spec.codepoints}
    roots.discard(0)
    if not roots:
        raise EmptySubset(f"None of the {len(spec.codepoints)} required codepoints is mapped by the font")

    keep = glyph_closure(edit, roots, spec.composite_closure)
    if not spec.composite_closure:
        # Components outside the closure are flattened into their users.
        for gid in keep:
            if edit.glyphs.is_composite(gid):
                edit.glyphs[gid] = edit.glyphs.decompose(gid)

    order = sorted(keep)
    mapping = {old: new for new, old in enumerate(order)}
    logger.info("Subsetting %d glyphs down to %d", edit.num_glyphs, len(order))

    edit.glyphs = edit.glyphs.subset(order, mapping)
    edit.hmetrics = [edit.hmetrics[old] for old in order]
    if edit.vmetrics is not None:
        edit.vmetrics = [edit.vmetrics[old] for old in order]
    if edit.post is not None and edit.post.has_names:
        edit.post.names = [edit.post.names[old] for old in order]

    edit.cmap.mapping = {
        cp: mapping[gid]
        for cp, gid in edit.cmap.mapping.items()
        if gid in mapping
    }
    if edit.cmap.variations is not None:
        logger.warning("Dropping cmap variation sequences (format 14) from the subset")
        edit.cmap.variations = None

    touched = ["glyf", "hmtx", "vmtx", "post", "cmap"]
    if edit.substitutions is not None:
        edit.substitutions.mapping = {
            mapping[base]: [mapping[gid] for gid in sequence]
            for base, sequence in edit.substitutions.mapping.items()
            if base in mapping
        }
        touched.append("GSUB")

    for tag in font.tags():
        if tag in SAFE_TABLES or (tag == "GSUB" and edit.substitutions is not None):
            continue
        logger.warning("Dropping table '%s', which cannot be subset", tag)
        edit.drop_table(tag)

    edit.touched.update(touched)
    edit.glyph_count_changed = True
    rebuild(edit)
    return mapping
