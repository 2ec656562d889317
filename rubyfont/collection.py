"""Splitting TrueType Collections into standalone fonts."""

import logging

from .errors import MalformedFont
from .sfnt import Collection, Font

logger = logging.getLogger(__name__)

REQUIRED_TABLES = ("cmap", "head", "hhea", "hmtx", "maxp")


def split_collection(collection: Collection) -> list[Font]:
    """One independent Font per member; shared tables are copied into each."""
    fonts = []
    for index, member in enumerate(collection):
        shared = collection.shared_tags(index)
        if shared:
            logger.debug("Member %d: copying shared tables %s", index, ", ".join(shared))
        missing = [tag for tag in REQUIRED_TABLES if tag not in member]
        if missing:
            raise MalformedFont(f"Collection member {index} lacks required tables: {', '.join(missing)}")
        fonts.append(member.copy())
    return fonts
