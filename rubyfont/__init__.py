"""Add ruby annotation glyphs to TrueType fonts and collections."""

from .config import Config, load_config
from .errors import (
    ConfigError,
    EmptySubset,
    InconsistentGlyphSet,
    MalformedFont,
    RendererUnsupported,
    RubyFontError,
    TableNotFound,
    UnsupportedTableFormat,
)
from .pipeline import process_batch, process_file, process_font
from .sfnt import Collection, Font, load

__version__ = "0.1.0"
