"""Exception hierarchy shared by every pipeline stage."""


class RubyFontError(Exception):
    """Base class for all errors raised by rubyfont."""


class MalformedFont(RubyFontError):
    """Input bytes are not a structurally valid SFNT or TTC."""


class TableNotFound(MalformedFont, KeyError):
    """A table the caller asked for is absent from the font."""

    def __init__(self, tag: str):
        super().__init__(f"Font has no '{tag}' table")
        self.tag = tag

    def __str__(self):
        return self.args[0]


class UnsupportedTableFormat(RubyFontError):
    """A table (or subtable) uses a format the codecs do not implement."""


class EmptySubset(RubyFontError):
    """The requested codepoints reach no glyph besides .notdef."""


class InconsistentGlyphSet(RubyFontError):
    """A rebuilt font references a glyph index that does not exist.

    This signals a programming defect, never bad user input.
    """


class RendererUnsupported(RubyFontError):
    """The renderer has no annotation for a character; the caller skips it."""


class ConfigError(RubyFontError):
    """Configuration file or command-line options are invalid."""
