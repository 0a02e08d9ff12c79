"""Error kinds surfaced by the render core.

All of them are unrecoverable for a given input: the pipeline is pure, so
retrying with the same block or parameters raises the same error again.
"""


class KanjiBlockError(ValueError):
    """Base class for render-core failures."""


class MalformedHashError(KanjiBlockError):
    """Block hash is too short or contains non-hex characters."""


class InvalidSeedError(KanjiBlockError):
    """Seed is negative, non-finite or not an integer."""


class GlyphIndexOutOfRangeError(KanjiBlockError):
    """Glyph table is shorter than the drawn index requires."""

    def __init__(self, index: int, table_size: int):
        super().__init__(
            f"glyph index {index} out of range for table of {table_size} glyphs"
        )
        self.index = index
        self.table_size = table_size


class InvalidParameterError(KanjiBlockError):
    """Modifier parameter snapshot cannot be used."""


class GlyphNotRenderableError(KanjiBlockError):
    """Font has no outline for the glyph and would draw its missing-glyph box."""

    def __init__(self, glyph: str, font_name: str):
        super().__init__(
            f"font {font_name!r} cannot draw {glyph!r}; "
            "set KANJIBLOCK_FONT_PATH to a font with CJK coverage"
        )
        self.glyph = glyph
        self.font_name = font_name
