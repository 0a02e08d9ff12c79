"""Glyph table — ordered, 0-indexed symbols the rosette is drawn with."""

import json
from collections.abc import Sequence
from pathlib import Path

from kanjiblock.config import DEFAULT_GLYPH_RANGE
from kanjiblock.errors import GlyphIndexOutOfRangeError

DEFAULT_GLYPH_COUNT = DEFAULT_GLYPH_RANGE
CJK_UNIFIED_START = 0x4E00

_DEFAULT_TABLE: tuple[str, ...] = tuple(
    chr(CJK_UNIFIED_START + i) for i in range(DEFAULT_GLYPH_COUNT)
)


def default_glyph_table() -> tuple[str, ...]:
    """The first DEFAULT_GLYPH_COUNT CJK Unified Ideographs, from U+4E00."""
    return _DEFAULT_TABLE


def load_glyph_table(path: str | Path) -> tuple[str, ...]:
    """Load a JSON array of glyph strings.

    Raises:
        ValueError: On invalid JSON, an empty table or a non-string entry.
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON: {e}") from e
    if not isinstance(data, list) or not data:
        raise ValueError("glyph table must be a non-empty JSON array")
    for i, glyph in enumerate(data):
        if not isinstance(glyph, str) or not glyph:
            raise ValueError(f"glyph {i} must be a non-empty string")
    return tuple(data)


def lookup(table: Sequence[str], index: int) -> str:
    """Return table[index]. Never clamps or wraps.

    Raises:
        GlyphIndexOutOfRangeError: If index is outside the table.
    """
    if not 0 <= index < len(table):
        raise GlyphIndexOutOfRangeError(index, len(table))
    return table[index]
