"""kanjiblock — deterministic kanji rosettes rendered from block data."""

from kanjiblock._version import __version__

__all__ = ["__version__"]
