"""Style configuration — special-block rule, glyph range, font."""

import os
from dataclasses import dataclass, replace

# MakerDAO MKR token contract. Blocks with many transfers to it are "special".
DEFAULT_REFERENCE_ADDRESS = "0x9f8f72aa9304c8b593d555f12ef6589cc3a579a2"
DEFAULT_SPECIAL_THRESHOLD = 10

# Size of the built-in kanji table
DEFAULT_GLYPH_RANGE = 2994

_ENV_PREFIX = "KANJIBLOCK_"


@dataclass(frozen=True)
class StyleConfig:
    """Per-run style settings. Immutable; build a new one to change it."""

    reference_address: str = DEFAULT_REFERENCE_ADDRESS
    special_threshold: int = DEFAULT_SPECIAL_THRESHOLD
    # None draws over the whole glyph table in use
    glyph_range: int | None = None
    font_path: str | None = None
    glyph_table_path: str | None = None

    def __post_init__(self):
        if self.special_threshold < 0:
            raise ValueError(
                f"special_threshold must be non-negative, got {self.special_threshold}"
            )
        if self.glyph_range is not None and self.glyph_range < 1:
            raise ValueError(f"glyph_range must be >= 1, got {self.glyph_range}")

    def with_overrides(self, **changes) -> "StyleConfig":
        return replace(self, **changes)

    @classmethod
    def from_env(cls, environ: dict | None = None) -> "StyleConfig":
        """Build a config from KANJIBLOCK_* environment variables.

        Raises:
            ValueError: If a numeric variable does not parse.
        """
        env = os.environ if environ is None else environ
        kwargs: dict = {}

        address = env.get(_ENV_PREFIX + "SPECIAL_ADDRESS", "").strip()
        if address:
            kwargs["reference_address"] = address

        for field_name, var in (
            ("special_threshold", "SPECIAL_THRESHOLD"),
            ("glyph_range", "GLYPH_RANGE"),
        ):
            raw = env.get(_ENV_PREFIX + var, "").strip()
            if raw:
                try:
                    kwargs[field_name] = int(raw)
                except ValueError as e:
                    raise ValueError(
                        f"{_ENV_PREFIX + var} must be an integer, got {raw!r}"
                    ) from e

        font_path = env.get(_ENV_PREFIX + "FONT_PATH", "").strip()
        if font_path:
            kwargs["font_path"] = os.path.expanduser(font_path)

        table_path = env.get(_ENV_PREFIX + "GLYPH_TABLE", "").strip()
        if table_path:
            kwargs["glyph_table_path"] = os.path.expanduser(table_path)

        return cls(**kwargs)
