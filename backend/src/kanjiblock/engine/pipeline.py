"""Render pass pipeline — block in, frame plus derived values out.

Every call is one complete pass: seed derivation, a fresh generator, the
fixed draw sequence, glyph lookup and rendering. Nothing from a previous
pass is reused, so a re-render after a parameter change simply calls
run_pass again with the new snapshot.

Includes rolling timing stats (observability only; never read by a pass).
"""

import logging
import threading
import time
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from kanjiblock.blocks import BlockData
from kanjiblock.config import StyleConfig
from kanjiblock.diagnostics import log_context
from kanjiblock.engine.determinism import derive_seed
from kanjiblock.engine.generator import (
    DerivedParameters,
    create_generator,
    draw_parameters,
    is_special_block,
)
from kanjiblock.engine.render import render_frame
from kanjiblock.security import validate_canvas_size
from kanjiblock.style.glyphs import default_glyph_table, load_glyph_table, lookup
from kanjiblock.style.params import resolve_params

logger = logging.getLogger(__name__)

DEFAULT_RESOLUTION = (500, 500)

# Pass timing threshold (milliseconds)
RENDER_WARN_MS = 250

_timing_lock = threading.Lock()
_render_timing: deque = deque(maxlen=100)


@dataclass(frozen=True, eq=False)
class RenderResult:
    """Everything one pass produced. Metadata is extracted from this alone."""

    block: BlockData
    seed: int
    derived: DerivedParameters
    glyph: str
    params: dict
    frame: np.ndarray

    @property
    def resolution(self) -> tuple[int, int]:
        h, w = self.frame.shape[:2]
        return (w, h)


def resolve_glyphs(
    glyphs: Sequence[str] | None, config: StyleConfig
) -> Sequence[str]:
    if glyphs is not None:
        return glyphs
    if config.glyph_table_path:
        return load_glyph_table(config.glyph_table_path)
    return default_glyph_table()


def glyph_range_for(config: StyleConfig, table: Sequence[str]) -> int:
    """config.glyph_range when set, else the length of the table in use."""
    if config.glyph_range is not None:
        return config.glyph_range
    return len(table)


def derive_parameters(
    block: BlockData,
    config: StyleConfig | None = None,
    *,
    glyphs: Sequence[str] | None = None,
) -> tuple[int, DerivedParameters]:
    """Seed derivation plus the draw sequence, without rendering.

    Raises:
        MalformedHashError: If the block hash cannot seed the generator.
    """
    config = config or StyleConfig()
    glyph_range = glyph_range_for(config, resolve_glyphs(glyphs, config))
    seed = derive_seed(block.hash)
    generator = create_generator(seed)
    special = is_special_block(
        block.transactions, config.reference_address, config.special_threshold
    )
    derived = draw_parameters(
        generator, glyph_range, is_special_block=special
    )
    return seed, derived


def run_pass(
    block: BlockData,
    params: dict | None = None,
    *,
    width: int = DEFAULT_RESOLUTION[0],
    height: int = DEFAULT_RESOLUTION[1],
    glyphs: Sequence[str] | None = None,
    config: StyleConfig | None = None,
) -> RenderResult:
    """Run one full render pass.

    Args:
        block:  Block to render. Read, never mutated.
        params: Modifier parameter overrides; missing keys use defaults.
        width:  Canvas width in pixels.
        height: Canvas height in pixels.
        glyphs: Glyph table; defaults to config.glyph_table_path or the
                built-in table.
        config: Style configuration.

    Returns:
        RenderResult with the frame and the values drawn for it.

    Raises:
        ValueError: If the canvas size is out of bounds.
        MalformedHashError: If the block hash cannot seed the generator.
        GlyphIndexOutOfRangeError: If the glyph table is shorter than
            the draw range requires.
        GlyphNotRenderableError: If the font cannot draw the drawn glyph.
        InvalidParameterError: If params contain an unknown key or bad colour.
    """
    errors = validate_canvas_size(width, height)
    if errors:
        raise ValueError("; ".join(errors))

    config = config or StyleConfig()
    resolved = resolve_params(params)
    table = resolve_glyphs(glyphs, config)

    t0 = time.monotonic()
    seed, derived = derive_parameters(block, config, glyphs=table)
    glyph = lookup(table, derived.glyph_index)
    frame = render_frame(
        derived,
        glyph,
        resolved,
        width=width,
        height=height,
        font_path=config.font_path,
    )
    elapsed_ms = (time.monotonic() - t0) * 1000

    record_timing(elapsed_ms)
    context = log_context(block_number=block.number, seed=seed)
    if elapsed_ms > RENDER_WARN_MS:
        logger.warning(
            "Render pass for block %s took %.0fms (>%dms warn threshold)",
            block.number,
            elapsed_ms,
            RENDER_WARN_MS,
            extra=context,
        )
    else:
        logger.debug(
            "Render pass for block %s took %.1fms",
            block.number,
            elapsed_ms,
            extra=context,
        )

    return RenderResult(
        block=block,
        seed=seed,
        derived=derived,
        glyph=glyph,
        params=resolved,
        frame=frame,
    )


def record_timing(elapsed_ms: float):
    with _timing_lock:
        _render_timing.append(elapsed_ms)


def get_render_stats() -> dict:
    """Return p50/p95/max over the last 100 passes."""
    with _timing_lock:
        s = sorted(_render_timing)
    return {
        "p50": s[len(s) // 2] if s else 0,
        "p95": s[int(len(s) * 0.95)] if len(s) >= 20 else None,
        "max": max(s) if s else 0,
        "samples": len(s),
    }


def flush_timing():
    """Clear all timing stats."""
    with _timing_lock:
        _render_timing.clear()
