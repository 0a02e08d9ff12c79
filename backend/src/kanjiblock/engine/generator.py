"""Deterministic parameter generator — the fixed draw sequence of a render pass.

One ParameterGenerator is built per pass from the block seed and consumed
strictly in DRAW_ORDER. Reordering, skipping or repeating a draw shifts
every value after it, so the order is part of the output format.
"""

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from kanjiblock.config import DEFAULT_REFERENCE_ADDRESS, DEFAULT_SPECIAL_THRESHOLD
from kanjiblock.engine.determinism import make_rng

COORDINATE_RANGE = (5.0, 25.0)
SEGMENT_RANGE = (3, 6)
CHANNEL_RANGE = (0.0, 255.0)

# Each entry consumes exactly one draw. angle_step is derived, not drawn.
DRAW_ORDER = (
    "coordinate",
    "segment_count",
    "color.r",
    "color.g",
    "color.b",
    "glyph_index",
)


@dataclass(frozen=True)
class Color:
    r: float
    g: float
    b: float

    def as_tuple(self) -> tuple[float, float, float]:
        return (self.r, self.g, self.b)

    def as_uint8(self) -> tuple[int, int, int]:
        return tuple(int(c) for c in self.as_tuple())


@dataclass(frozen=True)
class DerivedParameters:
    """Values drawn during one pass, plus the transaction-derived flag."""

    coordinate: float
    segment_count: int
    angle_step: float
    color: Color
    glyph_index: int
    is_special_block: bool = False

    def to_dict(self) -> dict:
        return {
            "coordinate": self.coordinate,
            "segment_count": self.segment_count,
            "angle_step": self.angle_step,
            "color": {"r": self.color.r, "g": self.color.g, "b": self.color.b},
            "glyph_index": self.glyph_index,
            "is_special_block": self.is_special_block,
        }


class ParameterGenerator:
    """Owned MT19937 stream. Single writer; never reseeded, never shared."""

    def __init__(self, seed: int):
        # make_rng validates the seed and raises InvalidSeedError
        self._rng = make_rng(seed)
        self.seed = int(seed)
        self.draws = 0

    def next(self) -> float:
        """Next draw in [0, 1)."""
        self.draws += 1
        return float(self._rng.random_sample())

    def uniform(self, lo: float, hi: float) -> float:
        return lo + self.next() * (hi - lo)

    def integer(self, lo: int, hi: int) -> int:
        """Floored linear map: lo <= value < hi for hi > lo."""
        value = int(math.floor(self.uniform(lo, hi)))
        # lo + d * (hi - lo) can round up to hi when d is within 2**-53 of 1
        return min(value, hi - 1) if hi > lo else value


def create_generator(seed: int) -> ParameterGenerator:
    """Construct the generator for one pass.

    Raises:
        InvalidSeedError: If the seed is negative, non-finite or non-integral.
    """
    return ParameterGenerator(seed)


def draw_parameters(
    generator: ParameterGenerator,
    glyph_range: int,
    *,
    is_special_block: bool = False,
) -> DerivedParameters:
    """Consume the draw sequence from a fresh generator.

    The special-block flag is passed through untouched; it never changes how
    many draws are taken or in which order.
    """
    coordinate = generator.uniform(*COORDINATE_RANGE)
    segment_count = generator.integer(*SEGMENT_RANGE)
    angle_step = math.pi / segment_count
    r = generator.uniform(*CHANNEL_RANGE)
    g = generator.uniform(*CHANNEL_RANGE)
    b = generator.uniform(*CHANNEL_RANGE)
    glyph_index = generator.integer(0, glyph_range)
    return DerivedParameters(
        coordinate=coordinate,
        segment_count=segment_count,
        angle_step=angle_step,
        color=Color(r, g, b),
        glyph_index=glyph_index,
        is_special_block=is_special_block,
    )


def count_transfers_to(transactions: Iterable[Mapping], address: str) -> int:
    """Count transactions whose `to` matches address (case-insensitive)."""
    target = address.lower()
    count = 0
    for tx in transactions:
        to = tx.get("to")
        if isinstance(to, str) and to.lower() == target:
            count += 1
    return count


def is_special_block(
    transactions: Iterable[Mapping],
    address: str = DEFAULT_REFERENCE_ADDRESS,
    threshold: int = DEFAULT_SPECIAL_THRESHOLD,
) -> bool:
    return count_transfers_to(transactions, address) > threshold
