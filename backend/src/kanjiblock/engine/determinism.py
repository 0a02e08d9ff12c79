"""Seeded determinism — block hash to seed, seed to MT19937 stream."""

import math
import string

import numpy as np

from kanjiblock.errors import InvalidSeedError, MalformedHashError

SEED_HEX_CHARS = 16

_HEX_DIGITS = frozenset(string.hexdigits)


def derive_seed(block_hash: str) -> int:
    """Derive a deterministic seed from a block hash. Same hash = same seed, always.

    Only the first 16 hex characters (after an optional 0x prefix) are used.

    Raises:
        MalformedHashError: If fewer than 16 hex characters are available.
    """
    if not isinstance(block_hash, str):
        raise MalformedHashError(
            f"block hash must be a string, got {type(block_hash).__name__}"
        )
    digits = block_hash[2:] if block_hash[:2] in ("0x", "0X") else block_hash
    head = digits[:SEED_HEX_CHARS]
    if len(head) < SEED_HEX_CHARS:
        raise MalformedHashError(
            f"block hash needs at least {SEED_HEX_CHARS} hex characters, "
            f"got {len(head)}"
        )
    if not _HEX_DIGITS.issuperset(head):
        raise MalformedHashError(f"block hash has non-hex characters: {head!r}")
    return int(head, 16)


def seed_key(seed) -> list[int]:
    """Split a seed into 32-bit words, least significant first.

    Raises:
        InvalidSeedError: If the seed is negative, non-finite or non-integral.
    """
    if isinstance(seed, bool) or not isinstance(seed, (int, float, np.integer)):
        raise InvalidSeedError(f"seed must be a number, got {type(seed).__name__}")
    if isinstance(seed, float):
        if not math.isfinite(seed):
            raise InvalidSeedError(f"seed must be finite, got {seed}")
        if not seed.is_integer():
            raise InvalidSeedError(f"seed must be an integer, got {seed}")
    n = int(seed)
    if n < 0:
        raise InvalidSeedError(f"seed must be non-negative, got {n}")

    key = []
    while n:
        key.append(n & 0xFFFFFFFF)
        n >>= 32
    return key or [0]


def make_rng(seed) -> np.random.RandomState:
    """Create an MT19937 stream seeded with init_by_array over seed_key(seed).

    A list (never an int or ndarray) is passed so numpy always takes the
    init_by_array path. This matches CPython's random.Random(seed).
    """
    return np.random.RandomState(seed_key(seed))
