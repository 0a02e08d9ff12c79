"""Block data — read-only input records for a render pass."""

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType


@dataclass(frozen=True)
class BlockData:
    """Header fields and transactions of one block.

    Only `hash` feeds the generator. `difficulty` and `number` are carried
    through to metadata; `transactions` feed the special-block rule.
    """

    hash: str
    difficulty: int = 0
    number: int | None = None
    transactions: tuple[Mapping, ...] = field(default=(), repr=False)

    @classmethod
    def from_dict(cls, data: Mapping) -> "BlockData":
        """Build from a JSON-shaped block (RPC field names).

        Raises:
            ValueError: If `hash` is missing or a numeric field does not parse.
        """
        if not isinstance(data, Mapping):
            raise ValueError(f"block must be an object, got {type(data).__name__}")
        block_hash = data.get("hash")
        if not isinstance(block_hash, str):
            raise ValueError("block is missing a string 'hash'")

        txs = data.get("transactions") or []
        if not isinstance(txs, (list, tuple)):
            raise ValueError("'transactions' must be a list")
        # Hash-only entries (RPC without full tx objects) have no `to`
        transactions = tuple(
            MappingProxyType(dict(tx)) if isinstance(tx, Mapping) else
            MappingProxyType({"hash": tx, "to": None})
            for tx in txs
        )

        return cls(
            hash=block_hash,
            difficulty=_parse_int(data.get("difficulty", 0), "difficulty"),
            number=(
                _parse_int(data["number"], "number")
                if data.get("number") is not None
                else None
            ),
            transactions=transactions,
        )

    def to_dict(self) -> dict:
        return {
            "hash": self.hash,
            "number": self.number,
            "difficulty": self.difficulty,
            "transactions": [dict(tx) for tx in self.transactions],
        }


def _parse_int(value, name: str) -> int:
    """Accept ints, decimal strings and 0x-prefixed hex strings (RPC quantities)."""
    if isinstance(value, bool):
        raise ValueError(f"'{name}' must be an integer, got bool")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            if text[:2] in ("0x", "0X"):
                return int(text, 16)
            return int(text)
        except ValueError as e:
            raise ValueError(f"'{name}' is not an integer: {value!r}") from e
    raise ValueError(f"'{name}' must be an integer, got {type(value).__name__}")


def load_blocks(path: str | Path) -> list[BlockData]:
    """Load blocks from a JSON file.

    Accepts a list of blocks or an object keyed by block number.

    Raises:
        ValueError: On invalid JSON or an invalid block record.
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON: {e}") from e

    if isinstance(data, Mapping):
        records = []
        for key, block in data.items():
            if isinstance(block, Mapping) and block.get("number") is None:
                block = {**block, "number": key}
            records.append(block)
    elif isinstance(data, list):
        records = data
    else:
        raise ValueError("block file must hold a list or an object of blocks")

    return [BlockData.from_dict(record) for record in records]
