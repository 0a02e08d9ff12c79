#!/usr/bin/env python3
"""
Render Block — render one block from a JSON file to PNG + metadata JSON.

Same inputs always write the same bytes, so this doubles as a quick
determinism check across machines (compare the printed sha256).

Usage:
    python scripts/render_block.py blocks.json out.png
    python scripts/render_block.py blocks.json out.png --number 1 --mod1 0.7
    python scripts/render_block.py blocks.json out.png --size 1000 --font ~/fonts/SawarabiMincho.ttf
"""

import argparse
import hashlib
import json
import logging
import sys
from pathlib import Path

from kanjiblock.blocks import load_blocks
from kanjiblock.config import StyleConfig
from kanjiblock.engine.export import export_pass
from kanjiblock.engine.pipeline import run_pass
from kanjiblock.style.metadata import extract_attributes


def main() -> None:
    parser = argparse.ArgumentParser(description="Render a block to PNG")
    parser.add_argument("blocks", help="JSON file of blocks (list or keyed by number)")
    parser.add_argument("output", help="Output .png path")
    parser.add_argument("--number", type=int, help="Block number to render")
    parser.add_argument("--index", type=int, default=0, help="Position in file")
    parser.add_argument("--size", type=int, default=500, help="Canvas edge in px")
    parser.add_argument("--mod1", type=float, help="Glyph size modifier")
    parser.add_argument("--mod2", type=float, help="Spread modifier")
    parser.add_argument("--color1", help="Accent colour (#rrggbb)")
    parser.add_argument("--background", help="Background colour (#rrggbb)")
    parser.add_argument("--font", help="TrueType font with CJK coverage")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    try:
        blocks = load_blocks(args.blocks)
    except (OSError, ValueError) as e:
        print(f"Could not load blocks: {e}", file=sys.stderr)
        sys.exit(2)

    if args.number is not None:
        matches = [b for b in blocks if b.number == args.number]
        if not matches:
            print(f"Block {args.number} not in {args.blocks}", file=sys.stderr)
            sys.exit(2)
        block = matches[0]
    else:
        if not 0 <= args.index < len(blocks):
            print(f"Index {args.index} out of range", file=sys.stderr)
            sys.exit(2)
        block = blocks[args.index]

    params = {
        key: value
        for key, value in (
            ("mod1", args.mod1),
            ("mod2", args.mod2),
            ("color1", args.color1),
            ("background", args.background),
        )
        if value is not None
    }
    config = StyleConfig.from_env()
    if args.font:
        config = config.with_overrides(font_path=str(Path(args.font).expanduser()))

    try:
        result = run_pass(block, params, width=args.size, height=args.size, config=config)
    except ValueError as e:
        print(f"{type(e).__name__}: {e}", file=sys.stderr)
        sys.exit(1)

    image_path, metadata_path = export_pass(result, args.output)
    digest = hashlib.sha256(image_path.read_bytes()).hexdigest()

    print(f"seed      {result.seed:016x}")
    print(f"derived   {json.dumps(result.derived.to_dict())}")
    print(f"glyph     {result.glyph}")
    for attr in extract_attributes(result):
        print(f"  {attr['trait_type']:<14} {attr['value']}")
    print(f"image     {image_path} (sha256 {digest[:16]})")
    print(f"metadata  {metadata_path}")


if __name__ == "__main__":
    main()
