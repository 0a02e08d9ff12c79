"""NFT attribute extraction — a pure function of a finished render pass.

Output follows the OpenSea / ERC-1155 metadata attribute shape:
{"trait_type": str, "value": ..., "display_type": "number"?}.
"""

from kanjiblock.engine.pipeline import RenderResult


def _trait(trait_type: str, value, display_type: str | None = None) -> dict:
    trait = {"trait_type": trait_type, "value": value}
    if display_type is not None:
        trait["display_type"] = display_type
    return trait


def extract_attributes(result: RenderResult) -> list[dict]:
    """Attributes for one pass, reporting the same values the renderer used."""
    derived = result.derived
    attributes = [_trait("difficulty", result.block.difficulty, "number")]
    if result.block.number is not None:
        attributes.append(_trait("block number", result.block.number, "number"))
    attributes.extend(
        [
            _trait("kanji", result.glyph),
            _trait("kanji index", derived.glyph_index, "number"),
            _trait("segments", derived.segment_count, "number"),
            _trait("special block", "yes" if derived.is_special_block else "no"),
        ]
    )
    return attributes


def build_token_metadata(result: RenderResult, style: dict | None = None) -> dict:
    """Token metadata document: name, description and attributes."""
    style = style or {}
    style_name = style.get("name") or "kanjiblock"
    number = result.block.number
    name = f"{style_name} #{number}" if number is not None else style_name
    metadata = {
        "name": name,
        "description": style.get("description", ""),
        "attributes": extract_attributes(result),
    }
    if style.get("creator_name"):
        metadata["creator_name"] = style["creator_name"]
    return metadata
