"""Style metadata document — name, creator and the preset parameter options."""

import json

from kanjiblock.errors import InvalidParameterError
from kanjiblock.style.params import PARAMS, defaults, resolve_params

CURRENT_VERSION = "1.0.0"

REQUIRED_KEYS = {
    "version",
    "name",
    "description",
    "image",
    "creator_name",
    "options",
}


def new_style_metadata(
    name: str = "", creator_name: str = "", description: str = ""
) -> dict:
    """Create a style metadata document with the default preset."""
    return {
        "version": CURRENT_VERSION,
        "name": name,
        "description": description,
        "image": "",
        "creator_name": creator_name,
        "options": defaults(),
    }


def validate(style: dict) -> list[str]:
    """Validate a style dict. Returns list of error strings (empty = valid)."""
    errors = []

    if not isinstance(style, dict):
        return ["Style metadata must be an object"]

    missing = REQUIRED_KEYS - set(style.keys())
    if missing:
        errors.append(f"Missing top-level keys: {sorted(missing)}")
        return errors  # Can't validate further

    for key in ("version", "name", "description", "image", "creator_name"):
        if not isinstance(style[key], str):
            errors.append(f"'{key}' must be a string")

    options = style["options"]
    if not isinstance(options, dict):
        errors.append("'options' must be a dict")
        return errors

    unknown = set(options) - set(PARAMS)
    if unknown:
        errors.append(f"Unknown options: {sorted(unknown)}")
    else:
        try:
            resolve_params(options)
        except InvalidParameterError as e:
            errors.append(f"Invalid options: {e}")

    return errors


def serialize(style: dict) -> str:
    """Serialize style metadata to a JSON string."""
    return json.dumps(style, indent=2)


def deserialize(data: str) -> dict:
    """Deserialize a JSON string. Raises ValueError on invalid JSON or schema."""
    try:
        style = json.loads(data)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON: {e}") from e

    errors = validate(style)
    if errors:
        raise ValueError(f"Invalid style: {'; '.join(errors)}")

    return style
