"""Modifier parameters — the user-tunable knobs of the style.

Schema entries use the same shape the control panel renders from. Values
only feed drawing formulas; they are never used as seeds.
"""

import math
import re

from kanjiblock.errors import InvalidParameterError

# Reference canvas edge the size formulas are calibrated for.
DEFAULT_SIZE = 500
BASE_TEXT_SIZE = 120

PARAMS: dict = {
    "mod1": {
        "type": "float",
        "min": 0.0,
        "max": 1.0,
        "default": 0.4,
        "label": "Glyph Size",
        "curve": "linear",
        "unit": "%",
        "description": "Kanji size — 0.4 draws at the reference 120px on a 500px canvas",
    },
    "mod2": {
        "type": "float",
        "min": 0.0,
        "max": 1.0,
        "default": 0.5,
        "label": "Spread",
        "curve": "linear",
        "unit": "%",
        "description": "How far each petal sits from the centre",
    },
    "color1": {
        "type": "color",
        "default": "#fff000",
        "label": "Accent",
        "description": "Petal tint on special blocks",
    },
    "background": {
        "type": "color",
        "default": "#000000",
        "label": "Background",
        "description": "Canvas root colour",
    },
}

_HEX_COLOR = re.compile(r"^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


def defaults() -> dict:
    return {key: spec["default"] for key, spec in PARAMS.items()}


def parse_color(value: str) -> tuple[int, int, int]:
    """Parse #rgb or #rrggbb into an (r, g, b) tuple.

    Raises:
        InvalidParameterError: If the string is not a hex colour.
    """
    if not isinstance(value, str):
        raise InvalidParameterError(
            f"colour must be a hex string, got {type(value).__name__}"
        )
    match = _HEX_COLOR.match(value.strip())
    if match is None:
        raise InvalidParameterError(f"invalid hex colour: {value!r}")
    digits = match.group(1)
    if len(digits) == 3:
        digits = "".join(c * 2 for c in digits)
    return tuple(int(digits[i : i + 2], 16) for i in (0, 2, 4))


def resolve_params(overrides: dict | None = None) -> dict:
    """Complete a parameter snapshot: defaults filled in, colours normalised.

    NaN/Inf floats are dropped so the default applies. Out-of-range floats
    are kept as-is; they only distort scale.

    Raises:
        InvalidParameterError: On an unknown key, a non-numeric float
            parameter or an invalid colour.
    """
    resolved = defaults()
    for key, value in (overrides or {}).items():
        spec = PARAMS.get(key)
        if spec is None:
            raise InvalidParameterError(f"unknown parameter: {key}")
        if spec["type"] == "float":
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidParameterError(
                    f"'{key}' must be a number, got {type(value).__name__}"
                )
            if math.isnan(value) or math.isinf(value):
                continue
            resolved[key] = float(value)
        else:
            r, g, b = parse_color(value)
            resolved[key] = f"#{r:02x}{g:02x}{b:02x}"
    return resolved


def scale_for(width: int, height: int) -> float:
    return min(width, height) / DEFAULT_SIZE


def text_size(params: dict, width: int, height: int) -> int:
    """Glyph size in pixels, kept within [1, 4 * longest edge]."""
    size = BASE_TEXT_SIZE * scale_for(width, height) * (0.6 + params["mod1"])
    limit = 4 * max(width, height)
    return int(round(max(1.0, min(size, limit))))


def petal_offset(coordinate: float, params: dict, width: int, height: int) -> float:
    limit = 4.0 * max(width, height)
    offset = coordinate * scale_for(width, height) * 2.0 * params["mod2"]
    return max(-limit, min(offset, limit))
