"""Rosette renderer — draws one pass's derived parameters onto an RGBA frame.

Pure: the same DerivedParameters, glyph, params and canvas size always
produce the same bytes. Nothing here draws from a random stream.
"""

import logging
import math

import cv2
import numpy as np
from PIL import Image, ImageDraw, ImageFont

from kanjiblock.engine.generator import DerivedParameters
from kanjiblock.errors import GlyphNotRenderableError
from kanjiblock.style.params import parse_color, petal_offset, text_size

logger = logging.getLogger(__name__)

# Alpha of the drawn-colour wash over the background (p5 background(c, 50))
WASH_ALPHA = 50 / 255
GHOST_GREY = (80.0, 80.0, 80.0)
PETALS_PER_SEGMENT = 3
# Glyph coverage is compared at a fixed size; tiny sizes rasterise to blanks
COVERAGE_CHECK_SIZE = 64


# Searched in order when no font path is configured
_CJK_FONTS = [
    "/usr/share/fonts/truetype/sawarabi-mincho/sawarabi-mincho-medium.ttf",
    "/usr/share/fonts/opentype/noto/NotoSerifCJK-Regular.ttc",
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/noto-cjk/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/google-noto-cjk/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/fonts-japanese-mincho.ttf",
    "/System/Library/Fonts/Hiragino Sans GB.ttc",
    "/System/Library/Fonts/ヒラギノ明朝 ProN.ttc",
    "C:\\Windows\\Fonts\\msmincho.ttc",
    "C:\\Windows\\Fonts\\YuGothM.ttc",
]

# Unassigned code point; every font maps it to its missing-glyph outline
_NOTDEF = "\uffff"

_font_cache: dict[tuple[str | None, int], ImageFont.ImageFont] = {}


def find_cjk_font() -> str | None:
    """First installed font from the CJK search list, or None."""
    for fp in _CJK_FONTS:
        try:
            ImageFont.truetype(fp, 12)
        except OSError:
            continue
        return fp
    return None


def load_font(font_path: str | None, size: int) -> ImageFont.ImageFont:
    """Load the configured font, else an installed CJK font, else Pillow's default.

    Results are cached per (font_path, size).

    Raises:
        ValueError: If a configured font_path cannot be loaded.
    """
    key = (font_path, size)
    if key in _font_cache:
        return _font_cache[key]
    if font_path:
        try:
            font = ImageFont.truetype(font_path, size)
        except OSError as e:
            raise ValueError(f"Could not load font {font_path}: {e}") from e
    else:
        fp = find_cjk_font()
        if fp is None:
            logger.warning("No CJK font found; kanji need KANJIBLOCK_FONT_PATH")
            font = ImageFont.load_default(size=size)
        else:
            font = ImageFont.truetype(fp, size)
    _font_cache[key] = font
    return font


def font_name(font: ImageFont.ImageFont) -> str:
    if hasattr(font, "getname"):
        return " ".join(part for part in font.getname() if part)
    return "default"


def _text_mask(text: str, font: ImageFont.ImageFont) -> np.ndarray:
    left, top, right, bottom = font.getbbox(text)
    layer = Image.new("L", (max(1, right - left), max(1, bottom - top)), 0)
    ImageDraw.Draw(layer).text((-left, -top), text, fill=255, font=font)
    return np.asarray(layer)


def ensure_renderable(glyph: str, font: ImageFont.ImageFont) -> None:
    """Check the font has a real outline for every character of glyph.

    Raises:
        GlyphNotRenderableError: If glyph rasterises to the missing-glyph box.
    """
    if glyph.isspace():
        return
    drawn = _text_mask(glyph, font)
    missing = _text_mask(_NOTDEF * len(glyph), font)
    if np.array_equal(drawn, missing):
        raise GlyphNotRenderableError(glyph, font_name(font))


def glyph_mask(
    glyph: str,
    font: ImageFont.ImageFont,
    size: int,
    position: tuple[float, float],
    resolution: tuple[int, int],
) -> np.ndarray:
    """Coverage mask (H, W) float32 in [0, 1] of the glyph drawn at position.

    position is the text baseline origin; the baseline is taken as one em
    below the top of the text box.
    """
    width, height = resolution
    layer = Image.new("L", (width, height), 0)
    x, y = position
    ImageDraw.Draw(layer).text((round(x), round(y - size)), glyph, fill=255, font=font)
    return np.asarray(layer, dtype=np.float32) / 255.0


def rotate_about_center(mask: np.ndarray, radians: float) -> np.ndarray:
    """Rotate clockwise on screen (y down), matching canvas rotate()."""
    h, w = mask.shape[:2]
    matrix = cv2.getRotationMatrix2D((w / 2.0, h / 2.0), -math.degrees(radians), 1.0)
    return cv2.warpAffine(
        mask,
        matrix,
        (w, h),
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=0,
    )


def _blend(rgb: np.ndarray, mask: np.ndarray, color) -> None:
    coverage = mask[:, :, np.newaxis]
    rgb *= 1.0 - coverage
    rgb += coverage * np.asarray(color, dtype=np.float32)


def petal_colors(derived: DerivedParameters, accent, count: int) -> list[tuple]:
    """Colour of each ghost petal.

    Ordinary blocks use flat grey; special blocks ramp from the accent
    colour to the drawn colour.
    """
    if not derived.is_special_block:
        return [GHOST_GREY] * count
    target = np.asarray(derived.color.as_tuple(), dtype=np.float32)
    start = np.asarray(accent, dtype=np.float32)
    steps = max(1, count - 1)
    return [tuple(start + (target - start) * (i / steps)) for i in range(count)]


def render_frame(
    derived: DerivedParameters,
    glyph: str,
    params: dict,
    *,
    width: int,
    height: int,
    font_path: str | None = None,
) -> np.ndarray:
    """Render the rosette.

    Args:
        derived:   Values drawn for this pass.
        glyph:     Symbol looked up from derived.glyph_index.
        params:    Resolved modifier parameters (see style.params.resolve_params).
        width:     Canvas width in pixels.
        height:    Canvas height in pixels.
        font_path: Optional TrueType/OpenType font with CJK coverage.

    Returns:
        RGBA frame (height, width, 4) uint8, fully opaque.

    Raises:
        GlyphNotRenderableError: If the font has no outline for glyph.
        ValueError: If font_path cannot be loaded.
    """
    background = parse_color(params["background"])
    accent = parse_color(params["color1"])
    drawn = derived.color.as_tuple()

    rgb = np.empty((height, width, 3), dtype=np.float32)
    rgb[:, :] = background
    rgb *= 1.0 - WASH_ALPHA
    rgb += np.asarray(drawn, dtype=np.float32) * WASH_ALPHA

    size = text_size(params, width, height)
    offset = petal_offset(derived.coordinate, params, width, height)
    ensure_renderable(glyph, load_font(font_path, COVERAGE_CHECK_SIZE))
    font = load_font(font_path, size)
    origin = (width / 2.0 + offset, height / 2.0 + offset)
    mask = glyph_mask(glyph, font, size, origin, (width, height))

    petals = derived.segment_count * PETALS_PER_SEGMENT
    for i, color in enumerate(petal_colors(derived, accent, petals), start=1):
        _blend(rgb, rotate_about_center(mask, derived.angle_step * i), color)

    final_angle = derived.angle_step * petals + math.pi
    _blend(rgb, rotate_about_center(mask, final_angle), drawn)

    logger.debug(
        "Rendered %dx%d rosette: %d petals, text_size=%d, special=%s",
        width,
        height,
        petals,
        size,
        derived.is_special_block,
    )

    frame = np.empty((height, width, 4), dtype=np.uint8)
    frame[:, :, :3] = np.clip(rgb, 0, 255).astype(np.uint8)
    frame[:, :, 3] = 255
    return frame
