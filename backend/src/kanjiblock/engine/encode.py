"""Image encoding for transport (base64 over IPC) and export."""

import io

import numpy as np
from PIL import Image

MAX_TRANSPORT_BYTES = 1_000_000  # stays under the 1 MB IPC message cap
QUALITY_FALLBACK_CHAIN = (95, 85, 75, 65, 50)


def encode_png(frame: np.ndarray) -> bytes:
    """Encode an RGBA frame losslessly. Same frame = same bytes."""
    img = Image.fromarray(np.ascontiguousarray(frame))
    buf = io.BytesIO()
    img.save(buf, format="PNG", optimize=False)
    return buf.getvalue()


def encode_jpeg(frame: np.ndarray, quality: int = 95) -> bytes:
    """Encode RGBA frame to JPEG bytes. Drops alpha (JPEG is RGB only)."""
    img = Image.fromarray(np.ascontiguousarray(frame[:, :, :3]))
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def encode_jpeg_fit(
    frame: np.ndarray,
    max_bytes: int = MAX_TRANSPORT_BYTES,
    quality_chain: tuple[int, ...] = QUALITY_FALLBACK_CHAIN,
) -> tuple[bytes, int]:
    """Encode RGBA frame, reducing quality until it fits in max_bytes.

    Returns (jpeg_bytes, quality_used).
    Raises ValueError if the frame exceeds max_bytes at the lowest quality.
    """
    if not quality_chain:
        raise ValueError("quality_chain must not be empty")
    data = b""
    for q in quality_chain:
        data = encode_jpeg(frame, quality=q)
        if len(data) <= max_bytes:
            return data, q
    raise ValueError(
        f"JPEG frame ({len(data)} bytes) exceeds {max_bytes} bytes "
        f"even at quality {quality_chain[-1]}"
    )


def decode_image(data: bytes) -> np.ndarray:
    """Decode PNG or JPEG bytes back to a numpy array."""
    img = Image.open(io.BytesIO(data))
    return np.array(img)
