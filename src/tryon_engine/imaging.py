"""Image decoding for the quality checks.

The validator only looks at a fixed-size prefix of each image's pixel
buffer (row-major, top-left first), so decoding is the only expensive step.
"""

import io
import logging

from PIL import Image, UnidentifiedImageError

from tryon_engine.errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_PIXELS = 1000


def sample_pixels(data: bytes, limit: int = DEFAULT_SAMPLE_PIXELS) -> list[tuple[int, int, int]]:
    """Decode image bytes and return the first ``limit`` pixels as RGB tuples.

    Palette, greyscale and alpha images are converted to RGB first so every
    pixel has exactly three channels.

    Raises:
        ValidationError: If the bytes are empty or cannot be decoded.
    """
    if not data:
        raise ValidationError("Cannot decode image: empty payload")

    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()  # Force load to catch truncated images
            rgb = img if img.mode == "RGB" else img.convert("RGB")
            raw = rgb.tobytes()
    except (UnidentifiedImageError, OSError) as exc:
        raise ValidationError(f"Cannot decode image: {exc}") from exc

    raw = raw[: limit * 3]
    pixels = [(raw[i], raw[i + 1], raw[i + 2]) for i in range(0, len(raw) - 2, 3)]
    logger.debug("Sampled %d pixels from %d-byte image", len(pixels), len(data))
    return pixels
