"""Resolution-capped JPEG re-encoding for oversized images."""

from __future__ import annotations

import io
from pathlib import Path

from PIL import Image, UnidentifiedImageError
from PIL.Image import Resampling

from smart_slideshow.errors import DecodeFailure
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "thumbnailing"})

MAX_DISPLAY_WIDTH = 3840
MAX_DISPLAY_HEIGHT = 2160
OPTIMIZED_JPEG_QUALITY = 90


def exceeds_display_bounds(width: int, height: int) -> bool:
    """Return True when either side is strictly larger than the 4K display box."""

    return width > MAX_DISPLAY_WIDTH or height > MAX_DISPLAY_HEIGHT


def build_display_image(image: Image.Image) -> Image.Image:
    """Produce a copy that fits inside the display box, keeping the aspect ratio."""

    resized = image.copy()
    resized.thumbnail((MAX_DISPLAY_WIDTH, MAX_DISPLAY_HEIGHT), resample=Resampling.LANCZOS)
    if resized.mode not in ("RGB", "L"):
        resized = resized.convert("RGB")
    return resized


def encode_display_jpeg(source: Path) -> bytes:
    """Decode ``source`` and return the capped JPEG bytes.

    Raises:
        DecodeFailure: the file cannot be decoded or the result cannot be encoded.
    """

    try:
        with Image.open(source) as image:
            image.load()
            original_size = image.size
            resized = build_display_image(image)
        buffer = io.BytesIO()
        resized.save(buffer, format="JPEG", quality=OPTIMIZED_JPEG_QUALITY)
    except (OSError, UnidentifiedImageError, Image.DecompressionBombError, ValueError) as exc:
        raise DecodeFailure(f"Failed to re-encode {source}: {exc}") from exc

    LOGGER.debug(
        "display_image_encoded",
        extra={"source": str(source), "original_size": original_size, "output_size": resized.size},
    )
    return buffer.getvalue()


__all__ = [
    "MAX_DISPLAY_HEIGHT",
    "MAX_DISPLAY_WIDTH",
    "OPTIMIZED_JPEG_QUALITY",
    "build_display_image",
    "encode_display_jpeg",
    "exceeds_display_bounds",
]
