"""
Image compression.

Downscales images to a maximum longest edge and re-encodes them until they fit
a size target, lowering quality first and then dimensions.
"""

import asyncio
import logging
import re
from io import BytesIO
from typing import Optional, Tuple

from PIL import Image, ImageOps
from pydantic import BaseModel, Field

from wee_adventure.models.schemas import PhotoFile
from wee_adventure.utils.errors import CompressionError

logger = logging.getLogger(__name__)

MAX_IMAGE_PIXELS = 50_000_000  # 50MP
MIN_QUALITY = 0.4
QUALITY_STEP = 0.1
DIMENSION_STEP = 0.85
MAX_ITERATIONS = 10

# Pillow format -> (output format, MIME type)
_OUTPUT_FORMATS = {
    "JPEG": ("JPEG", "image/jpeg"),
    "MPO": ("JPEG", "image/jpeg"),
    "PNG": ("PNG", "image/png"),
    "WEBP": ("WEBP", "image/webp"),
}
_EXTENSION_RE = re.compile(r"(\.[^./]+)$")

Image.MAX_IMAGE_PIXELS = MAX_IMAGE_PIXELS


class CompressionOptions(BaseModel):
    """Compression targets. Every field can be overridden per call."""

    max_size_mb: float = Field(default=1, gt=0)
    max_width_or_height: int = Field(default=1920, gt=0)
    quality: float = Field(default=0.8, gt=0, le=1)


DEFAULT_COMPRESSION_OPTIONS = CompressionOptions()


def compressed_name(name: str) -> str:
    """Insert '_compressed' before the extension: "IMG_1.jpg" -> "IMG_1_compressed.jpg"."""
    if _EXTENSION_RE.search(name):
        return _EXTENSION_RE.sub(r"_compressed\1", name)
    return f"{name}_compressed"


def _fit_within(size: Tuple[int, int], max_edge: int) -> Tuple[int, int]:
    """Scale (w, h) so the longest edge is at most max_edge. Never upscales."""
    w, h = size
    if max(w, h) <= max_edge:
        return w, h
    longest = max(w, h)
    return max(1, round(w * max_edge / longest)), max(1, round(h * max_edge / longest))


def _encode(img: Image.Image, fmt: str, quality: float) -> bytes:
    output = BytesIO()
    if fmt == "PNG":
        img.save(output, format="PNG", optimize=True)
    else:
        img.save(output, format=fmt, quality=int(round(quality * 100)), optimize=fmt == "JPEG")
    return output.getvalue()


def _compress(file: PhotoFile, options: CompressionOptions) -> PhotoFile:
    if (file.content_type or "").lower() == "image/svg+xml" or file.extension == ".svg":
        raise CompressionError(f"Failed to compress image: {file.name}. Error: not a raster image")

    try:
        img = Image.open(BytesIO(file.content))
        img.load()
    except Image.DecompressionBombError as e:
        raise CompressionError(f"Failed to compress image: {file.name}. Error: image dimensions too large") from e
    except Exception as e:
        raise CompressionError(f"Failed to compress image: {file.name}. Error: {e}") from e

    if getattr(img, "is_animated", False) and img.format != "MPO":
        raise CompressionError(f"Failed to compress image: {file.name}. Error: animated images are not compressed")

    output_format, content_type = _OUTPUT_FORMATS.get(img.format, ("JPEG", "image/jpeg"))

    # Honour camera orientation before measuring dimensions
    img = ImageOps.exif_transpose(img)

    if output_format == "JPEG" and img.mode not in ("RGB", "L"):
        if img.mode in ("RGBA", "P", "LA"):
            background = Image.new("RGB", img.size, (255, 255, 255))
            if img.mode == "P":
                img = img.convert("RGBA")
            background.paste(img, mask=img.split()[-1] if img.mode in ("RGBA", "LA") else None)
            img = background
        else:
            img = img.convert("RGB")

    max_bytes = int(options.max_size_mb * 1024 * 1024)
    target_size = _fit_within(img.size, options.max_width_or_height)
    resized = target_size != img.size
    quality = options.quality

    working = img.resize(target_size, Image.Resampling.LANCZOS) if resized else img
    data = _encode(working, output_format, quality)

    for _ in range(MAX_ITERATIONS):
        if len(data) <= max_bytes:
            break
        if output_format != "PNG" and quality - QUALITY_STEP >= MIN_QUALITY:
            quality -= QUALITY_STEP
        else:
            w, h = working.size
            if w <= 1 and h <= 1:
                break
            target_size = (max(1, int(w * DIMENSION_STEP)), max(1, int(h * DIMENSION_STEP)))
            working = img.resize(target_size, Image.Resampling.LANCZOS)
            resized = True
        data = _encode(working, output_format, quality)

    # Re-encoding without resizing can grow the file; keep the original bytes then
    if not resized and len(data) >= len(file.content):
        return PhotoFile(
            name=compressed_name(file.name),
            content=file.content,
            content_type=file.content_type or content_type,
        )

    name = file.name
    if output_format == "JPEG" and file.extension not in (".jpg", ".jpeg"):
        name = _EXTENSION_RE.sub("", name) + ".jpg"
    return PhotoFile(name=compressed_name(name), content=data, content_type=content_type)


async def compress_image(file: PhotoFile, options: Optional[CompressionOptions] = None) -> PhotoFile:
    """
    Compress an image to at most ``max_size_mb`` and ``max_width_or_height``.

    Images already within the dimension limit are never upscaled. Encoding
    runs in a worker thread.

    Args:
        file: Raster image (JPEG, PNG, WebP, single-frame GIF, ...)
        options: Overrides for the default 1MB / 1920px / 0.8 quality policy

    Returns:
        New PhotoFile named with a '_compressed' marker; the input is never modified

    Raises:
        CompressionError: If the image cannot be decoded or re-encoded
    """
    options = options or DEFAULT_COMPRESSION_OPTIONS
    logger.info("Starting compression for: %s (%s)", file.name, file.content_type)

    result = await asyncio.to_thread(_compress, file, options)

    logger.info(
        "Compression successful: %s (%.2fMB) -> %s (%.2fMB)",
        file.name,
        file.size / 1024 / 1024,
        result.name,
        result.size / 1024 / 1024,
    )
    return result
