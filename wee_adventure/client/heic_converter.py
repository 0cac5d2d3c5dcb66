"""
HEIC/HEIF to JPEG conversion.

Some runtimes ship Pillow without a usable HEIF decoder, so conversion starts
with a capability probe. A failed probe raises UnsupportedFormatError, which
callers can tell apart from a file that simply failed to decode.
"""

import asyncio
import logging
import re
from io import BytesIO

from PIL import Image

from wee_adventure.models.schemas import PhotoFile
from wee_adventure.services.photo_validation import is_heic_file
from wee_adventure.utils.errors import ConversionError, UnsupportedFormatError

logger = logging.getLogger(__name__)

JPEG_QUALITY = 90  # fixed, not caller-configurable
_HEIC_SUFFIX_RE = re.compile(r"\.hei[cf]$", re.IGNORECASE)

_heic_supported = None


def is_heic_supported() -> bool:
    """
    Probe whether HEIF decoding is available. The result is cached.

    Imports pillow-heif, registers its opener with Pillow and checks the
    registration took effect. A missing or broken install means unsupported.
    """
    global _heic_supported
    if _heic_supported is None:
        try:
            from pillow_heif import register_heif_opener

            register_heif_opener()
            _heic_supported = Image.registered_extensions().get(".heic") is not None
        except Exception as e:
            logger.warning("HEIC conversion not supported in this environment: %s", e)
            _heic_supported = False
    return _heic_supported


def _jpeg_name(name: str) -> str:
    if _HEIC_SUFFIX_RE.search(name):
        return _HEIC_SUFFIX_RE.sub(".jpg", name)
    return f"{name}.jpg"


def _convert(file: PhotoFile) -> PhotoFile:
    try:
        img = Image.open(BytesIO(file.content))
        img.load()  # Force full decode to catch corrupted files
    except Exception as e:
        raise ConversionError(f"HEIC conversion failed: {e}. Try converting to JPEG first.") from e

    if img.mode not in ("RGB", "L"):
        img = img.convert("RGB")

    output = BytesIO()
    try:
        img.save(output, format="JPEG", quality=JPEG_QUALITY)
    except Exception as e:
        raise ConversionError(f"HEIC conversion failed: {e}") from e

    return PhotoFile(name=_jpeg_name(file.name), content=output.getvalue(), content_type="image/jpeg")


async def convert_heic_to_jpeg(file: PhotoFile) -> PhotoFile:
    """
    Convert a HEIC/HEIF file to JPEG (quality 90, name rewritten to .jpg).

    Decoding runs in a worker thread so other photos keep processing.

    Args:
        file: HEIC/HEIF input

    Returns:
        New JPEG PhotoFile; the input is never modified

    Raises:
        UnsupportedFormatError: If this runtime has no HEIF decoder
        ConversionError: If the input is not HEIC or cannot be decoded
    """
    if not is_heic_file(file):
        raise ConversionError(f"{file.name} is not a HEIC/HEIF file")

    logger.info("Starting HEIC conversion for: %s (%.2fMB)", file.name, file.size / 1024 / 1024)

    if not is_heic_supported():
        raise UnsupportedFormatError(
            "HEIC conversion not available in this environment. Please convert to JPEG first."
        )

    converted = await asyncio.to_thread(_convert, file)
    logger.info("HEIC conversion successful: %s -> %s", file.name, converted.name)
    return converted
