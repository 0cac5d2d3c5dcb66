"""
Photo validation gate.

Checks a candidate file's declared size, MIME type and extension before it
enters the processing pipeline. Pure function over metadata: the bytes are
never decoded here.

A file passes the type check when EITHER its MIME type OR its extension is on
the allow-list, because browsers and phones report HEIC inconsistently (often
as an empty or generic type). This also admits mismatched content such as a
``.exe`` with a spoofed ``image/jpeg`` type; no magic-byte sniffing is done.
"""

import logging

from wee_adventure.models.schemas import PhotoFile, PhotoValidationResult
from wee_adventure.utils.errors import ValidationError

logger = logging.getLogger(__name__)

# Size ceilings depend on the storage backend
CDN_IMAGE_MAX_BYTES = 10 * 1024 * 1024  # 10MB, image CDN backends
OBJECT_STORE_MAX_BYTES = 50 * 1024 * 1024  # 50MB, generic object stores
DEFAULT_MAX_FILE_SIZE_BYTES = CDN_IMAGE_MAX_BYTES

ALLOWED_CONTENT_TYPES = {
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
    "image/heic",
    "image/gif",
    "image/svg+xml",
}
ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".heic", ".gif", ".svg"}

HEIC_CONTENT_TYPES = {"image/heic", "image/heif"}
HEIC_EXTENSIONS = {".heic", ".heif"}

HEIC_WARNING = "HEIC file detected. If conversion fails, consider converting to JPEG first."


def _format_mb(num_bytes: int) -> str:
    mb = num_bytes / (1024 * 1024)
    return f"{mb:g}MB"


def is_heic_file(file: PhotoFile) -> bool:
    """True when the file declares a HEIC/HEIF type or carries a HEIC/HEIF extension."""
    content_type = (file.content_type or "").lower()
    return content_type in HEIC_CONTENT_TYPES or file.extension in HEIC_EXTENSIONS


def validate_photo_file(
    file: PhotoFile,
    max_size_bytes: int = DEFAULT_MAX_FILE_SIZE_BYTES,
) -> PhotoValidationResult:
    """
    Validate a photo before processing.

    Args:
        file: Candidate file (declared size, MIME type, name)
        max_size_bytes: Ceiling for the configured storage backend. A file of
            exactly this size is accepted.

    Returns:
        PhotoValidationResult. ``warning`` is set for HEIC input, which may fail
        to convert in some environments.
    """
    if file.size > max_size_bytes:
        return PhotoValidationResult(
            valid=False,
            error=(
                f"File size too large ({_format_mb(file.size)}). "
                f"Maximum upload size is {_format_mb(max_size_bytes)}"
            ),
        )

    content_type = (file.content_type or "").lower()
    if content_type not in ALLOWED_CONTENT_TYPES and file.extension not in ALLOWED_EXTENSIONS:
        return PhotoValidationResult(
            valid=False,
            error="Unsupported file type. Please use JPEG, PNG, WebP, HEIC, GIF, or SVG images",
        )

    if is_heic_file(file):
        return PhotoValidationResult(valid=True, warning=HEIC_WARNING)

    return PhotoValidationResult(valid=True)


def validate_or_raise(
    file: PhotoFile,
    max_size_bytes: int = DEFAULT_MAX_FILE_SIZE_BYTES,
) -> PhotoValidationResult:
    """
    Same as validate_photo_file, but raises ValidationError on rejection.

    Raises:
        ValidationError: If the file fails the size or type rules
    """
    result = validate_photo_file(file, max_size_bytes)
    if not result.valid:
        logger.info("Rejected %s: %s", file.name, result.error)
        raise ValidationError(result.error)
    return result
