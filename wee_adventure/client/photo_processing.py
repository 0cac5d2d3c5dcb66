"""
Photo intake pipeline.

Turns a user-selected file into a ProcessedPhoto: HEIC conversion, then
compression, then a local preview. Each stage is attempted once. A failing
stage adds an advisory warning and hands the previous bytes to the next stage,
so every structurally valid input yields an uploadable record.
"""

import asyncio
import logging
import uuid
from typing import Awaitable, Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from wee_adventure.client.heic_converter import convert_heic_to_jpeg
from wee_adventure.client.image_compression import CompressionOptions, compress_image
from wee_adventure.client.preview_store import PLACEHOLDER_PREVIEW, PreviewStore
from wee_adventure.models.schemas import PhotoFile, ProcessedPhoto
from wee_adventure.services.photo_validation import is_heic_file
from wee_adventure.utils.errors import (
    CompressionError,
    ConversionError,
    PreviewError,
    ValidationError,
)

logger = logging.getLogger(__name__)

MAX_PHOTOS_PER_ENTRY = 8

HEIC_FAILED_WARNING = "HEIC conversion failed - uploading original file"
COMPRESSION_FAILED_WARNING = "Compression failed - using original size"
PREVIEW_FAILED_WARNING = "Preview generation failed"

# Default store for callers that don't manage their own
default_preview_store = PreviewStore()


class StageResult(BaseModel):
    """Best-known file so far plus the warnings collected on the way."""

    model_config = ConfigDict(frozen=True)

    value: PhotoFile
    warnings: List[str] = Field(default_factory=list)

    def warn(self, message: str) -> "StageResult":
        return StageResult(value=self.value, warnings=[*self.warnings, message])

    def advance(self, value: PhotoFile) -> "StageResult":
        return StageResult(value=value, warnings=self.warnings)

    @property
    def error(self) -> Optional[str]:
        return "; ".join(self.warnings) if self.warnings else None


async def _attempt(
    result: StageResult,
    stage: Callable[[PhotoFile], Awaitable[PhotoFile]],
    warning: str,
) -> StageResult:
    """Run one stage on the current file. On failure keep the current file and warn."""
    try:
        return result.advance(await stage(result.value))
    except (ConversionError, CompressionError) as e:
        logger.warning("%s for %s: %s", warning, result.value.name, e)
    except Exception:
        logger.error("Unexpected error processing %s", result.value.name, exc_info=True)
    return result.warn(warning)


async def process_photo(
    file: PhotoFile,
    previews: Optional[PreviewStore] = None,
    compression_options: Optional[CompressionOptions] = None,
) -> ProcessedPhoto:
    """
    Process a single photo: convert HEIC if needed, compress, and create a preview.

    Never raises for a structurally valid file. Degraded stages are reported in
    ``ProcessedPhoto.error`` as semicolon-joined warnings.

    Args:
        file: File that already passed the validation gate
        previews: Store that owns the preview handle (default: module store)
        compression_options: Overrides for the compression targets

    Returns:
        ProcessedPhoto whose ``file`` is the best bytes produced (original as fallback)
    """
    previews = previews or default_preview_store
    photo_id = str(uuid.uuid4())
    result = StageResult(value=file)

    if is_heic_file(file):
        logger.info("Attempting HEIC conversion for: %s", file.name)
        result = await _attempt(result, convert_heic_to_jpeg, HEIC_FAILED_WARNING)

    logger.info("Attempting compression for: %s", result.value.name)
    result = await _attempt(
        result,
        lambda current: compress_image(current, compression_options),
        COMPRESSION_FAILED_WARNING,
    )

    try:
        preview = previews.create(result.value)
    except PreviewError as e:
        logger.warning("Failed to create preview for %s, using placeholder: %s", result.value.name, e)
        preview = PLACEHOLDER_PREVIEW
        result = result.warn(PREVIEW_FAILED_WARNING)

    logger.info(
        "Photo processing completed: %s (%.2fMB) -> %s (%.2fMB)",
        file.name,
        file.size / 1024 / 1024,
        result.value.name,
        result.value.size / 1024 / 1024,
    )

    return ProcessedPhoto(
        id=photo_id,
        original_file=file,
        file=result.value,
        preview=preview,
        is_processing=False,
        upload_progress=0,
        error=result.error,
    )


async def process_photos(
    files: List[PhotoFile],
    previews: Optional[PreviewStore] = None,
    compression_options: Optional[CompressionOptions] = None,
) -> List[ProcessedPhoto]:
    """
    Process several photos concurrently, one independent task per photo.

    Results keep the input order.

    Raises:
        ValidationError: If more than MAX_PHOTOS_PER_ENTRY files are given
    """
    if len(files) > MAX_PHOTOS_PER_ENTRY:
        raise ValidationError(f"A journal entry can have at most {MAX_PHOTOS_PER_ENTRY} photos")
    return list(
        await asyncio.gather(*(process_photo(f, previews, compression_options) for f in files))
    )


def cleanup_previews(photos: List[ProcessedPhoto], previews: Optional[PreviewStore] = None) -> int:
    """Revoke the preview handles held by photos. Returns how many were released."""
    previews = previews or default_preview_store
    return sum(1 for photo in photos if previews.revoke(photo.preview))
