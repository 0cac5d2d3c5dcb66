#!/usr/bin/env python3
"""
Upload local photos to a journal entry through the photo API.

For each file given on the command line:
  1. Validates size and type (rejected files are reported and skipped)
  2. Converts HEIC to JPEG, compresses, and creates a local preview
  3. Uploads the processed bytes to POST /api/photos/upload

At most 8 photos can be attached to one entry.

Usage:
    python scripts/upload_photos.py IMG_0001.HEIC IMG_0002.jpg --api-url http://localhost:8000
"""

import argparse
import asyncio
import mimetypes
import os
import sys
from pathlib import Path
from typing import Optional

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

from wee_adventure.client.image_compression import CompressionOptions
from wee_adventure.client.photo_processing import (
    MAX_PHOTOS_PER_ENTRY,
    cleanup_previews,
    process_photos,
)
from wee_adventure.client.photo_upload import PhotoUploader
from wee_adventure.client.preview_store import PreviewStore
from wee_adventure.models.schemas import PhotoFile
from wee_adventure.services.photo_validation import DEFAULT_MAX_FILE_SIZE_BYTES, validate_or_raise
from wee_adventure.utils.errors import PhotoPipelineError, ValidationError


def load_photo(path: Path) -> PhotoFile:
    content_type, _ = mimetypes.guess_type(path.name)
    if content_type is None and path.suffix.lower() in {".heic", ".heif"}:
        content_type = "image/heic"
    return PhotoFile(
        name=path.name,
        content=path.read_bytes(),
        content_type=content_type or "",
        last_modified=path.stat().st_mtime,
    )


def select_photos(paths, max_size_bytes: int):
    """Load and validate files. Returns the accepted PhotoFiles."""
    accepted = []
    for path in paths:
        if not path.is_file():
            print(f"  SKIP {path}: not a file")
            continue
        photo = load_photo(path)
        try:
            result = validate_or_raise(photo, max_size_bytes)
        except ValidationError as e:
            print(f"  SKIP {path.name}: {e}")
            continue
        if result.warning:
            print(f"  WARN {path.name}: {result.warning}")
        accepted.append(photo)
    return accepted


async def upload_entry(paths, uploader: PhotoUploader, previews: PreviewStore, max_size_bytes: int,
                       options: Optional[CompressionOptions] = None) -> int:
    """
    Validate, process and upload one entry's photos. Returns how many were uploaded.

    Rejected files never reach the uploader. Previews are always released.

    Raises:
        ValidationError: If no file is valid or there are too many for one entry
    """
    photos = select_photos(paths, max_size_bytes)
    if not photos:
        raise ValidationError("No valid photos to upload.")
    if len(photos) > MAX_PHOTOS_PER_ENTRY:
        raise ValidationError(f"Too many photos: {len(photos)} (max {MAX_PHOTOS_PER_ENTRY} per entry)")

    processed = await process_photos(photos, previews, options)
    uploaded = 0
    try:
        for photo in processed:
            if photo.error:
                print(f"  WARN {photo.original_file.name}: {photo.error}")
            try:
                url = await uploader.upload(photo)
            except PhotoPipelineError as e:
                print(f"  ERROR {photo.original_file.name}: {e}")
                continue
            uploaded += 1
            print(f"  OK {photo.original_file.name} -> {url}")
    finally:
        cleanup_previews(processed, previews)

    print(f"\nDone! Uploaded {uploaded} of {len(processed)} photos.")
    return uploaded


async def main():
    parser = argparse.ArgumentParser(description="Process and upload photos for a journal entry")
    parser.add_argument("files", nargs="+", type=Path, help="Photo files to upload")
    parser.add_argument("--api-url", type=str, help="Photo API base URL",
                        default=os.getenv("PHOTO_API_URL", "http://localhost:8000"))
    parser.add_argument("--max-size-mb", type=float, help="Client-side size ceiling in MB",
                        default=DEFAULT_MAX_FILE_SIZE_BYTES / (1024 * 1024))
    parser.add_argument("--max-dimension", type=int, help="Longest edge after compression", default=1920)
    parser.add_argument("--quality", type=float, help="Initial JPEG/WebP quality (0-1)", default=0.8)
    args = parser.parse_args()

    options = CompressionOptions(max_width_or_height=args.max_dimension, quality=args.quality)
    try:
        await upload_entry(
            args.files,
            PhotoUploader(args.api_url),
            PreviewStore(),
            int(args.max_size_mb * 1024 * 1024),
            options,
        )
    except ValidationError as e:
        print(e)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
