"""Photo route handlers (upload, placeholder, list, delete, storage status)."""

import html
import logging
from typing import Optional

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    Request,
    UploadFile,
)
from fastapi.responses import Response

from wee_adventure.api.routes import limiter
from wee_adventure.models.schemas import (
    DeletePhotoResponse,
    PhotoFile,
    PhotoListItem,
    PhotoListResponse,
    PhotoUploadResponse,
    PhotoUrlResponse,
    StorageStatusResponse,
)
from wee_adventure.services.photo_validation import validate_photo_file
from wee_adventure.services.storage_service import (
    StorageService,
    get_storage_service,
    photo_id_from_key,
    validate_photo_id,
)
from wee_adventure.utils.datetime_utils import to_iso
from wee_adventure.utils.errors import (
    NotConfiguredError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

logger = logging.getLogger(__name__)
router = APIRouter()

DEFAULT_LIST_LIMIT = 50
MAX_URL_EXPIRY_SECONDS = 7 * 24 * 60 * 60

PLACEHOLDER_SVG = """<svg width="400" height="300" xmlns="http://www.w3.org/2000/svg">
  <rect width="100%" height="100%" fill="#f3f4f6"/>
  <text x="50%" y="50%" dominant-baseline="middle" text-anchor="middle"
        font-family="Arial" font-size="14" fill="#6b7280">
    Photo: {photo_id} (Storage Not Configured)
  </text>
</svg>
"""


def placeholder_url(photo_id: str) -> str:
    return f"/api/photos/placeholder/{photo_id}"


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------


@router.post(
    "/api/photos/upload",
    response_model=PhotoUploadResponse,
    response_model_exclude_none=True,
)
@limiter.limit("20/minute")
async def upload_photo(
    request: Request,
    file: Optional[UploadFile] = File(None),
    originalName: Optional[str] = Form(None),
    photoId: Optional[str] = Form(None),
    storage: StorageService = Depends(get_storage_service),
):
    """
    Upload a processed photo to storage.

    The bytes are validated again server-side (size ceiling, type allow-list).
    When storage is not configured the photo is not stored and a placeholder
    URL is returned, so entry creation keeps working.
    """
    if file is None:
        raise HTTPException(status_code=400, detail="No photo file provided")
    if not originalName or not photoId:
        raise HTTPException(status_code=400, detail="Missing required fields: originalName, photoId")
    try:
        validate_photo_id(photoId)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    content = await file.read()
    candidate = PhotoFile(
        name=file.filename or originalName,
        content=content,
        content_type=file.content_type or "",
    )
    validation = validate_photo_file(candidate, storage.config.max_upload_bytes)
    if not validation.valid:
        raise HTTPException(status_code=400, detail=validation.error)
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    try:
        stored = await storage.upload_photo(
            content,
            photo_id=photoId,
            original_name=candidate.name,
            content_type=candidate.content_type,
        )
    except NotConfiguredError as e:
        logger.warning("Storage not configured, using placeholder for photo %s: %s", photoId, e)
        return PhotoUploadResponse(
            url=placeholder_url(photoId),
            id=photoId,
            file_name=candidate.name,
            message="Photo not stored (storage not configured); using placeholder",
        )
    except PermissionDeniedError as e:
        logger.error("Storage refused photo %s: %s", photoId, e)
        raise HTTPException(status_code=403, detail="Photo storage denied access")
    except Exception as e:
        logger.error(f"Error uploading photo {photoId}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to upload photo")

    logger.info("Photo %s (%s) uploaded as %s", photoId, originalName, stored.key)
    return PhotoUploadResponse(url=stored.url, id=photoId, file_name=stored.key)


# ---------------------------------------------------------------------------
# Placeholder + status (declared before the key routes so they win)
# ---------------------------------------------------------------------------


@router.get("/api/photos/placeholder/{photo_id}")
async def get_placeholder_photo(photo_id: str):
    """Generated SVG shown when no real photo exists."""
    svg = PLACEHOLDER_SVG.format(photo_id=html.escape(photo_id))
    return Response(content=svg, media_type="image/svg+xml")


@router.get("/api/photos/status", response_model=StorageStatusResponse)
async def get_storage_status(storage: StorageService = Depends(get_storage_service)):
    """Report whether the storage backend is configured and reachable."""
    return await storage.status()


# ---------------------------------------------------------------------------
# List / URL / delete
# ---------------------------------------------------------------------------


@router.get("/api/photos", response_model=PhotoListResponse)
async def list_photos(
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=1000),
    storage: StorageService = Depends(get_storage_service),
):
    """List recently stored photos, newest first."""
    if not storage.is_configured:
        return PhotoListResponse(photos=[], total=0)

    try:
        objects = await storage.list_objects(f"{storage.config.folder}/")
        objects.sort(key=lambda obj: obj.last_modified.timestamp() if obj.last_modified else 0, reverse=True)
        photos = [
            PhotoListItem(
                id=photo_id_from_key(obj.key),
                file_name=obj.key,
                url=await storage.get_url(obj.key),
                size=obj.size,
                last_modified=to_iso(obj.last_modified),
            )
            for obj in objects[:limit]
        ]
    except PermissionDeniedError:
        raise HTTPException(status_code=403, detail="Photo storage denied access")
    except Exception as e:
        logger.error(f"Error listing photos: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to list photos")

    return PhotoListResponse(photos=photos, total=len(objects))


@router.get("/api/photos/{key:path}/url", response_model=PhotoUrlResponse)
async def get_photo_url(
    key: str,
    expiry: Optional[int] = Query(None, ge=60, le=MAX_URL_EXPIRY_SECONDS),
    storage: StorageService = Depends(get_storage_service),
):
    """Fresh URL (public or presigned) for a stored key."""
    expiry = expiry or storage.config.url_expiry_seconds
    try:
        url = await storage.get_url(key, expiry)
    except NotConfiguredError:
        raise HTTPException(status_code=503, detail="Photo storage is not configured")
    except PermissionDeniedError:
        raise HTTPException(status_code=403, detail="Photo storage denied access")
    except Exception as e:
        logger.error(f"Error generating URL for {key}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to get photo URL")
    return PhotoUrlResponse(url=url, file_name=key, expiry=expiry)


@router.delete("/api/photos/{image_id}", response_model=DeletePhotoResponse)
async def delete_photo(
    image_id: str,
    storage: StorageService = Depends(get_storage_service),
):
    """Delete the stored object(s) whose key contains image_id."""
    try:
        deleted = await storage.delete_photo(image_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Photo not found")
    except NotConfiguredError:
        raise HTTPException(status_code=503, detail="Photo storage is not configured")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PermissionDeniedError:
        raise HTTPException(status_code=403, detail="Photo storage denied access")
    except Exception as e:
        logger.error(f"Error deleting photo {image_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to delete photo")

    return DeletePhotoResponse(message="Photo deleted successfully", deleted_keys=deleted)
