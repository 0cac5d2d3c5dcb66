"""
Pydantic models for the photo pipeline and the photo API.
"""

import time
from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field, ConfigDict


# ============================================================================
# Client-side pipeline records
# ============================================================================


class PhotoFile(BaseModel):
    """A user-selected (or pipeline-produced) file: bytes plus name and declared MIME type."""

    model_config = ConfigDict(frozen=True)

    name: str
    content: bytes
    content_type: str = ""
    declared_size: Optional[int] = Field(default=None, exclude=True)
    last_modified: float = Field(default_factory=time.time)

    @property
    def size(self) -> int:
        """Declared size when the caller supplied one, otherwise the byte length."""
        if self.declared_size is not None:
            return self.declared_size
        return len(self.content)

    @property
    def extension(self) -> str:
        """Lowercase extension including the dot, or '' when the name has none."""
        dot = self.name.rfind(".")
        if dot == -1:
            return ""
        return self.name[dot:].lower()


class PhotoValidationResult(BaseModel):
    """Outcome of the validation gate. ``warning`` is advisory only."""

    valid: bool
    error: Optional[str] = None
    warning: Optional[str] = None


class ProcessedPhoto(BaseModel):
    """One photo tracked from intake through upload."""

    model_config = ConfigDict(validate_assignment=True)

    id: str
    original_file: PhotoFile
    file: PhotoFile
    preview: str
    is_processing: bool = False
    upload_progress: int = Field(default=0, ge=0, le=100)
    remote_url: Optional[str] = None
    error: Optional[str] = None


# ============================================================================
# Storage records
# ============================================================================


class StoredPhoto(BaseModel):
    """Result of a successful put into the storage backend."""

    key: str
    url: str
    size: int
    content_type: str


class StoredObjectInfo(BaseModel):
    """Listing entry for an object in the storage backend."""

    key: str
    size: int = 0
    last_modified: Optional[datetime] = None


# ============================================================================
# API responses
# ============================================================================


class PhotoUploadResponse(BaseModel):
    """Response for POST /api/photos/upload."""

    model_config = ConfigDict(populate_by_name=True)

    url: str
    id: str
    file_name: str = Field(alias="fileName")
    message: Optional[str] = None


class PhotoListItem(BaseModel):
    """A stored photo as reported by GET /api/photos."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    file_name: str = Field(alias="fileName")
    url: str
    size: int
    last_modified: Optional[str] = Field(default=None, alias="lastModified")


class PhotoListResponse(BaseModel):
    """Response for GET /api/photos."""

    photos: List[PhotoListItem]
    total: int


class DeletePhotoResponse(BaseModel):
    """Response for DELETE /api/photos/{image_id}."""

    model_config = ConfigDict(populate_by_name=True)

    message: str
    deleted_keys: List[str] = Field(alias="deletedKeys")


class PhotoUrlResponse(BaseModel):
    """Response for GET /api/photos/{key}/url."""

    model_config = ConfigDict(populate_by_name=True)

    url: str
    file_name: str = Field(alias="fileName")
    expiry: int


class StorageStatusResponse(BaseModel):
    """Response for GET /api/photos/status."""

    configured: bool
    connected: bool
    message: str
    bucket: Optional[str] = None
    endpoint: Optional[str] = None
    max_upload_mb: float


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    status: str
    storage: bool
    timestamp: str
