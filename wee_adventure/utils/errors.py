"""
Error taxonomy for the photo pipeline.

Client-side processing errors (conversion, compression, preview) are recovered
locally and only surface as advisory text. Transport and storage errors reach
the caller so the user can retry.
"""

from typing import Optional


class PhotoPipelineError(Exception):
    """Base class for every photo pipeline failure."""


class ValidationError(PhotoPipelineError, ValueError):
    """Raised when a file is rejected before processing (size or type)."""


# --- Processing (recoverable) ---


class ConversionError(PhotoPipelineError):
    """Raised when HEIC/HEIF to JPEG conversion fails."""


class UnsupportedFormatError(ConversionError):
    """Raised when the runtime has no HEIF decoder, so conversion is never attempted."""


class CompressionError(PhotoPipelineError):
    """Raised when an image cannot be resized or re-encoded."""


class PreviewError(PhotoPipelineError):
    """Raised when a local preview handle cannot be created."""


# --- Transport (surfaced, user retries) ---


class UploadError(PhotoPipelineError):
    """Raised when the upload endpoint answers with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None, status_text: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.status_text = status_text


class NetworkError(PhotoPipelineError):
    """Raised when the request never completed (connection refused/reset, timeout)."""


class InvalidResponseError(PhotoPipelineError):
    """Raised when a successful upload response has no parseable ``url``."""


# --- Storage backend (surfaced) ---


class StorageError(PhotoPipelineError):
    """Raised when the storage backend rejects or fails an operation."""


class NotConfiguredError(StorageError):
    """Raised when no storage backend is configured. Fails fast, never retried."""


class NotFoundError(StorageError):
    """Raised when the requested bucket or object does not exist."""


class PermissionDeniedError(StorageError):
    """Raised when the backend credentials are not allowed to perform the operation."""
