"""
Storage service for photo objects.

Exposes one contract (ensure container, put, get URL, delete, list) over a
pluggable backend. The default backend talks to any S3-compatible object
store (MinIO, Cloudflare R2, AWS S3) through boto3. When the configuration is
incomplete an unconfigured backend is installed instead, and every operation
fails fast with NotConfiguredError so callers can fall back to placeholders.

Keys are date-partitioned and embed the client-supplied photo id:

    {folder}/{YYYY-MM-DD}/{photoId}_{sanitizedName}.{ext}

Photo ids are restricted to letters, digits and hyphens and embedded as-is,
so two different ids never share a key.

Deletion by photo id scans the keys under the folder prefix (there is no
id -> key index), which is O(n) in the number of stored objects. Only the
last key segment is matched, so folder or date text never selects photos.
"""

import asyncio
import logging
import os
import re
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Mapping, Optional
from urllib.parse import quote

from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel

from wee_adventure.models.schemas import StorageStatusResponse, StoredObjectInfo, StoredPhoto
from wee_adventure.services.photo_validation import DEFAULT_MAX_FILE_SIZE_BYTES
from wee_adventure.utils.datetime_utils import utc_date_partition
from wee_adventure.utils.errors import (
    NotConfiguredError,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    ValidationError,
)
from wee_adventure.utils.slugify import sanitize_filename, split_extension

logger = logging.getLogger(__name__)

DEFAULT_FOLDER = "journal"
DEFAULT_REGION = "us-east-1"
DEFAULT_URL_EXPIRY_SECONDS = 7 * 24 * 60 * 60  # 7 days

# botocore error codes mapped to typed errors
_NOT_FOUND_CODES = {"404", "NoSuchKey", "NoSuchBucket", "NotFound"}
_PERMISSION_CODES = {
    "403",
    "AccessDenied",
    "AllAccessDisabled",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
}
_PHOTO_ID_RE = re.compile(r"^[A-Za-z0-9-]+$")


# ============================================================================
# Configuration
# ============================================================================


class StorageConfig(BaseModel):
    """Object store settings, built once at startup and injected into StorageService."""

    endpoint_url: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    bucket: Optional[str] = None
    region: str = DEFAULT_REGION
    public_url: Optional[str] = None
    folder: str = DEFAULT_FOLDER
    max_upload_bytes: int = DEFAULT_MAX_FILE_SIZE_BYTES
    url_expiry_seconds: int = DEFAULT_URL_EXPIRY_SECONDS

    @property
    def missing_settings(self) -> List[str]:
        """Names of the environment variables whose values are missing."""
        required = {
            "STORAGE_ENDPOINT_URL": self.endpoint_url,
            "STORAGE_ACCESS_KEY_ID": self.access_key_id,
            "STORAGE_SECRET_ACCESS_KEY": self.secret_access_key,
            "STORAGE_BUCKET": self.bucket,
        }
        return [name for name, value in required.items() if not value]

    @property
    def is_configured(self) -> bool:
        return not self.missing_settings

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "StorageConfig":
        """
        Read storage configuration from the environment.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            StorageConfig; check ``is_configured`` before relying on it
        """
        env = os.environ if environ is None else environ
        max_upload_mb = float(env.get("PHOTO_MAX_UPLOAD_MB", DEFAULT_MAX_FILE_SIZE_BYTES / (1024 * 1024)))
        return cls(
            endpoint_url=env.get("STORAGE_ENDPOINT_URL") or None,
            access_key_id=env.get("STORAGE_ACCESS_KEY_ID") or None,
            secret_access_key=env.get("STORAGE_SECRET_ACCESS_KEY") or None,
            bucket=env.get("STORAGE_BUCKET") or None,
            region=env.get("STORAGE_REGION") or DEFAULT_REGION,
            public_url=env.get("STORAGE_PUBLIC_URL") or None,
            folder=env.get("STORAGE_FOLDER") or DEFAULT_FOLDER,
            max_upload_bytes=int(max_upload_mb * 1024 * 1024),
            url_expiry_seconds=int(env.get("PHOTO_URL_EXPIRY_SECONDS", DEFAULT_URL_EXPIRY_SECONDS)),
        )


# ============================================================================
# Key generation
# ============================================================================


def generate_storage_key(
    photo_id: str,
    original_name: str,
    folder: str = DEFAULT_FOLDER,
    now: Optional[datetime] = None,
) -> str:
    """
    Build the object key for an upload.

    Deterministic: the same (photo_id, original_name) on the same UTC date
    always yields the same key, and different photo ids never collide.

    Args:
        photo_id: Client-generated photo id
        original_name: Filename of the uploaded bytes (e.g. "IMG_0001_compressed.jpg")
        folder: Logical namespace (e.g. "journal")
        now: Upload time, defaults to the current UTC time

    Returns:
        Key like "journal/2025-08-03/abc123_IMG_0001_compressed.jpg"
    """
    validate_photo_id(photo_id)
    stem, ext = split_extension(original_name)
    safe_stem = sanitize_filename(stem) or "photo"
    return f"{folder}/{utc_date_partition(now)}/{photo_id}_{safe_stem}.{ext}"


def validate_photo_id(photo_id: str) -> str:
    """
    Check a client-supplied photo id is usable verbatim inside a key.

    Ids are embedded unchanged, so anything outside letters, digits and
    hyphens is rejected rather than rewritten.

    Raises:
        ValidationError: If the id is empty or contains other characters
    """
    if not photo_id or not _PHOTO_ID_RE.match(photo_id):
        raise ValidationError(
            "Invalid photoId: use only letters, digits and hyphens"
        )
    return photo_id


def photo_id_from_key(key: str) -> str:
    """Recover the photo id segment from a generated key (text before the first underscore)."""
    basename = key.rsplit("/", 1)[-1]
    return basename.split("_", 1)[0]


# ============================================================================
# Backends
# ============================================================================


class StorageBackend(ABC):
    """Blocking object-store operations. StorageService runs them off the event loop."""

    @abstractmethod
    def bucket_exists(self) -> bool:
        """Whether the configured bucket exists."""

    @abstractmethod
    def create_bucket(self) -> None:
        """Create the configured bucket."""

    @abstractmethod
    def put_object(self, key: str, data: bytes, content_type: str) -> None:
        """Store bytes under key."""

    @abstractmethod
    def presigned_url(self, key: str, expiry_seconds: int) -> str:
        """Time-limited GET URL for key."""

    @abstractmethod
    def delete_object(self, key: str) -> None:
        """Remove key."""

    @abstractmethod
    def list_objects(self, prefix: str) -> List[StoredObjectInfo]:
        """All objects under prefix."""

    @abstractmethod
    def check_connection(self) -> bool:
        """Whether the backend is reachable with the configured credentials."""


class UnconfiguredStorageBackend(StorageBackend):
    """Backend used when configuration is incomplete. Every call fails immediately."""

    def __init__(self, missing_settings: List[str]):
        self.missing_settings = missing_settings

    def _fail(self):
        raise NotConfiguredError(
            "Photo storage not configured. Missing: " + ", ".join(self.missing_settings)
        )

    def bucket_exists(self) -> bool:
        self._fail()

    def create_bucket(self) -> None:
        self._fail()

    def put_object(self, key: str, data: bytes, content_type: str) -> None:
        self._fail()

    def presigned_url(self, key: str, expiry_seconds: int) -> str:
        self._fail()

    def delete_object(self, key: str) -> None:
        self._fail()

    def list_objects(self, prefix: str) -> List[StoredObjectInfo]:
        self._fail()

    def check_connection(self) -> bool:
        return False


def _translate_error(exc: Exception, action: str) -> StorageError:
    """Map a botocore exception to a typed StorageError."""
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = str(error.get("Code", ""))
        message = error.get("Message") or code or str(exc)
        if code in _NOT_FOUND_CODES:
            return NotFoundError(f"{action} failed: {message}")
        if code in _PERMISSION_CODES:
            return PermissionDeniedError(f"{action} failed: {message}")
        return StorageError(f"{action} failed: {message}")
    return StorageError(f"{action} failed: storage backend unreachable ({exc})")


class S3StorageBackend(StorageBackend):
    """S3-compatible backend (MinIO, R2, AWS) using a lazily created boto3 client."""

    def __init__(self, config: StorageConfig):
        self.config = config
        self._client = None

    def _get_client(self):
        """Get or create the boto3 S3 client on first use, so startup never opens a connection."""
        if self._client is None:
            import boto3
            from botocore.config import Config

            self._client = boto3.client(
                "s3",
                endpoint_url=self.config.endpoint_url,
                aws_access_key_id=self.config.access_key_id,
                aws_secret_access_key=self.config.secret_access_key,
                region_name=self.config.region,
                # Path-style addressing is required by MinIO
                config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
            )
        return self._client

    def bucket_exists(self) -> bool:
        try:
            self._get_client().head_bucket(Bucket=self.config.bucket)
            return True
        except (ClientError, BotoCoreError) as e:
            translated = _translate_error(e, "Bucket lookup")
            if isinstance(translated, NotFoundError):
                return False
            raise translated from e

    def create_bucket(self) -> None:
        kwargs: Dict = {"Bucket": self.config.bucket}
        if self.config.region != DEFAULT_REGION:
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self.config.region}
        try:
            self._get_client().create_bucket(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, "Bucket creation") from e

    def put_object(self, key: str, data: bytes, content_type: str) -> None:
        try:
            self._get_client().put_object(
                Bucket=self.config.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                ContentLength=len(data),
            )
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, "Upload") from e

    def presigned_url(self, key: str, expiry_seconds: int) -> str:
        try:
            return self._get_client().generate_presigned_url(
                "get_object",
                Params={"Bucket": self.config.bucket, "Key": key},
                ExpiresIn=expiry_seconds,
            )
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, "URL generation") from e

    def delete_object(self, key: str) -> None:
        try:
            self._get_client().delete_object(Bucket=self.config.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, "Delete") from e

    def list_objects(self, prefix: str) -> List[StoredObjectInfo]:
        objects = []
        try:
            paginator = self._get_client().get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.config.bucket, Prefix=prefix):
                for item in page.get("Contents", []):
                    objects.append(
                        StoredObjectInfo(
                            key=item["Key"],
                            size=item.get("Size", 0),
                            last_modified=item.get("LastModified"),
                        )
                    )
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, "List") from e
        return objects

    def check_connection(self) -> bool:
        try:
            self._get_client().head_bucket(Bucket=self.config.bucket)
            return True
        except (ClientError, BotoCoreError) as e:
            logger.warning("Storage connection check failed: %s", e)
            return False


# ============================================================================
# Service
# ============================================================================


class StorageService:
    """Uniform photo storage contract over a StorageBackend."""

    def __init__(self, config: StorageConfig, backend: Optional[StorageBackend] = None):
        self.config = config
        if backend is None:
            if config.is_configured:
                backend = S3StorageBackend(config)
            else:
                backend = UnconfiguredStorageBackend(config.missing_settings)
        self.backend = backend

    @property
    def is_configured(self) -> bool:
        return not isinstance(self.backend, UnconfiguredStorageBackend)

    async def ensure_container(self) -> bool:
        """
        Create the bucket if it does not exist. Idempotent.

        Returns:
            True when the bucket exists afterwards, False if the backend failed

        Raises:
            NotConfiguredError: If storage is not configured
        """
        try:
            exists = await asyncio.to_thread(self.backend.bucket_exists)
            if not exists:
                await asyncio.to_thread(self.backend.create_bucket)
                logger.info("Created storage bucket: %s", self.config.bucket)
            return True
        except NotConfiguredError:
            raise
        except StorageError as e:
            logger.error("Error ensuring bucket exists: %s", e)
            return False

    def generate_key(
        self,
        photo_id: str,
        original_name: str,
        folder: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        return generate_storage_key(photo_id, original_name, folder or self.config.folder, now)

    async def put(self, data: bytes, key: str, content_type: str) -> StoredPhoto:
        """
        Store bytes under key and return the object's URL.

        Raises:
            NotConfiguredError: If storage is not configured
            StorageError: If the backend rejects the upload
        """
        content_type = content_type or "application/octet-stream"
        await asyncio.to_thread(self.backend.put_object, key, data, content_type)
        url = await self.get_url(key)
        logger.info("Uploaded file to storage: %s (%d bytes)", key, len(data))
        return StoredPhoto(key=key, url=url, size=len(data), content_type=content_type)

    async def upload_photo(
        self,
        data: bytes,
        photo_id: str,
        original_name: str,
        content_type: str,
        folder: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> StoredPhoto:
        """Generate the key for a photo and store it."""
        key = self.generate_key(photo_id, original_name, folder, now)
        return await self.put(data, key, content_type)

    async def get_url(self, key: str, expiry_seconds: Optional[int] = None) -> str:
        """
        URL for a stored object: stable public URL if one is configured, else a presigned URL.
        """
        if self.config.public_url and self.is_configured:
            return f"{self.config.public_url.rstrip('/')}/{quote(key)}"
        expiry = expiry_seconds or self.config.url_expiry_seconds
        return await asyncio.to_thread(self.backend.presigned_url, key, expiry)

    async def delete(self, key: str) -> bool:
        """
        Delete a file by its object key. Best-effort.

        Returns:
            True if deleted successfully, False otherwise

        Raises:
            NotConfiguredError: If storage is not configured
        """
        try:
            await asyncio.to_thread(self.backend.delete_object, key)
            logger.info("Deleted file from storage: %s", key)
            return True
        except NotConfiguredError:
            raise
        except StorageError as e:
            logger.error("Failed to delete storage file %s: %s", key, e)
            return False

    async def list_objects(self, prefix: str = "") -> List[StoredObjectInfo]:
        return await asyncio.to_thread(self.backend.list_objects, prefix)

    async def list(self, prefix: str = "") -> List[str]:
        """Keys of every object under prefix."""
        return [obj.key for obj in await self.list_objects(prefix)]

    async def find_keys_for_photo(self, photo_id: str, prefix: Optional[str] = None) -> List[str]:
        """Scan keys under prefix (defaults to the configured folder) whose file name contains photo_id."""
        if not photo_id or not photo_id.strip():
            raise ValidationError("Photo id is required")
        if prefix is None:
            prefix = f"{self.config.folder}/"
        return [key for key in await self.list(prefix) if photo_id in key.rsplit("/", 1)[-1]]

    async def delete_photo(self, photo_id: str) -> List[str]:
        """
        Delete every object whose file name contains photo_id.

        Returns:
            The keys that were deleted

        Raises:
            NotFoundError: If no key contains photo_id
        """
        keys = await self.find_keys_for_photo(photo_id)
        if not keys:
            raise NotFoundError(f"No stored photo found for id {photo_id}")
        deleted = [key for key in keys if await self.delete(key)]
        if not deleted:
            raise StorageError(f"Could not delete stored photo {photo_id}")
        return deleted

    async def check_connection(self) -> bool:
        return await asyncio.to_thread(self.backend.check_connection)

    async def status(self) -> StorageStatusResponse:
        """Configuration and reachability summary for the status endpoint."""
        connected = await self.check_connection() if self.is_configured else False
        return StorageStatusResponse(
            configured=self.is_configured,
            connected=connected,
            message=self.status_message(),
            bucket=self.config.bucket,
            endpoint=self.config.endpoint_url,
            max_upload_mb=self.config.max_upload_bytes / (1024 * 1024),
        )

    def status_message(self) -> str:
        if self.is_configured:
            return f"Storage configured. Bucket: {self.config.bucket}"
        return (
            "Storage not configured - photos will use local placeholders. Missing: "
            + ", ".join(self.config.missing_settings)
        )


def log_storage_status(config: StorageConfig) -> None:
    """Log the storage configuration summary on startup. Never logs secrets."""
    logger.info("Photo storage configuration:")
    if config.is_configured:
        logger.info("  Bucket: %s", config.bucket)
        logger.info("  Endpoint: %s", config.endpoint_url)
        if config.public_url:
            logger.info("  Public URL: %s", config.public_url)
    else:
        logger.warning("  Storage not configured - photos will use local placeholders")
        for name in config.missing_settings:
            logger.warning("  Missing setting: %s", name)
    logger.info("  Max upload size: %.0fMB", config.max_upload_bytes / (1024 * 1024))


# Global storage service (constructed once at startup)
_storage_service: Optional[StorageService] = None


def init_storage_service(config: Optional[StorageConfig] = None) -> StorageService:
    """Build the global storage service from config (or the environment)."""
    global _storage_service
    _storage_service = StorageService(config or StorageConfig.from_env())
    return _storage_service


def get_storage_service() -> StorageService:
    """Get the global storage service instance, building it from the environment on first use."""
    if _storage_service is None:
        return init_storage_service()
    return _storage_service
