"""
Photo upload client.

Sends a ProcessedPhoto to ``POST /api/photos/upload`` as multipart form data
and reports upload progress as the body is handed to the connection.

Progress is monotonic and capped at 99 while bytes are in flight; 100 is
reported only once the server has answered 2xx with a usable ``url``. On any
failure progress stays at its last value.

Uploads are cancellable: cancel the task returned by ``start_upload`` (or the
task awaiting ``upload``) and httpx aborts the request and releases the
connection.
"""

import asyncio
import logging
from typing import AsyncIterator, Callable, Optional

import httpx

from wee_adventure.models.schemas import ProcessedPhoto
from wee_adventure.utils.errors import InvalidResponseError, NetworkError, UploadError

logger = logging.getLogger(__name__)

UPLOAD_PATH = "/api/photos/upload"
CHUNK_SIZE = 64 * 1024
DEFAULT_TIMEOUT = 60.0
IN_FLIGHT_PROGRESS_CAP = 99

ProgressCallback = Callable[[int], None]


class ProgressTracker:
    """Turns byte counts into monotonic whole percentages and forwards them to a callback."""

    def __init__(self, total: int, on_progress: Optional[ProgressCallback] = None):
        self.total = total
        self.on_progress = on_progress
        self.last = 0

    def report(self, percent: int) -> None:
        percent = max(0, min(100, percent))
        if percent < self.last:
            return
        self.last = percent
        if self.on_progress:
            self.on_progress(percent)

    def bytes_sent(self, sent: int) -> None:
        if self.total <= 0:
            return
        percent = int(round(sent / self.total * 100))
        self.report(min(percent, IN_FLIGHT_PROGRESS_CAP))


async def _stream_body(body: bytes, tracker: ProgressTracker) -> AsyncIterator[bytes]:
    sent = 0
    for start in range(0, len(body), CHUNK_SIZE):
        chunk = body[start:start + CHUNK_SIZE]
        yield chunk
        sent += len(chunk)
        tracker.bytes_sent(sent)


class PhotoUploader:
    """Uploads processed photos to the photo API."""

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client
        self.timeout = timeout

    def _build_request(self, client: httpx.AsyncClient, photo: ProcessedPhoto) -> httpx.Request:
        return client.build_request(
            "POST",
            f"{self.base_url}{UPLOAD_PATH}",
            data={"originalName": photo.original_file.name, "photoId": photo.id},
            files={
                "file": (
                    photo.file.name,
                    photo.file.content,
                    photo.file.content_type or "application/octet-stream",
                )
            },
        )

    async def upload(self, photo: ProcessedPhoto, on_progress: Optional[ProgressCallback] = None) -> str:
        """
        Upload a processed photo and return its remote URL.

        Also records progress and the URL on the photo itself.

        Args:
            photo: Output of the intake pipeline
            on_progress: Called with whole percentages (0-100), never decreasing

        Returns:
            The ``url`` from the server's JSON response

        Raises:
            UploadError: If the server answers with a non-2xx status
            NetworkError: If the request fails at the transport level
            InvalidResponseError: If the response body has no parseable ``url``
        """
        if self._client is not None:
            return await self._upload(self._client, photo, on_progress)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await self._upload(client, photo, on_progress)

    async def _upload(
        self,
        client: httpx.AsyncClient,
        photo: ProcessedPhoto,
        on_progress: Optional[ProgressCallback],
    ) -> str:
        def record(percent: int) -> None:
            photo.upload_progress = percent
            if on_progress:
                on_progress(percent)

        # Encode the multipart body up front so its total length is known
        prepared = self._build_request(client, photo)
        body = prepared.read()
        tracker = ProgressTracker(len(body), record)
        tracker.report(photo.upload_progress)

        headers = {
            "Content-Type": prepared.headers["Content-Type"],
            "Content-Length": str(len(body)),
        }

        try:
            response = await client.post(
                str(prepared.url),
                content=_stream_body(body, tracker),
                headers=headers,
            )
        except httpx.TransportError as e:
            logger.error("Network error during upload of %s: %s", photo.file.name, e)
            raise NetworkError(f"Network error during upload: {e}") from e

        if not response.is_success:
            detail = _error_detail(response)
            message = f"Upload failed: {response.reason_phrase or response.status_code}"
            if detail:
                message = f"{message} ({detail})"
            logger.error("Upload of %s rejected with %s", photo.file.name, response.status_code)
            raise UploadError(message, status_code=response.status_code, status_text=response.reason_phrase)

        try:
            url = response.json()["url"]
        except (ValueError, KeyError, TypeError) as e:
            raise InvalidResponseError("Invalid response format") from e
        if not isinstance(url, str) or not url:
            raise InvalidResponseError("Invalid response format")

        tracker.report(100)
        photo.remote_url = url
        logger.info("Uploaded %s -> %s", photo.file.name, url)
        return url

    def start_upload(
        self,
        photo: ProcessedPhoto,
        on_progress: Optional[ProgressCallback] = None,
    ) -> "asyncio.Task[str]":
        """Start an upload in the background. Cancel the returned task to abort it."""
        return asyncio.create_task(self.upload(photo, on_progress))


def _error_detail(response: httpx.Response) -> Optional[str]:
    """Extract the server's ``error`` text from a failed response, if any."""
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict):
        return payload.get("error") or payload.get("detail")
    return None
