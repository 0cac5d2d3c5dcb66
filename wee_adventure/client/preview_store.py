"""
Local preview handles for photos that have not been uploaded yet.

Each preview is a temporary file exposed as a ``file://`` URI, so a UI can
render the processed bytes immediately. Handles are owned by the
ProcessedPhoto that holds them and must be revoked when the record is
discarded; ``active_count`` makes leaks observable.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import unquote, urlparse

from wee_adventure.models.schemas import PhotoFile
from wee_adventure.utils.errors import PreviewError

logger = logging.getLogger(__name__)

PLACEHOLDER_PREVIEW = "/placeholder.svg"
PREVIEW_SCHEME = "file"


class PreviewStore:
    """Creates and revokes local preview files."""

    def __init__(self, directory: Optional[str] = None):
        self.directory = directory
        self._handles: Dict[str, Path] = {}

    @property
    def active_count(self) -> int:
        """Number of previews created and not yet revoked."""
        return len(self._handles)

    def create(self, file: PhotoFile) -> str:
        """
        Write the file's bytes to a temporary file and return its URI.

        Raises:
            PreviewError: If the preview file cannot be written
        """
        suffix = file.extension or ".img"
        try:
            fd, path = tempfile.mkstemp(prefix="preview-", suffix=suffix, dir=self.directory)
            with os.fdopen(fd, "wb") as handle:
                handle.write(file.content)
        except OSError as e:
            raise PreviewError(f"Failed to create preview for {file.name}: {e}") from e

        uri = Path(path).resolve().as_uri()
        self._handles[uri] = Path(path)
        return uri

    def is_active(self, uri: str) -> bool:
        return uri in self._handles

    def revoke(self, uri: str) -> bool:
        """
        Release a preview handle. Placeholders and unknown URIs are ignored.

        Returns:
            True if a handle was released
        """
        if urlparse(uri).scheme != PREVIEW_SCHEME:
            return False
        path = self._handles.pop(uri, None)
        if path is None:
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove preview file %s: %s", path, e)
        return True

    def revoke_all(self) -> int:
        """Release every outstanding handle. Returns how many were released."""
        return sum(1 for uri in list(self._handles) if self.revoke(uri))

    @staticmethod
    def read(uri: str) -> bytes:
        """Read the bytes behind a preview URI."""
        return Path(unquote(urlparse(uri).path)).read_bytes()
