"""
Tests for the photo API routes and app-level handlers.

Storage is swapped for an in-memory backend through dependency_overrides.
"""

import re
from io import BytesIO
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from wee_adventure.api.main import app
from wee_adventure.services.storage_service import get_storage_service
from wee_adventure.utils.errors import PermissionDeniedError, StorageError

KEY_RE = re.compile(r"^journal/\d{4}-\d{2}-\d{2}/abc123_IMG_0001_compressed\.jpg$")


def _jpeg_bytes():
    buf = BytesIO()
    Image.new("RGB", (32, 32), color=(10, 20, 30)).save(buf, format="JPEG")
    return buf.getvalue()


def _upload(client, content=None, filename="IMG_0001_compressed.jpg", content_type="image/jpeg", data=None):
    if data is None:
        data = {"originalName": "IMG_0001.HEIC", "photoId": "abc123"}
    return client.post(
        "/api/photos/upload",
        files={"file": (filename, content if content is not None else _jpeg_bytes(), content_type)},
        data=data,
    )


@pytest.fixture
def use_storage():
    def _use(service):
        app.dependency_overrides[get_storage_service] = lambda: service
        return service
    yield _use
    app.dependency_overrides.pop(get_storage_service, None)


@pytest.fixture
def client(storage, use_storage):
    use_storage(storage)
    return TestClient(app)


@pytest.fixture
def unconfigured_client(unconfigured_storage, use_storage):
    use_storage(unconfigured_storage)
    return TestClient(app)


# ============================================================================
# POST /api/photos/upload
# ============================================================================


class TestUploadPhoto:

    def test_upload_stores_photo(self, client, memory_backend):
        response = _upload(client)

        assert response.status_code == 200
        body = response.json()
        assert body["id"] == "abc123"
        assert KEY_RE.match(body["fileName"])
        assert body["url"].startswith("https://storage.test/bucket/journal/")
        assert "message" not in body
        assert list(memory_backend.objects) == [body["fileName"]]

    def test_missing_file(self, client):
        response = client.post("/api/photos/upload", data={"originalName": "a.jpg", "photoId": "abc"})
        assert response.status_code == 400
        assert response.json() == {"error": "No photo file provided"}

    def test_missing_fields(self, client):
        response = _upload(client, data={"originalName": "IMG_0001.jpg"})
        assert response.status_code == 400
        assert response.json() == {"error": "Missing required fields: originalName, photoId"}

    def test_unsafe_photo_id_rejected(self, client, memory_backend):
        response = _upload(client, data={"originalName": "IMG_0001.jpg", "photoId": "abc 123"})
        assert response.status_code == 400
        assert response.json()["error"].startswith("Invalid photoId")
        assert memory_backend.objects == {}

    def test_similar_ids_stored_separately(self, client, memory_backend):
        _upload(client, content=b"first" + _jpeg_bytes(), data={"originalName": "IMG_0001.jpg", "photoId": "abc-123"})
        _upload(client, content=b"second" + _jpeg_bytes(), data={"originalName": "IMG_0001.jpg", "photoId": "abc123"})
        assert len(memory_backend.objects) == 2

    def test_too_large(self, client, storage):
        storage.config.max_upload_bytes = 1024
        response = _upload(client, content=b"\xff" * 2048)
        assert response.status_code == 400
        assert "File size too large" in response.json()["error"]

    def test_unsupported_type(self, client):
        response = _upload(client, content=b"MZ", filename="tool.exe", content_type="application/x-msdownload")
        assert response.status_code == 400
        assert response.json()["error"].startswith("Unsupported file type")

    def test_unconfigured_storage_returns_placeholder(self, unconfigured_client):
        response = _upload(unconfigured_client)
        assert response.status_code == 200
        body = response.json()
        assert body["url"] == "/api/photos/placeholder/abc123"
        assert body["id"] == "abc123"
        assert "storage not configured" in body["message"]

    def test_backend_failure_returns_500(self, client, storage):
        with patch.object(storage, "upload_photo", new_callable=AsyncMock) as mock_upload:
            mock_upload.side_effect = StorageError("Upload failed: boom")
            response = _upload(client)
        assert response.status_code == 500
        assert response.json() == {"error": "Failed to upload photo"}


# ============================================================================
# Placeholder / status / health
# ============================================================================


class TestPlaceholderAndStatus:

    def test_placeholder_svg(self, client):
        response = client.get("/api/photos/placeholder/abc123")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("image/svg+xml")
        assert "abc123" in response.text

    def test_placeholder_escapes_id(self, client):
        response = client.get("/api/photos/placeholder/<script>")
        assert "<script>" not in response.text
        assert "&lt;script&gt;" in response.text

    def test_status_configured(self, client):
        body = client.get("/api/photos/status").json()
        assert body["configured"] is True
        assert body["connected"] is True
        assert body["bucket"] == "wee-adventure-photos"
        assert body["max_upload_mb"] == 10

    def test_status_unconfigured(self, unconfigured_client):
        body = unconfigured_client.get("/api/photos/status").json()
        assert body["configured"] is False
        assert body["connected"] is False
        assert "STORAGE_BUCKET" in body["message"]

    def test_health_healthy(self, client):
        body = client.get("/api/health").json()
        assert body["status"] == "healthy"
        assert body["storage"] is True
        assert body["timestamp"]

    def test_health_partial_when_unreachable(self, client, memory_backend):
        memory_backend.reachable = False
        body = client.get("/api/health").json()
        assert body["status"] == "partial"
        assert body["storage"] is False

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert "Wee Adventure Photo API" in response.text


# ============================================================================
# GET /api/photos, GET /api/photos/{key}/url, DELETE /api/photos/{id}
# ============================================================================


class TestListAndDelete:

    def test_list_newest_first(self, client):
        _upload(client, data={"originalName": "a.jpg", "photoId": "first"})
        _upload(client, data={"originalName": "b.jpg", "photoId": "second"})

        body = client.get("/api/photos").json()

        assert body["total"] == 2
        assert [p["id"] for p in body["photos"]] == ["second", "first"]
        assert body["photos"][0]["fileName"].startswith("journal/")
        assert body["photos"][0]["lastModified"]

    def test_list_limit(self, client):
        for photo_id in ("p1", "p2", "p3"):
            _upload(client, data={"originalName": "a.jpg", "photoId": photo_id})
        body = client.get("/api/photos?limit=2").json()
        assert len(body["photos"]) == 2
        assert body["total"] == 3

    def test_list_unconfigured_is_empty(self, unconfigured_client):
        assert unconfigured_client.get("/api/photos").json() == {"photos": [], "total": 0}

    def test_photo_url(self, client):
        key = _upload(client).json()["fileName"]
        response = client.get(f"/api/photos/{key}/url?expiry=3600")
        assert response.status_code == 200
        body = response.json()
        assert body["fileName"] == key
        assert body["expiry"] == 3600
        assert body["url"].endswith("X-Amz-Expires=3600")

    def test_photo_url_rejects_short_expiry(self, client):
        response = client.get("/api/photos/journal/a.jpg/url?expiry=5")
        assert response.status_code == 422
        assert response.json()["error"] == "Invalid request"

    def test_delete(self, client, memory_backend):
        key = _upload(client).json()["fileName"]
        response = client.delete("/api/photos/abc123")
        assert response.status_code == 200
        assert response.json() == {"message": "Photo deleted successfully", "deletedKeys": [key]}
        assert memory_backend.objects == {}

    def test_delete_not_found(self, client):
        response = client.delete("/api/photos/missing")
        assert response.status_code == 404
        assert response.json() == {"error": "Photo not found"}

    def test_delete_by_folder_name_is_not_found(self, client, memory_backend):
        _upload(client)
        response = client.delete("/api/photos/journal")
        assert response.status_code == 404
        assert len(memory_backend.objects) == 1

    def test_delete_unconfigured(self, unconfigured_client):
        assert unconfigured_client.delete("/api/photos/abc123").status_code == 503

    def test_delete_backend_failure(self, client, memory_backend):
        _upload(client)
        memory_backend.fail_deletes = True
        response = client.delete("/api/photos/abc123")
        assert response.status_code == 500
        assert response.json() == {"error": "Failed to delete photo"}


class TestPermissionDenied:

    def test_upload_forbidden(self, client, storage):
        with patch.object(storage, "upload_photo", new_callable=AsyncMock) as mock_upload:
            mock_upload.side_effect = PermissionDeniedError("Upload failed: Access Denied")
            response = _upload(client)
        assert response.status_code == 403
        assert response.json() == {"error": "Photo storage denied access"}

    def test_delete_forbidden(self, client, storage):
        with patch.object(storage, "delete_photo", new_callable=AsyncMock) as mock_delete:
            mock_delete.side_effect = PermissionDeniedError("List failed: Access Denied")
            response = client.delete("/api/photos/abc123")
        assert response.status_code == 403
