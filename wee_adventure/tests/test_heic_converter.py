"""
Tests for heic_converter - capability probe, decode failures, real conversion.
"""

import sys
from io import BytesIO
from unittest.mock import patch

import pillow_heif
import pytest
from PIL import Image

from wee_adventure.client import heic_converter
from wee_adventure.client.heic_converter import convert_heic_to_jpeg, is_heic_supported
from wee_adventure.models.schemas import PhotoFile
from wee_adventure.utils.errors import ConversionError, UnsupportedFormatError


def _make_heic(width=64, height=48):
    """Encode a small HEIC image, or skip when this runtime cannot encode HEIF."""
    if not is_heic_supported():
        pytest.skip("HEIF support not available")
    img = Image.new("RGB", (width, height), color=(0, 128, 255))
    buf = BytesIO()
    try:
        img.save(buf, format="HEIF")
    except Exception as e:
        pytest.skip(f"HEIF encoding not available: {e}")
    return buf.getvalue()


@pytest.fixture(autouse=True)
def reset_probe():
    heic_converter._heic_supported = None
    yield
    heic_converter._heic_supported = None


class TestConvertHeicToJpeg:

    @pytest.mark.asyncio
    async def test_probe_failure_raises_unsupported(self):
        photo = PhotoFile(name="IMG_0001.HEIC", content=b"heic", content_type="image/heic")
        with patch.object(heic_converter, "is_heic_supported", return_value=False):
            with pytest.raises(UnsupportedFormatError, match="not available"):
                await convert_heic_to_jpeg(photo)

    def test_probe_exception_means_unsupported(self):
        with patch.object(pillow_heif, "register_heif_opener", side_effect=RuntimeError("no libheif")):
            assert is_heic_supported() is False

    @pytest.mark.asyncio
    async def test_missing_decoder_raises_unsupported(self, monkeypatch):
        monkeypatch.setitem(sys.modules, "pillow_heif", None)
        photo = PhotoFile(name="IMG_0001.HEIC", content=b"heic", content_type="image/heic")

        assert is_heic_supported() is False
        with pytest.raises(UnsupportedFormatError):
            await convert_heic_to_jpeg(photo)

    @pytest.mark.asyncio
    async def test_non_heic_input_rejected(self):
        photo = PhotoFile(name="photo.jpg", content=b"jpeg", content_type="image/jpeg")
        with pytest.raises(ConversionError):
            await convert_heic_to_jpeg(photo)

    @pytest.mark.asyncio
    async def test_corrupt_bytes_raise_conversion_error(self):
        photo = PhotoFile(name="broken.heic", content=b"definitely not heic", content_type="")
        with pytest.raises(ConversionError):
            await convert_heic_to_jpeg(photo)

    @pytest.mark.asyncio
    async def test_real_conversion(self):
        data = _make_heic()
        photo = PhotoFile(name="IMG_0001.HEIC", content=data, content_type="image/heic")

        converted = await convert_heic_to_jpeg(photo)

        assert converted.name == "IMG_0001.jpg"
        assert converted.content_type == "image/jpeg"
        img = Image.open(BytesIO(converted.content))
        assert img.format == "JPEG"
        assert img.size == (64, 48)
        # Input untouched
        assert photo.content == data


class TestJpegName:

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("IMG_0001.HEIC", "IMG_0001.jpg"),
            ("IMG_0001.heif", "IMG_0001.jpg"),
            ("camera-upload", "camera-upload.jpg"),
        ],
    )
    def test_rename(self, name, expected):
        assert heic_converter._jpeg_name(name) == expected
