"""
Tests for upload validation and preview thumbnails.
"""

import io

import pytest
from PIL import Image

from fitting_room.gemini import ImagePart
from fitting_room.intake import (
    PREVIEW_EDGE,
    EmptyUploadError,
    UnsupportedMediaTypeError,
    accepted_extensions,
    load_upload,
    make_preview,
    normalize_media_type,
)
from tests.conftest import make_png


def test_accepted_extensions():
    assert set(accepted_extensions()) == {"png", "jpg", "jpeg", "webp"}


def test_load_upload_keeps_original_bytes(png_bytes):
    image = load_upload("me.png", png_bytes, "image/png", upload_id="abc")

    assert image.data == png_bytes
    assert image.media_type == "image/png"
    assert image.upload_id == "abc"
    assert image.to_part() == ImagePart(png_bytes, "image/png")


def test_preview_is_square_thumbnail():
    preview = make_preview(make_png(size=(1000, 600)))
    img = Image.open(io.BytesIO(preview))
    assert img.format == "PNG"
    assert img.size == (PREVIEW_EDGE, PREVIEW_EDGE)


def test_small_preview_is_not_upscaled(png_bytes):
    img = Image.open(io.BytesIO(make_preview(png_bytes)))
    assert img.size == (20, 20)


@pytest.mark.parametrize("declared", ["image/gif", "application/pdf", "text/plain"])
def test_unsupported_types_rejected(png_bytes, declared):
    with pytest.raises(UnsupportedMediaTypeError) as info:
        load_upload("file.bin", png_bytes, declared)
    assert info.value.media_type == declared


def test_missing_type_guessed_from_name(png_bytes):
    assert load_upload("look.webp", png_bytes, "").media_type == "image/webp"
    assert load_upload("look.JPG", png_bytes, None).media_type == "image/jpeg"


def test_unknown_name_without_type_rejected(png_bytes):
    with pytest.raises(UnsupportedMediaTypeError):
        load_upload("look", png_bytes, None)


def test_media_type_aliases():
    assert normalize_media_type("x", "image/jpg") == "image/jpeg"
    assert normalize_media_type("x", "IMAGE/PNG; charset=binary") == "image/png"


def test_empty_upload_rejected():
    with pytest.raises(EmptyUploadError):
        load_upload("me.png", b"", "image/png")


def test_declared_type_is_trusted():
    """Content is not sniffed; undecodable bytes keep their raw preview."""
    image = load_upload("renamed.png", b"not really an image", "image/png")
    assert image.media_type == "image/png"
    assert image.preview == b"not really an image"
