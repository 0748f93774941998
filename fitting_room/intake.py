"""Uploaded image intake: media-type allow-list and preview thumbnails.

Only the declared media type is checked. Bytes are kept exactly as uploaded
and sent to the model unchanged; Pillow is used for the preview only.
"""

from __future__ import annotations
import io
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from PIL import Image, UnidentifiedImageError

from fitting_room.gemini import ImagePart

logger = logging.getLogger(__name__)

PREVIEW_EDGE = 512  # longest edge of preview thumbnails, in px

# extension -> media type
ALLOWED_TYPES: Dict[str, str] = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
}
_ALIASES = {"image/jpg": "image/jpeg", "image/pjpeg": "image/jpeg", "image/x-png": "image/png"}


class IntakeError(ValueError):
    """Upload rejected before it reaches application state."""


class UnsupportedMediaTypeError(IntakeError):
    def __init__(self, name: str, media_type: Optional[str]):
        self.media_type = media_type
        super().__init__(
            f"{name}: unsupported file type {media_type or 'unknown'}. "
            "Please upload a PNG, JPG or WEBP image."
        )


class EmptyUploadError(IntakeError):
    def __init__(self, name: str):
        super().__init__(f"{name}: the file is empty.")


@dataclass(frozen=True)
class UploadedImage:
    name: str
    data: bytes
    media_type: str
    preview: bytes
    upload_id: Optional[str] = None

    def to_part(self) -> ImagePart:
        return ImagePart(self.data, self.media_type)


# =============================================================================
# Pillow helpers
# =============================================================================

def resize_image_max(img: Image.Image, max_edge: int = PREVIEW_EDGE) -> Image.Image:
    """Resize image so that the longest edge <= max_edge, preserving aspect ratio."""
    w, h = img.size
    longest = max(w, h)
    if longest <= max_edge:
        return img
    scale = max_edge / float(longest)
    new_size = (max(1, int(w * scale)), max(1, int(h * scale)))
    return img.resize(new_size, resample=Image.LANCZOS)


def crop_center_square(img: Image.Image) -> Image.Image:
    """Crop the largest centred square."""
    w, h = img.size
    s = min(w, h)
    left = (w - s) // 2
    top = (h - s) // 2
    return img.crop((left, top, left + s, top + s))


def bytes_to_image_safe(data: bytes) -> Image.Image:
    """Decode bytes into a fully loaded PIL Image."""
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


def image_to_bytes_png(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def make_preview(data: bytes, max_edge: int = PREVIEW_EDGE) -> bytes:
    """Return a square PNG thumbnail, or the original bytes if Pillow cannot decode them."""
    try:
        img = bytes_to_image_safe(data)
    except (UnidentifiedImageError, OSError) as exc:
        logger.warning("Could not decode image for preview, showing it as-is: %s", exc)
        return data
    if img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA")
    return image_to_bytes_png(resize_image_max(crop_center_square(img), max_edge))


# =============================================================================
# Intake
# =============================================================================

def accepted_extensions() -> List[str]:
    return list(ALLOWED_TYPES)


def normalize_media_type(name: str, declared_type: Optional[str]) -> Optional[str]:
    """Return the canonical media type, guessing from ``name`` when none was declared."""
    media_type = (declared_type or "").split(";")[0].strip().lower()
    if not media_type:
        ext = name.rsplit(".", 1)[-1].lower() if "." in name else ""
        media_type = ALLOWED_TYPES.get(ext, "")
    media_type = _ALIASES.get(media_type, media_type)
    return media_type or None


def load_upload(
    name: str,
    data: bytes,
    declared_type: Optional[str],
    upload_id: Optional[str] = None,
) -> UploadedImage:
    """Validate an upload and build its in-memory representation.

    Args:
        name: Original file name.
        data: Raw file bytes.
        declared_type: Media type reported by the browser, may be empty.
        upload_id: Identity of the upload used to skip re-processing on reruns.

    Raises:
        UnsupportedMediaTypeError: declared type is not PNG, JPEG or WEBP.
        EmptyUploadError: no bytes were uploaded.
    """
    media_type = normalize_media_type(name, declared_type)
    if media_type not in ALLOWED_TYPES.values():
        raise UnsupportedMediaTypeError(name, media_type)
    if not data:
        raise EmptyUploadError(name)

    logger.debug("Accepted %s (%s, %d bytes)", name, media_type, len(data))
    return UploadedImage(
        name=name,
        data=data,
        media_type=media_type,
        preview=make_preview(data),
        upload_id=upload_id,
    )
