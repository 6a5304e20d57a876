"""
Image upload pipeline: validation, object naming and thumbnails.
"""

from __future__ import annotations

import io
import logging
import re
import uuid
from dataclasses import dataclass
from typing import Optional

from PIL import Image, UnidentifiedImageError

from gallery.storage import StorageClient

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 10 * 1024 * 1024

ALLOWED_CONTENT_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}

THUMBNAIL_CONTENT_TYPE = "image/webp"


class ImageValidationError(ValueError):
    """Upload rejected before anything was stored."""


@dataclass
class UploadResult:
    key: str
    thumbnail_key: str
    url: str
    thumbnail_url: Optional[str]
    width: Optional[int]
    height: Optional[int]
    file_size: int


def validate_image(
    content_type: Optional[str], size: int, max_bytes: int = MAX_FILE_SIZE
) -> None:
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise ImageValidationError("Invalid file type. Allowed: JPEG, PNG, WebP, GIF")
    if size > max_bytes:
        limit_mb = max_bytes // (1024 * 1024)
        raise ImageValidationError(f"File size exceeds {limit_mb}MB limit")


def parse_tags(raw: Optional[str]) -> list[str]:
    """Split a comma separated tag string into trimmed, lower-cased tags."""
    if not raw:
        return []
    tags = (tag.strip().lower() for tag in raw.split(","))
    return [tag for tag in tags if tag]


def _split_filename(filename: Optional[str], content_type: str) -> tuple[str, str]:
    if filename and "." in filename:
        base, ext = filename.rsplit(".", 1)
        return base or "image", ext.lower()
    return filename or "image", ALLOWED_CONTENT_TYPES.get(content_type, "")


def clean_base_name(base: str) -> str:
    return re.sub(r"[^a-zA-Z0-9-]", "-", base).lower()


def build_object_keys(
    filename: Optional[str],
    content_type: str,
    folder: Optional[str] = "wallpapers",
    uid: Optional[str] = None,
) -> tuple[str, str]:
    """Return ``(original_key, thumbnail_key)`` for an upload."""
    uid = uid or str(uuid.uuid4())
    base, ext = _split_filename(filename, content_type)
    name = f"{uid}-{clean_base_name(base)}"
    original = f"{name}.{ext}" if ext else name
    if folder:
        return f"{folder}/{original}", f"{folder}/thumbnails/{name}.webp"
    return original, f"thumbnails/{name}.webp"


def make_thumbnail(
    data: bytes, max_size: int = 800, quality: int = 80
) -> tuple[bytes, int, int]:
    """
    Render a WebP thumbnail that fits inside ``max_size`` on both sides.

    Returns the thumbnail bytes plus the original width and height. Images
    smaller than the bound are not enlarged.
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            width, height = image.size
            thumb = image.copy()
    except Image.DecompressionBombError as exc:
        raise ImageValidationError("Image dimensions are too large") from exc
    except (UnidentifiedImageError, OSError) as exc:
        raise ImageValidationError("Could not read image data") from exc

    if thumb.mode not in ("RGB", "RGBA"):
        has_alpha = thumb.mode in ("LA", "PA") or "transparency" in thumb.info
        thumb = thumb.convert("RGBA" if has_alpha else "RGB")
    thumb.thumbnail((max_size, max_size))

    buffer = io.BytesIO()
    thumb.save(buffer, format="WEBP", quality=quality)
    return buffer.getvalue(), width, height


def upload_image(
    storage: StorageClient,
    data: bytes,
    *,
    filename: Optional[str],
    content_type: str,
    folder: Optional[str] = "wallpapers",
    thumbnail_max_size: int = 800,
    thumbnail_quality: int = 80,
) -> UploadResult:
    key, thumb_key = build_object_keys(filename, content_type, folder)
    thumbnail, width, height = make_thumbnail(
        data, max_size=thumbnail_max_size, quality=thumbnail_quality
    )

    storage.put_bytes(key, data, content_type)
    storage.put_bytes(thumb_key, thumbnail, THUMBNAIL_CONTENT_TYPE)
    logger.info("Uploaded %s (%d bytes) with thumbnail %s", key, len(data), thumb_key)

    return UploadResult(
        key=key,
        thumbnail_key=thumb_key,
        url=storage.public_url(key),
        thumbnail_url=storage.public_url(thumb_key),
        width=width,
        height=height,
        file_size=len(data),
    )
