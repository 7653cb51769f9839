"""
Media type tables and URL normalization for stored media references.
"""

from __future__ import annotations

import re
from pathlib import PurePath
from typing import Optional

_MIME_TYPES = {
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "flac": "audio/flac",
    "m4a": "audio/mp4",
    "ogg": "audio/ogg",
    "mpeg": "audio/mpeg",
    "mpg": "audio/mpeg",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "mp4": "video/mp4",
    "avi": "video/x-msvideo",
    "mov": "video/quicktime",
    "wmv": "video/x-ms-wmv",
    "flv": "video/x-flv",
    "webm": "video/webm",
    "mkv": "video/x-matroska",
    "m4v": "video/x-m4v",
}

AUDIO_EXTENSIONS = frozenset({"mp3", "wav", "flac", "m4a", "ogg", "mpeg", "mpg"})
IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "webp"})

FILES_URL_PREFIX = "/files"


def file_extension(filename: Optional[str]) -> str:
    """Lower-case extension without the dot, or '' when there is none."""
    return PurePath(filename or "").suffix.lstrip(".").lower()


# PUBLIC_INTERFACE
def mime_type_for(filename: Optional[str]) -> str:
    """Content type for a filename, by extension."""
    return _MIME_TYPES.get(file_extension(filename), "application/octet-stream")


def sanitize_filename(name: str, default: str = "upload") -> str:
    # Letters, numbers, dot, dash, underscore only.
    name = name.strip().replace("\\", "_").replace("/", "_")
    name = re.sub(r"[^A-Za-z0-9._-]+", "_", name)
    return name or default


# PUBLIC_INTERFACE
def media_url(object_id: Optional[str], legacy_path: Optional[str]) -> Optional[str]:
    """
    External URL for a stored media reference.

    Object id wins (`/files/<id>`), then a legacy path, else None.
    """
    if object_id:
        return f"{FILES_URL_PREFIX}/{object_id}"
    return legacy_path or None
