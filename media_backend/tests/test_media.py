"""Tests for media type lookup and stored media URLs."""

from __future__ import annotations

import pytest

from src.api import media
from src.api.media import AUDIO_EXTENSIONS, IMAGE_EXTENSIONS, media_url, mime_type_for, sanitize_filename


@pytest.mark.parametrize(
    "filename,expected",
    [
        ("track.MP3", "audio/mpeg"),
        ("take.m4a", "audio/mp4"),
        ("cover.jpeg", "image/jpeg"),
        ("clip.mp4", "video/mp4"),
        ("clip.webm", "video/webm"),
        ("notes.txt", "application/octet-stream"),
        ("no_extension", "application/octet-stream"),
        (None, "application/octet-stream"),
    ],
)
def test_mime_type_for(filename, expected: str) -> None:
    assert mime_type_for(filename) == expected


def test_upload_extension_sets_only() -> None:
    assert {name for name in dir(media) if name.endswith("_EXTENSIONS")} == {"AUDIO_EXTENSIONS", "IMAGE_EXTENSIONS"}
    assert "mp4" not in AUDIO_EXTENSIONS | IMAGE_EXTENSIONS


def test_sanitize_filename() -> None:
    assert sanitize_filename("My Track (live).mp3") == "My_Track_live_.mp3"
    assert sanitize_filename("../../etc/passwd") == ".._.._etc_passwd"
    assert sanitize_filename("   ", default="upload") == "upload"


@pytest.mark.parametrize(
    "object_id,legacy_path,expected",
    [
        ("65f0c0ffee0000000000beef", "/uploads/a.mp3", "/files/65f0c0ffee0000000000beef"),
        (None, "/uploads/a.mp3", "/uploads/a.mp3"),
        ("", "", None),
        (None, None, None),
    ],
)
def test_media_url(object_id, legacy_path, expected) -> None:
    assert media_url(object_id, legacy_path) == expected
