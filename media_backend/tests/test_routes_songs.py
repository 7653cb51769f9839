"""Tests for song catalogue endpoints backed by the object store."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.errors import AutoReconnect
from sqlalchemy.orm import sessionmaker

from fakes import FakeGridFSBucket
from src.api.models import Song
from src.api.routes_songs import song_to_response

AUDIO = b"ID3" + bytes(range(256)) * 4


def _upload(client: TestClient, headers: dict[str, str], *, cover: bool = True, **fields: str):
    files = {"music_file": ("My Track.mp3", AUDIO, "audio/mpeg")}
    if cover:
        files["cover_image"] = ("cover.png", b"\x89PNG fake image", "image/png")
    data = {"title": "My Track", "artist": "Cleo", **fields}
    return client.post("/songs", headers=headers, files=files, data=data)


def _legacy_song(session_factory: sessionmaker, **overrides) -> uuid.UUID:
    now = datetime.now(timezone.utc)
    values = dict(
        id=uuid.uuid4(),
        title="Old Song",
        artist="Someone",
        file_path="/uploads/music/old.mp3",
        cover_image_path=None,
        content_type="audio/mpeg",
        size_bytes=10,
        play_count=0,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    values.update(overrides)
    with session_factory() as db:
        db.add(Song(**values))
        db.commit()
    return values["id"]


class TestSongRepresentation:
    def test_object_id_wins_over_legacy_path(self) -> None:
        now = datetime.now(timezone.utc)
        song = Song(
            id=uuid.uuid4(),
            title="t",
            artist="a",
            file_id="65f0c0ffee0000000000beef",
            file_path="/uploads/music/x.mp3",
            cover_image_id=None,
            cover_image_path="/uploads/covers/x.png",
            content_type="audio/mpeg",
            size_bytes=1,
            play_count=None,
            created_at=now,
            updated_at=now,
        )

        body = song_to_response(song)

        assert body.file_path == "/files/65f0c0ffee0000000000beef"
        assert body.cover_image_path == "/uploads/covers/x.png"
        assert body.play_count == 0

    def test_missing_media_is_null(self) -> None:
        now = datetime.now(timezone.utc)
        song = Song(
            id=uuid.uuid4(),
            title="t",
            artist="a",
            content_type="audio/mpeg",
            size_bytes=1,
            play_count=0,
            created_at=now,
            updated_at=now,
        )

        body = song_to_response(song)

        assert body.file_path is None
        assert body.cover_image_path is None


class TestUploadSong:
    def test_upload_stores_audio_and_cover(
        self, client: TestClient, admin_headers: dict[str, str], bucket: FakeGridFSBucket
    ) -> None:
        response = _upload(client, admin_headers, album="First", genre="Afro")

        assert response.status_code == 201
        song = response.json()
        assert song["title"] == "My Track"
        assert song["content_type"] == "audio/mpeg"
        assert song["size_bytes"] == len(AUDIO)
        assert song["file_path"] == f"/files/{song['file_id']}"
        assert song["cover_image_path"] == f"/files/{song['cover_image_id']}"

        audio_doc = bucket.files.docs[ObjectId(song["file_id"])]
        cover_doc = bucket.files.docs[ObjectId(song["cover_image_id"])]
        assert audio_doc["metadata"] == {"role": "track_audio", "contentType": "audio/mpeg"}
        assert audio_doc["filename"] == "My_Track.mp3"
        assert cover_doc["metadata"]["role"] == "cover_image"

        stored = client.get(song["file_path"])
        assert stored.status_code == 200
        assert stored.content == AUDIO

    def test_upload_without_cover(self, client: TestClient, admin_headers: dict[str, str]) -> None:
        response = _upload(client, admin_headers, cover=False)

        assert response.status_code == 201
        assert response.json()["cover_image_path"] is None

    def test_requires_admin(self, client: TestClient, user_headers: dict[str, str], bucket: FakeGridFSBucket) -> None:
        assert _upload(client, user_headers).status_code == 403
        assert _upload(client, {}).status_code == 401
        assert bucket.files.docs == {}

    def test_missing_fields(self, client: TestClient, admin_headers: dict[str, str]) -> None:
        response = client.post(
            "/songs",
            headers=admin_headers,
            files={"music_file": ("a.mp3", AUDIO, "audio/mpeg")},
            data={"title": "Only title"},
        )

        assert response.status_code == 400

    def test_rejects_wrong_extension(self, client: TestClient, admin_headers: dict[str, str], bucket: FakeGridFSBucket) -> None:
        response = client.post(
            "/songs",
            headers=admin_headers,
            files={"music_file": ("notes.txt", b"hello", "text/plain")},
            data={"title": "t", "artist": "a"},
        )

        assert response.status_code == 400
        assert bucket.files.docs == {}

    def test_rejects_oversized_audio(
        self, client: TestClient, admin_headers: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("MAX_UPLOAD_BYTES", "100")

        assert _upload(client, admin_headers).status_code == 413

    def test_store_failure(self, client: TestClient, admin_headers: dict[str, str], bucket: FakeGridFSBucket) -> None:
        bucket.fail_with = AutoReconnect("connection lost")

        response = _upload(client, admin_headers)

        assert response.status_code == 500
        assert response.json()["detail"]["error"] == "store_error"
        assert client.get("/songs").json()["pagination"]["total"] == 0


class TestListAndGetSongs:
    def test_list_newest_first_with_pagination(self, client: TestClient, session_factory: sessionmaker) -> None:
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        for i in range(3):
            _legacy_song(session_factory, title=f"Song {i}", created_at=base + timedelta(days=i))
        _legacy_song(session_factory, title="Hidden", is_active=False)

        response = client.get("/songs", params={"limit": 2})

        assert response.status_code == 200
        body = response.json()
        assert [s["title"] for s in body["songs"]] == ["Song 2", "Song 1"]
        assert body["pagination"] == {"page": 1, "limit": 2, "total": 3, "total_pages": 2}
        assert body["songs"][0]["file_path"] == "/uploads/music/old.mp3"

    def test_search_and_genre(self, client: TestClient, session_factory: sessionmaker) -> None:
        _legacy_song(session_factory, title="Midnight Drive", genre="Jazz")
        _legacy_song(session_factory, title="Morning", artist="Midnight Crew", genre="Pop")
        _legacy_song(session_factory, title="Other", genre="Jazz")

        titles = {s["title"] for s in client.get("/songs", params={"search": "midnight"}).json()["songs"]}
        assert titles == {"Midnight Drive", "Morning"}

        jazz = {s["title"] for s in client.get("/songs", params={"genre": "Jazz"}).json()["songs"]}
        assert jazz == {"Midnight Drive", "Other"}

        assert client.get("/songs/meta/genres").json() == ["Jazz", "Pop"]

    def test_popular_sort(self, client: TestClient, session_factory: sessionmaker) -> None:
        _legacy_song(session_factory, title="Quiet", play_count=1)
        _legacy_song(session_factory, title="Hit", play_count=50)

        songs = client.get("/songs", params={"sort": "popular"}).json()["songs"]

        assert songs[0]["title"] == "Hit"

    def test_get_song(self, client: TestClient, session_factory: sessionmaker) -> None:
        song_id = _legacy_song(session_factory)

        assert client.get(f"/songs/{song_id}").json()["id"] == str(song_id)
        assert client.get(f"/songs/{uuid.uuid4()}").status_code == 404


class TestStreamSong:
    def test_stream_with_range(self, client: TestClient, admin_headers: dict[str, str]) -> None:
        song = _upload(client, admin_headers).json()

        response = client.get(f"/songs/{song['id']}/stream", headers={"Range": "bytes=3-12"})

        assert response.status_code == 206
        assert response.headers["content-range"] == f"bytes 3-12/{len(AUDIO)}"
        assert response.content == AUDIO[3:13]

    def test_head_stream(self, client: TestClient, admin_headers: dict[str, str], bucket: FakeGridFSBucket) -> None:
        song = _upload(client, admin_headers).json()
        opened_before = len(bucket.opened)

        response = client.head(f"/songs/{song['id']}/stream")

        assert response.status_code == 200
        assert response.headers["content-length"] == str(len(AUDIO))
        assert len(bucket.opened) == opened_before

    def test_legacy_song_has_no_stream(self, client: TestClient, session_factory: sessionmaker) -> None:
        song_id = _legacy_song(session_factory)

        response = client.get(f"/songs/{song_id}/stream")

        assert response.status_code == 404
        assert response.json()["detail"]["message"] == "File missing on server."

    def test_play_count(self, client: TestClient, user_headers: dict[str, str], session_factory: sessionmaker) -> None:
        song_id = _legacy_song(session_factory)

        assert client.post(f"/songs/{song_id}/play").status_code == 401
        response = client.post(f"/songs/{song_id}/play", headers=user_headers)

        assert response.status_code == 200
        assert response.json()["play_count"] == 1
        assert client.get(f"/songs/{song_id}").json()["play_count"] == 1


class TestDeleteSong:
    def test_delete_cascades_to_stored_media(
        self, client: TestClient, admin_headers: dict[str, str], bucket: FakeGridFSBucket
    ) -> None:
        song = _upload(client, admin_headers).json()

        response = client.delete(f"/songs/{song['id']}", headers=admin_headers)

        assert response.status_code == 200
        assert bucket.files.docs == {}
        assert client.get(f"/songs/{song['id']}").status_code == 404
        assert client.get(song["file_path"]).status_code == 404

    def test_delete_requires_admin(self, client: TestClient, admin_headers: dict[str, str], user_headers: dict[str, str]) -> None:
        song = _upload(client, admin_headers).json()

        assert client.delete(f"/songs/{song['id']}", headers=user_headers).status_code == 403

    def test_delete_unknown_song(self, client: TestClient, admin_headers: dict[str, str]) -> None:
        assert client.delete(f"/songs/{uuid.uuid4()}", headers=admin_headers).status_code == 404

    def test_store_failure_keeps_row(
        self, client: TestClient, admin_headers: dict[str, str], bucket: FakeGridFSBucket
    ) -> None:
        song = _upload(client, admin_headers).json()
        bucket.fail_with = AutoReconnect("connection lost")

        response = client.delete(f"/songs/{song['id']}", headers=admin_headers)

        assert response.status_code == 500
        assert client.get(f"/songs/{song['id']}").status_code == 200
