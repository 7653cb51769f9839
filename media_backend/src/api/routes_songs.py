"""
Song endpoints:
- GET /songs                      list active songs (search, genre, sort, pages)
- GET /songs/meta/genres          distinct genres of active songs
- GET /songs/{song_id}            one song
- GET /songs/{song_id}/stream     stream the song's audio (Range aware)
- HEAD /songs/{song_id}/stream    audio headers only
- POST /songs/{song_id}/play      count a play (authenticated)
- POST /songs                     upload audio + optional cover (admin)
- DELETE /songs/{song_id}         delete a song and its stored media (admin)

Audio and cover bytes live in the object store; rows keep their object ids.
"""

from __future__ import annotations

import logging
import math
import os
import uuid
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from sqlalchemy import desc, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.responses import Response
from starlette.status import HTTP_404_NOT_FOUND

from src.api.auth import get_current_user, require_admin
from src.api.db import db_session_dep
from src.api.media import (
    AUDIO_EXTENSIONS,
    IMAGE_EXTENSIONS,
    file_extension,
    media_url,
    mime_type_for,
    sanitize_filename,
)
from src.api.models import Song, User
from src.api.mongo import object_store_dep
from src.api.object_store import InvalidObjectId, ObjectStore, StoreError
from src.api.schemas import MessageResponse, Pagination, SongListResponse, SongResponse
from src.api.streaming import serve_object

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Songs"])

_MAX_AUDIO_BYTES_DEFAULT = 50 * 1024 * 1024  # 50MB
_MAX_COVER_BYTES_DEFAULT = 5 * 1024 * 1024  # 5MB

ROLE_TRACK_AUDIO = "track_audio"
ROLE_COVER_IMAGE = "cover_image"


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _max_audio_bytes() -> int:
    return _env_int("MAX_UPLOAD_BYTES", _MAX_AUDIO_BYTES_DEFAULT)


def _max_cover_bytes() -> int:
    return _env_int("MAX_COVER_BYTES", _MAX_COVER_BYTES_DEFAULT)


def _json_404(detail: str) -> None:
    """Raise a JSON 404 error with a predictable shape."""
    raise HTTPException(
        status_code=HTTP_404_NOT_FOUND,
        detail={"error": "not_found", "message": detail},
    )


# PUBLIC_INTERFACE
def song_to_response(song: Song) -> SongResponse:
    """Canonical external representation of a song row."""
    return SongResponse(
        id=song.id,
        title=song.title,
        artist=song.artist,
        album=song.album,
        genre=song.genre,
        file_path=media_url(song.file_id, song.file_path),
        cover_image_path=media_url(song.cover_image_id, song.cover_image_path),
        file_id=song.file_id,
        cover_image_id=song.cover_image_id,
        content_type=song.content_type,
        size_bytes=int(song.size_bytes),
        duration_seconds=song.duration_seconds,
        play_count=song.play_count or 0,
        uploaded_by=song.uploaded_by,
        created_at=song.created_at,
        updated_at=song.updated_at,
    )


async def _read_upload(upload: UploadFile, allowed: Iterable[str], max_bytes: int, label: str) -> Tuple[str, bytes, str]:
    """
    Validate an uploaded file by extension and size.

    Returns:
        (safe filename, content, content type)
    """
    safe_name = sanitize_filename(upload.filename or "", default="")
    ext = file_extension(safe_name)
    if ext not in allowed:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid {label} file type. Allowed: {', '.join(sorted(allowed))}.",
        )

    content = await upload.read()
    if len(content) == 0:
        raise HTTPException(status_code=400, detail=f"Empty {label} file.")
    if len(content) > max_bytes:
        raise HTTPException(status_code=413, detail=f"{label.capitalize()} file too large.")
    return safe_name, content, mime_type_for(safe_name)


async def _discard(store: ObjectStore, object_ids: Iterable[Optional[str]]) -> None:
    for object_id in object_ids:
        if not object_id:
            continue
        try:
            await store.delete(object_id)
        except InvalidObjectId:
            logger.warning("song_media_invalid_id: file_id=%r", object_id)
        except StoreError as exc:
            logger.warning("song_media_discard_failed: file_id=%s exc=%s", object_id, exc)


def _get_song(db: Session, song_id: uuid.UUID, *, active_only: bool = False) -> Song:
    stmt = select(Song).where(Song.id == song_id)
    if active_only:
        stmt = stmt.where(Song.is_active.is_(True))
    song = db.execute(stmt).scalar_one_or_none()
    if not song:
        _json_404("Song not found.")
    return song


def _save(db: Session, song: Song) -> Song:
    db.add(song)
    db.commit()
    db.refresh(song)
    return song


def _remove(db: Session, song: Song) -> None:
    db.delete(song)
    db.commit()


def _count_play(db: Session, song_id: uuid.UUID) -> int:
    song = _get_song(db, song_id, active_only=True)
    song.play_count = (song.play_count or 0) + 1
    db.commit()
    return song.play_count


@router.get(
    "/songs",
    response_model=SongListResponse,
    summary="List songs",
    description="Active songs, newest first by default. Supports search, genre filter and pagination.",
    operation_id="list_songs",
)
def list_songs(
    search: Optional[str] = Query(None, description="Case-insensitive match on title, artist or album."),
    genre: Optional[str] = Query(None, description="Exact genre filter."),
    sort: str = Query("newest", pattern="^(newest|popular)$", description="newest | popular"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(db_session_dep),
) -> SongListResponse:
    """List active songs (public)."""
    stmt = select(Song).where(Song.is_active.is_(True))
    if genre:
        stmt = stmt.where(Song.genre == genre)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(Song.title.ilike(pattern), Song.artist.ilike(pattern), Song.album.ilike(pattern)))

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()

    if sort == "popular":
        stmt = stmt.order_by(desc(Song.play_count), desc(Song.created_at))
    else:
        stmt = stmt.order_by(desc(Song.created_at))
    songs = db.execute(stmt.offset((page - 1) * limit).limit(limit)).scalars().all()

    return SongListResponse(
        songs=[song_to_response(s) for s in songs],
        pagination=Pagination(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit)),
    )


@router.get(
    "/songs/meta/genres",
    response_model=List[str],
    summary="List genres",
    operation_id="list_genres",
)
def list_genres(db: Session = Depends(db_session_dep)) -> List[str]:
    """Distinct non-empty genres of active songs, sorted."""
    rows = db.execute(
        select(Song.genre).where(Song.is_active.is_(True), Song.genre.is_not(None), Song.genre != "").distinct()
    ).scalars()
    return sorted(rows)


@router.get(
    "/songs/{song_id}",
    response_model=SongResponse,
    summary="Get a song",
    operation_id="get_song",
)
def get_song(song_id: uuid.UUID, db: Session = Depends(db_session_dep)) -> SongResponse:
    """Return one active song."""
    return song_to_response(_get_song(db, song_id, active_only=True))


@router.api_route(
    "/songs/{song_id}/stream",
    methods=["GET", "HEAD"],
    summary="Stream a song",
    description="Streams the song audio from the object store. Supports HTTP Range requests.",
    operation_id="stream_song",
    responses={
        200: {"content": {"audio/mpeg": {}}},
        206: {"content": {"audio/mpeg": {}}},
        404: {"description": "Not found"},
        416: {"description": "Range not satisfiable"},
    },
)
async def stream_song(
    song_id: uuid.UUID,
    request: Request,
    db: Session = Depends(db_session_dep),
    store: ObjectStore = Depends(object_store_dep),
) -> Response:
    """Serve a song's audio by song id, with single-range support."""
    song = await run_in_threadpool(_get_song, db, song_id, active_only=True)
    if not song.file_id:
        logger.warning("stream_song_no_object: song_id=%s legacy_path=%s", song_id, song.file_path)
        _json_404("File missing on server.")

    range_header = request.headers.get("range")
    logger.info("stream_song: song_id=%s file_id=%s range=%s", song_id, song.file_id, range_header)
    return await serve_object(store, song.file_id, range_header, head=request.method == "HEAD")


@router.post(
    "/songs/{song_id}/play",
    summary="Record a play",
    operation_id="play_song",
)
def play_song(
    song_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: Session = Depends(db_session_dep),
) -> dict:
    """Increment a song's play count."""
    play_count = _count_play(db, song_id)
    logger.info("song_played: song_id=%s user_id=%s play_count=%s", song_id, user.id, play_count)
    return {"message": "Play recorded", "play_count": play_count}


@router.post(
    "/songs",
    response_model=SongResponse,
    status_code=201,
    summary="Upload a song",
    description="Stores the audio (and optional cover image) in the object store and the song row in the DB.",
    operation_id="upload_song",
)
async def upload_song(
    music_file: Optional[UploadFile] = File(None, description="Audio file (mp3, wav, flac, m4a, ogg, mpeg, mpg)."),
    cover_image: Optional[UploadFile] = File(None, description="Optional cover (jpg, jpeg, png, gif, webp)."),
    title: Optional[str] = Form(None),
    artist: Optional[str] = Form(None),
    album: Optional[str] = Form(None),
    genre: Optional[str] = Form(None),
    admin: User = Depends(require_admin),
    db: Session = Depends(db_session_dep),
    store: ObjectStore = Depends(object_store_dep),
) -> SongResponse:
    """Upload a song (admin only)."""
    title = (title or "").strip()
    artist = (artist or "").strip()
    if not title or not artist or music_file is None:
        raise HTTPException(status_code=400, detail="Title, artist, and music file are required.")

    audio_name, audio, audio_type = await _read_upload(music_file, AUDIO_EXTENSIONS, _max_audio_bytes(), "music")
    cover = None
    if cover_image is not None and cover_image.filename:
        cover = await _read_upload(cover_image, IMAGE_EXTENSIONS, _max_cover_bytes(), "image")

    stored: List[str] = []
    try:
        file_id = await store.put(audio, audio_type, filename=audio_name, tags={"role": ROLE_TRACK_AUDIO})
        stored.append(file_id)

        cover_id = None
        if cover is not None:
            cover_name, cover_bytes, cover_type = cover
            cover_id = await store.put(cover_bytes, cover_type, filename=cover_name, tags={"role": ROLE_COVER_IMAGE})
            stored.append(cover_id)

        now = datetime.now(timezone.utc)
        song = Song(
            id=uuid.uuid4(),
            uploaded_by=admin.id,
            title=title,
            artist=artist,
            album=(album or "").strip() or None,
            genre=(genre or "").strip() or None,
            file_id=file_id,
            cover_image_id=cover_id,
            content_type=audio_type,
            size_bytes=len(audio),
            play_count=0,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        song = await run_in_threadpool(_save, db, song)
    except StoreError as exc:
        await _discard(store, stored)
        logger.error("upload_song_store_failed: title=%s exc=%s", title, exc)
        raise HTTPException(status_code=500, detail={"error": "store_error", "message": "Failed to store uploaded media."})
    except SQLAlchemyError as exc:
        db.rollback()
        await _discard(store, stored)
        logger.error("upload_song_db_failed: title=%s exc=%s", title, exc.__class__.__name__)
        raise HTTPException(
            status_code=500,
            detail={"error": "database_error", "message": "Failed to save song metadata."},
        )

    logger.info("song_uploaded: song_id=%s file_id=%s cover_id=%s", song.id, song.file_id, song.cover_image_id)
    return song_to_response(song)


@router.delete(
    "/songs/{song_id}",
    response_model=MessageResponse,
    summary="Delete a song",
    description="Deletes the song row together with its stored audio and cover image.",
    operation_id="delete_song",
)
async def delete_song(
    song_id: uuid.UUID,
    admin: User = Depends(require_admin),
    db: Session = Depends(db_session_dep),
    store: ObjectStore = Depends(object_store_dep),
) -> MessageResponse:
    """Delete a song and cascade to its stored media (admin only)."""
    song = await run_in_threadpool(_get_song, db, song_id)

    for object_id in (song.file_id, song.cover_image_id):
        if not object_id:
            continue
        try:
            await store.delete(object_id)
        except InvalidObjectId:
            logger.warning("delete_song_invalid_media_id: song_id=%s file_id=%r", song_id, object_id)
        except StoreError as exc:
            # Row is kept so the delete can be retried.
            logger.error("delete_song_media_failed: song_id=%s file_id=%s exc=%s", song_id, object_id, exc)
            raise HTTPException(
                status_code=500,
                detail={"error": "store_error", "message": "Failed to delete song media."},
            )

    await run_in_threadpool(_remove, db, song)
    logger.info("song_deleted: song_id=%s by=%s", song_id, admin.id)
    return MessageResponse(message="Song deleted successfully")
