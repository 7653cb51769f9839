"""
Binary object storage for uploaded media, backed by MongoDB GridFS (motor).

GridFS splits every stored blob into fixed-size chunks (255 KiB by default).
This module hides that layout behind four operations:

- put:        store a whole blob, return its object id
- stat:       metadata-only lookup (length, content type, tags)
- open_range: lazily stream the bytes of [start, end] of an object
- delete:     remove an object and all of its chunks (idempotent)

Nothing in here knows about HTTP; see `src.api.streaming` for byte-serving.
"""

from __future__ import annotations

import abc
import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Mapping, Optional

from bson import ObjectId
from gridfs.errors import NoFile
from motor.motor_asyncio import AsyncIOMotorDatabase, AsyncIOMotorGridFSBucket
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 255 * 1024
DEFAULT_CONTENT_TYPE = "application/octet-stream"


class ObjectStoreError(Exception):
    """Base class for object store failures."""


class InvalidObjectId(ObjectStoreError):
    """The identifier is not a well-formed object id."""


class ObjectNotFound(ObjectStoreError):
    """No stored object exists for a well-formed identifier."""


class StoreError(ObjectStoreError):
    """The backing store is unreachable or failed mid-operation."""


class RangeOutOfBounds(ObjectStoreError, ValueError):
    """The requested byte window does not fit inside the object."""


@dataclass(frozen=True)
class ObjectMetadata:
    """Stored object attributes, read without touching its chunks."""

    object_id: str
    length: int
    content_type: str
    chunk_size: int = DEFAULT_CHUNK_SIZE
    filename: Optional[str] = None
    tags: Dict[str, Any] = field(default_factory=dict)
    uploaded_at: Optional[datetime] = None


# PUBLIC_INTERFACE
def parse_object_id(value: str) -> ObjectId:
    """
    Validate and convert an object id string.

    Only the canonical 24 hex character form is accepted.

    Raises:
        InvalidObjectId: for anything else.
    """
    if not isinstance(value, str) or len(value) != 24 or not ObjectId.is_valid(value):
        raise InvalidObjectId(f"Malformed object id: {value!r}")
    return ObjectId(value)


def _metadata_from_file_document(doc: Mapping[str, Any]) -> ObjectMetadata:
    tags = dict(doc.get("metadata") or {})
    content_type = tags.pop("contentType", None) or doc.get("contentType") or DEFAULT_CONTENT_TYPE
    return ObjectMetadata(
        object_id=str(doc["_id"]),
        length=int(doc.get("length", 0)),
        content_type=content_type,
        chunk_size=int(doc.get("chunkSize") or DEFAULT_CHUNK_SIZE),
        filename=doc.get("filename"),
        tags=tags,
        uploaded_at=doc.get("uploadDate"),
    )


async def _release(grid_out: Any) -> None:
    # motor exposes GridOut.close either as a plain delegate or a coroutine
    # depending on the version.
    result = grid_out.close()
    if inspect.isawaitable(result):
        await result


class ByteStream:
    """
    Finite, non-restartable async stream of byte chunks over one stored object.

    The stream owns the underlying download cursor. `aclose()` releases it and is
    safe to call at any point: before iteration started, mid-transfer, or after
    the stream is exhausted.
    """

    def __init__(self, chunks: AsyncIterator[bytes], length: int, on_close: Optional[Callable[[], Awaitable[None]]] = None):
        self._chunks = chunks
        self.length = length
        self._on_close = on_close
        self.closed = False

    def __aiter__(self) -> "ByteStream":
        return self

    async def __anext__(self) -> bytes:
        if self.closed:
            raise StopAsyncIteration
        try:
            return await self._chunks.__anext__()
        except StopAsyncIteration:
            await self.aclose()
            raise

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            aclose = getattr(self._chunks, "aclose", None)
            if aclose is not None:
                await aclose()
        finally:
            if self._on_close is not None:
                await self._on_close()


async def iter_window(
    read_chunk: Callable[[], Awaitable[bytes]],
    start: int,
    end: int,
    *,
    read_timeout: Optional[float] = None,
) -> AsyncIterator[bytes]:
    """
    Yield bytes [start, end] from a reader that returns native chunks in order,
    beginning at offset 0.

    Chunks before `start` are read and dropped one at a time; the first and last
    chunks in the window are trimmed to the exact boundaries.
    """
    position = 0
    while position <= end:
        chunk = await _timed(read_chunk(), read_timeout)
        if not chunk:
            raise StoreError(f"Object ended at byte {position}, expected at least {end + 1}")
        chunk_end = position + len(chunk)
        if chunk_end > start:
            lo = max(start - position, 0)
            hi = min(end + 1 - position, len(chunk))
            yield chunk[lo:hi]
        position = chunk_end


async def iter_seek(
    grid_out: Any,
    start: int,
    end: int,
    *,
    read_size: int,
    read_timeout: Optional[float] = None,
) -> AsyncIterator[bytes]:
    """Yield bytes [start, end] using the download stream's native seek."""
    grid_out.seek(start)
    remaining = end - start + 1
    while remaining > 0:
        chunk = await _timed(grid_out.read(min(read_size, remaining)), read_timeout)
        if not chunk:
            raise StoreError(f"Object ended {remaining} byte(s) short of offset {end}")
        remaining -= len(chunk)
        yield chunk


async def _timed(awaitable: Awaitable[bytes], timeout: Optional[float]) -> bytes:
    try:
        if timeout:
            return await asyncio.wait_for(awaitable, timeout)
        return await awaitable
    except asyncio.TimeoutError as exc:
        raise StoreError(f"Store read timed out after {timeout}s") from exc
    except PyMongoError as exc:
        raise StoreError(f"Store read failed ({exc.__class__.__name__})") from exc


async def _empty() -> AsyncIterator[bytes]:
    return
    yield  # pragma: no cover


class ObjectStore(abc.ABC):
    """Chunked binary object store used by upload and file-serving endpoints."""

    @abc.abstractmethod
    async def put(
        self,
        data: bytes,
        content_type: str,
        *,
        filename: Optional[str] = None,
        tags: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """Store `data` as a new object and return its id."""

    @abc.abstractmethod
    async def stat(self, object_id: str) -> ObjectMetadata:
        """Return metadata for `object_id` without reading its bytes."""

    @abc.abstractmethod
    async def open_range(self, object_id: str, start: int = 0, end: Optional[int] = None) -> ByteStream:
        """Open a stream over bytes [start, end] (inclusive) of `object_id`.

        Raises:
            RangeOutOfBounds: the window does not fit inside the object.
        """

    @abc.abstractmethod
    async def delete(self, object_id: str) -> None:
        """Remove `object_id`. Absent objects are ignored."""


class GridFSObjectStore(ObjectStore):
    """
    ObjectStore over a motor GridFS bucket.

    `files` is the bucket's `<bucket>.files` collection; `stat` reads it directly
    so that metadata lookups never open a download stream.
    """

    def __init__(
        self,
        bucket: AsyncIOMotorGridFSBucket,
        files: Any,
        *,
        read_timeout: Optional[float] = None,
    ):
        self._bucket = bucket
        self._files = files
        self._read_timeout = read_timeout

    @classmethod
    def from_database(
        cls,
        db: AsyncIOMotorDatabase,
        bucket_name: str = "files",
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        read_timeout: Optional[float] = None,
    ) -> "GridFSObjectStore":
        bucket = AsyncIOMotorGridFSBucket(db, bucket_name=bucket_name, chunk_size_bytes=chunk_size)
        return cls(bucket, db[f"{bucket_name}.files"], read_timeout=read_timeout)

    async def put(
        self,
        data: bytes,
        content_type: str,
        *,
        filename: Optional[str] = None,
        tags: Optional[Mapping[str, Any]] = None,
    ) -> str:
        metadata: Dict[str, Any] = dict(tags or {})
        metadata["contentType"] = content_type or DEFAULT_CONTENT_TYPE
        try:
            oid = await self._bucket.upload_from_stream(filename or "upload", data, metadata=metadata)
        except PyMongoError as exc:
            logger.error("object_put_failed: filename=%s size=%s exc=%s", filename, len(data), exc.__class__.__name__)
            raise StoreError("Failed to store object.") from exc
        logger.info("object_put: file_id=%s filename=%s size=%s content_type=%s", oid, filename, len(data), content_type)
        return str(oid)

    async def stat(self, object_id: str) -> ObjectMetadata:
        oid = parse_object_id(object_id)
        try:
            doc = await self._files.find_one({"_id": oid})
        except PyMongoError as exc:
            raise StoreError(f"Metadata lookup failed ({exc.__class__.__name__})") from exc
        if doc is None:
            raise ObjectNotFound(object_id)
        return _metadata_from_file_document(doc)

    async def open_range(self, object_id: str, start: int = 0, end: Optional[int] = None) -> ByteStream:
        oid = parse_object_id(object_id)
        try:
            grid_out = await self._bucket.open_download_stream(oid)
        except NoFile as exc:
            raise ObjectNotFound(object_id) from exc
        except PyMongoError as exc:
            raise StoreError(f"Failed to open object ({exc.__class__.__name__})") from exc

        length = int(grid_out.length)
        if end is None:
            end = length - 1
        if length == 0 and start == 0 and end == -1:
            await _release(grid_out)
            return ByteStream(_empty(), 0)
        if not 0 <= start <= end < length:
            await _release(grid_out)
            raise RangeOutOfBounds(f"Range {start}-{end} outside object of length {length}")

        chunk_size = int(getattr(grid_out, "chunk_size", None) or DEFAULT_CHUNK_SIZE)
        if grid_out.seekable():
            chunks = iter_seek(grid_out, start, end, read_size=chunk_size, read_timeout=self._read_timeout)
        else:
            logger.debug("object_range_sequential: file_id=%s start=%s end=%s", object_id, start, end)
            chunks = iter_window(grid_out.readchunk, start, end, read_timeout=self._read_timeout)

        async def _close() -> None:
            await _release(grid_out)

        return ByteStream(chunks, end - start + 1, on_close=_close)

    async def delete(self, object_id: str) -> None:
        oid = parse_object_id(object_id)
        try:
            await self._bucket.delete(oid)
        except NoFile:
            logger.debug("object_delete_absent: file_id=%s", object_id)
            return
        except PyMongoError as exc:
            raise StoreError(f"Failed to delete object ({exc.__class__.__name__})") from exc
        logger.info("object_deleted: file_id=%s", object_id)
