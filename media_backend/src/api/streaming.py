"""
HTTP byte-serving for stored objects.

Turns (object id, optional Range header) into a 200 / 206 / 416 response whose
body is relayed chunk by chunk from the object store. Only single `bytes=` ranges
are honoured, and only for audio/video content; anything else gets the full
object.

Every successful response is cacheable forever: stored bytes for an id never
change, so the id doubles as a strong ETag.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Optional

from fastapi import HTTPException
from starlette.responses import Response, StreamingResponse
from starlette.types import Receive, Scope, Send

from src.api.object_store import (
    ByteStream,
    InvalidObjectId,
    ObjectMetadata,
    ObjectNotFound,
    ObjectStore,
    StoreError,
    parse_object_id,
)

logger = logging.getLogger(__name__)

CACHE_CONTROL = "public, max-age=31536000, immutable"
_BYTE_SERVING_PREFIXES = ("audio/", "video/")
# ASCII digits only; header values are decoded as latin-1.
_RANGE_SPEC = re.compile(r"\s*(\d*)\s*-\s*(\d*)\s*", re.ASCII)


class RangeNotSatisfiable(Exception):
    """The requested range does not fit inside the object."""

    def __init__(self, length: int):
        super().__init__(f"Range not satisfiable for length {length}")
        self.length = length


@dataclass(frozen=True)
class ByteRange:
    """Inclusive byte window [start, end]."""

    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1


@dataclass(frozen=True)
class ResponsePlan:
    """Status, headers and body window decided for one request."""

    status_code: int
    headers: Dict[str, str]
    byte_range: Optional[ByteRange] = None


# PUBLIC_INTERFACE
def supports_byte_serving(content_type: str) -> bool:
    """Ranges are honoured for audio and video content only."""
    return (content_type or "").lower().startswith(_BYTE_SERVING_PREFIXES)


# PUBLIC_INTERFACE
def parse_range_header(range_header: Optional[str], length: int) -> Optional[ByteRange]:
    """
    Parse a single HTTP Range header against an object of `length` bytes.

    Accepted forms: "bytes=start-end", "bytes=start-", "bytes=-suffix".

    Returns:
        ByteRange for a satisfiable range, or None when the header is absent or
        not a single byte range (callers then serve the full object).

    Raises:
        RangeNotSatisfiable: well-formed range that falls outside [0, length-1].
    """
    if not range_header:
        return None

    unit, sep, byte_spec = range_header.strip().partition("=")
    if not sep or unit.strip().lower() != "bytes":
        return None
    # Multi-range requests are not supported.
    match = _RANGE_SPEC.fullmatch(byte_spec)
    if match is None:
        return None

    start_s, end_s = match.groups()
    if start_s == "" and end_s == "":
        return None

    if start_s == "":
        suffix = int(end_s)
        if suffix == 0 or length == 0:
            raise RangeNotSatisfiable(length)
        return ByteRange(max(length - suffix, 0), length - 1)

    start = int(start_s)
    end = int(end_s) if end_s else length - 1
    if start >= length or end >= length or start > end:
        raise RangeNotSatisfiable(length)
    return ByteRange(start, end)


def _base_headers(meta: ObjectMetadata) -> Dict[str, str]:
    return {
        "Content-Type": meta.content_type,
        "Accept-Ranges": "bytes",
        "Cache-Control": CACHE_CONTROL,
        "ETag": f'"{meta.object_id}"',
    }


# PUBLIC_INTERFACE
def plan_response(meta: ObjectMetadata, range_header: Optional[str]) -> ResponsePlan:
    """Decide status code, headers and body window for an object request."""
    headers = _base_headers(meta)

    if range_header and supports_byte_serving(meta.content_type):
        try:
            byte_range = parse_range_header(range_header, meta.length)
        except RangeNotSatisfiable:
            return ResponsePlan(
                status_code=416,
                headers={"Content-Range": f"bytes */{meta.length}", "Accept-Ranges": "bytes"},
            )
        if byte_range is not None:
            headers["Content-Range"] = f"bytes {byte_range.start}-{byte_range.end}/{meta.length}"
            headers["Content-Length"] = str(byte_range.length)
            return ResponsePlan(status_code=206, headers=headers, byte_range=byte_range)

    headers["Content-Length"] = str(meta.length)
    full = ByteRange(0, meta.length - 1) if meta.length > 0 else None
    return ResponsePlan(status_code=200, headers=headers, byte_range=full)


class ObjectStreamResponse(StreamingResponse):
    """
    StreamingResponse that owns a ByteStream and always closes it.

    The stream is closed whether the body was fully sent, the client went away
    before the first byte, or the transport raised mid-transfer.
    """

    def __init__(self, stream: ByteStream, *, object_id: str, status_code: int, headers: Dict[str, str]):
        self._stream = stream
        self._object_id = object_id
        self._sent = 0
        self._completed = False
        self._relay_iter = self._relay()
        super().__init__(self._relay_iter, status_code=status_code, headers=headers)

    async def _relay(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._stream:
                yield chunk
                self._sent += len(chunk)
        except StoreError:
            self._completed = True
            logger.exception(
                "file_stream_failed: file_id=%s sent=%s expected=%s",
                self._object_id,
                self._sent,
                self._stream.length,
            )
            raise
        self._completed = True

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            if not self._completed:
                logger.info(
                    "file_stream_aborted: file_id=%s sent=%s expected=%s",
                    self._object_id,
                    self._sent,
                    self._stream.length,
                )
            await self._relay_iter.aclose()
            await self._stream.aclose()


def _error(status_code: int, error: str, message: str, head: bool) -> Response:
    if head:
        return Response(status_code=status_code)
    raise HTTPException(status_code=status_code, detail={"error": error, "message": message})


# PUBLIC_INTERFACE
async def serve_object(
    store: ObjectStore,
    object_id: str,
    range_header: Optional[str] = None,
    *,
    head: bool = False,
) -> Response:
    """
    Serve a stored object with HTTP byte-serving semantics.

    Args:
        store: object store to read from.
        object_id: id from the request path; validated before any store call.
        range_header: raw Range header value, if any.
        head: when True only status and headers are produced and no read stream
            is opened.

    Returns:
        A Response (streaming for GET bodies). Error outcomes raise HTTPException
        for GET and return empty responses for HEAD.
    """
    try:
        parse_object_id(object_id)
    except InvalidObjectId:
        return _error(400, "bad_request", "Invalid file ID.", head)

    try:
        meta = await store.stat(object_id)
    except ObjectNotFound:
        return _error(404, "not_found", "File not found.", head)
    except StoreError as exc:
        logger.error("file_stat_failed: file_id=%s exc=%s", object_id, exc)
        return _error(500, "store_error", "Failed to read file metadata.", head)

    plan = plan_response(meta, range_header)
    logger.debug(
        "file_serve: file_id=%s status=%s range=%s length=%s head=%s",
        object_id,
        plan.status_code,
        range_header,
        meta.length,
        head,
    )

    if head or plan.byte_range is None:
        return Response(status_code=plan.status_code, headers=plan.headers)

    try:
        stream = await store.open_range(object_id, plan.byte_range.start, plan.byte_range.end)
    except ObjectNotFound:
        # Deleted between stat and open.
        return _error(404, "not_found", "File not found.", head)
    except StoreError as exc:
        logger.error("file_open_failed: file_id=%s exc=%s", object_id, exc)
        return _error(500, "store_error", "Error streaming file.", head)

    return ObjectStreamResponse(stream, object_id=object_id, status_code=plan.status_code, headers=plan.headers)
