"""
File endpoints:
- GET /files/{file_id}     stream a stored object, Range aware
- HEAD /files/{file_id}    headers only, no read stream opened
- DELETE /files/{file_id}  remove a stored object (idempotent, admin)

Object ids are handed out by the catalogue endpoints; serving needs no token.
Deleting needs an admin bearer token (401 without one, 403 for other roles).
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.responses import Response

from src.api.auth import require_admin
from src.api.models import User
from src.api.mongo import object_store_dep
from src.api.object_store import InvalidObjectId, ObjectStore, StoreError
from src.api.schemas import MessageResponse
from src.api.streaming import serve_object

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/files", tags=["Files"])

_MEDIA_RESPONSES = {
    200: {"description": "Full object"},
    206: {"description": "Partial content for a single byte range"},
    400: {"description": "Malformed file id"},
    404: {"description": "Not found"},
    416: {"description": "Range not satisfiable"},
    500: {"description": "Object store error"},
}


@router.get(
    "/{file_id}",
    summary="Stream a stored file",
    description="Serves a stored object. Audio/video honour a single `Range: bytes=` header.",
    operation_id="get_file",
    responses=_MEDIA_RESPONSES,
)
async def get_file(file_id: str, request: Request, store: ObjectStore = Depends(object_store_dep)) -> Response:
    """Serve the object's bytes with 200/206/416 semantics."""
    return await serve_object(store, file_id, request.headers.get("range"))


@router.head(
    "/{file_id}",
    summary="Stored file headers",
    description="Same status and headers as GET, without a body.",
    operation_id="head_file",
    responses=_MEDIA_RESPONSES,
)
async def head_file(file_id: str, request: Request, store: ObjectStore = Depends(object_store_dep)) -> Response:
    """Compute GET headers for the object without reading it."""
    return await serve_object(store, file_id, request.headers.get("range"), head=True)


@router.delete(
    "/{file_id}",
    response_model=MessageResponse,
    summary="Delete a stored file",
    description="Removes the object and its chunks. Deleting an absent object succeeds. Admin only.",
    operation_id="delete_file",
    responses={
        400: {"description": "Malformed file id"},
        401: {"description": "Not authenticated"},
        403: {"description": "Admin access required"},
        500: {"description": "Object store error"},
    },
)
async def delete_file(
    file_id: str,
    admin: User = Depends(require_admin),
    store: ObjectStore = Depends(object_store_dep),
) -> MessageResponse:
    """Delete a stored object (admin only)."""
    try:
        await store.delete(file_id)
    except InvalidObjectId:
        raise HTTPException(status_code=400, detail={"error": "bad_request", "message": "Invalid file ID."})
    except StoreError as exc:
        logger.error("file_delete_failed: file_id=%s exc=%s", file_id, exc)
        raise HTTPException(status_code=500, detail={"error": "store_error", "message": "Failed to delete file."})
    logger.info("file_deleted: file_id=%s by=%s", file_id, admin.id)
    return MessageResponse(message="File deleted successfully")
