"""
Process-wide MongoDB client and GridFS object store.

The motor client is created on first use and closed from the application
lifespan on shutdown. Handlers receive the store through `object_store_dep`, so
tests can override it with a store over a fake bucket.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from fastapi import HTTPException
from motor.motor_asyncio import AsyncIOMotorClient

from src.api.db import redact_url
from src.api.object_store import DEFAULT_CHUNK_SIZE, GridFSObjectStore, ObjectStore

logger = logging.getLogger(__name__)

_CLIENT: Optional[AsyncIOMotorClient] = None
_STORE: Optional[GridFSObjectStore] = None


def _mongo_uri() -> str:
    uri = os.getenv("MONGODB_URI") or os.getenv("DB_URI")
    if not uri:
        raise RuntimeError("Object store configuration missing. Set MONGODB_URI (or DB_URI).")
    return uri


def _db_name() -> str:
    return os.getenv("MONGODB_DB_NAME", "media_library").strip() or "media_library"


def _bucket_name() -> str:
    return os.getenv("GRIDFS_BUCKET", "files").strip() or "files"


def _chunk_size() -> int:
    try:
        size = int(os.getenv("GRIDFS_CHUNK_SIZE_BYTES", str(DEFAULT_CHUNK_SIZE)))
    except ValueError:
        return DEFAULT_CHUNK_SIZE
    return size if size > 0 else DEFAULT_CHUNK_SIZE


def _read_timeout() -> Optional[float]:
    """Per-read store timeout in seconds; 0 disables it."""
    try:
        timeout = float(os.getenv("STORE_READ_TIMEOUT_SECONDS", "30"))
    except ValueError:
        return 30.0
    return timeout if timeout > 0 else None


# PUBLIC_INTERFACE
def get_object_store() -> GridFSObjectStore:
    """Return (and lazily create) the shared GridFS object store."""
    global _CLIENT, _STORE
    if _STORE is None:
        uri = _mongo_uri()
        logger.info(
            "GridFS: using mongo url=%s db=%s bucket=%s",
            redact_url(uri),
            _db_name(),
            _bucket_name(),
        )
        _CLIENT = AsyncIOMotorClient(uri)
        _STORE = GridFSObjectStore.from_database(
            _CLIENT[_db_name()],
            _bucket_name(),
            chunk_size=_chunk_size(),
            read_timeout=_read_timeout(),
        )
    return _STORE


# PUBLIC_INTERFACE
def close_object_store() -> None:
    """Close the shared client, if one was created."""
    global _CLIENT, _STORE
    if _CLIENT is not None:
        _CLIENT.close()
        logger.info("GridFS: mongo client closed")
    _CLIENT = None
    _STORE = None


# PUBLIC_INTERFACE
def object_store_dep() -> ObjectStore:
    """FastAPI dependency returning the object store, 503 when unconfigured."""
    try:
        return get_object_store()
    except RuntimeError as exc:
        raise HTTPException(
            status_code=503,
            detail={
                "error": "object_store_misconfigured",
                "message": str(exc),
                "hint": "Set MONGODB_URI and optionally MONGODB_DB_NAME / GRIDFS_BUCKET.",
            },
        )
