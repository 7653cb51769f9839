"""
FastAPI application entrypoint for the media library backend.

- /auth/*   register and login (JWT)
- /songs/*  song catalogue, admin upload/delete, song streaming
- /files/*  public byte-serving of stored media (GridFS), Range aware

CORS is enabled for local development (http://localhost:5173) and can be extended
via environment variables.
"""

from __future__ import annotations

import logging
import os as _os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.db import dispose_engine
from src.api.mongo import close_object_store
from src.api.routes_auth import router as auth_router
from src.api.routes_files import router as files_router
from src.api.routes_songs import router as songs_router

logging.basicConfig(
    level=_os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "Auth", "description": "Register and login."},
    {"name": "Songs", "description": "Song catalogue, uploads and streaming."},
    {"name": "Files", "description": "Byte-serving of stored media with Range support (public)."},
    {"name": "Health", "description": "Service health and basic runtime info."},
]


@asynccontextmanager
async def lifespan(_app: FastAPI):
    yield
    # Runs on SIGINT/SIGTERM through the server's shutdown sequence.
    close_object_store()
    dispose_engine()
    logger.info("shutdown: connections released")


app = FastAPI(
    title="Media Library Backend API",
    description=(
        "Backend for a media subscription platform.\n\n"
        "Streaming:\n"
        "- GET/HEAD /files/{file_id} serve stored media and support single byte-range requests."
    ),
    version="3.0.0",
    openapi_tags=openapi_tags,
    lifespan=lifespan,
)

# Credentials require explicit origins (not '*') in browsers.
# Extra origins: CORS_ALLOW_ORIGINS or ALLOWED_ORIGINS, comma-separated.
cors_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]

_allow_origins_raw = _os.getenv("CORS_ALLOW_ORIGINS") or _os.getenv("ALLOWED_ORIGINS", "")
cors_origins.extend(o.strip() for o in _allow_origins_raw.split(",") if o.strip())

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "HEAD", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["Content-Range", "Content-Length", "Accept-Ranges", "ETag"],
)

app.include_router(auth_router)
app.include_router(songs_router)
app.include_router(files_router)


@app.get(
    "/",
    summary="Health check",
    description="Simple health check endpoint.",
    tags=["Health"],
)
def health_check():
    """Return basic service health information."""
    return {"status": "ok"}
