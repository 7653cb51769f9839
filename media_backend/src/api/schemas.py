"""
Pydantic models (request/response shapes) for API endpoints.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field


class AuthRegisterRequest(BaseModel):
    email: EmailStr = Field(..., description="User email address (unique).")
    password: str = Field(..., min_length=6, description="User password (min 6 chars).")
    name: Optional[str] = Field(None, description="Display name.")


class AuthLoginRequest(BaseModel):
    email: EmailStr = Field(..., description="User email address.")
    password: str = Field(..., description="User password.")


class AuthTokenResponse(BaseModel):
    token: str = Field(..., description="JWT access token.")
    token_type: str = Field("bearer", description="Token type for Authorization header.")


class SongResponse(BaseModel):
    id: uuid.UUID = Field(..., description="Song UUID.")
    title: str = Field(..., description="Song title.")
    artist: str = Field(..., description="Song artist.")
    album: Optional[str] = Field(None, description="Album name.")
    genre: Optional[str] = Field(None, description="Genre.")
    file_path: Optional[str] = Field(None, description="URL of the audio (`/files/<id>` or a legacy path).")
    cover_image_path: Optional[str] = Field(None, description="URL of the cover image, if any.")
    file_id: Optional[str] = Field(None, description="Object id of the stored audio.")
    cover_image_id: Optional[str] = Field(None, description="Object id of the stored cover image.")
    content_type: str = Field(..., description="Audio content type.")
    size_bytes: int = Field(..., description="Audio size in bytes.")
    duration_seconds: Optional[int] = Field(None, description="Duration in seconds if known.")
    play_count: int = Field(0, description="Number of stream starts.")
    uploaded_by: Optional[uuid.UUID] = Field(None, description="Uploading admin.")
    created_at: datetime = Field(..., description="Creation timestamp.")
    updated_at: datetime = Field(..., description="Last update timestamp.")


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class SongListResponse(BaseModel):
    songs: List[SongResponse]
    pagination: Pagination


class MessageResponse(BaseModel):
    message: str
