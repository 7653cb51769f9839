"""
Auth endpoints:
- POST /auth/register
- POST /auth/login

Both return { token, token_type }. New accounts always get the "user" role;
admins are promoted out of band.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.api.auth import ROLE_USER, create_access_token, hash_password, verify_password
from src.api.db import db_session_dep
from src.api.models import User
from src.api.schemas import AuthLoginRequest, AuthRegisterRequest, AuthTokenResponse

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post(
    "/register",
    response_model=AuthTokenResponse,
    status_code=201,
    summary="Register a new user",
    description="Creates a new user and returns a JWT token.",
    operation_id="register_user",
)
def register(req: AuthRegisterRequest, db: Session = Depends(db_session_dep)) -> AuthTokenResponse:
    """Register a new user with email/password."""
    email = req.email.lower().strip()

    existing = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if existing:
        raise HTTPException(status_code=400, detail="Email is already registered.")

    user = User(
        id=uuid.uuid4(),
        email=email,
        name=(req.name or "").strip() or None,
        password_hash=hash_password(req.password),
        role=ROLE_USER,
        created_at=datetime.now(timezone.utc),
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail="Email is already registered.")

    token = create_access_token(user_id=user.id, email=user.email, role=user.role)
    return AuthTokenResponse(token=token, token_type="bearer")


@router.post(
    "/login",
    response_model=AuthTokenResponse,
    summary="Login",
    description="Validates credentials and returns a JWT token.",
    operation_id="login_user",
)
def login(req: AuthLoginRequest, db: Session = Depends(db_session_dep)) -> AuthTokenResponse:
    """Login an existing user."""
    email = req.email.lower().strip()

    user = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if not user or not verify_password(req.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password.")

    return AuthTokenResponse(
        token=create_access_token(user_id=user.id, email=user.email, role=user.role),
        token_type="bearer",
    )
