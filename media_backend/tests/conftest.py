"""Shared test fixtures: fake GridFS store, in-memory catalogue DB, API client."""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterator
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from fakes import FakeGridFSBucket
from src.api.auth import create_access_token
from src.api.db import db_session_dep
from src.api.main import app
from src.api.models import Base, User
from src.api.mongo import object_store_dep
from src.api.object_store import GridFSObjectStore


@pytest.fixture(autouse=True)
def jwt_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("JWT_SECRET", "test-secret")


@pytest.fixture
def bucket() -> FakeGridFSBucket:
    """Bucket with tiny chunks so ranges cross chunk boundaries."""
    return FakeGridFSBucket(chunk_size=16)


@pytest.fixture
def store(bucket: FakeGridFSBucket) -> GridFSObjectStore:
    return GridFSObjectStore(bucket, bucket.files)


@pytest.fixture
def session_factory() -> Iterator[sessionmaker]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    engine.dispose()


@pytest.fixture
def client(store: GridFSObjectStore, session_factory: sessionmaker) -> Iterator[TestClient]:
    def _db() -> Iterator[Session]:
        db = session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    app.dependency_overrides[db_session_dep] = _db
    app.dependency_overrides[object_store_dep] = lambda: store
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(session_factory: sessionmaker) -> Callable[..., User]:
    def _make_user(role: str = "user", email: str | None = None) -> User:
        with session_factory() as db:
            user = User(
                id=uuid.uuid4(),
                email=email or f"{uuid.uuid4().hex[:8]}@example.com",
                password_hash="not-a-real-hash",
                role=role,
                created_at=datetime.now(timezone.utc),
            )
            db.add(user)
            db.commit()
            db.refresh(user)
            db.expunge(user)
            return user

    return _make_user


@pytest.fixture
def admin_headers(make_user: Callable[..., User]) -> dict[str, str]:
    admin = make_user(role="admin")
    token = create_access_token(user_id=admin.id, email=admin.email, role=admin.role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers(make_user: Callable[..., User]) -> dict[str, str]:
    user = make_user(role="user")
    token = create_access_token(user_id=user.id, email=user.email, role=user.role)
    return {"Authorization": f"Bearer {token}"}
