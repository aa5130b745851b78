# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from itertools import count
from pathlib import Path
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "murmur-test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("PASSWORD_HASH_ITERATIONS", "1000")

from murmur.api.v1.dependencies import get_hub_dep
from murmur.core.security import create_access_token, hash_password
from murmur.db.session import Base
from murmur.main import app as fastapi_app
from murmur.models import Friendship, FriendshipStatus, Message, User
from murmur.models.friendship import normalize_pair
from murmur.realtime.hub import RealtimeHub, reset_hub
from murmur.services.blob_storage import LocalBlobStorage

TEST_DB_URL = "sqlite://"
TEST_PASSWORD = "secret123"
TEST_UPLOAD_MAX_BYTES = 1024

_USER_COUNTER = count(1)


class RecordingConnection:
    """In-memory stand-in for a websocket that records every frame it is sent."""

    def __init__(self, connection_id: str, *, fail: bool = False) -> None:
        self.id = connection_id
        self.fail = fail
        self.frames: list[tuple[str, Any]] = []
        self.closed = False

    async def send(self, event: str, data: Any) -> None:
        if self.fail:
            raise ConnectionError(f"{self.id} is gone")
        self.frames.append((event, data))

    async def close(self, code: int = 1001) -> None:
        self.closed = True

    def events(self, name: str) -> list[Any]:
        """Return the payloads of every frame named ``name``."""
        return [data for event, data in self.frames if event == name]

    def names(self) -> list[str]:
        return [event for event, _ in self.frames]

    def __repr__(self) -> str:
        return f"RecordingConnection({self.id!r})"


def auth_headers(user: User) -> dict[str, str]:
    """Return bearer headers for ``user``."""
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> Iterator[sessionmaker[Session]]:
    factory = sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    try:
        yield factory
    finally:
        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def make_user(session_factory: sessionmaker[Session]) -> Callable[..., User]:
    """Return a factory persisting users with the shared test password."""

    def _make(username: str | None = None, **fields: Any) -> User:
        number = next(_USER_COUNTER)
        username = username or f"user{number}"
        with session_factory() as db:
            user = User(
                username=username,
                email=fields.pop("email", f"{username}{number}@example.com"),
                password_hash=hash_password(TEST_PASSWORD),
                **fields,
            )
            db.add(user)
            db.commit()
            db.refresh(user)
            return user

    return _make


@pytest.fixture()
def make_friendship(session_factory: sessionmaker[Session]) -> Callable[..., Friendship]:
    """Return a factory persisting an edge between two users."""

    def _make(
        requester: User,
        recipient: User,
        status: FriendshipStatus = FriendshipStatus.ACCEPTED,
    ) -> Friendship:
        low, high = normalize_pair(requester.id, recipient.id)
        with session_factory() as db:
            edge = Friendship(
                requester_id=requester.id,
                recipient_id=recipient.id,
                user_low_id=low,
                user_high_id=high,
                status=status,
            )
            db.add(edge)
            db.commit()
            db.refresh(edge)
            return edge

    return _make


@pytest.fixture()
def alice(make_user: Callable[..., User]) -> User:
    return make_user("alice")


@pytest.fixture()
def bob(make_user: Callable[..., User]) -> User:
    return make_user("bob")


@pytest.fixture()
def carol(make_user: Callable[..., User]) -> User:
    return make_user("carol")


@pytest.fixture()
def friends(
    alice: User,
    bob: User,
    make_friendship: Callable[..., Friendship],
) -> Friendship:
    """Make alice and bob accepted friends."""
    return make_friendship(alice, bob)


@pytest.fixture()
def count_messages(session_factory: sessionmaker[Session]) -> Callable[[], int]:
    def _count() -> int:
        with session_factory() as db:
            return db.query(Message).count()

    return _count


@pytest.fixture()
def upload_root(tmp_path: Path) -> Path:
    return tmp_path / "uploads"


@pytest.fixture()
def hub(session_factory: sessionmaker[Session], upload_root: Path) -> RealtimeHub:
    return RealtimeHub(
        session_factory,
        blob_storage=LocalBlobStorage(upload_root, max_bytes=TEST_UPLOAD_MAX_BYTES),
    )


@pytest.fixture()
def app(hub: RealtimeHub) -> Iterator[FastAPI]:
    fastapi_app.dependency_overrides[get_hub_dep] = lambda: hub
    try:
        yield fastapi_app
    finally:
        fastapi_app.dependency_overrides.pop(get_hub_dep, None)
        reset_hub()


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client
