"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path
from typing import Any, Iterator

import pytest
from fastapi.testclient import TestClient
from fastapi.websockets import WebSocketState
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("DATABASE_PATH", str(Path(tempfile.gettempdir()) / "digital-room-tests.db"))
os.environ.setdefault("ADMIN_USER", "RoomAdmin")
os.environ.setdefault("ADDITIONAL_ADMINS", "Helper1")

from app.api.deps import get_account_service, get_room
from app.main import app
from app.models import Base
from app.services.accounts import AccountService, SqlAlchemyAccountStore
from digitalroom.realtime.managers import RoomManager


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


class DummyWebSocket:
    """Records every frame the hub sends."""

    def __init__(self) -> None:
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []
        self.closed_with: tuple[int, str | None] | None = None

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed_with = (code, reason)
        self.application_state = WebSocketState.DISCONNECTED

    def events(self, event: str) -> list[Any]:
        return [frame.get("data") for frame in self.sent if frame.get("type") == event]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def room(clock) -> RoomManager:
    """A fresh room with a controllable clock."""

    return RoomManager(clock=clock)


@pytest.fixture()
def test_engine() -> Iterator[Engine]:
    """Provide an in-memory SQLite engine for isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(test_engine) -> sessionmaker[Session]:
    """Return a session factory bound to the test engine."""

    return sessionmaker(bind=test_engine, future=True)


@pytest.fixture()
def account_service(session_factory) -> AccountService:
    return AccountService(SqlAlchemyAccountStore(session_factory))


@pytest.fixture()
def client(account_service) -> Iterator[TestClient]:
    """Yield a TestClient talking to a fresh room and the in-memory database."""

    fresh_room = RoomManager()
    app.dependency_overrides[get_account_service] = lambda: account_service
    app.dependency_overrides[get_room] = lambda: fresh_room
    with TestClient(app) as test_client:
        test_client.room = fresh_room  # type: ignore[attr-defined]
        yield test_client
    app.dependency_overrides.clear()
