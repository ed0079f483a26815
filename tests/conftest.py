import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel

from realtorpro.api.deps import status_cache
from realtorpro.core.database import get_database
from realtorpro.main import app
from realtorpro.models.collection import Collection
from realtorpro.models.user import User

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class _SyncASGIClient:
    """Minimal synchronous wrapper around httpx.AsyncClient for ASGI apps."""

    def __init__(self, app):
        transport = httpx.ASGITransport(app=app)
        self._client = httpx.AsyncClient(transport=transport, base_url="http://testserver")

    def request(self, method: str, url: str, **kwargs):
        return asyncio.run(self._client.request(method, url, **kwargs))

    def get(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs):
        return self.request("POST", url, **kwargs)

    def close(self) -> None:
        asyncio.run(self._client.aclose())


class SyncAsyncSession:
    """Async facade over a sync SQLite session; covers what the repository calls."""

    def __init__(self, session: Session):
        self._session = session

    async def execute(self, stmt):
        return self._session.execute(stmt)

    async def commit(self):
        self._session.commit()

    async def rollback(self):
        self._session.rollback()

    def add(self, obj):
        self._session.add(obj)

    def close(self):
        self._session.close()


@pytest.fixture
def client():
    """Create test client compatible with older/newer httpx releases."""
    try:
        test_client = TestClient(app)
        yield test_client
    except TypeError:
        fallback_client = _SyncASGIClient(app)
        try:
            yield fallback_client
        finally:
            fallback_client.close()


@pytest.fixture(autouse=True)
def clear_status_cache():
    status_cache.clear()
    yield
    status_cache.clear()


@pytest.fixture
def sync_factory():
    """Real in-memory SQLite database shared by every session of one test."""
    engine = create_engine(
        "sqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    SQLModel.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, class_=Session, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def session_factory(sync_factory):
    """Drop-in for ``session_scope``: an async context manager yielding a session."""

    @asynccontextmanager
    async def factory():
        session = SyncAsyncSession(sync_factory())
        try:
            yield session
        finally:
            session.close()

    return factory


@pytest.fixture
def override_db(sync_factory):
    async def override():
        session = SyncAsyncSession(sync_factory())
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_database] = override
    yield sync_factory
    app.dependency_overrides.pop(get_database, None)


@pytest.fixture
def add_user(sync_factory):
    def _add(user_id: str = "user-1", **fields) -> User:
        fields.setdefault("trial_start_time", NOW - timedelta(days=1))
        fields.setdefault("trial_duration_minutes", 7 * 24 * 60)
        with sync_factory() as session:
            user = User(id=user_id, email=f"{user_id}@example.com", **fields)
            session.add(user)
            session.commit()
            session.refresh(user)
            return user

    return _add


@pytest.fixture
def add_collection(sync_factory):
    def _add(collection_id: str, user_id: str) -> Collection:
        with sync_factory() as session:
            collection = Collection(id=collection_id, user_id=user_id, name="Подборка")
            session.add(collection)
            session.commit()
            return collection

    return _add


@pytest.fixture
def load_user(sync_factory):
    def _load(user_id: str) -> User | None:
        with sync_factory() as session:
            return session.get(User, user_id)

    return _load
