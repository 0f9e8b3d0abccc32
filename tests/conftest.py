"""
Shared test fixtures for powerstats tests.

The application runs against a throwaway SQLite database (aiosqlite) in the
test's tmp_path, with tables created at startup via AUTO_CREATE_SCHEMA and
the Redis cache disabled. Store-level tests get a BucketStore on the same
kind of database without the HTTP layer.

CHANGELOG:
- 2026-03-10: SQLite-backed app and store fixtures (STORY-112)
- 2026-02-14: Initial creation with app fixture and mocked DB/Redis (STORY-007)
"""

from collections.abc import AsyncGenerator, Generator
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from powerstats.db.session import create_engine, create_schema
from powerstats.services.store import BucketStore

AUTH_TOKEN = "test-token-abc"
LOCATION = "VT"


def sqlite_url(directory: Path) -> str:
    """Return an aiosqlite URL for a database file inside *directory*."""
    return f"sqlite+aiosqlite:///{directory / 'powerstats.db'}"


@pytest.fixture(autouse=True)
def _set_test_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Set environment variables for testing.

    These are test-only values that let the FastAPI app start without a
    PostgreSQL server or Redis.
    """
    monkeypatch.setenv("DATABASE_URL", sqlite_url(tmp_path))
    monkeypatch.setenv("LOCATION_TOKENS", f"{AUTH_TOKEN}:{LOCATION}")
    monkeypatch.setenv("REDIS_URL", "")
    monkeypatch.setenv("AUTO_CREATE_SCHEMA", "true")
    monkeypatch.setenv("CONNECT_MAX_ATTEMPTS", "1")
    monkeypatch.setenv("CONNECT_RETRY_DELAY_S", "0.01")
    monkeypatch.setenv("FOLD_RETRY_DELAY_MS", "1")
    monkeypatch.delenv("SERVING_TIMEZONE", raising=False)


@pytest.fixture()
async def store(tmp_path: Path) -> AsyncGenerator[BucketStore, None]:
    """Create a BucketStore over a fresh SQLite database.

    Yields:
        BucketStore: Store with all tables created.
    """
    engine = create_engine(sqlite_url(tmp_path))
    await create_schema(engine)
    try:
        yield BucketStore(engine, timeout_s=5.0)
    finally:
        await engine.dispose()


@pytest.fixture()
def mock_redis() -> AsyncMock:
    """Create a mock async Redis client.

    Returns:
        AsyncMock: A mock that behaves like a redis.asyncio.Redis client.
    """
    client = AsyncMock()
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock()
    client.delete = AsyncMock()
    client.aclose = AsyncMock()
    return client


@pytest.fixture()
def client() -> Generator[TestClient, None, None]:
    """Create a FastAPI TestClient for integration testing.

    Uses a context manager so the application lifespan (settings, database
    check, schema creation, service wiring) runs for every test.

    Yields:
        TestClient: Configured test client for the FastAPI app.
    """
    from powerstats.api.main import app

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
