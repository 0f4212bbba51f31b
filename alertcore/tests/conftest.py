from __future__ import annotations

import os
import tempfile

# Point the engine at a throwaway SQLite file before any alertcore module builds it.
_DB_PATH = os.path.join(tempfile.gettempdir(), f"alertcore-tests-{os.getpid()}.db")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_PATH}"
os.environ["AUTH_ENABLED"] = "true"
os.environ["INGEST_AUTH_TOKEN"] = "test-token"
# SQLite allows one writer; keep per-key pipelines serialized in tests.
os.environ["INGEST_MAX_CONCURRENCY"] = "1"
os.environ["REALTIME_ENABLED"] = "true"

import pytest

from alertcore.core.config import get_settings

get_settings.cache_clear()

from alertcore.domain.models import Base
from alertcore.persistence.db import SessionLocal, engine
from alertcore.services.alerting import notifier
from alertcore.services.telemetry import reset_counters


@pytest.fixture(autouse=True)
async def reset_database() -> None:
    # Fresh schema per test; dispose afterwards so pooled connections never cross event loops.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    reset_counters()
    yield
    await engine.dispose()


@pytest.fixture(autouse=True)
def published(monkeypatch) -> list[tuple[str, str]]:
    # Capture realtime messages instead of talking to Redis.
    sent: list[tuple[str, str]] = []

    async def _fake_publish(channel: str, message: str) -> int:
        sent.append((channel, message))
        return 1

    monkeypatch.setattr(notifier, "_redis_publish", _fake_publish)
    return sent


@pytest.fixture
async def session():
    async with SessionLocal() as db_session:
        yield db_session


def pytest_sessionfinish(session, exitstatus) -> None:
    if os.path.exists(_DB_PATH):
        os.remove(_DB_PATH)


@pytest.fixture(autouse=True)
def reset_settings_cache() -> None:
    # Tests that flip env-driven settings must not leak them into later tests.
    yield
    get_settings.cache_clear()
