"""Shared test fixtures.

Every test that touches storage gets its own SQLite file under
``tmp_path``, so tests never share state and run against the real engine
configuration (WAL, foreign keys, busy timeout).
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from crataegus.config import DatabaseSettings
from crataegus.schemas.location import Location, Source
from crataegus.store import LocationStore

BASE_TIME = datetime(2025, 1, 16, 3, 54, 51, 123456, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


@pytest.fixture
def db_settings(tmp_path) -> DatabaseSettings:
    return DatabaseSettings(
        path=tmp_path / "locations.db",
        backups=3,
        busy_backoff_seconds=0.001,
        busy_backoff_max_seconds=0.05,
    )


@pytest_asyncio.fixture
async def store(db_settings):
    store = await LocationStore.open(db_settings)
    yield store
    await store.close()


@pytest_asyncio.fixture
async def alice(store) -> str:
    """A registered user with password ``secret``."""
    await store.user_add("alice", "secret")
    return "alice"


@pytest_asyncio.fixture
async def bob(store) -> str:
    await store.user_add("bob", "hunter2")
    return "bob"


# ---------------------------------------------------------------------------
# Model factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_location():
    """Factory for valid Location instances."""

    def _make(
        username: str = "alice",
        time_utc: datetime | None = None,
        offset_hours: float = -7,
        latitude: float = 41.74108695983887,
        longitude: float = -91.84490871429443,
        altitude: float = 1387.0,
        accuracy: float | None = 6.0,
        source: Source = Source.GPSLOGGER_HTTP,
    ) -> Location:
        time_utc = time_utc or BASE_TIME
        return Location(
            username=username,
            time_utc=time_utc,
            time_local=time_utc.astimezone(timezone(timedelta(hours=offset_hours))),
            latitude=latitude,
            longitude=longitude,
            altitude=altitude,
            accuracy=accuracy,
            source=source,
        )

    return _make


def minutes(n: float) -> datetime:
    """BASE_TIME shifted by ``n`` minutes."""
    return BASE_TIME + timedelta(minutes=n)
