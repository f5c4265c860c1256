"""Concurrent-writer stress scenario.

Regression check for the database file becoming unopenable (and inserts
going missing) under heavy concurrent write load: many writer tasks each
insert unique fixes for one user, then the file is reopened and counted.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

import structlog

from crataegus.config import DatabaseSettings
from crataegus.schemas.location import Location, Source
from crataegus.store import LocationStore

logger = structlog.get_logger()

_LOCAL_OFFSET = timezone(timedelta(hours=2))


@dataclass
class StressResult:
    writers: int
    inserts_per_writer: int
    inserted: int
    counted_after_reopen: int
    elapsed_seconds: float

    @property
    def expected(self) -> int:
        return self.writers * self.inserts_per_writer

    @property
    def ok(self) -> bool:
        return self.inserted == self.expected == self.counted_after_reopen


async def write_concurrently(
    store: LocationStore,
    username: str,
    writers: int,
    inserts_per_writer: int,
    start: datetime | None = None,
) -> int:
    """Run ``writers`` tasks, each inserting ``inserts_per_writer`` unique fixes.

    Timestamps are spaced one microsecond apart so every
    ``(username, time_utc)`` key is distinct. Returns the number of rows
    the store reported as newly inserted.
    """
    start = start or datetime.now(timezone.utc)

    async def _writer(index: int) -> int:
        inserted = 0
        for j in range(inserts_per_writer):
            time_utc = start + timedelta(microseconds=index * inserts_per_writer + j)
            location = Location(
                username=username,
                time_utc=time_utc,
                time_local=time_utc.astimezone(_LOCAL_OFFSET),
                latitude=0.0,
                longitude=0.0,
                altitude=0.0,
                source=Source.GPSLOGGER_HTTP,
            )
            if await store.insert(location):
                inserted += 1
        return inserted

    results = await asyncio.gather(*(_writer(i) for i in range(writers)))
    return sum(results)


async def run_stress(
    settings: DatabaseSettings,
    writers: int = 100,
    inserts_per_writer: int = 1000,
    username: str = "stress",
) -> StressResult:
    """Hammer a fresh database at ``settings.path``, then reopen it and count."""
    path = Path(settings.path)
    logger.info("stress_started", path=str(path), writers=writers, inserts=inserts_per_writer)

    began = time.monotonic()
    store = await LocationStore.open(settings)
    try:
        await store.user_add(username, username)
        inserted = await write_concurrently(store, username, writers, inserts_per_writer)
    finally:
        await store.close()
    elapsed = time.monotonic() - began

    reopened = await LocationStore.open(settings)
    try:
        counted = await reopened.count(username)
    finally:
        await reopened.close()

    result = StressResult(
        writers=writers,
        inserts_per_writer=inserts_per_writer,
        inserted=inserted,
        counted_after_reopen=counted,
        elapsed_seconds=elapsed,
    )
    logger.info(
        "stress_finished",
        inserted=inserted,
        counted=counted,
        expected=result.expected,
        elapsed_seconds=round(elapsed, 2),
    )
    return result
