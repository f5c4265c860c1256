"""The location store: persistence for users and their GPS fixes.

One ``LocationStore`` owns one SQLite file through a pooled async engine.
Any number of tasks may call into it concurrently. Writers are serialized
by SQLite itself; the store only makes sure they wait for the lock
(busy_timeout plus a bounded backoff loop) instead of failing or
dropping rows.

Locations are append-only and keyed by ``(username, time_utc)``. A
repeated insert of the same fix is a no-op, a different fix under an
existing key is a ``ConflictError``, and the stored row always wins.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import TypeVar

import pydantic
import structlog
from sqlalchemy import func, insert, select, text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from crataegus import backup as backup_files
from crataegus.config import DatabaseSettings
from crataegus.database import create_engine, create_session_factory
from crataegus.errors import (
    ConflictError,
    DuplicateUserError,
    StorageError,
    UnknownUserError,
    ValidationError,
)
from crataegus.models import Base, LocationRecord, UserRecord
from crataegus.schemas.location import Location, User, validate_location, validate_user

logger = structlog.get_logger()

T = TypeVar("T")

# sqlite3 reports write-lock contention through these messages
_BUSY_MARKERS = ("database is locked", "database is busy", "database table is locked")


def _is_busy(exc: OperationalError) -> bool:
    message = str(exc.orig).lower()
    return any(marker in message for marker in _BUSY_MARKERS)


def _violates(exc: IntegrityError, constraint: str) -> bool:
    return constraint in str(exc.orig).upper()


def _as_utc(value: datetime, name: str) -> datetime:
    if not isinstance(value, datetime) or value.tzinfo is None:
        raise ValidationError(f"{name} must be a timezone-aware datetime, got {value!r}")
    try:
        return value.astimezone(timezone.utc)
    except OverflowError as e:
        raise ValidationError(
            f"{name} {value.isoformat()} is outside the representable UTC range"
        ) from e


def _stored_location(row) -> Location:
    """Build a Location from a stored row, which may have been edited outside the store."""
    try:
        return Location(**row)
    except pydantic.ValidationError as e:
        raise StorageError(f"stored location failed validation: {e}") from e


class LocationStore:
    """Users and locations in a single SQLite file."""

    def __init__(self, engine: AsyncEngine, settings: DatabaseSettings, path: Path) -> None:
        self.engine = engine
        self.session_factory = create_session_factory(engine)
        self.settings = settings
        self.path = path

    @classmethod
    async def open(cls, settings: DatabaseSettings) -> LocationStore:
        """Open (creating if needed) the database file and both tables."""
        path = Path(settings.path).expanduser().resolve()
        if not path.parent.is_dir():
            raise StorageError(f"database directory does not exist: {path.parent}")

        engine = create_engine(settings, path)
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            await engine.dispose()
            raise StorageError(f"failed to open database {path}: {e}") from e

        logger.info("store_opened", path=str(path), backups=settings.backups)
        return cls(engine, settings, path)

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info("store_closed", path=str(self.path))

    async def __aenter__(self) -> LocationStore:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ── Contention ────────────────────────────────────────

    async def _retry_busy(self, operation: Callable[[], Awaitable[T]], action: str) -> T:
        """Run ``operation``, retrying with exponential backoff while SQLite is busy.

        Each attempt is a whole transaction, so a retried attempt never
        sees half of a previous one. Non-busy operational errors and
        exhausted retries become ``StorageError``; every other exception
        propagates unchanged for the caller to classify.
        """
        attempt = 0
        while True:
            try:
                return await operation()
            except OperationalError as e:
                if not _is_busy(e):
                    raise StorageError(f"{action} failed: {e.orig}") from e
                if attempt >= self.settings.busy_retries:
                    logger.error("sqlite_busy_exhausted", action=action, attempts=attempt + 1)
                    raise StorageError(
                        f"{action} failed: database still busy after {attempt + 1} attempts"
                    ) from e
                attempt += 1
                backoff = min(
                    self.settings.busy_backoff_seconds * (2 ** (attempt - 1)),
                    self.settings.busy_backoff_max_seconds,
                )
                # Jitter keeps retrying writers from waking in lockstep
                backoff *= 0.5 + random.random() / 2
                logger.warning(
                    "sqlite_busy_retry",
                    action=action,
                    attempt=attempt,
                    backoff_seconds=round(backoff, 4),
                )
                await asyncio.sleep(backoff)

    # ── Locations ─────────────────────────────────────────

    async def insert(self, location: Location) -> bool:
        """Persist ``location``.

        Returns:
            True if a new row was written, False if an identical row was
            already stored (duplicate push from a retrying client).

        Raises:
            ValidationError: the location fails its checks; nothing is written.
            ConflictError: a different location is stored under the same key.
            UnknownUserError: ``location.username`` has no users row.
            StorageError: the engine failed.
        """
        location = validate_location(location)
        values = LocationRecord.row_values(location)

        async def _write() -> None:
            async with self.session_factory() as session:
                async with session.begin():
                    await session.execute(insert(LocationRecord).values(**values))

        try:
            await self._retry_busy(_write, "location insert")
        except IntegrityError as e:
            if _violates(e, "FOREIGN KEY"):
                logger.warning("location_unknown_user", username=location.username)
                raise UnknownUserError(location.username) from e
            if _violates(e, "UNIQUE"):
                return await self._resolve_existing(location)
            raise StorageError(f"location insert failed: {e.orig}") from e
        except SQLAlchemyError as e:
            raise StorageError(f"location insert failed: {e}") from e

        logger.debug(
            "location_inserted",
            username=location.username,
            time_utc=location.time_utc.isoformat(),
            source=location.source.value,
        )
        return True

    async def _resolve_existing(self, location: Location) -> bool:
        """Decide between duplicate and conflict after a key collision.

        The key is immutable once written, so a single read settles it.
        """
        existing = await self._get(location.username, location.time_utc)
        if existing is None:
            raise StorageError(
                f"key collision for {location.username!r} at "
                f"{location.time_utc.isoformat()} but no stored row was found"
            )
        if existing.is_identical(location):
            logger.debug(
                "location_duplicate",
                username=location.username,
                time_utc=location.time_utc.isoformat(),
            )
            return False
        logger.warning(
            "location_conflict",
            username=location.username,
            time_utc=location.time_utc.isoformat(),
        )
        raise ConflictError(existing, location)

    async def _get(self, username: str, time_utc: datetime) -> Location | None:
        async def _read() -> Location | None:
            async with self.session_factory() as session:
                table = LocationRecord.__table__
                result = await session.execute(
                    select(table).where(
                        table.c.username == username,
                        table.c.time_utc == time_utc,
                    )
                )
                row = result.mappings().one_or_none()
                return _stored_location(row) if row else None

        try:
            return await self._retry_busy(_read, "location lookup")
        except SQLAlchemyError as e:
            raise StorageError(f"location lookup failed: {e}") from e

    async def stream(
        self, username: str, start: datetime, stop: datetime
    ) -> AsyncIterator[Location]:
        """Yield the user's locations with ``start <= time_utc < stop``, oldest first.

        Rows come off a live cursor, so memory stays flat regardless of
        the range size. The iterator is single-use; call again to re-run
        the query. A storage fault mid-stream raises ``StorageError`` and
        ends the iteration.
        """
        start = _as_utc(start, "start")
        stop = _as_utc(stop, "stop")
        table = LocationRecord.__table__
        # Plain rows rather than ORM entities: nothing accumulates in a
        # session identity map while a long range is consumed.
        stmt = (
            select(table)
            .where(
                table.c.username == username,
                table.c.time_utc >= start,
                table.c.time_utc < stop,
            )
            .order_by(table.c.time_utc)
        )
        try:
            async with self.session_factory() as session:
                result = await session.stream(stmt)
                async for row in result.mappings():
                    yield _stored_location(row)
        except SQLAlchemyError as e:
            logger.error("location_stream_failed", username=username, error=str(e))
            raise StorageError(f"location stream failed: {e}") from e

    async def at(self, username: str, time: datetime) -> Location | None:
        """The user's latest location with ``time_utc <= time``, or None."""
        time = _as_utc(time, "time")

        async def _read() -> Location | None:
            async with self.session_factory() as session:
                table = LocationRecord.__table__
                result = await session.execute(
                    select(table)
                    .where(table.c.username == username, table.c.time_utc <= time)
                    .order_by(table.c.time_utc.desc())
                    .limit(1)
                )
                row = result.mappings().first()
                return _stored_location(row) if row else None

        try:
            return await self._retry_busy(_read, "location at")
        except SQLAlchemyError as e:
            raise StorageError(f"location at failed: {e}") from e

    async def count(self, username: str | None = None) -> int:
        """Number of stored locations for ``username``, or for everyone if None.

        Raises:
            UnknownUserError: ``username`` is given but does not exist.
        """

        async def _read() -> int:
            async with self.session_factory() as session:
                stmt = select(func.count()).select_from(LocationRecord)
                if username is not None:
                    if await session.get(UserRecord, username) is None:
                        raise UnknownUserError(username)
                    stmt = stmt.where(LocationRecord.username == username)
                result = await session.execute(stmt)
                return result.scalar_one()

        try:
            return await self._retry_busy(_read, "location count")
        except SQLAlchemyError as e:
            raise StorageError(f"location count failed: {e}") from e

    # ── Users ─────────────────────────────────────────────

    async def user_add(self, username: str, password: str) -> None:
        """Create a user.

        Raises:
            ValidationError: username or password too long, or username empty.
            DuplicateUserError: the username is taken.
        """
        user = validate_user(User.model_construct(username=username, password=password))

        async def _write() -> None:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(UserRecord(username=user.username, password=user.password))

        try:
            await self._retry_busy(_write, "user insert")
        except IntegrityError as e:
            if _violates(e, "UNIQUE"):
                raise DuplicateUserError(username) from e
            raise StorageError(f"user insert failed: {e.orig}") from e
        except SQLAlchemyError as e:
            raise StorageError(f"user insert failed: {e}") from e

        logger.info("user_added", username=username)

    async def user_check(self, username: str, password: str) -> bool:
        """True only if the user exists and ``password`` matches exactly.

        An unknown user and a wrong password both return False. The plain
        string comparison takes different time in the two cases, which is
        an open hardening item.
        """

        async def _read() -> str | None:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(UserRecord.password).where(UserRecord.username == username)
                )
                return result.scalar_one_or_none()

        try:
            stored = await self._retry_busy(_read, "user check")
        except SQLAlchemyError as e:
            raise StorageError(f"user check failed: {e}") from e
        return stored is not None and stored == password

    # ── Backups ───────────────────────────────────────────

    async def backup_to(self, target: Path) -> Path:
        """Write a consistent snapshot of the live database to ``target``.

        ``VACUUM INTO`` reads inside a single transaction; in WAL mode
        writers keep committing while it runs.

        Raises:
            BackupPathError: ``target`` is relative, exists, or has no parent dir.
        """
        backup_files.check_backup_target(target)

        async def _snapshot() -> None:
            async with self.engine.connect() as conn:
                conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
                await conn.execute(text("VACUUM INTO :target"), {"target": str(target)})

        try:
            await self._retry_busy(_snapshot, "backup")
        except SQLAlchemyError as e:
            raise StorageError(f"backup to {target} failed: {e}") from e

        logger.info("backup_created", path=str(target))
        return target

    async def backup(self) -> Path:
        """Snapshot to ``<db-path>.<unix-seconds>.bak`` and prune old snapshots.

        Returns:
            The path of the new snapshot.
        """
        target = backup_files.backup_path_for(self.path, backup_files.unix_now())
        await self.backup_to(target)
        backup_files.prune_backups(self.path, self.settings.backups)
        return target
