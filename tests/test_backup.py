"""Tests for database snapshots and retention."""

from __future__ import annotations

import asyncio
import itertools
from collections import defaultdict
from datetime import timedelta
from pathlib import Path

import pytest

from crataegus import backup as backup_files
from crataegus.config import DatabaseSettings
from crataegus.errors import BackupPathError
from crataegus.store import LocationStore
from crataegus.stress import write_concurrently
from tests.conftest import BASE_TIME


@pytest.fixture
def fake_clock(monkeypatch):
    """Make ``unix_now`` return 1000, 1001, 1002, ..."""
    ticks = itertools.count(1000)
    monkeypatch.setattr(backup_files, "unix_now", lambda: next(ticks))


class TestBackup:
    @pytest.mark.asyncio
    async def test_snapshot_is_named_and_openable(self, store, alice, make_location, fake_clock):
        await store.insert(make_location())

        path = await store.backup()

        assert path == store.path.with_name(f"{store.path.name}.1000.bak")
        snapshot = await LocationStore.open(DatabaseSettings(path=path))
        try:
            assert await snapshot.count("alice") == 1
            assert await snapshot.user_check("alice", "secret")
        finally:
            await snapshot.close()

    @pytest.mark.asyncio
    async def test_retention_keeps_newest(self, store, fake_clock):
        # db_settings keeps 3
        paths = [await store.backup() for _ in range(4)]

        remaining = [p for _, p in backup_files.list_backups(store.path)]
        assert remaining == list(reversed(paths[1:]))
        assert not paths[0].exists()

    @pytest.mark.asyncio
    async def test_same_second_backup_rejected(self, store, monkeypatch):
        monkeypatch.setattr(backup_files, "unix_now", lambda: 1234)
        await store.backup()
        with pytest.raises(BackupPathError, match="already exists"):
            await store.backup()

    @pytest.mark.asyncio
    async def test_backup_during_writes(self, store, alice, tmp_path):
        target = tmp_path / "live.bak"

        await asyncio.gather(
            write_concurrently(store, "alice", writers=10, inserts_per_writer=50, start=BASE_TIME),
            store.backup_to(target),
        )

        snapshot = await LocationStore.open(DatabaseSettings(path=target))
        try:
            saved = [
                loc
                async for loc in snapshot.stream(
                    "alice", BASE_TIME - timedelta(seconds=1), BASE_TIME + timedelta(seconds=1)
                )
            ]
            assert await snapshot.count("alice") == len(saved) <= 500
        finally:
            await snapshot.close()
        assert await store.count("alice") == 500

        # each writer inserts in order, so a point-in-time view holds a
        # prefix of every writer's sequence, row for row as stored live
        per_writer = defaultdict(list)
        for loc in saved:
            assert (await store.at("alice", loc.time_utc)).is_identical(loc)
            writer, j = divmod((loc.time_utc - BASE_TIME) // timedelta(microseconds=1), 50)
            per_writer[writer].append(j)
        assert set(per_writer) <= set(range(10))
        for js in per_writer.values():
            assert sorted(js) == list(range(len(js)))


class TestBackupTarget:
    @pytest.mark.asyncio
    async def test_relative_path(self, store):
        with pytest.raises(BackupPathError, match="absolute"):
            await store.backup_to(Path("relative.bak"))

    @pytest.mark.asyncio
    async def test_existing_file(self, store, tmp_path):
        target = tmp_path / "taken.bak"
        target.write_text("keep me")
        with pytest.raises(BackupPathError, match="already exists"):
            await store.backup_to(target)
        assert target.read_text() == "keep me"

    @pytest.mark.asyncio
    async def test_missing_directory(self, store, tmp_path):
        with pytest.raises(BackupPathError, match="does not exist"):
            await store.backup_to(tmp_path / "missing" / "x.bak")

    def test_dangling_symlink(self, tmp_path):
        link = tmp_path / "link.bak"
        link.symlink_to(tmp_path / "nowhere")
        with pytest.raises(BackupPathError):
            backup_files.check_backup_target(link)


class TestListBackups:
    def test_matches_exact_names_only(self, tmp_path):
        db = tmp_path / "loc.db"
        db.touch()
        for name in (
            "loc.db.100.bak",
            "loc.db.300.bak",
            "loc.db.200.bak",
            "loc.db.abc.bak",
            "loc.db.100.bak.tmp",
            "xloc.db.100.bak",
            "loc.db..bak",
        ):
            (tmp_path / name).touch()
        (tmp_path / "loc.db.400.bak").mkdir()

        found = backup_files.list_backups(db)

        assert [ts for ts, _ in found] == [300, 200, 100]

    def test_regex_characters_in_db_name(self, tmp_path):
        db = tmp_path / "a+b.db"
        (tmp_path / "a+b.db.5.bak").touch()
        (tmp_path / "aab.db.6.bak").touch()
        assert [ts for ts, _ in backup_files.list_backups(db)] == [5]

    def test_prune_deletes_oldest_first(self, tmp_path):
        db = tmp_path / "loc.db"
        for ts in (10, 30, 20, 40):
            (tmp_path / f"loc.db.{ts}.bak").touch()

        deleted = backup_files.prune_backups(db, keep=2)

        assert [p.name for p in deleted] == ["loc.db.10.bak", "loc.db.20.bak"]
        assert [ts for ts, _ in backup_files.list_backups(db)] == [40, 30]

    def test_prune_with_fewer_than_keep(self, tmp_path):
        db = tmp_path / "loc.db"
        (tmp_path / "loc.db.1.bak").touch()
        assert backup_files.prune_backups(db, keep=3) == []
