"""
Tests for RemoteStore against a temporary SQLite database (sqlite+aiosqlite):
the timestamp-guarded upsert, soft deletes and connection failures.

Run with: python -m pytest tests/test_remote_store.py -v
"""
from __future__ import annotations

import asyncio
import os
import tempfile
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from todosync.constants import SYNC_CURSOR
from todosync.domain.common.errors import SyncUnavailableError
from todosync.infra.remote.store import RemoteStore
from todosync.models import Category, Priority, SyncState, Task

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


async def _run_with_remote(test_fn):
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    remote = RemoteStore(f"sqlite+aiosqlite:///{path}")
    try:
        await remote.connect()
        await test_fn(remote)
    finally:
        await remote.close()
        if os.path.exists(path):
            os.unlink(path)


def test_upsert_applies_only_strictly_newer_writes():
    async def run(remote):
        task = Task.new("Buy milk", T0)
        assert await remote.upsert_task(task) is True

        stale = replace(task, title="stale", updated_at=T0 - timedelta(minutes=1))
        assert await remote.upsert_task(stale) is False
        same_time = replace(task, title="same time")
        assert await remote.upsert_task(same_time) is False

        newer = replace(task, title="Buy oat milk").touched(T0 + timedelta(minutes=1))
        assert await remote.upsert_task(newer) is True

        [pulled] = await remote.changes_since(SYNC_CURSOR)
        assert pulled.title == "Buy oat milk"
        assert pulled.updated_at == newer.updated_at
        assert pulled.sync_status is SyncState.SYNCED

    asyncio.run(_run_with_remote(run))


def test_task_fields_survive_the_round_trip():
    async def run(remote):
        task = Task(
            id="t1",
            title="Report",
            created_at=T0,
            updated_at=T0 + timedelta(microseconds=250),
            user_id="u1",
            description="quarterly",
            due_date=T0 + timedelta(days=2),
            reminder_at=T0 + timedelta(days=1),
            priority=Priority.HIGH,
            is_completed=True,
            completed_at=T0 + timedelta(hours=1),
            ai_metadata={"confidence": 0.9},
        )
        await remote.upsert_task(task)
        [pulled] = await remote.changes_since(SYNC_CURSOR)
        assert pulled == task.with_sync_status(SyncState.SYNCED)

    asyncio.run(_run_with_remote(run))


def test_changes_since_is_strictly_after_and_oldest_first():
    async def run(remote):
        first = Task.new("first", T0)
        second = Task.new("second", T0 + timedelta(minutes=5))
        await remote.upsert_task(second)
        await remote.upsert_task(first)

        assert [t.id for t in await remote.changes_since(SYNC_CURSOR)] == [first.id, second.id]
        assert [t.id for t in await remote.changes_since(T0)] == [second.id]

    asyncio.run(_run_with_remote(run))


def test_soft_delete_hides_row_until_a_newer_write():
    async def run(remote):
        task = Task.new("Buy milk", T0)
        await remote.upsert_task(task)

        assert await remote.soft_delete_task(task.id, T0 + timedelta(minutes=1)) is True
        assert await remote.soft_delete_task(task.id, T0 + timedelta(minutes=2)) is False
        assert await remote.changes_since(SYNC_CURSOR) == []

        # not newer than the tombstone: stays deleted
        assert await remote.upsert_task(task) is False
        assert await remote.changes_since(SYNC_CURSOR) == []

        revived = task.touched(T0 + timedelta(minutes=3))
        assert await remote.upsert_task(revived) is True
        assert [t.id for t in await remote.changes_since(SYNC_CURSOR)] == [task.id]

    asyncio.run(_run_with_remote(run))


def test_categories_upsert_and_soft_delete():
    async def run(remote):
        category = Category.new("Home", T0, color="#00aa00")
        assert await remote.upsert_category(category) is True
        assert await remote.upsert_category(replace(category, name="stale")) is False

        [pulled] = await remote.category_changes_since(SYNC_CURSOR)
        assert pulled == category.with_sync_status(SyncState.SYNCED)

        assert await remote.soft_delete_category(category.id, T0 + timedelta(minutes=1)) is True
        assert await remote.category_changes_since(SYNC_CURSOR) == []

    asyncio.run(_run_with_remote(run))


def test_unreachable_remote_raises_sync_unavailable():
    async def run():
        missing_dir = tempfile.mkdtemp()
        os.rmdir(missing_dir)
        remote = RemoteStore(f"sqlite+aiosqlite:///{missing_dir}/remote.db")
        try:
            with pytest.raises(SyncUnavailableError):
                await remote.connect()
        finally:
            await remote.close()

    asyncio.run(run())


def test_calls_before_connect_raise_sync_unavailable():
    async def run():
        remote = RemoteStore("sqlite+aiosqlite:///unused.db")
        with pytest.raises(SyncUnavailableError):
            await remote.ping()

    asyncio.run(run())
