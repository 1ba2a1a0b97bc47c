"""
Tests for SyncReconciler: two local stores sharing one remote (a temporary
SQLite database), last-write-wins, conflicts, deletions and failures.

Run with: python -m pytest tests/test_sync.py -v
"""
from __future__ import annotations

import asyncio
import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from todosync.db import LocalStore
from todosync.domain.common.errors import StorageError, SyncUnavailableError
from todosync.domain.common.ports import Clock
from todosync.domain.todos.service import TodoService
from todosync.infra.remote.store import RemoteStore
from todosync.models import SyncState, Task

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock(Clock):
    def __init__(self) -> None:
        self.current = T0

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class FailingTaskPushRemote(RemoteStore):
    """Remote that rejects every task upsert; everything else is real."""

    async def upsert_task(self, task: Task) -> bool:
        raise StorageError(f"rejected {task.id}")


def _temp_path() -> str:
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    return path


def _cleanup(*paths: str) -> None:
    for path in paths:
        for p in (path, path + "-wal", path + "-shm"):
            if os.path.exists(p):
                os.unlink(p)


async def _run_two_clients(test_fn):
    """Two devices (a, b) with their own local files, one shared remote, one clock."""
    path_a, path_b, path_remote = _temp_path(), _temp_path(), _temp_path()
    url = f"sqlite+aiosqlite:///{path_remote}"
    clock = FakeClock()
    a = TodoService(await LocalStore.open(path_a, clock), RemoteStore(url))
    b = TodoService(await LocalStore.open(path_b, clock), RemoteStore(url))
    try:
        await test_fn(a, b, clock, url)
    finally:
        await a.close()
        await b.close()
        _cleanup(path_a, path_b, path_remote)


def test_buy_milk_travels_between_devices():
    async def run(a, b, clock, url):
        task = await a.create_task("Buy milk")
        first = await a.sync()
        assert (first.uploaded, first.downloaded, first.conflicts) == (1, 0, 0)
        assert (await a.get_task(task.id)).sync_status is SyncState.SYNCED

        pulled = await b.sync()
        assert (pulled.uploaded, pulled.downloaded) == (0, 1)
        assert (await b.get_task(task.id)).title == "Buy milk"

        clock.advance(minutes=5)
        await b.complete_task(task.id)
        pushed = await b.sync()
        assert pushed.uploaded == 1

        back = await a.sync()
        assert back.downloaded == 1
        on_a = await a.get_task(task.id)
        assert on_a.is_completed is True
        assert on_a.sync_status is SyncState.SYNCED

    asyncio.run(_run_two_clients(run))


def test_second_pass_is_quiet():
    async def run(a, b, clock, url):
        await a.create_task("Buy milk")
        await a.create_category("Home")
        await a.sync()
        again = await a.sync()
        assert (again.uploaded, again.downloaded, again.conflicts, again.deleted) == (0, 0, 0, 0)

    asyncio.run(_run_two_clients(run))


def test_newer_remote_edit_overwrites_synced_local_copy():
    async def run(a, b, clock, url):
        task = await a.create_task("Buy milk")
        await a.sync()
        await b.sync()

        clock.advance(minutes=1)
        await b.edit_task(task.id, title="Buy oat milk")
        await b.sync()

        result = await a.sync()
        assert result.downloaded == 1
        assert (await a.get_task(task.id)).title == "Buy oat milk"

    asyncio.run(_run_two_clients(run))


def test_newer_local_edit_wins_over_older_remote_edit():
    async def run(a, b, clock, url):
        task = await a.create_task("Buy milk")
        await a.sync()
        await b.sync()

        clock.advance(minutes=1)
        await b.edit_task(task.id, title="from b")
        clock.advance(minutes=1)
        await a.edit_task(task.id, title="from a")

        await b.sync()
        await a.sync()
        await b.sync()
        assert (await a.get_task(task.id)).title == "from a"
        assert (await b.get_task(task.id)).title == "from a"

    asyncio.run(_run_two_clients(run))


def test_failed_push_is_collected_and_pending_copy_is_a_conflict():
    async def run(a, b, clock, url):
        task = await a.create_task("Buy milk")
        await a.sync()
        await b.sync()

        clock.advance(minutes=1)
        edited = await b.edit_task(task.id, title="local edit")
        failing = TodoService(b.store, FailingTaskPushRemote(url))
        try:
            category = await b.create_category("Home")
            result = await failing.sync()
        finally:
            await failing.close()

        assert len(result.errors) == 1
        assert isinstance(result.first_error, StorageError)
        assert result.uploaded == 1  # the category still went through
        assert result.conflicts == 1
        assert await b.get_task(task.id) == edited
        assert (await b.store.categories.require(category.id)).sync_status is SyncState.SYNCED

    asyncio.run(_run_two_clients(run))


def test_deletion_is_pushed_and_never_pulled_back():
    async def run(a, b, clock, url):
        task = await a.create_task("Buy milk")
        await a.sync()

        clock.advance(minutes=1)
        await a.delete_task(task.id)
        result = await a.sync()
        assert result.deleted == 1
        assert result.downloaded == 0
        assert await a.store.tasks.get(task.id) is None
        assert await a.store.tasks.list_unsynced_deletions() == []

        fresh = await b.sync()
        assert fresh.downloaded == 0
        assert await b.store.tasks.get(task.id) is None

    asyncio.run(_run_two_clients(run))


def test_locally_deleted_task_stays_deleted_when_revived_remotely():
    async def run(a, b, clock, url):
        task = await a.create_task("Buy milk")
        await a.sync()
        await b.sync()

        clock.advance(minutes=1)
        await b.delete_task(task.id)
        assert (await b.sync()).deleted == 1

        # a newer edit from the other device revives the remote row
        clock.advance(minutes=1)
        await a.edit_task(task.id, title="Buy oat milk")
        await a.sync()
        remote = RemoteStore(url)
        try:
            await remote.connect()
            assert [t.id for t in await remote.changes_since(T0)] == [task.id]
        finally:
            await remote.close()

        result = await b.sync()
        assert result.downloaded == 0
        assert await b.store.tasks.get(task.id) is None
        assert await b.store.tasks.is_locally_deleted(task.id) is True

    asyncio.run(_run_two_clients(run))


def test_stashed_task_is_not_pulled_back_into_the_listing():
    async def run(a, b, clock, url):
        task = await a.create_task("Buy milk")
        await a.sync()
        await a.stash_push(task.id)

        result = await a.sync()
        assert result.downloaded == 0
        assert await a.store.tasks.get(task.id) is None
        assert await a.stash_pop() is not None

    asyncio.run(_run_two_clients(run))


def test_categories_sync_before_tasks():
    async def run(a, b, clock, url):
        category = await a.create_category("Groceries")
        task = await a.create_task("Buy milk", category_id=category.id)
        await a.sync()

        result = await b.sync()
        assert result.downloaded == 2
        assert (await b.store.categories.require(category.id)).name == "Groceries"
        assert (await b.get_task(task.id)).category_id == category.id

    asyncio.run(_run_two_clients(run))


def test_unreachable_remote_leaves_local_untouched():
    async def run():
        path = _temp_path()
        missing_dir = tempfile.mkdtemp()
        os.rmdir(missing_dir)
        service = TodoService(
            await LocalStore.open(path, FakeClock()),
            RemoteStore(f"sqlite+aiosqlite:///{missing_dir}/remote.db"),
        )
        try:
            task = await service.create_task("Buy milk")
            with pytest.raises(SyncUnavailableError):
                await service.sync()
            assert (await service.get_task(task.id)).sync_status is SyncState.PENDING
        finally:
            await service.close()
            _cleanup(path)

    asyncio.run(run())


def test_deleted_category_is_pushed_and_not_pulled_back():
    async def run(a, b, clock, url):
        category = await a.create_category("Home")
        await a.sync()

        clock.advance(minutes=1)
        await a.delete_category(category.id)
        assert await a.store.categories.list_unsynced_deletions() == [category.id]
        result = await a.sync()
        assert result.deleted == 1
        assert result.downloaded == 0
        assert await a.store.categories.get(category.id) is None
        assert await a.store.categories.list_unsynced_deletions() == []
        assert await a.store.categories.is_locally_deleted(category.id) is True

        again = await a.sync()
        assert (again.downloaded, again.deleted) == (0, 0)
        assert await a.store.categories.get(category.id) is None

        fresh = await b.sync()
        assert fresh.downloaded == 0
        assert await b.list_categories() == []

    asyncio.run(_run_two_clients(run))


def test_pulled_task_drops_a_category_skipped_by_name_clash():
    async def run(a, b, clock, url):
        await b.create_category("Home")
        theirs = await a.create_category("Home")
        task = await a.create_task("Buy milk", category_id=theirs.id)
        await a.sync()

        result = await b.sync()
        assert result.conflicts == 1
        assert await b.store.categories.get(theirs.id) is None
        pulled = await b.get_task(task.id)
        assert pulled.title == "Buy milk"
        assert pulled.category_id is None

    asyncio.run(_run_two_clients(run))


def test_undo_after_sync_restores_the_synced_copy():
    async def run(a, b, clock, url):
        task = await a.create_task("Buy milk")
        first = await a.sync()
        assert first.uploaded == 1
        assert (await a.get_task(task.id)).sync_status is SyncState.SYNCED

        clock.advance(minutes=1)
        edited = await a.edit_task(task.id, title="Buy oat milk")
        assert edited.sync_status is SyncState.PENDING

        outcome = await a.undo()
        assert outcome.applied is True
        restored = await a.get_task(task.id)
        assert restored.title == "Buy milk"
        # snapshots are written back verbatim, sync state included
        assert restored.sync_status is SyncState.SYNCED
        assert restored.updated_at == T0

        again = await a.sync()
        assert (again.uploaded, again.downloaded, again.conflicts) == (0, 0, 0)
        assert (await a.get_task(task.id)).title == "Buy milk"

    asyncio.run(_run_two_clients(run))
