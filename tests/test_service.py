"""
Tests for TodoService: validation, mutation-then-log, garbage collection,
reminders and the unconfigured sync path.

Run with: python -m pytest tests/test_service.py -v
"""
from __future__ import annotations

import asyncio
import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from todosync.constants import SYNC_SETUP_HINT
from todosync.db import LocalStore
from todosync.domain.common.errors import (
    AlreadyStashedError,
    NotFoundError,
    SyncUnavailableError,
    ValidationError,
)
from todosync.domain.common.ports import Clock
from todosync.domain.todos.service import TodoService
from todosync.models import OperationKind, Priority, SyncState

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock(Clock):
    def __init__(self) -> None:
        self.current = T0

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


async def _run_with_service(test_fn):
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    try:
        clock = FakeClock()
        store = await LocalStore.open(path, clock)
        await test_fn(TodoService(store), clock)
    finally:
        for p in (path, path + "-wal", path + "-shm"):
            if os.path.exists(p):
                os.unlink(p)


def test_create_task_with_fields():
    async def run(service, clock):
        task = await service.create_task(
            "  Buy milk  ",
            description="2 litres",
            priority="low",
            due_date=T0 + timedelta(days=1),
            ai_metadata={"suggested_category": "Groceries"},
        )
        assert task.title == "Buy milk"
        assert task.priority is Priority.LOW
        assert task.sync_status is SyncState.PENDING
        assert await service.get_task(task.id) == task

        [op] = await service.history()
        assert op.kind is OperationKind.CREATE
        assert op.previous_state is None
        assert op.new_state == task.to_snapshot()

    asyncio.run(_run_with_service(run))


def test_invalid_input_is_rejected_without_logging():
    async def run(service, clock):
        with pytest.raises(ValidationError):
            await service.create_task("   ")
        with pytest.raises(ValidationError):
            await service.create_task("x", colour="red")
        with pytest.raises(NotFoundError):
            await service.create_task("x", category_id="missing")
        with pytest.raises(ValidationError):
            await service.create_task("x", due_date=datetime(2024, 5, 2, 9, 0))
        with pytest.raises(NotFoundError):
            await service.edit_task("missing", title="y")
        with pytest.raises(ValidationError):
            await service.create_category("")
        assert await service.history() == []

    asyncio.run(_run_with_service(run))


def test_edit_logs_before_and_after():
    async def run(service, clock):
        task = await service.create_task("Buy milk")
        clock.advance(minutes=5)
        edited = await service.edit_task(task.id, title="Buy oat milk")
        assert edited.updated_at == clock.now()

        op = (await service.history(limit=1))[0]
        assert op.kind is OperationKind.UPDATE
        assert op.previous_state["title"] == "Buy milk"
        assert op.new_state["title"] == "Buy oat milk"

        with pytest.raises(ValidationError):
            await service.edit_task(task.id, is_completed=True)

    asyncio.run(_run_with_service(run))


def test_complete_is_idempotent():
    async def run(service, clock):
        task = await service.create_task("Buy milk")
        clock.advance(minutes=1)
        done = await service.complete_task(task.id)
        again = await service.complete_task(task.id)
        assert again == done
        assert [op.kind for op in await service.history()] == [OperationKind.COMPLETE, OperationKind.CREATE]

        reopened = await service.uncomplete_task(task.id)
        assert reopened.is_completed is False
        assert await service.uncomplete_task(task.id) == reopened

    asyncio.run(_run_with_service(run))


def test_stash_through_service():
    async def run(service, clock):
        task = await service.create_task("Buy milk")
        await service.stash_push(task.id, message="after payday")
        with pytest.raises(AlreadyStashedError):
            await service.stash_push(task.id)

        [entry] = await service.stash_list()
        assert entry.message == "after payday"

        assert await service.stash_pop() == task
        assert await service.stash_pop() is None
        kinds = [op.kind for op in await service.history()]
        assert kinds == [OperationKind.UNSTASH, OperationKind.STASH, OperationKind.CREATE]

        await service.stash_push(task.id)
        assert await service.stash_clear() == 1

    asyncio.run(_run_with_service(run))


def test_garbage_collect_dry_run_then_real():
    async def run(service, clock):
        old = await service.create_task("old")
        await service.complete_task(old.id)
        clock.advance(days=40)
        fresh = await service.create_task("fresh")

        preview = await service.garbage_collect(days=30, dry_run=True)
        assert (preview.operations, preview.tasks, preview.dry_run) == (2, 1, True)
        assert len(await service.history()) == 3

        report = await service.garbage_collect(days=30)
        assert (report.operations, report.tasks, report.dry_run) == (2, 1, False)
        assert [t.id for t in await service.list_tasks()] == [fresh.id]
        assert len(await service.history()) == 1

        with pytest.raises(ValidationError):
            await service.garbage_collect(days=0)

    asyncio.run(_run_with_service(run))


def test_reminders_use_the_configured_window():
    async def run(service, clock):
        soon = await service.create_task("soon", reminder_at=T0 + timedelta(minutes=10))
        await service.create_task("later", reminder_at=T0 + timedelta(minutes=30))
        assert [t.id for t in await service.reminders_due()] == [soon.id]

    asyncio.run(_run_with_service(run))


def test_sync_without_remote_explains_setup():
    async def run(service, clock):
        assert service.is_configured() is False
        with pytest.raises(SyncUnavailableError) as exc_info:
            await service.sync()
        assert str(exc_info.value) == SYNC_SETUP_HINT

    asyncio.run(_run_with_service(run))


def test_stash_pop_a_specific_task():
    async def run(service, clock):
        milk = await service.create_task("Buy milk")
        mom = await service.create_task("Call mom")
        await service.stash_push(milk.id)
        clock.advance(minutes=1)
        await service.stash_push(mom.id)

        # not the newest entry
        assert await service.stash_pop(milk.id) == milk
        assert [e.task.id for e in await service.stash_list()] == [mom.id]
        [unstash, *_] = await service.history()
        assert unstash.kind is OperationKind.UNSTASH
        assert unstash.entity_id == milk.id

        with pytest.raises(NotFoundError):
            await service.stash_pop(milk.id)
        assert (await service.history())[0].id == unstash.id

    asyncio.run(_run_with_service(run))


def test_stash_pop_drops_a_category_deleted_while_stashed():
    async def run(service, clock):
        category = await service.create_category("Home")
        task = await service.create_task("Buy milk", category_id=category.id)
        await service.stash_push(task.id)
        assert await service.delete_category(category.id) == 0

        popped = await service.stash_pop()
        assert popped.id == task.id
        assert popped.category_id is None
        assert (await service.get_task(task.id)).category_id is None
        [unstash, *_] = await service.history()
        assert unstash.new_state["category_id"] is None

    asyncio.run(_run_with_service(run))
