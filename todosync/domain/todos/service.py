from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Optional

from todosync.config import Settings
from todosync.constants import DEFAULT_GC_DAYS, DEFAULT_HISTORY_LIMIT, DEFAULT_REMINDER_MINUTES, SYNC_SETUP_HINT
from todosync.db import LocalStore
from todosync.domain.common.errors import SyncUnavailableError, ValidationError
from todosync.domain.common.ports import Clock
from todosync.domain.sync.reconciler import SyncReconciler
from todosync.domain.todos.history import HistoryOutcome, HistoryPlayer
from todosync.infra.remote.store import RemoteStore
from todosync.models import (
    Category,
    EntityKind,
    Operation,
    OperationKind,
    Priority,
    StashEntry,
    SyncResult,
    Task,
    TaskFilter,
)

logger = logging.getLogger(__name__)

# fields edit_task may change; completion goes through complete/uncomplete
EDITABLE_TASK_FIELDS = frozenset(
    {"title", "description", "category_id", "due_date", "reminder_at", "priority", "ai_metadata"}
)
EDITABLE_CATEGORY_FIELDS = frozenset({"name", "color", "is_ai_generated"})


@dataclass(frozen=True)
class GcReport:
    operations: int
    tasks: int
    dry_run: bool


class TodoService:
    """
    Task business logic for every front end. No UI, no SQL.

    Each mutation is applied to the store first and then appended to the
    operation log; a failed mutation leaves no log entry.
    """

    def __init__(
        self,
        store: LocalStore,
        remote: Optional[RemoteStore] = None,
        reminder_window: timedelta = timedelta(minutes=DEFAULT_REMINDER_MINUTES),
        history_retention_days: int = DEFAULT_GC_DAYS,
    ) -> None:
        self._store = store
        self._remote = remote
        self._history = HistoryPlayer(store)
        self._reminder_window = reminder_window
        self._retention_days = history_retention_days

    @classmethod
    async def from_settings(cls, settings: Settings, clock: Optional[Clock] = None) -> "TodoService":
        store = await LocalStore.open(settings.local_db_path(), clock)
        remote = None
        if settings.is_remote_configured():
            remote = RemoteStore(settings.remote_url, pool_size=settings.remote_pool_size)
        return cls(
            store,
            remote,
            reminder_window=timedelta(minutes=settings.reminder_window_minutes),
            history_retention_days=settings.history_retention_days,
        )

    @property
    def store(self) -> LocalStore:
        return self._store

    def _now(self) -> datetime:
        return self._store.clock.now()

    async def _log(
        self,
        kind: OperationKind,
        entity_kind: EntityKind,
        entity_id: str,
        previous: Optional[dict] = None,
        new: Optional[dict] = None,
    ) -> None:
        op = Operation.record(kind, entity_kind, entity_id, self._now(), previous_state=previous, new_state=new)
        await self._store.operations.record(op)

    async def _check_category(self, category_id: Optional[str]) -> None:
        if category_id is not None:
            await self._store.categories.require(category_id)

    # ---- tasks ----

    async def create_task(self, title: str, user_id: Optional[str] = None, **fields: Any) -> Task:
        unknown = set(fields) - EDITABLE_TASK_FIELDS
        if unknown:
            raise ValidationError(f"Unknown task fields: {', '.join(sorted(unknown))}")
        task = Task.new(_clean_title(title), self._now(), user_id=user_id)
        if fields:
            task = replace(task, **_normalize_task_fields(fields))
        return await self.add_task(task)

    async def add_task(self, task: Task) -> Task:
        """Persist a ready-made task (e.g. one built from a classifier suggestion)."""
        await self._check_category(task.category_id)
        task = await self._store.tasks.create(task)
        await self._log(OperationKind.CREATE, EntityKind.TASK, task.id, new=task.to_snapshot())
        return task

    async def get_task(self, task_id: str) -> Task:
        return await self._store.tasks.require(task_id)

    async def list_tasks(self, flt: Optional[TaskFilter] = None) -> list[Task]:
        return await self._store.tasks.list_tasks(flt)

    async def upcoming(self, limit: int = 5) -> list[Task]:
        return await self._store.tasks.list_upcoming(limit)

    async def overdue(self) -> list[Task]:
        return await self._store.tasks.list_overdue()

    async def reminders_due(self) -> list[Task]:
        return await self._store.tasks.list_reminders_due(self._reminder_window)

    async def edit_task(self, task_id: str, **changes: Any) -> Task:
        unknown = set(changes) - EDITABLE_TASK_FIELDS
        if unknown:
            raise ValidationError(f"Unknown task fields: {', '.join(sorted(unknown))}")
        before = await self._store.tasks.require(task_id)
        changes = _normalize_task_fields(changes)
        if "category_id" in changes:
            await self._check_category(changes["category_id"])
        after = replace(before, **changes).touched(self._now())
        after = await self._store.tasks.update(after)
        await self._log(OperationKind.UPDATE, EntityKind.TASK, task_id, before.to_snapshot(), after.to_snapshot())
        return after

    async def complete_task(self, task_id: str) -> Task:
        before = await self._store.tasks.require(task_id)
        if before.is_completed:
            return before
        after = before.completed(self._now())
        await self._store.tasks.update(after)
        await self._log(OperationKind.COMPLETE, EntityKind.TASK, task_id, before.to_snapshot(), after.to_snapshot())
        return after

    async def uncomplete_task(self, task_id: str) -> Task:
        before = await self._store.tasks.require(task_id)
        if not before.is_completed:
            return before
        after = before.reopened(self._now())
        await self._store.tasks.update(after)
        await self._log(OperationKind.UNCOMPLETE, EntityKind.TASK, task_id, before.to_snapshot(), after.to_snapshot())
        return after

    async def delete_task(self, task_id: str) -> Task:
        before = await self._store.tasks.require(task_id)
        await self._store.tasks.delete(task_id)
        await self._log(OperationKind.DELETE, EntityKind.TASK, task_id, previous=before.to_snapshot())
        return before

    # ---- categories ----

    async def list_categories(self) -> list[Category]:
        return await self._store.categories.list_categories()

    async def create_category(
        self,
        name: str,
        color: Optional[str] = None,
        is_ai_generated: bool = False,
        user_id: Optional[str] = None,
    ) -> Category:
        category = Category.new(
            _clean_name(name), self._now(), user_id=user_id, color=color, is_ai_generated=is_ai_generated
        )
        await self._store.categories.create(category)
        await self._log(OperationKind.CREATE, EntityKind.CATEGORY, category.id, new=category.to_snapshot())
        return category

    async def update_category(self, category_id: str, **changes: Any) -> Category:
        unknown = set(changes) - EDITABLE_CATEGORY_FIELDS
        if unknown:
            raise ValidationError(f"Unknown category fields: {', '.join(sorted(unknown))}")
        if "name" in changes:
            changes["name"] = _clean_name(changes["name"])
        before = await self._store.categories.require(category_id)
        after = replace(before, **changes).touched(self._now())
        await self._store.categories.update(after)
        await self._log(
            OperationKind.UPDATE, EntityKind.CATEGORY, category_id, before.to_snapshot(), after.to_snapshot()
        )
        return after

    async def rename_category(self, category_id: str, name: str) -> Category:
        return await self.update_category(category_id, name=name)

    async def delete_category(self, category_id: str) -> int:
        """Delete a category, detaching its tasks first. Returns how many tasks were detached."""
        before = await self._store.categories.require(category_id)
        detached = await self._store.tasks.clear_category_references(category_id)
        await self._store.categories.delete(category_id)
        await self._log(OperationKind.DELETE, EntityKind.CATEGORY, category_id, previous=before.to_snapshot())
        return detached

    # ---- stash ----

    async def stash_push(self, task_id: str, message: Optional[str] = None) -> Task:
        task = await self._store.stash.push(task_id, message)
        await self._log(OperationKind.STASH, EntityKind.TASK, task.id, previous=task.to_snapshot())
        return task

    async def stash_pop(self, task_id: Optional[str] = None) -> Optional[Task]:
        """Restore the newest stashed task, or the one with task_id. None when the stash is empty."""
        if task_id is None:
            task = await self._store.stash.pop()
        else:
            task = await self._store.stash.take(task_id)
        if task is None:
            return None
        await self._log(OperationKind.UNSTASH, EntityKind.TASK, task.id, new=task.to_snapshot())
        return task

    async def stash_list(self) -> list[StashEntry]:
        return await self._store.stash.list_entries()

    async def stash_clear(self) -> int:
        return await self._store.stash.clear()

    # ---- history ----

    async def undo(self) -> HistoryOutcome:
        return await self._history.undo()

    async def redo(self) -> HistoryOutcome:
        return await self._history.redo()

    async def history(self, limit: int = DEFAULT_HISTORY_LIMIT) -> list[Operation]:
        return await self._store.operations.list_recent(limit)

    async def garbage_collect(self, days: Optional[int] = None, dry_run: bool = False) -> GcReport:
        days = self._retention_days if days is None else days
        if days <= 0:
            raise ValidationError(f"days must be positive, got {days}")
        cutoff = self._now() - timedelta(days=days)
        if dry_run:
            report = GcReport(
                operations=await self._store.operations.count_older_than(cutoff),
                tasks=await self._store.tasks.count_completed_before(cutoff),
                dry_run=True,
            )
        else:
            report = GcReport(
                operations=await self._store.operations.clear_older_than(cutoff),
                tasks=await self._store.tasks.delete_completed_before(cutoff),
                dry_run=False,
            )
        logger.info(
            "Garbage collection (%s days%s): %d operations, %d completed tasks",
            days,
            ", dry run" if dry_run else "",
            report.operations,
            report.tasks,
        )
        return report

    # ---- sync ----

    def is_configured(self) -> bool:
        return self._remote is not None

    async def sync(self) -> SyncResult:
        if self._remote is None:
            raise SyncUnavailableError(SYNC_SETUP_HINT)
        return await SyncReconciler(self._store, self._remote).run()

    async def close(self) -> None:
        if self._remote is not None:
            await self._remote.close()


def _clean_title(title: str) -> str:
    title = (title or "").strip()
    if not title:
        raise ValidationError("Task title must not be empty")
    return title


def _clean_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Category name must not be empty")
    return name


def _normalize_task_fields(fields: dict) -> dict:
    fields = dict(fields)
    if "title" in fields:
        fields["title"] = _clean_title(fields["title"])
    if "priority" in fields:
        fields["priority"] = Priority.parse(fields["priority"])
    return fields
