# -*- coding: utf-8 -*-
"""tasks and deleted_tasks tables."""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

import aiosqlite

from todosync.constants import REMINDER_GRACE
from todosync.domain.common.errors import ConflictError, NotFoundError, ValidationError
from todosync.domain.common.time import from_iso, from_iso_opt, to_iso, to_iso_opt
from todosync.models import Priority, SyncState, Task, TaskFilter, TaskOrder
from todosync.repos.base import BaseRepo

logger = logging.getLogger(__name__)

TASK_COLUMNS = (
    "id, user_id, category_id, title, description, due_date, reminder_at, priority, "
    "is_completed, completed_at, ai_metadata, created_at, updated_at, sync_status"
)

_ORDER_SQL = {
    TaskOrder.CREATED: "created_at {dir}",
    TaskOrder.UPDATED: "updated_at {dir}",
    # undated tasks always sink to the bottom
    TaskOrder.DUE: "due_date IS NULL, due_date {dir}",
    TaskOrder.PRIORITY: "priority {dir}, created_at {dir}",
    TaskOrder.TITLE: "title COLLATE NOCASE {dir}",
}


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class TasksRepo(BaseRepo):
    """Sole read/write path for task rows. Does not record history."""

    def task_params(self, task: Task) -> tuple:
        return (
            task.user_id,
            task.category_id,
            task.title,
            task.description,
            to_iso_opt(task.due_date),
            to_iso_opt(task.reminder_at),
            int(task.priority),
            1 if task.is_completed else 0,
            to_iso_opt(task.completed_at),
            self._dump_json(task.ai_metadata),
            to_iso(task.created_at),
            to_iso(task.updated_at),
            task.sync_status.value,
        )

    async def _resolve_category(self, conn: aiosqlite.Connection, task: Task) -> Task:
        """Drop a category_id that names no local category."""
        if task.category_id is None:
            return task
        cur = await conn.execute("SELECT 1 FROM categories WHERE id = ?;", (task.category_id,))
        if await cur.fetchone() is not None:
            return task
        logger.info("Task %s: category %s is gone, storing it uncategorised", task.id, task.category_id)
        return replace(task, category_id=None)

    async def insert_on(self, conn: aiosqlite.Connection, task: Task) -> Task:
        """Insert inside a caller-owned transaction; also forgets any tombstone. Returns the stored task."""
        task = await self._resolve_category(conn, task)
        await conn.execute(
            f"""
            INSERT INTO tasks ({TASK_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (task.id, *self.task_params(task)),
        )
        await conn.execute("DELETE FROM deleted_tasks WHERE id = ?;", (task.id,))
        return task

    def _row_to_task(self, row: aiosqlite.Row) -> Task:
        return Task(
            id=row["id"],
            user_id=row["user_id"],
            category_id=row["category_id"],
            title=row["title"],
            description=row["description"],
            due_date=from_iso_opt(row["due_date"], "due_date"),
            reminder_at=from_iso_opt(row["reminder_at"], "reminder_at"),
            priority=Priority.parse(row["priority"]),
            is_completed=bool(row["is_completed"]),
            completed_at=from_iso_opt(row["completed_at"], "completed_at"),
            ai_metadata=self._load_json(row["ai_metadata"], "ai_metadata"),
            created_at=from_iso(row["created_at"], "created_at"),
            updated_at=from_iso(row["updated_at"], "updated_at"),
            sync_status=SyncState.parse(row["sync_status"]),
        )

    def _rows_to_tasks(self, rows: Sequence[aiosqlite.Row]) -> list[Task]:
        tasks = []
        for row in rows:
            try:
                tasks.append(self._row_to_task(row))
            except ValidationError as exc:
                logger.warning("Skipping unreadable task row %s: %s", row["id"], exc)
        return tasks

    async def create(self, task: Task) -> Task:
        try:
            async with self._db.transaction() as conn:
                return await self.insert_on(conn, task)
        except ConflictError as exc:
            raise ConflictError(f"Task {task.id} already exists") from exc

    async def get(self, task_id: str) -> Optional[Task]:
        row = await self._db.fetchone(f"SELECT {TASK_COLUMNS} FROM tasks WHERE id = ?;", (task_id,))
        return self._row_to_task(row) if row else None

    async def require(self, task_id: str) -> Task:
        task = await self.get(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        return task

    async def update(self, task: Task) -> Task:
        """Full-row replace keyed by id; the caller supplies the complete new state."""
        async with self._db.transaction() as conn:
            task = await self._resolve_category(conn, task)
            cur = await conn.execute(
                """
                UPDATE tasks SET
                    user_id = ?, category_id = ?, title = ?, description = ?, due_date = ?,
                    reminder_at = ?, priority = ?, is_completed = ?, completed_at = ?,
                    ai_metadata = ?, created_at = ?, updated_at = ?, sync_status = ?
                WHERE id = ?;
                """,
                (*self.task_params(task), task.id),
            )
            count = cur.rowcount
        if count == 0:
            raise NotFoundError(f"Task {task.id} not found")
        return task

    async def delete(self, task_id: str, tombstone: bool = True) -> bool:
        """
        Remove the row. With tombstone=True the deletion is remembered so the
        next sync soft-deletes the remote copy and never pulls it back.
        """
        async with self._db.transaction() as conn:
            cur = await conn.execute("DELETE FROM tasks WHERE id = ?;", (task_id,))
            removed = cur.rowcount > 0
            if removed and tombstone:
                await conn.execute(
                    "INSERT OR REPLACE INTO deleted_tasks (id, deleted_at, synced) VALUES (?, ?, 0);",
                    (task_id, self._now_iso()),
                )
        return removed

    async def list_tasks(self, flt: Optional[TaskFilter] = None) -> list[Task]:
        flt = flt or TaskFilter()
        where: list[str] = []
        params: list[Any] = []
        if flt.completed is not None:
            where.append("is_completed = ?")
            params.append(1 if flt.completed else 0)
        if flt.category_id is not None:
            where.append("category_id = ?")
            params.append(flt.category_id)
        if flt.due_after is not None:
            where.append("due_date >= ?")
            params.append(to_iso(flt.due_after))
        if flt.due_before is not None:
            where.append("due_date < ?")
            params.append(to_iso(flt.due_before))
        if flt.text:
            pattern = f"%{_escape_like(flt.text)}%"
            where.append("(title LIKE ? ESCAPE '\\' OR description LIKE ? ESCAPE '\\')")
            params.extend([pattern, pattern])

        direction = "DESC" if flt.descending else "ASC"
        sql = f"SELECT {TASK_COLUMNS} FROM tasks"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY " + _ORDER_SQL[flt.order_by].format(dir=direction) + f", rowid {direction}"
        if flt.limit is not None:
            sql += " LIMIT ?"
            params.append(flt.limit)
        return self._rows_to_tasks(await self._db.fetchall(sql + ";", params))

    async def list_pending(self) -> list[Task]:
        rows = await self._db.fetchall(
            f"SELECT {TASK_COLUMNS} FROM tasks WHERE sync_status = ? ORDER BY updated_at ASC;",
            (SyncState.PENDING.value,),
        )
        return self._rows_to_tasks(rows)

    async def mark_synced(self, task_id: str) -> None:
        await self._db.execute(
            "UPDATE tasks SET sync_status = ? WHERE id = ?;",
            (SyncState.SYNCED.value, task_id),
        )

    async def list_upcoming(self, limit: int, now: Optional[datetime] = None) -> list[Task]:
        now_iso = to_iso(now or self._now())
        rows = await self._db.fetchall(
            f"""
            SELECT {TASK_COLUMNS} FROM tasks
            WHERE is_completed = 0 AND due_date IS NOT NULL AND due_date >= ?
            ORDER BY due_date ASC LIMIT ?;
            """,
            (now_iso, limit),
        )
        return self._rows_to_tasks(rows)

    async def list_overdue(self, now: Optional[datetime] = None) -> list[Task]:
        now_iso = to_iso(now or self._now())
        rows = await self._db.fetchall(
            f"""
            SELECT {TASK_COLUMNS} FROM tasks
            WHERE is_completed = 0 AND due_date IS NOT NULL AND due_date < ?
            ORDER BY due_date ASC;
            """,
            (now_iso,),
        )
        return self._rows_to_tasks(rows)

    async def list_reminders_due(self, window: timedelta, now: Optional[datetime] = None) -> list[Task]:
        """Incomplete tasks whose reminder falls in (now - grace, now + window]."""
        now = now or self._now()
        rows = await self._db.fetchall(
            f"""
            SELECT {TASK_COLUMNS} FROM tasks
            WHERE reminder_at IS NOT NULL AND reminder_at <= ? AND reminder_at > ? AND is_completed = 0
            ORDER BY reminder_at ASC;
            """,
            (to_iso(now + window), to_iso(now - REMINDER_GRACE)),
        )
        return self._rows_to_tasks(rows)

    async def clear_category_references(self, category_id: str) -> int:
        return await self._db.execute(
            "UPDATE tasks SET category_id = NULL WHERE category_id = ?;",
            (category_id,),
        )

    async def count_completed_before(self, cutoff: datetime) -> int:
        row = await self._db.fetchone(
            "SELECT COUNT(*) AS count FROM tasks WHERE is_completed = 1 AND completed_at < ?;",
            (to_iso(cutoff),),
        )
        return int(row["count"]) if row else 0

    async def delete_completed_before(self, cutoff: datetime) -> int:
        # garbage collection, not a user deletion: no tombstones
        return await self._db.execute(
            "DELETE FROM tasks WHERE is_completed = 1 AND completed_at < ?;",
            (to_iso(cutoff),),
        )

    async def is_locally_deleted(self, task_id: str) -> bool:
        row = await self._db.fetchone("SELECT id FROM deleted_tasks WHERE id = ?;", (task_id,))
        return row is not None

    async def list_unsynced_deletions(self) -> list[str]:
        rows = await self._db.fetchall(
            "SELECT id FROM deleted_tasks WHERE synced = 0 ORDER BY deleted_at ASC;"
        )
        return [r["id"] for r in rows]

    async def mark_deletion_synced(self, task_id: str) -> None:
        await self._db.execute("UPDATE deleted_tasks SET synced = 1 WHERE id = ?;", (task_id,))
