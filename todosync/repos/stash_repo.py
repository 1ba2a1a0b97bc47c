# -*- coding: utf-8 -*-
"""stash table: tasks removed from the main listing, popped LIFO."""
from __future__ import annotations

import json
import logging
from typing import Optional

import aiosqlite

from todosync.domain.common.errors import AlreadyStashedError, ConflictError, NotFoundError, ValidationError
from todosync.domain.common.ports import Clock
from todosync.domain.common.time import from_iso
from todosync.infra.db.connection import Database
from todosync.models import StashEntry, Task
from todosync.repos.base import BaseRepo
from todosync.repos.tasks_repo import TasksRepo

logger = logging.getLogger(__name__)


class StashRepo(BaseRepo):
    def __init__(self, db: Database, tasks: TasksRepo, clock: Optional[Clock] = None) -> None:
        super().__init__(db, clock)
        self._tasks = tasks

    def _row_to_entry(self, row: aiosqlite.Row) -> StashEntry:
        try:
            snapshot = json.loads(row["todo_json"])
        except ValueError as exc:
            raise ValidationError(f"Stash entry {row['id']}: invalid JSON") from exc
        return StashEntry(
            task=Task.from_snapshot(snapshot),
            stashed_at=from_iso(row["stashed_at"], "stashed_at"),
            message=row["message"],
        )

    async def is_stashed(self, task_id: str) -> bool:
        return await self._db.fetchone("SELECT id FROM stash WHERE id = ?;", (task_id,)) is not None

    async def push(self, task_id: str, message: Optional[str] = None) -> Task:
        """Move a live task into the stash and return it as it was."""
        if await self.is_stashed(task_id):
            raise AlreadyStashedError(f"Task {task_id} is already stashed")
        task = await self._tasks.require(task_id)

        async with self._db.transaction() as conn:
            await conn.execute(
                "INSERT INTO stash (id, todo_json, stashed_at, message) VALUES (?, ?, ?, ?);",
                (task.id, json.dumps(task.to_snapshot(), ensure_ascii=False), self._now_iso(), message),
            )
            # stashing is not a deletion: no tombstone
            await conn.execute("DELETE FROM tasks WHERE id = ?;", (task.id,))
        return task

    async def _newest_row(self) -> Optional[aiosqlite.Row]:
        return await self._db.fetchone(
            "SELECT id, todo_json, stashed_at, message FROM stash ORDER BY stashed_at DESC, rowid DESC LIMIT 1;"
        )

    async def _restore(self, row: aiosqlite.Row) -> Task:
        entry = self._row_to_entry(row)
        try:
            async with self._db.transaction() as conn:
                await conn.execute("DELETE FROM stash WHERE id = ?;", (row["id"],))
                task = await self._tasks.insert_on(conn, entry.task)
        except ConflictError as exc:
            raise ConflictError(f"Cannot unstash {entry.task.id}: a live task has the same id") from exc
        return task

    async def pop(self) -> Optional[Task]:
        """Reinsert the most recently stashed task; None when the stash is empty."""
        row = await self._newest_row()
        if row is None:
            return None
        return await self._restore(row)

    async def take(self, task_id: str) -> Task:
        """Reinsert one specific stashed task."""
        row = await self._db.fetchone(
            "SELECT id, todo_json, stashed_at, message FROM stash WHERE id = ?;", (task_id,)
        )
        if row is None:
            raise NotFoundError(f"Task {task_id} is not stashed")
        return await self._restore(row)

    async def discard(self, task_id: str) -> bool:
        return await self._db.execute("DELETE FROM stash WHERE id = ?;", (task_id,)) > 0

    async def list_entries(self) -> list[StashEntry]:
        rows = await self._db.fetchall(
            "SELECT id, todo_json, stashed_at, message FROM stash ORDER BY stashed_at DESC, rowid DESC;"
        )
        entries = []
        for row in rows:
            try:
                entries.append(self._row_to_entry(row))
            except ValidationError as exc:
                logger.warning("Skipping unreadable stash entry %s: %s", row["id"], exc)
        return entries

    async def clear(self) -> int:
        async with self._db.transaction() as conn:
            cur = await conn.execute("SELECT COUNT(*) FROM stash;")
            (count,) = await cur.fetchone()
            await conn.execute("DELETE FROM stash;")
        return int(count)
