# -*- coding: utf-8 -*-
"""operations table: append-only history behind undo/redo."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

import aiosqlite

from todosync.domain.common.errors import ValidationError
from todosync.domain.common.time import from_iso, to_iso
from todosync.models import EntityKind, Operation, OperationKind
from todosync.repos.base import BaseRepo

logger = logging.getLogger(__name__)

OPERATION_COLUMNS = "id, operation_type, entity_type, entity_id, previous_state, new_state, created_at, undone"


class OperationsRepo(BaseRepo):
    """
    One table, two logical stacks: rows with undone = 0 form the undo chain,
    rows with undone = 1 the redo chain, both read newest first. Rows are
    never changed after insert except for the undone flag.
    """

    def _row_to_operation(self, row: aiosqlite.Row) -> Operation:
        try:
            kind = OperationKind(row["operation_type"])
            entity_kind = EntityKind(row["entity_type"])
        except ValueError as exc:
            raise ValidationError(f"Operation {row['id']}: {exc}") from exc
        return Operation(
            id=row["id"],
            kind=kind,
            entity_kind=entity_kind,
            entity_id=row["entity_id"],
            previous_state=self._load_json(row["previous_state"], "previous_state"),
            new_state=self._load_json(row["new_state"], "new_state"),
            created_at=from_iso(row["created_at"], "created_at"),
            undone=bool(row["undone"]),
        )

    def _rows_to_operations(self, rows) -> list[Operation]:
        ops = []
        for row in rows:
            try:
                ops.append(self._row_to_operation(row))
            except ValidationError as exc:
                logger.warning("Skipping unreadable operation %s: %s", row["id"], exc)
        return ops

    async def record(self, op: Operation) -> None:
        await self._db.execute(
            f"INSERT INTO operations ({OPERATION_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?);",
            (
                op.id,
                op.kind.value,
                op.entity_kind.value,
                op.entity_id,
                self._dump_json(op.previous_state),
                self._dump_json(op.new_state),
                to_iso(op.created_at),
                1 if op.undone else 0,
            ),
        )

    async def get(self, op_id: str) -> Optional[Operation]:
        row = await self._db.fetchone(f"SELECT {OPERATION_COLUMNS} FROM operations WHERE id = ?;", (op_id,))
        return self._row_to_operation(row) if row else None

    async def _latest(self, undone: bool) -> Optional[Operation]:
        row = await self._db.fetchone(
            f"""
            SELECT {OPERATION_COLUMNS} FROM operations
            WHERE undone = ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT 1;
            """,
            (1 if undone else 0,),
        )
        return self._row_to_operation(row) if row else None

    async def last_undoable(self) -> Optional[Operation]:
        return await self._latest(undone=False)

    async def last_redoable(self) -> Optional[Operation]:
        return await self._latest(undone=True)

    async def mark_undone(self, op_id: str) -> None:
        await self._db.execute("UPDATE operations SET undone = 1 WHERE id = ?;", (op_id,))

    async def mark_redone(self, op_id: str) -> None:
        await self._db.execute("UPDATE operations SET undone = 0 WHERE id = ?;", (op_id,))

    async def list_recent(self, limit: int) -> list[Operation]:
        rows = await self._db.fetchall(
            f"SELECT {OPERATION_COLUMNS} FROM operations ORDER BY created_at DESC, rowid DESC LIMIT ?;",
            (limit,),
        )
        return self._rows_to_operations(rows)

    async def list_since(self, since: datetime) -> list[Operation]:
        rows = await self._db.fetchall(
            f"""
            SELECT {OPERATION_COLUMNS} FROM operations
            WHERE created_at >= ?
            ORDER BY created_at DESC, rowid DESC;
            """,
            (to_iso(since),),
        )
        return self._rows_to_operations(rows)

    async def count_older_than(self, cutoff: datetime) -> int:
        row = await self._db.fetchone(
            "SELECT COUNT(*) AS count FROM operations WHERE created_at < ?;", (to_iso(cutoff),)
        )
        return int(row["count"]) if row else 0

    async def clear_older_than(self, cutoff: datetime) -> int:
        return await self._db.execute("DELETE FROM operations WHERE created_at < ?;", (to_iso(cutoff),))
