# -*- coding: utf-8 -*-
"""categories and deleted_categories tables."""
from __future__ import annotations

import logging
from typing import Optional

import aiosqlite

from todosync.domain.common.errors import ConflictError, NotFoundError, ValidationError
from todosync.domain.common.time import from_iso, to_iso
from todosync.models import Category, SyncState
from todosync.repos.base import BaseRepo

logger = logging.getLogger(__name__)

CATEGORY_COLUMNS = "id, user_id, name, color, is_ai_generated, updated_at, sync_status"


class CategoriesRepo(BaseRepo):
    """
    Category rows. Deleting a category leaves a tombstone for sync but does not touch
    tasks: callers must run
    TasksRepo.clear_category_references() first.
    """

    def _row_to_category(self, row: aiosqlite.Row) -> Category:
        return Category(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            color=row["color"],
            is_ai_generated=bool(row["is_ai_generated"]),
            updated_at=from_iso(row["updated_at"], "updated_at"),
            sync_status=SyncState.parse(row["sync_status"]),
        )

    def _rows_to_categories(self, rows) -> list[Category]:
        categories = []
        for row in rows:
            try:
                categories.append(self._row_to_category(row))
            except ValidationError as exc:
                logger.warning("Skipping unreadable category row %s: %s", row["id"], exc)
        return categories

    async def create(self, category: Category) -> None:
        """Insert; also forgets any tombstone left by an earlier delete of the same id."""
        try:
            async with self._db.transaction() as conn:
                await conn.execute(
                    f"INSERT INTO categories ({CATEGORY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?);",
                    (
                        category.id,
                        category.user_id,
                        category.name,
                        category.color,
                        1 if category.is_ai_generated else 0,
                        to_iso(category.updated_at),
                        category.sync_status.value,
                    ),
                )
                await conn.execute("DELETE FROM deleted_categories WHERE id = ?;", (category.id,))
        except ConflictError as exc:
            raise ConflictError(f"Category {category.name!r} ({category.id}) already exists") from exc

    async def get(self, category_id: str) -> Optional[Category]:
        row = await self._db.fetchone(
            f"SELECT {CATEGORY_COLUMNS} FROM categories WHERE id = ?;", (category_id,)
        )
        return self._row_to_category(row) if row else None

    async def require(self, category_id: str) -> Category:
        category = await self.get(category_id)
        if category is None:
            raise NotFoundError(f"Category {category_id} not found")
        return category

    async def get_by_name(self, name: str) -> Optional[Category]:
        row = await self._db.fetchone(
            f"SELECT {CATEGORY_COLUMNS} FROM categories WHERE name = ?;", (name,)
        )
        return self._row_to_category(row) if row else None

    async def list_categories(self) -> list[Category]:
        rows = await self._db.fetchall(f"SELECT {CATEGORY_COLUMNS} FROM categories ORDER BY name ASC;")
        return self._rows_to_categories(rows)

    async def update(self, category: Category) -> None:
        try:
            count = await self._db.execute(
                """
                UPDATE categories
                SET user_id = ?, name = ?, color = ?, is_ai_generated = ?, updated_at = ?, sync_status = ?
                WHERE id = ?;
                """,
                (
                    category.user_id,
                    category.name,
                    category.color,
                    1 if category.is_ai_generated else 0,
                    to_iso(category.updated_at),
                    category.sync_status.value,
                    category.id,
                ),
            )
        except ConflictError as exc:
            raise ConflictError(f"Category name {category.name!r} is already taken") from exc
        if count == 0:
            raise NotFoundError(f"Category {category.id} not found")

    async def delete(self, category_id: str, tombstone: bool = True) -> bool:
        async with self._db.transaction() as conn:
            cur = await conn.execute("DELETE FROM categories WHERE id = ?;", (category_id,))
            removed = cur.rowcount > 0
            if removed and tombstone:
                await conn.execute(
                    "INSERT OR REPLACE INTO deleted_categories (id, deleted_at, synced) VALUES (?, ?, 0);",
                    (category_id, self._now_iso()),
                )
        return removed

    async def list_pending(self) -> list[Category]:
        rows = await self._db.fetchall(
            f"SELECT {CATEGORY_COLUMNS} FROM categories WHERE sync_status = ? ORDER BY updated_at ASC;",
            (SyncState.PENDING.value,),
        )
        return self._rows_to_categories(rows)

    async def mark_synced(self, category_id: str) -> None:
        await self._db.execute(
            "UPDATE categories SET sync_status = ? WHERE id = ?;",
            (SyncState.SYNCED.value, category_id),
        )

    async def is_locally_deleted(self, category_id: str) -> bool:
        row = await self._db.fetchone("SELECT id FROM deleted_categories WHERE id = ?;", (category_id,))
        return row is not None

    async def list_unsynced_deletions(self) -> list[str]:
        rows = await self._db.fetchall(
            "SELECT id FROM deleted_categories WHERE synced = 0 ORDER BY deleted_at ASC;"
        )
        return [r["id"] for r in rows]

    async def mark_deletion_synced(self, category_id: str) -> None:
        await self._db.execute("UPDATE deleted_categories SET synced = 1 WHERE id = ?;", (category_id,))
