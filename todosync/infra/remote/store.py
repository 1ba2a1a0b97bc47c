from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Optional

from sqlalchemy import Table, select, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import make_url
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from todosync.config import normalize_remote_url
from todosync.domain.common.errors import StorageError, SyncUnavailableError, ValidationError
from todosync.domain.common.time import to_utc
from todosync.infra.remote.tables import categories, metadata, todos
from todosync.models import Category, Priority, SyncState, Task

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 10


def _utc_opt(dt: Optional[datetime]) -> Optional[datetime]:
    return to_utc(dt) if dt is not None else None


class RemoteStore:
    """
    Shared peer store. Every write is a single statement: upserts carry their
    own last-write-wins guard so concurrent clients cannot race a read-then-write.
    """

    def __init__(self, url: str, pool_size: int = 5) -> None:
        self._url = normalize_remote_url(url)
        self._pool_size = pool_size
        self._engine: Optional[AsyncEngine] = None

    @property
    def dialect(self) -> str:
        return make_url(self._url).get_backend_name()

    async def connect(self) -> None:
        """Create the pool and the schema if missing. Unreachable -> SyncUnavailableError."""
        if self._engine is not None:
            return
        kwargs: Dict[str, Any] = {"pool_pre_ping": True}
        if self.dialect == "postgresql":
            kwargs["pool_size"] = self._pool_size
            kwargs["connect_args"] = {"timeout": CONNECT_TIMEOUT_SECONDS}
        self._engine = create_async_engine(self._url, **kwargs)
        try:
            async with self._begin() as conn:
                await conn.run_sync(metadata.create_all)
        except Exception:
            await self.close()
            raise
        logger.debug("Remote store ready (%s)", self.dialect)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None

    @asynccontextmanager
    async def _begin(self) -> AsyncIterator[AsyncConnection]:
        if self._engine is None:
            raise SyncUnavailableError("Remote store is not connected")
        try:
            async with self._engine.begin() as conn:
                yield conn
        except (OSError, asyncio.TimeoutError) as exc:
            raise SyncUnavailableError(f"Remote store unreachable: {exc}") from exc
        except DBAPIError as exc:
            if exc.connection_invalidated or isinstance(exc, (OperationalError, InterfaceError)):
                raise SyncUnavailableError(f"Remote store unreachable: {exc}") from exc
            raise StorageError(f"Remote store error: {exc}") from exc
        except SQLAlchemyError as exc:
            raise StorageError(f"Remote store error: {exc}") from exc

    async def ping(self) -> None:
        async with self._begin() as conn:
            await conn.execute(text("SELECT 1"))

    def _insert(self, table: Table):
        if self.dialect == "postgresql":
            return postgresql.insert(table)
        if self.dialect == "sqlite":
            return sqlite.insert(table)
        raise StorageError(f"Unsupported remote dialect: {self.dialect}")

    async def _guarded_upsert(self, table: Table, values: Dict[str, Any]) -> bool:
        stmt = self._insert(table).values(**values)
        changes = {name: stmt.excluded[name] for name in values if name not in ("id", "created_at")}
        # a strictly newer write also revives a tombstoned row
        changes["deleted_at"] = None
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.id],
            set_=changes,
            where=table.c.updated_at < stmt.excluded.updated_at,
        )
        async with self._begin() as conn:
            result = await conn.execute(stmt)
            applied = result.rowcount > 0
        return applied

    async def upsert_task(self, task: Task) -> bool:
        """Insert, or overwrite only if task.updated_at is strictly newer. Returns True if applied."""
        return await self._guarded_upsert(
            todos,
            {
                "id": task.id,
                "user_id": task.user_id,
                "category_id": task.category_id,
                "title": task.title,
                "description": task.description,
                "due_date": _utc_opt(task.due_date),
                "reminder_at": _utc_opt(task.reminder_at),
                "priority": int(task.priority),
                "is_completed": task.is_completed,
                "completed_at": _utc_opt(task.completed_at),
                "ai_metadata": task.ai_metadata,
                "created_at": to_utc(task.created_at),
                "updated_at": to_utc(task.updated_at),
            },
        )

    async def upsert_category(self, category: Category) -> bool:
        return await self._guarded_upsert(
            categories,
            {
                "id": category.id,
                "user_id": category.user_id,
                "name": category.name,
                "color": category.color,
                "is_ai_generated": category.is_ai_generated,
                "updated_at": to_utc(category.updated_at),
            },
        )

    async def changes_since(self, since: datetime) -> list[Task]:
        """Live tasks modified strictly after `since`, oldest change first."""
        stmt = (
            select(todos)
            .where(todos.c.updated_at > to_utc(since), todos.c.deleted_at.is_(None))
            .order_by(todos.c.updated_at.asc())
        )
        async with self._begin() as conn:
            rows = (await conn.execute(stmt)).mappings().all()
        tasks = []
        for row in rows:
            try:
                tasks.append(self._row_to_task(row))
            except ValidationError as exc:
                logger.warning("Skipping unreadable remote task %s: %s", row["id"], exc)
        return tasks

    async def category_changes_since(self, since: datetime) -> list[Category]:
        stmt = (
            select(categories)
            .where(categories.c.updated_at > to_utc(since), categories.c.deleted_at.is_(None))
            .order_by(categories.c.updated_at.asc())
        )
        async with self._begin() as conn:
            rows = (await conn.execute(stmt)).mappings().all()
        return [
            Category(
                id=row["id"],
                user_id=row["user_id"],
                name=row["name"],
                color=row["color"],
                is_ai_generated=bool(row["is_ai_generated"]),
                updated_at=to_utc(row["updated_at"]),
                sync_status=SyncState.SYNCED,
            )
            for row in rows
        ]

    async def _soft_delete(self, table: Table, entity_id: str, now: datetime) -> bool:
        now = to_utc(now)
        stmt = (
            update(table)
            .where(table.c.id == entity_id, table.c.deleted_at.is_(None))
            .values(deleted_at=now, updated_at=now)
        )
        async with self._begin() as conn:
            result = await conn.execute(stmt)
            applied = result.rowcount > 0
        return applied

    async def soft_delete_task(self, task_id: str, now: datetime) -> bool:
        """Tombstone the row and bump updated_at; the row stays for other clients to observe."""
        return await self._soft_delete(todos, task_id, now)

    async def soft_delete_category(self, category_id: str, now: datetime) -> bool:
        return await self._soft_delete(categories, category_id, now)

    @staticmethod
    def _row_to_task(row) -> Task:
        return Task(
            id=row["id"],
            user_id=row["user_id"],
            category_id=row["category_id"],
            title=row["title"],
            description=row["description"],
            due_date=_utc_opt(row["due_date"]),
            reminder_at=_utc_opt(row["reminder_at"]),
            priority=Priority.parse(row["priority"]),
            is_completed=bool(row["is_completed"]),
            completed_at=_utc_opt(row["completed_at"]),
            ai_metadata=row["ai_metadata"],
            created_at=to_utc(row["created_at"]),
            updated_at=to_utc(row["updated_at"]),
            sync_status=SyncState.SYNCED,
        )
