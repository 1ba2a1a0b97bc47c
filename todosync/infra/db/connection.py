# todosync/infra/db/connection.py
from __future__ import annotations

import asyncio
import logging
import sqlite3
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Sequence

import aiosqlite

from todosync.domain.common.errors import ConflictError, StorageError

logger = logging.getLogger(__name__)


class Database:
    """
    Async SQLite helper:
    - opens a new connection per operation (simple + safe)
    - sets row_factory to aiosqlite.Row
    - enables WAL
    - serialises writers through one asyncio.Lock
    - turns sqlite errors into ConflictError / StorageError
    """

    def __init__(self, path: str) -> None:
        self._path = path
        self._write_lock = asyncio.Lock()

    @property
    def path(self) -> str:
        return self._path

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        try:
            async with aiosqlite.connect(self._path) as db:
                db.row_factory = aiosqlite.Row
                yield db
        except sqlite3.IntegrityError as exc:
            raise ConflictError(str(exc)) from exc
        except sqlite3.Error as exc:
            raise StorageError(f"{self._path}: {exc}") from exc
        except OSError as exc:
            raise StorageError(f"{self._path}: {exc}") from exc

    async def executescript(self, sql: str) -> None:
        async with self._write_lock, self._connect() as db:
            await db.execute("PRAGMA journal_mode=WAL;")
            await db.executescript(sql)
            await db.commit()

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run one write statement and return the number of affected rows."""
        async with self._write_lock, self._connect() as db:
            cur = await db.execute(sql, params)
            await db.commit()
            return cur.rowcount

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Several writes on one connection, committed together or not at all."""
        async with self._write_lock, self._connect() as db:
            try:
                yield db
            except BaseException:
                await db.rollback()
                raise
            await db.commit()

    async def fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[aiosqlite.Row]:
        async with self._connect() as db:
            cur = await db.execute(sql, params)
            return await cur.fetchone()

    async def fetchall(self, sql: str, params: Sequence[Any] = ()) -> list[aiosqlite.Row]:
        async with self._connect() as db:
            cur = await db.execute(sql, params)
            return list(await cur.fetchall())
