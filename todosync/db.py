# -*- coding: utf-8 -*-
"""LocalStore: the explicit handle to the embedded database and its repos."""
from __future__ import annotations

import os
from typing import Optional, Union

from todosync.domain.common.ports import Clock
from todosync.infra.clock.system_clock import SystemClock
from todosync.infra.db.connection import Database
from todosync.infra.db.schema import init_schema
from todosync.repos import CategoriesRepo, OperationsRepo, StashRepo, TasksRepo


class LocalStore:
    """
    Constructed once per CLI invocation or TUI/daemon session and passed to
    every component. The file belongs to one process at a time.
    """

    def __init__(self, path: Union[str, os.PathLike], clock: Optional[Clock] = None) -> None:
        self.clock = clock or SystemClock()
        self.db = Database(os.fspath(path))
        self.tasks = TasksRepo(self.db, self.clock)
        self.categories = CategoriesRepo(self.db, self.clock)
        self.operations = OperationsRepo(self.db, self.clock)
        self.stash = StashRepo(self.db, self.tasks, self.clock)

    async def init(self) -> None:
        parent = os.path.dirname(self.db.path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        await init_schema(self.db)

    @classmethod
    async def open(cls, path: Union[str, os.PathLike], clock: Optional[Clock] = None) -> "LocalStore":
        store = cls(path, clock)
        await store.init()
        return store
