from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from todosync.constants import NOTHING_TO_REDO, NOTHING_TO_UNDO
from todosync.db import LocalStore
from todosync.domain.common.errors import ConflictError, NotFoundError
from todosync.models import Category, EntityKind, Operation, OperationKind, Task

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistoryOutcome:
    applied: bool
    message: str
    operation: Optional[Operation] = None


class HistoryPlayer:
    """
    Applies the inverse (undo) or the replay (redo) of logged operations.

    History is global and chronological: undo always takes the newest entry
    with undone = 0 whatever entity it targets, redo the newest with
    undone = 1. Recording a new operation does not drop the redo chain.
    """

    def __init__(self, store: LocalStore) -> None:
        self._store = store

    async def undo(self) -> HistoryOutcome:
        op = await self._store.operations.last_undoable()
        if op is None:
            return HistoryOutcome(applied=False, message=NOTHING_TO_UNDO)
        try:
            message = await self._undo(op)
        except (NotFoundError, ConflictError) as exc:
            message = self._stale_message(op, exc)
        await self._store.operations.mark_undone(op.id)
        logger.info("Undo %s %s %s: %s", op.kind.value, op.entity_kind.value, op.entity_id, message)
        return HistoryOutcome(applied=True, message=message, operation=op)

    async def redo(self) -> HistoryOutcome:
        op = await self._store.operations.last_redoable()
        if op is None:
            return HistoryOutcome(applied=False, message=NOTHING_TO_REDO)
        try:
            message = await self._redo(op)
        except (NotFoundError, ConflictError) as exc:
            message = self._stale_message(op, exc)
        await self._store.operations.mark_redone(op.id)
        logger.info("Redo %s %s %s: %s", op.kind.value, op.entity_kind.value, op.entity_id, message)
        return HistoryOutcome(applied=True, message=message, operation=op)

    @staticmethod
    def _stale_message(op: Operation, exc: Exception) -> str:
        # consumed either way
        logger.info("Stale history entry %s: %s", op.id, exc)
        if isinstance(exc, NotFoundError):
            return f'"{op.label}" no longer exists'
        return f'"{op.label}" already exists'

    async def _undo(self, op: Operation) -> str:
        if op.entity_kind is EntityKind.CATEGORY:
            return await self._undo_category(op)

        tasks = self._store.tasks
        now = self._store.clock.now()
        if op.kind is OperationKind.CREATE:
            if not await tasks.delete(op.entity_id):
                return f'"{op.label}" no longer exists'
            return f'Undone create: deleted "{op.label}"'
        if op.kind is OperationKind.DELETE:
            task = Task.from_snapshot(op.previous_state)
            await tasks.create(task)
            return f'Undone delete: restored "{task.title}"'
        if op.kind is OperationKind.UPDATE:
            task = Task.from_snapshot(op.previous_state)
            await tasks.update(task)
            return f'Undone edit: reverted "{task.title}"'
        if op.kind is OperationKind.COMPLETE:
            current = await tasks.get(op.entity_id)
            if current is None:
                return f'"{op.label}" no longer exists'
            await tasks.update(current.reopened(now))
            return f'Undone complete: "{current.title}" is pending again'
        if op.kind is OperationKind.UNCOMPLETE:
            current = await tasks.get(op.entity_id)
            if current is None:
                return f'"{op.label}" no longer exists'
            # completion time is taken now, not copied from the log
            await tasks.update(current.completed(now))
            return f'Undone uncomplete: "{current.title}" is done again'
        if op.kind is OperationKind.STASH:
            task = Task.from_snapshot(op.previous_state)
            await self._store.stash.discard(task.id)
            await tasks.create(task)
            return f'Undone stash: "{task.title}" restored'
        if op.kind is OperationKind.UNSTASH:
            task = await self._store.stash.push(op.entity_id)
            return f'Undone unstash: "{task.title}" stashed again'
        return f"Cannot undo {op.kind.value} on a task"

    async def _redo(self, op: Operation) -> str:
        if op.entity_kind is EntityKind.CATEGORY:
            return await self._redo_category(op)

        tasks = self._store.tasks
        now = self._store.clock.now()
        if op.kind is OperationKind.CREATE:
            task = Task.from_snapshot(op.new_state)
            await tasks.create(task)
            return f'Redone create: "{task.title}"'
        if op.kind is OperationKind.DELETE:
            if not await tasks.delete(op.entity_id):
                return f'"{op.label}" no longer exists'
            return f'Redone delete: "{op.label}"'
        if op.kind is OperationKind.UPDATE:
            task = Task.from_snapshot(op.new_state)
            await tasks.update(task)
            return f'Redone edit: "{task.title}"'
        if op.kind is OperationKind.COMPLETE:
            current = await tasks.get(op.entity_id)
            if current is None:
                return f'"{op.label}" no longer exists'
            await tasks.update(current.completed(now))
            return f'Redone complete: "{current.title}" is done again'
        if op.kind is OperationKind.UNCOMPLETE:
            current = await tasks.get(op.entity_id)
            if current is None:
                return f'"{op.label}" no longer exists'
            await tasks.update(current.reopened(now))
            return f'Redone uncomplete: "{current.title}" is pending again'
        if op.kind is OperationKind.STASH:
            task = await self._store.stash.push(op.entity_id)
            return f'Redone stash: "{task.title}" stashed again'
        if op.kind is OperationKind.UNSTASH:
            task = Task.from_snapshot(op.new_state)
            await self._store.stash.discard(task.id)
            await tasks.create(task)
            return f'Redone unstash: "{task.title}" restored'
        return f"Cannot redo {op.kind.value} on a task"

    async def _undo_category(self, op: Operation) -> str:
        categories = self._store.categories
        if op.kind is OperationKind.CREATE:
            await self._store.tasks.clear_category_references(op.entity_id)
            if not await categories.delete(op.entity_id):
                return f'"{op.label}" no longer exists'
            return f'Undone create: deleted category "{op.label}"'
        if op.kind is OperationKind.DELETE:
            category = Category.from_snapshot(op.previous_state)
            await categories.create(category)
            return f'Undone delete: restored category "{category.name}"'
        if op.kind is OperationKind.UPDATE:
            category = Category.from_snapshot(op.previous_state)
            await categories.update(category)
            return f'Undone edit: reverted category "{category.name}"'
        return f"Cannot undo {op.kind.value} on a category"

    async def _redo_category(self, op: Operation) -> str:
        categories = self._store.categories
        if op.kind is OperationKind.CREATE:
            category = Category.from_snapshot(op.new_state)
            await categories.create(category)
            return f'Redone create: category "{category.name}"'
        if op.kind is OperationKind.DELETE:
            await self._store.tasks.clear_category_references(op.entity_id)
            if not await categories.delete(op.entity_id):
                return f'"{op.label}" no longer exists'
            return f'Redone delete: category "{op.label}"'
        if op.kind is OperationKind.UPDATE:
            category = Category.from_snapshot(op.new_state)
            await categories.update(category)
            return f'Redone edit: category "{category.name}"'
        return f"Cannot redo {op.kind.value} on a category"
