from __future__ import annotations

import logging
from datetime import datetime
from typing import Union

from todosync.constants import SYNC_CURSOR
from todosync.db import LocalStore
from todosync.domain.common.errors import StorageError, SyncUnavailableError, ValidationError
from todosync.infra.remote.store import RemoteStore
from todosync.models import Category, SyncResult, SyncState, Task

Entity = Union[Task, Category]

logger = logging.getLogger(__name__)


class SyncReconciler:
    """
    One complete bidirectional pass between the local store and the remote.

    Last write wins on updated_at, except that a Pending local copy is never
    overwritten by an older remote one: it is kept and counted as a conflict.
    Each entity transition is atomic on its own; nothing is rolled back when
    a later step fails.
    """

    def __init__(self, local: LocalStore, remote: RemoteStore) -> None:
        self._local = local
        self._remote = remote

    def _cursor(self) -> datetime:
        # no persisted high-water mark: every pass is a full resync
        return SYNC_CURSOR

    async def run(self) -> SyncResult:
        try:
            await self._remote.connect()
            await self._remote.ping()
        except StorageError as exc:
            raise SyncUnavailableError(f"Remote store unavailable: {exc}") from exc

        result = SyncResult()
        await self._push_categories(result)
        await self._push_tasks(result)
        await self._push_deletions(result)

        since = self._cursor()
        await self._pull_categories(since, result)
        await self._pull_tasks(since, result)

        logger.info(
            "Sync finished: uploaded=%d downloaded=%d conflicts=%d deleted=%d errors=%d",
            result.uploaded,
            result.downloaded,
            result.conflicts,
            result.deleted,
            len(result.errors),
        )
        return result

    async def _push_categories(self, result: SyncResult) -> None:
        for category in await self._local.categories.list_pending():
            try:
                await self._remote.upsert_category(category)
            except StorageError as exc:
                logger.warning("Failed to push category %s: %s", category.id, exc)
                result.errors.append(exc)
                continue
            await self._local.categories.mark_synced(category.id)
            result.uploaded += 1

    async def _push_tasks(self, result: SyncResult) -> None:
        for task in await self._local.tasks.list_pending():
            try:
                await self._remote.upsert_task(task)
            except StorageError as exc:
                logger.warning("Failed to push task %s: %s", task.id, exc)
                result.errors.append(exc)
                continue
            await self._local.tasks.mark_synced(task.id)
            result.uploaded += 1

    async def _push_deletions(self, result: SyncResult) -> None:
        now = self._local.clock.now()
        for task_id in await self._local.tasks.list_unsynced_deletions():
            try:
                await self._remote.soft_delete_task(task_id, now)
            except StorageError as exc:
                logger.warning("Failed to push deletion of task %s: %s", task_id, exc)
                result.errors.append(exc)
                continue
            await self._local.tasks.mark_deletion_synced(task_id)
            result.deleted += 1
        for category_id in await self._local.categories.list_unsynced_deletions():
            try:
                await self._remote.soft_delete_category(category_id, now)
            except StorageError as exc:
                logger.warning("Failed to push deletion of category %s: %s", category_id, exc)
                result.errors.append(exc)
                continue
            await self._local.categories.mark_deletion_synced(category_id)
            result.deleted += 1

    async def _pull_categories(self, since: datetime, result: SyncResult) -> None:
        repo = self._local.categories
        for remote_category in await self._remote.category_changes_since(since):
            incoming = remote_category.with_sync_status(SyncState.SYNCED)
            if await repo.is_locally_deleted(incoming.id):
                continue
            try:
                local = await repo.get(incoming.id)
            except ValidationError as exc:
                logger.warning("Failed to read local category %s: %s", incoming.id, exc)
                continue
            if local is None:
                clash = await repo.get_by_name(incoming.name)
                if clash is not None:
                    logger.warning(
                        "Remote category %s clashes by name %r with local %s; keeping local",
                        incoming.id,
                        incoming.name,
                        clash.id,
                    )
                    result.conflicts += 1
                    continue
                await repo.create(incoming)
                result.downloaded += 1
            elif self._resolve(incoming, local, result):
                await repo.update(incoming)
                result.downloaded += 1

    async def _pull_tasks(self, since: datetime, result: SyncResult) -> None:
        repo = self._local.tasks
        for remote_task in await self._remote.changes_since(since):
            incoming = remote_task.with_sync_status(SyncState.SYNCED)
            if await repo.is_locally_deleted(incoming.id) or await self._local.stash.is_stashed(incoming.id):
                continue
            try:
                local = await repo.get(incoming.id)
            except ValidationError as exc:
                logger.warning("Failed to read local task %s: %s", incoming.id, exc)
                continue
            if local is None:
                await repo.create(incoming)
                result.downloaded += 1
            elif self._resolve(incoming, local, result):
                await repo.update(incoming)
                result.downloaded += 1

    @staticmethod
    def _resolve(incoming: Entity, local: Entity, result: SyncResult) -> bool:
        """True when the remote copy should overwrite the local one."""
        if incoming.updated_at > local.updated_at:
            return True
        if local.sync_status is SyncState.PENDING:
            # dirty local copy wins by inaction
            result.conflicts += 1
        return False
