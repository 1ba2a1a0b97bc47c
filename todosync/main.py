from __future__ import annotations

import asyncio
import logging
import os
import sys

from todosync.config import load_settings
from todosync.constants import SYNC_SETUP_HINT
from todosync.domain.common.errors import SyncUnavailableError, TodoSyncError
from todosync.domain.todos.service import TodoService


async def main() -> int:
    """
    Run one reconciliation pass against the configured remote store.

    Exit status: 0 on success or when sync is simply not configured,
    1 when the remote is unreachable or a store error aborts the pass.
    """
    logging.basicConfig(
        level=os.getenv("TODOSYNC_LOG_LEVEL", "INFO").upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - [PID:%(process)d] - %(message)s'
    )
    logger = logging.getLogger(__name__)

    try:
        settings = load_settings()
        service = await TodoService.from_settings(settings)
    except TodoSyncError as exc:
        logger.error("Startup failed: %s", exc)
        return 1

    if not service.is_configured():
        logger.info(SYNC_SETUP_HINT)
        return 0

    try:
        result = await service.sync()
    except SyncUnavailableError as exc:
        logger.error("Sync aborted: %s", exc)
        return 1
    except TodoSyncError as exc:
        logger.exception("Sync failed: %s", exc)
        return 1
    finally:
        await service.close()

    logger.info(
        "Uploaded %d, downloaded %d, conflicts %d, deleted %d",
        result.uploaded,
        result.downloaded,
        result.conflicts,
        result.deleted,
    )
    if result.errors:
        logger.warning("%d entities failed to sync; first error: %s", len(result.errors), result.first_error)
    return 0


def run() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    run()
