from __future__ import annotations

import logging

from todosync.infra.db.connection import Database

logger = logging.getLogger(__name__)

# No foreign keys: category references are kept consistent by the repos,
# so rows pulled out of order from the remote never trip the engine.
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS categories (
    id TEXT PRIMARY KEY,
    user_id TEXT,
    name TEXT NOT NULL UNIQUE,
    color TEXT,
    is_ai_generated INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL,
    sync_status TEXT NOT NULL DEFAULT 'pending'
);

CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    user_id TEXT,
    category_id TEXT,
    title TEXT NOT NULL,
    description TEXT,
    due_date TEXT,
    reminder_at TEXT,
    priority INTEGER NOT NULL DEFAULT 2,
    is_completed INTEGER NOT NULL DEFAULT 0,
    completed_at TEXT,
    ai_metadata TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    sync_status TEXT NOT NULL DEFAULT 'pending'
);
CREATE INDEX IF NOT EXISTS idx_tasks_due_date ON tasks(due_date);
CREATE INDEX IF NOT EXISTS idx_tasks_sync_status ON tasks(sync_status);
CREATE INDEX IF NOT EXISTS idx_tasks_reminder_at ON tasks(reminder_at);
CREATE INDEX IF NOT EXISTS idx_tasks_category_id ON tasks(category_id);

CREATE TABLE IF NOT EXISTS operations (
    id TEXT PRIMARY KEY,
    operation_type TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    previous_state TEXT,
    new_state TEXT,
    created_at TEXT NOT NULL,
    undone INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_operations_created_at ON operations(created_at DESC);

CREATE TABLE IF NOT EXISTS stash (
    id TEXT PRIMARY KEY,
    todo_json TEXT NOT NULL,
    stashed_at TEXT NOT NULL,
    message TEXT
);
CREATE INDEX IF NOT EXISTS idx_stash_stashed_at ON stash(stashed_at DESC);

CREATE TABLE IF NOT EXISTS deleted_tasks (
    id TEXT PRIMARY KEY,
    deleted_at TEXT NOT NULL,
    synced INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS deleted_categories (
    id TEXT PRIMARY KEY,
    deleted_at TEXT NOT NULL,
    synced INTEGER NOT NULL DEFAULT 0
);
"""


async def init_schema(db: Database) -> None:
    logger.debug("Ensuring local schema in %s", db.path)
    await db.executescript(SCHEMA_SQL)
