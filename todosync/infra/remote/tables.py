"""Remote schema. Rows are never removed; deleted_at marks a tombstone."""
from __future__ import annotations

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, MetaData, String, Table, Text

metadata = MetaData()

categories = Table(
    "categories",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36)),
    Column("name", Text, nullable=False),
    Column("color", Text),
    Column("is_ai_generated", Boolean, nullable=False, default=False),
    Column("updated_at", DateTime(timezone=True), nullable=False, index=True),
    Column("deleted_at", DateTime(timezone=True), index=True),
)

todos = Table(
    "todos",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), index=True),
    Column("category_id", String(36), ForeignKey("categories.id")),
    Column("title", Text, nullable=False),
    Column("description", Text),
    Column("due_date", DateTime(timezone=True)),
    Column("reminder_at", DateTime(timezone=True)),
    Column("priority", Integer, nullable=False, default=2),
    Column("is_completed", Boolean, nullable=False, default=False),
    Column("completed_at", DateTime(timezone=True)),
    Column("ai_metadata", JSON),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False, index=True),
    Column("deleted_at", DateTime(timezone=True), index=True),
)
