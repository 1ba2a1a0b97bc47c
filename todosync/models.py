# -*- coding: utf-8 -*-
"""Shared data models (Task, Category, Operation, StashEntry)."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, Optional

from todosync.domain.common.errors import ValidationError
from todosync.domain.common.time import from_iso, from_iso_opt, to_iso, to_iso_opt


class Priority(IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3

    @classmethod
    def parse(cls, value: Any) -> "Priority":
        if isinstance(value, str):
            try:
                return cls[value.upper()]
            except KeyError:
                raise ValidationError(f"Invalid priority: {value!r}") from None
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid priority: {value!r}") from None


class SyncState(str, Enum):
    PENDING = "pending"
    SYNCED = "synced"
    CONFLICT = "conflict"

    @classmethod
    def parse(cls, value: str) -> "SyncState":
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(f"Invalid sync status: {value!r}") from None


class OperationKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    COMPLETE = "complete"
    UNCOMPLETE = "uncomplete"
    STASH = "stash"
    UNSTASH = "unstash"


class EntityKind(str, Enum):
    TASK = "todo"
    CATEGORY = "category"


class TaskOrder(str, Enum):
    CREATED = "created"
    DUE = "due"
    PRIORITY = "priority"
    TITLE = "title"
    UPDATED = "updated"


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class Task:
    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    user_id: Optional[str] = None
    category_id: Optional[str] = None
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    reminder_at: Optional[datetime] = None
    priority: Priority = Priority.MEDIUM
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    ai_metadata: Optional[Any] = None  # opaque JSON value from the classifier
    sync_status: SyncState = SyncState.PENDING

    def __post_init__(self) -> None:
        if self.is_completed != (self.completed_at is not None):
            raise ValidationError(
                f"Task {self.id}: is_completed={self.is_completed} but completed_at={self.completed_at}"
            )

    @classmethod
    def new(cls, title: str, now: datetime, user_id: Optional[str] = None, task_id: Optional[str] = None) -> "Task":
        return cls(
            id=task_id or new_id(),
            title=title,
            created_at=now,
            updated_at=now,
            user_id=user_id,
        )

    def touched(self, now: datetime) -> "Task":
        """Copy with a bumped modification time; never moves it backwards."""
        return replace(self, updated_at=max(now, self.updated_at), sync_status=SyncState.PENDING)

    def completed(self, now: datetime) -> "Task":
        return replace(self.touched(now), is_completed=True, completed_at=now)

    def reopened(self, now: datetime) -> "Task":
        return replace(self.touched(now), is_completed=False, completed_at=None)

    def with_sync_status(self, status: SyncState) -> "Task":
        return replace(self, sync_status=status)

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "category_id": self.category_id,
            "title": self.title,
            "description": self.description,
            "due_date": to_iso_opt(self.due_date),
            "reminder_at": to_iso_opt(self.reminder_at),
            "priority": self.priority.name.lower(),
            "is_completed": self.is_completed,
            "completed_at": to_iso_opt(self.completed_at),
            "ai_metadata": self.ai_metadata,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "sync_status": self.sync_status.value,
        }

    @classmethod
    def from_snapshot(cls, data: Dict[str, Any]) -> "Task":
        try:
            return cls(
                id=str(data["id"]),
                user_id=data.get("user_id"),
                category_id=data.get("category_id"),
                title=data["title"],
                description=data.get("description"),
                due_date=from_iso_opt(data.get("due_date"), "due_date"),
                reminder_at=from_iso_opt(data.get("reminder_at"), "reminder_at"),
                priority=Priority.parse(data.get("priority", Priority.MEDIUM.value)),
                is_completed=bool(data.get("is_completed", False)),
                completed_at=from_iso_opt(data.get("completed_at"), "completed_at"),
                ai_metadata=data.get("ai_metadata"),
                created_at=from_iso(data["created_at"], "created_at"),
                updated_at=from_iso(data["updated_at"], "updated_at"),
                sync_status=SyncState.parse(data.get("sync_status", SyncState.PENDING.value)),
            )
        except (KeyError, TypeError) as exc:
            raise ValidationError(f"Malformed task snapshot: {exc}") from exc


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    updated_at: datetime
    user_id: Optional[str] = None
    color: Optional[str] = None
    is_ai_generated: bool = False
    sync_status: SyncState = SyncState.PENDING

    @classmethod
    def new(
        cls,
        name: str,
        now: datetime,
        user_id: Optional[str] = None,
        color: Optional[str] = None,
        is_ai_generated: bool = False,
    ) -> "Category":
        return cls(
            id=new_id(),
            name=name,
            updated_at=now,
            user_id=user_id,
            color=color,
            is_ai_generated=is_ai_generated,
        )

    def touched(self, now: datetime) -> "Category":
        return replace(self, updated_at=max(now, self.updated_at), sync_status=SyncState.PENDING)

    def with_sync_status(self, status: SyncState) -> "Category":
        return replace(self, sync_status=status)

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "color": self.color,
            "is_ai_generated": self.is_ai_generated,
            "updated_at": to_iso(self.updated_at),
            "sync_status": self.sync_status.value,
        }

    @classmethod
    def from_snapshot(cls, data: Dict[str, Any]) -> "Category":
        try:
            return cls(
                id=str(data["id"]),
                user_id=data.get("user_id"),
                name=data["name"],
                color=data.get("color"),
                is_ai_generated=bool(data.get("is_ai_generated", False)),
                updated_at=from_iso(data["updated_at"], "updated_at"),
                sync_status=SyncState.parse(data.get("sync_status", SyncState.PENDING.value)),
            )
        except (KeyError, TypeError) as exc:
            raise ValidationError(f"Malformed category snapshot: {exc}") from exc


# kinds that may legitimately omit one side of the snapshot pair
_NO_PREVIOUS = {OperationKind.CREATE, OperationKind.UNSTASH}
_NO_NEW = {OperationKind.DELETE, OperationKind.STASH}


@dataclass(frozen=True)
class Operation:
    id: str
    kind: OperationKind
    entity_kind: EntityKind
    entity_id: str
    previous_state: Optional[Dict[str, Any]]
    new_state: Optional[Dict[str, Any]]
    created_at: datetime
    undone: bool = False

    def __post_init__(self) -> None:
        if self.previous_state is None and self.kind not in _NO_PREVIOUS:
            raise ValidationError(f"{self.kind.value} operation requires a previous state")
        if self.new_state is None and self.kind not in _NO_NEW:
            raise ValidationError(f"{self.kind.value} operation requires a new state")

    @classmethod
    def record(
        cls,
        kind: OperationKind,
        entity_kind: EntityKind,
        entity_id: str,
        now: datetime,
        previous_state: Optional[Dict[str, Any]] = None,
        new_state: Optional[Dict[str, Any]] = None,
    ) -> "Operation":
        return cls(
            id=new_id(),
            kind=kind,
            entity_kind=entity_kind,
            entity_id=entity_id,
            previous_state=previous_state,
            new_state=new_state,
            created_at=now,
        )

    @property
    def label(self) -> str:
        state = self.new_state or self.previous_state or {}
        return str(state.get("title") or state.get("name") or "?")


@dataclass(frozen=True)
class StashEntry:
    task: Task
    stashed_at: datetime
    message: Optional[str] = None


@dataclass(frozen=True)
class TaskFilter:
    completed: Optional[bool] = None
    category_id: Optional[str] = None
    due_after: Optional[datetime] = None
    due_before: Optional[datetime] = None
    text: Optional[str] = None
    order_by: TaskOrder = TaskOrder.CREATED
    descending: bool = True
    limit: Optional[int] = None


@dataclass
class SyncResult:
    uploaded: int = 0
    downloaded: int = 0
    conflicts: int = 0
    deleted: int = 0
    errors: list = field(default_factory=list)

    @property
    def first_error(self) -> Optional[Exception]:
        return self.errors[0] if self.errors else None
