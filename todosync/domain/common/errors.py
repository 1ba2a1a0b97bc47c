from __future__ import annotations


class TodoSyncError(Exception):
    """Base class for every error raised by the engine."""


class NotFoundError(TodoSyncError):
    pass


class ConflictError(TodoSyncError):
    pass


class AlreadyStashedError(ConflictError):
    pass


class ValidationError(TodoSyncError):
    pass


class StorageError(TodoSyncError):
    pass


class SyncUnavailableError(TodoSyncError):
    pass
