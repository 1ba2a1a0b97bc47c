# -*- coding: utf-8 -*-
"""Local repositories. Public API: use todosync.db.LocalStore."""

from todosync.repos.base import BaseRepo
from todosync.repos.categories_repo import CategoriesRepo
from todosync.repos.operations_repo import OperationsRepo
from todosync.repos.stash_repo import StashRepo
from todosync.repos.tasks_repo import TasksRepo

__all__ = [
    "BaseRepo",
    "TasksRepo",
    "CategoriesRepo",
    "OperationsRepo",
    "StashRepo",
]
