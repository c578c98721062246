"""Task persistence collaborators.

InMemoryTaskRepository is the default store; SQLTaskRepository persists
tasks through SQLModel.
"""

from .base import TaskStore
from .memory import InMemoryTaskRepository
from .task_repository import SQLTaskRepository


__all__ = ["InMemoryTaskRepository", "SQLTaskRepository", "TaskStore"]
