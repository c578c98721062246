"""In-memory task store, the default persistence collaborator."""

import asyncio
from datetime import datetime
from typing import Any

from ..core.errors import NotFoundError, ValidationError
from ..schemas.unified_models import TaskCore, TaskPriority, TaskStatus, TaskType
from .base import apply_status_change, empty_statistics


class InMemoryTaskRepository:
    """Dictionary-backed TaskStore guarded by an asyncio lock."""

    def __init__(self):
        self._tasks: dict[str, TaskCore] = {}
        self._lock = asyncio.Lock()

    async def find_by_id(self, task_id: str) -> TaskCore | None:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    async def create(self, task: TaskCore) -> TaskCore:
        async with self._lock:
            if task.id in self._tasks:
                raise ValidationError(f"Task {task.id} already exists")
            self._tasks[task.id] = task.model_copy(deep=True)
        return task.model_copy(deep=True)

    async def update(self, task: TaskCore) -> TaskCore:
        async with self._lock:
            if task.id not in self._tasks:
                raise NotFoundError("Task", task.id)
            stored = task.model_copy(deep=True, update={"updated_at": datetime.now()})
            self._tasks[task.id] = stored
        return stored.model_copy(deep=True)

    async def update_status(
        self, task_id: str, status: TaskStatus, **fields: Any
    ) -> TaskCore:
        async with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise NotFoundError("Task", task_id)
            updated = apply_status_change(task, status, fields)
            self._tasks[task_id] = updated
        return updated.model_copy(deep=True)

    async def find_pending_tasks(self) -> list[TaskCore]:
        pending = [t for t in self._tasks.values() if t.status == TaskStatus.PENDING]
        pending.sort(key=lambda t: (t.priority_rank, t.created_at))
        return [t.model_copy(deep=True) for t in pending]

    async def find_by_filter(
        self,
        status: TaskStatus | None = None,
        type: TaskType | None = None,
        priority: TaskPriority | None = None,
        organization_id: str | None = None,
        limit: int | None = None,
    ) -> list[TaskCore]:
        matches = [
            t
            for t in self._tasks.values()
            if (status is None or t.status == status)
            and (type is None or t.type == type)
            and (priority is None or t.priority == priority)
            and (organization_id is None or t.organization_id == organization_id)
        ]
        matches.sort(key=lambda t: t.created_at)
        if limit is not None:
            matches = matches[:limit]
        return [t.model_copy(deep=True) for t in matches]

    async def get_statistics(self) -> dict[str, Any]:
        stats = empty_statistics()
        for task in self._tasks.values():
            stats["total"] += 1
            stats["by_status"][task.status.value] += 1
            stats["by_type"][task.type.value] += 1
            stats["by_priority"][task.priority.value] += 1
        return stats
