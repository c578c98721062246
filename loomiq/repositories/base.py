"""Persistence contract for tasks.

The orchestrator talks to storage only through TaskStore. Implementations
hand out copies, so a caller never mutates stored state directly.
"""

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from ..core.errors import ValidationError
from ..schemas.unified_models import (
    TaskCore,
    TaskPriority,
    TaskStatus,
    TaskType,
    can_transition_status,
)


@runtime_checkable
class TaskStore(Protocol):
    """Task persistence collaborator."""

    async def find_by_id(self, task_id: str) -> TaskCore | None:
        """Return a copy of the task, or None if unknown."""
        ...

    async def create(self, task: TaskCore) -> TaskCore:
        """Store a new task.

        Raises:
            ValidationError: If a task with the same id already exists

        """
        ...

    async def update(self, task: TaskCore) -> TaskCore:
        """Replace a stored task with the given state.

        Raises:
            NotFoundError: If the task does not exist

        """
        ...

    async def update_status(
        self, task_id: str, status: TaskStatus, **fields: Any
    ) -> TaskCore:
        """Move a task to a new status and set the given fields.

        Args:
            task_id: Task to update
            status: Target status
            **fields: Additional TaskCore fields to set in the same write

        Returns:
            Copy of the updated task

        Raises:
            NotFoundError: If the task does not exist
            ValidationError: If the transition is not allowed

        """
        ...

    async def find_pending_tasks(self) -> list[TaskCore]:
        """Pending tasks ordered by priority then creation time."""
        ...

    async def find_by_filter(
        self,
        status: TaskStatus | None = None,
        type: TaskType | None = None,
        priority: TaskPriority | None = None,
        organization_id: str | None = None,
        limit: int | None = None,
    ) -> list[TaskCore]:
        """Tasks matching every given criterion, oldest first."""
        ...

    async def get_statistics(self) -> dict[str, Any]:
        """Task counts by status, type and priority."""
        ...


def apply_status_change(
    task: TaskCore, status: TaskStatus, fields: dict[str, Any]
) -> TaskCore:
    """Return a copy of the task moved to a new status.

    Raises:
        ValidationError: If the transition is not allowed

    """
    if not can_transition_status(task.status, status):
        raise ValidationError(
            f"Invalid status transition for task {task.id}: "
            f"{task.status.value} -> {status.value}"
        )

    data = task.model_dump(exclude={"is_terminal", "priority_rank"})
    data.update(fields)
    data["status"] = status
    data["updated_at"] = datetime.now()
    return TaskCore.model_validate(data)


def empty_statistics() -> dict[str, Any]:
    """Statistics skeleton with every enum value present."""
    return {
        "total": 0,
        "by_status": {s.value: 0 for s in TaskStatus},
        "by_type": {t.value: 0 for t in TaskType},
        "by_priority": {p.value: 0 for p in TaskPriority},
    }
