"""SQL task store built on SQLModel.

Optional persistence collaborator; tasks survive the process but running
executions are not recovered after a restart.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from ..core.errors import NotFoundError, ValidationError
from ..database import get_session_context
from ..schemas.database import TaskRecord
from ..schemas.unified_models import TaskCore, TaskPriority, TaskStatus, TaskType
from .base import apply_status_change, empty_statistics


class SQLTaskRepository:
    """TaskStore backed by a SQL database through SQLModel sessions."""

    def __init__(self, engine: Engine):
        self.engine = engine

    async def find_by_id(self, task_id: str) -> TaskCore | None:
        with Session(self.engine) as session:
            record = session.get(TaskRecord, task_id)
            return record.to_core_model() if record else None

    async def create(self, task: TaskCore) -> TaskCore:
        with get_session_context(self.engine) as session:
            if session.get(TaskRecord, task.id) is not None:
                raise ValidationError(f"Task {task.id} already exists")
            record = TaskRecord.from_core_model(task)
            session.add(record)
            session.flush()
            return record.to_core_model()

    async def update(self, task: TaskCore) -> TaskCore:
        with get_session_context(self.engine) as session:
            record = session.get(TaskRecord, task.id)
            if record is None:
                raise NotFoundError("Task", task.id)
            record.update_from_core_model(task)
            record.updated_at = datetime.now()
            session.add(record)
            session.flush()
            return record.to_core_model()

    async def update_status(
        self, task_id: str, status: TaskStatus, **fields: Any
    ) -> TaskCore:
        with get_session_context(self.engine) as session:
            record = session.get(TaskRecord, task_id)
            if record is None:
                raise NotFoundError("Task", task_id)
            updated = apply_status_change(record.to_core_model(), status, fields)
            record.update_from_core_model(updated)
            session.add(record)
            session.flush()
            return record.to_core_model()

    async def find_pending_tasks(self) -> list[TaskCore]:
        statement = (
            select(TaskRecord)
            .where(TaskRecord.status == TaskStatus.PENDING)
            .order_by(TaskRecord.priority_rank, TaskRecord.created_at)
        )
        with Session(self.engine) as session:
            return [record.to_core_model() for record in session.exec(statement)]

    async def find_by_filter(
        self,
        status: TaskStatus | None = None,
        type: TaskType | None = None,
        priority: TaskPriority | None = None,
        organization_id: str | None = None,
        limit: int | None = None,
    ) -> list[TaskCore]:
        statement = select(TaskRecord)
        if status is not None:
            statement = statement.where(TaskRecord.status == status)
        if type is not None:
            statement = statement.where(TaskRecord.type == type)
        if priority is not None:
            statement = statement.where(TaskRecord.priority == priority)
        if organization_id is not None:
            statement = statement.where(TaskRecord.organization_id == organization_id)
        statement = statement.order_by(TaskRecord.created_at)
        if limit is not None:
            statement = statement.limit(limit)

        with Session(self.engine) as session:
            return [record.to_core_model() for record in session.exec(statement)]

    async def get_statistics(self) -> dict[str, Any]:
        stats = empty_statistics()
        groupings = {
            "by_status": TaskRecord.status,
            "by_type": TaskRecord.type,
            "by_priority": TaskRecord.priority,
        }
        with Session(self.engine) as session:
            for key, column in groupings.items():
                statement = select(column, func.count()).group_by(column)
                for value, count in session.exec(statement):
                    stats[key][value.value] = count
            stats["total"] = session.exec(
                select(func.count()).select_from(TaskRecord)
            ).one()
        return stats
