"""SQLModel database entity models with Pydantic integration.

Bridges the TaskCore business model with the optional SQL persistence
collaborator. Free-form payloads are stored in JSON columns.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Column, Index
from sqlmodel import Field, SQLModel

from .unified_models import TaskCore, TaskPriority, TaskStatus, TaskType

# Computed fields that exist on TaskCore but not on the table
_COMPUTED_FIELDS = {"is_terminal", "priority_rank"}
_JSON_FIELDS = {"dependencies", "metadata", "output"}


class TaskRecord(SQLModel, table=True):
    """SQLModel task table mirroring TaskCore."""

    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_status", "status"),
        Index("ix_tasks_priority_rank", "priority_rank"),
        Index("ix_tasks_organization_id", "organization_id"),
    )

    id: str = Field(primary_key=True, max_length=36)
    organization_id: str | None = Field(default=None, max_length=64)
    project_id: str | None = Field(default=None, max_length=64)
    type: TaskType = TaskType.IMPLEMENTATION
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    # Stored so pending tasks can be ordered by priority in SQL
    priority_rank: int = Field(default=2)
    title: str = Field(max_length=200)
    description: str
    dependencies: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    task_metadata: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    use_collaboration: bool = False
    assigned_agent_id: str | None = None
    output: Any = Field(default=None, sa_column=Column(JSON))
    error: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    actual_duration: int | None = None

    def to_core_model(self) -> TaskCore:
        """Convert to TaskCore business model."""
        data = self.model_dump(exclude={"task_metadata", "priority_rank"})
        data["metadata"] = dict(self.task_metadata or {})
        data["dependencies"] = list(self.dependencies or [])
        return TaskCore.model_validate(data)

    @classmethod
    def from_core_model(cls, core_model: TaskCore) -> "TaskRecord":
        """Create from TaskCore business model."""
        record = cls(id=core_model.id, title=core_model.title, description="")
        record.update_from_core_model(core_model)
        return record

    def update_from_core_model(self, core_model: TaskCore) -> None:
        """Update entity from business model."""
        for field, value in core_model.model_dump(
            exclude=_COMPUTED_FIELDS | _JSON_FIELDS | {"id"}
        ).items():
            setattr(self, field, value)

        # JSON columns only accept JSON-safe values (no datetimes or enums)
        payloads = core_model.model_dump(mode="json", include=_JSON_FIELDS)
        self.dependencies = payloads["dependencies"]
        self.task_metadata = payloads["metadata"]
        self.output = payloads["output"]
        self.priority_rank = core_model.priority_rank
