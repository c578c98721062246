"""Business models for tasks, agents and collaboration sessions.

Pydantic v2 models shared by the orchestrator, the collaboration manager, the
agent registry and the persistence layer. Payload fields (task metadata, agent
output) are kept opaque beyond the keys the core reads explicitly.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
)

# ============================================================================
# ENUMS
# ============================================================================


class TaskStatus(StrEnum):
    """Lifecycle status of a task."""

    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskPriority(StrEnum):
    """Task priority, highest first when queued."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TaskType(StrEnum):
    """Kind of work a task requests."""

    IMPLEMENTATION = "implementation"
    DESIGN = "design"
    TEST = "test"
    REVIEW = "review"
    DEPLOYMENT = "deployment"
    REQUIREMENT = "requirement"


class AgentStatus(StrEnum):
    """Live status reported by an agent."""

    IDLE = "idle"
    BUSY = "busy"
    OFFLINE = "offline"


class CollaborationStrategyType(StrEnum):
    """Execution pattern of a collaboration session."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    CONSENSUS = "consensus"
    HIERARCHICAL = "hierarchical"


class SessionStatus(StrEnum):
    """Lifecycle status of a collaboration session."""

    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


# ============================================================================
# CONFIGURATION
# ============================================================================


class UnifiedConfig:
    """Shared model configuration."""

    PYDANTIC_CONFIG = ConfigDict(
        extra="forbid",
        validate_assignment=True,
        use_enum_values=False,
        from_attributes=True,
    )


class BaseBusinessModel(BaseModel):
    """Base for business models."""

    model_config = UnifiedConfig.PYDANTIC_CONFIG


def _new_id() -> str:
    return str(uuid4())


# ============================================================================
# TASKS
# ============================================================================


class TaskCore(BaseBusinessModel):
    """A unit of requested work with priority, dependencies and status."""

    id: str = Field(default_factory=_new_id)
    organization_id: str | None = None
    project_id: str | None = None
    type: TaskType = TaskType.IMPLEMENTATION
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    dependencies: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    use_collaboration: bool = False
    assigned_agent_id: str | None = None
    output: Any = None
    error: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    actual_duration: int | None = Field(
        default=None, ge=0, description="Execution time in milliseconds"
    )

    @field_validator("dependencies")
    @classmethod
    def validate_dependencies(cls, v: list[str]) -> list[str]:
        """Drop duplicate dependency ids while preserving order."""
        return list(dict.fromkeys(v))

    @computed_field
    @property
    def is_terminal(self) -> bool:
        """Whether the task reached completed or failed."""
        return self.status in (TaskStatus.COMPLETED, TaskStatus.FAILED)

    @computed_field
    @property
    def priority_rank(self) -> int:
        """Queue rank, lower runs first."""
        return get_priority_rank(self.priority)


Task = TaskCore


class RunningTask(BaseBusinessModel):
    """Bookkeeping for a task currently being executed."""

    task_id: str
    agent_id: str | None = None
    start_time: datetime = Field(default_factory=datetime.now)
    attempts: int = Field(default=0, ge=0)
    collaboration: bool = False


class ExecutionResult(BaseBusinessModel):
    """Outcome returned by TaskOrchestrator.execute_task."""

    task_id: str
    success: bool
    status: TaskStatus
    agent_id: str | None = None
    output: Any = None
    error: str | None = None
    attempts: int = 0
    duration: int = Field(default=0, ge=0, description="Milliseconds")
    collaboration: bool = False
    session_id: str | None = None


# ============================================================================
# AGENTS
# ============================================================================


class AgentRequest(BaseBusinessModel):
    """Task-shaped request sent to an agent."""

    task_id: str
    prompt: str
    context: dict[str, Any] = Field(default_factory=dict)
    priority: TaskPriority = TaskPriority.MEDIUM


class AgentResponse(BaseBusinessModel):
    """Result of a single agent call."""

    success: bool
    result: Any = None
    error: str | None = None
    duration: int = Field(default=0, ge=0, description="Milliseconds")


class AgentPerformance(BaseBusinessModel):
    """Rolling performance summary maintained by each agent."""

    total_completed: int = Field(default=0, ge=0)
    total_failed: int = Field(default=0, ge=0)
    average_response_time: float = Field(default=0.0, ge=0.0)

    @computed_field
    @property
    def total_executions(self) -> int:
        """Completed plus failed executions."""
        return self.total_completed + self.total_failed

    @computed_field
    @property
    def success_rate(self) -> float:
        """Share of successful executions, 1.0 before any history exists."""
        if self.total_executions == 0:
            return 1.0
        return self.total_completed / self.total_executions

    def record(self, success: bool, duration_ms: float) -> None:
        """Fold one execution into the summary."""
        previous = self.total_executions
        self.average_response_time = (
            self.average_response_time * previous + max(duration_ms, 0.0)
        ) / (previous + 1)
        if success:
            self.total_completed += 1
        else:
            self.total_failed += 1


class AgentScore(BaseBusinessModel):
    """Ranking of one agent for one task. Never persisted."""

    agent_id: str
    score: float
    reasons: list[str] = Field(default_factory=list)


# ============================================================================
# COLLABORATION
# ============================================================================


class CollaborationResult(BaseBusinessModel):
    """Output of one successful collaboration step."""

    agent_id: str
    agent_name: str
    output: Any = None
    duration: int = Field(default=0, ge=0, description="Milliseconds")
    timestamp: datetime = Field(default_factory=datetime.now)
    role: str | None = None


class CollaborationSession(BaseBusinessModel):
    """Coordination context binding two or more agents to one task."""

    id: str = Field(default_factory=_new_id)
    task_id: str
    agents: list[str] = Field(..., min_length=2)
    strategy: CollaborationStrategyType
    status: SessionStatus = SessionStatus.PLANNING
    results: list[CollaborationResult] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
    completed_at: datetime | None = None
    error: str | None = None


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================


def get_priority_rank(priority: TaskPriority) -> int:
    """Numeric queue rank for a priority (critical first)."""
    rank_map = {
        TaskPriority.CRITICAL: 0,
        TaskPriority.HIGH: 1,
        TaskPriority.MEDIUM: 2,
        TaskPriority.LOW: 3,
    }
    return rank_map.get(priority, len(rank_map))


def can_transition_status(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """Check if transition between statuses is valid."""
    valid_transitions = {
        TaskStatus.PENDING: [
            TaskStatus.ASSIGNED,
            TaskStatus.IN_PROGRESS,
            TaskStatus.FAILED,
        ],
        TaskStatus.ASSIGNED: [
            TaskStatus.IN_PROGRESS,
            TaskStatus.PENDING,
            TaskStatus.FAILED,
        ],
        TaskStatus.IN_PROGRESS: [
            TaskStatus.COMPLETED,
            TaskStatus.FAILED,
            TaskStatus.PENDING,
        ],
        TaskStatus.COMPLETED: [],
        TaskStatus.FAILED: [],
    }
    return to_status in valid_transitions.get(from_status, [])
