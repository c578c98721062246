"""Schema package for the orchestration core.

Quick usage:
    from loomiq.schemas import TaskCore, TaskStatus, CollaborationSession
    from loomiq.repositories import InMemoryTaskRepository
"""

from .database import TaskRecord
from .unified_models import (
    AgentPerformance,
    AgentRequest,
    AgentResponse,
    AgentScore,
    AgentStatus,
    BaseBusinessModel,
    CollaborationResult,
    CollaborationSession,
    CollaborationStrategyType,
    ExecutionResult,
    RunningTask,
    SessionStatus,
    Task,
    TaskCore,
    TaskPriority,
    TaskStatus,
    TaskType,
    UnifiedConfig,
    can_transition_status,
    get_priority_rank,
)


__all__ = [
    "AgentPerformance",
    "AgentRequest",
    "AgentResponse",
    "AgentScore",
    "AgentStatus",
    "BaseBusinessModel",
    "CollaborationResult",
    "CollaborationSession",
    "CollaborationStrategyType",
    "ExecutionResult",
    "RunningTask",
    "SessionStatus",
    "Task",
    "TaskCore",
    "TaskPriority",
    "TaskRecord",
    "TaskStatus",
    "TaskType",
    "UnifiedConfig",
    "can_transition_status",
    "get_priority_rank",
]
