"""LoomIQ - Multi-agent task orchestration.

Core Components:
- core.orchestrator: task lifecycle, scheduling, retry and dispatch
- core.collaboration: sequential, parallel, consensus and hierarchical sessions
- core.agent_registry: agent discovery, configuration and scoring
- core.communication: event pub/sub, channels and tool registry
- agents: chat model and echo adapters
- repositories: in-memory and SQL task stores
"""

from .config import LoomiqSettings, get_settings
from .core import (
    AgentRegistry,
    CollaborationManager,
    CommunicationHub,
    TaskOrchestrator,
)
from .repositories import InMemoryTaskRepository, SQLTaskRepository
from .schemas import (
    CollaborationStrategyType,
    TaskCore,
    TaskPriority,
    TaskStatus,
    TaskType,
)


__version__ = "0.1.0"

__all__ = [
    "AgentRegistry",
    "CollaborationManager",
    "CollaborationStrategyType",
    "CommunicationHub",
    "InMemoryTaskRepository",
    "LoomiqSettings",
    "SQLTaskRepository",
    "TaskCore",
    "TaskOrchestrator",
    "TaskPriority",
    "TaskStatus",
    "TaskType",
    "get_settings",
]
