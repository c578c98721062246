"""Core orchestration components.

This module provides the agent interface, the registry, the communication
hub, collaboration sessions and the task orchestrator.
"""

from .agent_protocol import AgentConfig, AgentExecutionError, AgentProtocol, BaseAgent
from .agent_registry import AgentRegistry
from .collaboration import CollaborationManager
from .communication import (
    ChannelType,
    CommunicationChannel,
    CommunicationHub,
    Event,
    Message,
    Tool,
)
from .errors import (
    CollaborationFailure,
    NotFoundError,
    OrchestrationError,
    TerminalFailure,
    TransientFailure,
    ValidationError,
)
from .orchestrator import TaskOrchestrator
from .retry import RetryPolicy


__all__ = [
    "AgentConfig",
    "AgentExecutionError",
    "AgentProtocol",
    "AgentRegistry",
    "BaseAgent",
    "ChannelType",
    "CollaborationFailure",
    "CollaborationManager",
    "CommunicationChannel",
    "CommunicationHub",
    "Event",
    "Message",
    "NotFoundError",
    "OrchestrationError",
    "RetryPolicy",
    "TaskOrchestrator",
    "TerminalFailure",
    "Tool",
    "TransientFailure",
    "ValidationError",
]
