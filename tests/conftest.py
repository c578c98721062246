"""Pytest configuration and fixtures for LoomIQ orchestration tests."""

import asyncio
from typing import Any

import pytest

from loomiq.config import LoomiqSettings
from loomiq.core.agent_protocol import AgentConfig, BaseAgent
from loomiq.core.agent_registry import AgentRegistry
from loomiq.core.communication import CommunicationHub, Event
from loomiq.repositories import InMemoryTaskRepository
from loomiq.schemas.unified_models import AgentRequest, TaskCore, TaskPriority, TaskType


class StubAgent(BaseAgent):
    """Scripted agent for orchestration tests.

    Each call pops the next entry of ``results``: an exception is raised,
    anything else is returned as the result payload. When the script runs
    out, the agent echoes its id and the prompt.
    """

    def __init__(
        self,
        agent_id: str,
        capabilities: list[str],
        results: list[Any] | None = None,
        name: str | None = None,
        delay: float = 0.0,
        enabled: bool = True,
        timeout: float = 60.0,
    ):
        config = AgentConfig(
            id=agent_id,
            name=name or agent_id.title(),
            provider="stub",
            capabilities=capabilities,
            enabled=enabled,
            timeout=timeout,
        )
        super().__init__(config)
        self.results = list(results or [])
        self.delay = delay
        self.requests: list[AgentRequest] = []

    async def _execute(self, request: AgentRequest) -> Any:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)

        outcome = self.results.pop(0) if self.results else None
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is None:
            return {"content": f"{self.id}: {request.prompt[:40]}"}
        return outcome


@pytest.fixture
def settings():
    """Settings with defaults, independent of the environment."""
    return LoomiqSettings(_env_file=None)


@pytest.fixture
def hub():
    """Fresh communication hub."""
    return CommunicationHub()


@pytest.fixture
def events(hub):
    """Every event published on the hub, in order."""
    received: list[Event] = []
    hub.subscribe("*", received.append)
    return received


@pytest.fixture
def registry(hub, settings):
    """Empty agent registry wired to the hub."""
    return AgentRegistry(hub, settings)


@pytest.fixture
def store():
    """In-memory task store."""
    return InMemoryTaskRepository()


@pytest.fixture
def make_agent():
    """Factory for scripted stub agents."""

    def _make(agent_id: str, capabilities: list[str] | None = None, **kwargs):
        return StubAgent(agent_id, capabilities or ["implementation"], **kwargs)

    return _make


@pytest.fixture
def make_task():
    """Factory for tasks that are not stored anywhere."""

    def _make(
        description: str = "Implement the login endpoint",
        type: TaskType = TaskType.IMPLEMENTATION,
        priority: TaskPriority = TaskPriority.MEDIUM,
        **kwargs,
    ) -> TaskCore:
        return TaskCore(
            title=description.splitlines()[0][:100],
            description=description,
            type=type,
            priority=priority,
            **kwargs,
        )

    return _make
