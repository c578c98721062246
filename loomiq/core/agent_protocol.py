"""Standardized agent capability interface.

This module defines the contract every provider adapter implements so that
the registry, the orchestrator and the collaboration manager can treat agents
uniformly. The core consumes agents through this interface and never mutates
their status or performance itself.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from ..schemas.unified_models import (
    AgentPerformance,
    AgentRequest,
    AgentResponse,
    AgentStatus,
)


logger = logging.getLogger(__name__)


class CostModel(BaseModel):
    """Pricing used to estimate the cost of a call."""

    per_1k_tokens: float = Field(0.0, ge=0.0)
    currency: str = "USD"

    def estimate(self, total_tokens: int) -> float:
        """Estimated cost for the given token count."""
        return round(total_tokens / 1000 * self.per_1k_tokens, 6)


class AgentConfig(BaseModel):
    """Configuration model for agents."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    provider: str = "openai"
    enabled: bool = True
    capabilities: list[str] = Field(default_factory=list)
    endpoint: str | None = None
    model: str = "gpt-4o-mini"
    temperature: float = Field(0.7, ge=0.0, le=2.0)
    timeout: float = Field(60.0, gt=0.0, description="Per-request timeout in seconds")
    max_concurrent_tasks: int = Field(1, ge=1)
    system_prompt: str | None = None
    api_key_env: str | None = None
    cost: CostModel = Field(default_factory=CostModel)
    metadata: dict[str, Any] = Field(default_factory=dict)


@runtime_checkable
class AgentProtocol(Protocol):
    """Standard protocol that all agents must implement."""

    id: str
    name: str
    capabilities: list[str]
    config: AgentConfig
    performance: AgentPerformance

    async def execute(self, request: AgentRequest) -> AgentResponse:
        """Execute a task-shaped request.

        Args:
            request: Prompt, context and priority for this call

        Returns:
            Response carrying either a result or an error, plus its duration

        """
        ...

    def get_status(self) -> AgentStatus:
        """Return the live status of the agent."""
        ...

    def get_capabilities(self) -> list[str]:
        """Return the capability names the agent declares."""
        ...

    def get_config(self) -> AgentConfig:
        """Return the agent configuration."""
        ...

    def get_health_status(self) -> dict[str, Any]:
        """Return agent health and readiness status."""
        ...

    async def initialize(self) -> None:
        """Prepare the agent (validate credentials, open clients)."""
        ...

    async def shutdown(self) -> None:
        """Release resources; the agent reports offline afterwards."""
        ...


class BaseAgent(ABC):
    """Abstract base class for agent implementations.

    Wraps the provider call with the per-request timeout, keeps the live
    status and the rolling performance summary up to date, and converts
    provider errors into failed responses.
    """

    def __init__(self, config: AgentConfig):
        """Initialize agent with configuration."""
        self.config = config
        self.id = config.id
        self.name = config.name
        self.capabilities = list(config.capabilities)
        self.performance = AgentPerformance()
        self._status = AgentStatus.IDLE
        self._current_tasks = 0

    @abstractmethod
    async def _execute(self, request: AgentRequest) -> Any:
        """Perform the provider call and return its result payload.

        Raises:
            AgentExecutionError: If the provider reports a failure

        """

    async def _initialize(self) -> None:
        """Provider specific start-up hook."""

    async def _shutdown(self) -> None:
        """Provider specific shutdown hook."""

    async def execute(self, request: AgentRequest) -> AgentResponse:
        """Execute a request within the configured timeout."""
        self._increment_task_count()
        start = time.perf_counter()
        success = False

        try:
            result = await asyncio.wait_for(
                self._execute(request), timeout=self.config.timeout
            )
            success = True
            return AgentResponse(
                success=True, result=result, duration=self._elapsed_ms(start)
            )
        except TimeoutError:
            message = f"Request timed out after {self.config.timeout}s"
            logger.warning(f"Agent {self.name} task {request.task_id}: {message}")
            return AgentResponse(
                success=False, error=message, duration=self._elapsed_ms(start)
            )
        except AgentExecutionError as e:
            logger.warning(str(e))
            return AgentResponse(
                success=False, error=e.reason, duration=self._elapsed_ms(start)
            )
        except Exception as e:
            logger.warning(f"Agent {self.name} task {request.task_id} raised: {e}")
            return AgentResponse(
                success=False, error=str(e), duration=self._elapsed_ms(start)
            )
        finally:
            self._decrement_task_count()
            self.performance.record(success, self._elapsed_ms(start))

    def get_status(self) -> AgentStatus:
        """Return the live status of the agent."""
        return self._status

    def get_capabilities(self) -> list[str]:
        """Return the capability names the agent declares."""
        return list(self.capabilities)

    def get_config(self) -> AgentConfig:
        """Get agent configuration."""
        return self.config

    def get_health_status(self) -> dict[str, Any]:
        """Return agent health and readiness status."""
        return {
            "id": self.id,
            "name": self.name,
            "status": self._status.value,
            "healthy": self._status != AgentStatus.OFFLINE,
            "current_tasks": self._current_tasks,
            "max_concurrent_tasks": self.config.max_concurrent_tasks,
            "capabilities": self.capabilities,
            "enabled": self.config.enabled,
            "performance": self.performance.model_dump(),
        }

    async def initialize(self) -> None:
        """Run the start-up hook and report idle."""
        await self._initialize()
        self._status = AgentStatus.IDLE
        logger.info(f"Agent {self.name} initialized")

    async def shutdown(self) -> None:
        """Run the shutdown hook and report offline."""
        try:
            await self._shutdown()
        finally:
            self._current_tasks = 0
            self._status = AgentStatus.OFFLINE
            logger.info(f"Agent {self.name} shut down")

    def _increment_task_count(self) -> None:
        """Increment current task counter."""
        self._current_tasks += 1
        if self._status != AgentStatus.OFFLINE:
            self._status = AgentStatus.BUSY

    def _decrement_task_count(self) -> None:
        """Decrement current task counter."""
        self._current_tasks = max(0, self._current_tasks - 1)
        if self._current_tasks == 0 and self._status == AgentStatus.BUSY:
            self._status = AgentStatus.IDLE

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.perf_counter() - start) * 1000)


class AgentExecutionError(Exception):
    """Exception raised when agent task execution fails."""

    def __init__(
        self,
        agent_name: str,
        task_id: str,
        message: str,
        cause: Exception | None = None,
    ):
        """Initialize with agent context."""
        self.agent_name = agent_name
        self.task_id = task_id
        self.reason = message
        self.cause = cause
        super().__init__(f"Agent {agent_name} failed task {task_id}: {message}")
