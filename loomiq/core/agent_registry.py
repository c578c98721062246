"""Agent registry for agent discovery, configuration and selection.

This module manages the registration and discovery of agents, loads their
configuration from YAML, and ranks candidates for a task.
"""

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from ..config import LoomiqSettings, get_settings
from ..schemas.unified_models import AgentScore, AgentStatus, TaskCore, TaskType
from .agent_protocol import AgentConfig, AgentProtocol


if TYPE_CHECKING:
    from .communication import CommunicationHub


logger = logging.getLogger(__name__)

# Scoring weights
CAPABILITY_WEIGHT = 50
CATEGORY_MATCH_POINTS = 30
KEYWORD_MATCH_POINTS = 10
SUCCESS_WEIGHT = 30
AVAILABILITY_POINTS = {
    AgentStatus.IDLE: 20,
    AgentStatus.BUSY: 10,
    AgentStatus.OFFLINE: 0,
}
SPEED_WEIGHT = 10
SPEED_NO_HISTORY = 5
SPEED_REFERENCE_MS = 60_000

# Capabilities that count as a category match for each task type
TASK_TYPE_CAPABILITIES: dict[TaskType, frozenset[str]] = {
    TaskType.IMPLEMENTATION: frozenset(
        {"implementation", "coding", "code_generation", "development"}
    ),
    TaskType.DESIGN: frozenset({"design", "architecture", "system_design"}),
    TaskType.TEST: frozenset({"testing", "test", "qa", "test_generation"}),
    TaskType.REVIEW: frozenset({"review", "code_review", "analysis"}),
    TaskType.DEPLOYMENT: frozenset({"deployment", "devops", "infrastructure"}),
    TaskType.REQUIREMENT: frozenset({"requirements", "analysis", "planning"}),
}


def _capability_terms(capability: str) -> set[str]:
    lowered = capability.lower()
    return {lowered, lowered.replace("_", " "), lowered.replace("_", "-")}


class AgentRegistry:
    """Registry for managing and discovering agents.

    Provides functionality for:
    - Agent registration and deregistration
    - Capability-based agent discovery
    - Per-agent configuration loaded from YAML
    - Scoring agents against a task
    """

    def __init__(
        self,
        hub: "CommunicationHub | None" = None,
        settings: LoomiqSettings | None = None,
    ):
        """Initialize empty registry."""
        self.hub = hub
        self.settings = settings or get_settings()
        self._agents: dict[str, AgentProtocol] = {}
        self._capabilities: dict[str, set[str]] = {}  # capability -> agent ids
        self._agent_configs: dict[str, AgentConfig] = {}

    async def register_agent(self, agent: AgentProtocol) -> bool:
        """Register agent and index capabilities.

        Args:
            agent: Agent instance implementing AgentProtocol

        Returns:
            True if registered, False if the agent is disabled

        Raises:
            ValueError: If an agent with the same id is already registered

        """
        if agent.id in self._agents:
            raise ValueError(f"Agent '{agent.id}' is already registered")

        config = agent.get_config()
        if not config.enabled:
            logger.info(f"Skipping registration of disabled agent: {agent.id}")
            return False

        self._agents[agent.id] = agent
        self._agent_configs.setdefault(agent.id, config)

        for capability in agent.get_capabilities():
            self._capabilities.setdefault(capability, set()).add(agent.id)

        logger.info(
            f"Registered agent '{agent.id}' with capabilities: {agent.capabilities}"
        )

        if self.hub is not None:
            await self.hub.register_agent(agent.id)
        return True

    async def deregister(self, agent_id: str) -> bool:
        """Deregister agent and cleanup capabilities index.

        Returns:
            True if agent was deregistered, False if not found

        """
        agent = self._agents.pop(agent_id, None)
        if agent is None:
            return False

        for capability in agent.get_capabilities():
            agent_ids = self._capabilities.get(capability)
            if agent_ids is not None:
                agent_ids.discard(agent_id)
                if not agent_ids:
                    del self._capabilities[capability]

        logger.info(f"Deregistered agent: {agent_id}")

        if self.hub is not None:
            await self.hub.unregister_agent(agent_id)
        return True

    def get_agent(self, agent_id: str) -> AgentProtocol | None:
        """Get agent by id, or None if not found."""
        return self._agents.get(agent_id)

    def get_all_agents(self) -> list[AgentProtocol]:
        """All registered agents in registration order."""
        return list(self._agents.values())

    def get_available_agents(self) -> list[AgentProtocol]:
        """Registered agents that are not offline."""
        return [
            agent
            for agent in self._agents.values()
            if agent.get_status() != AgentStatus.OFFLINE
        ]

    def find_agents_by_capability(self, capability: str) -> list[AgentProtocol]:
        """Agents declaring the given capability, in registration order."""
        agent_ids = self._capabilities.get(capability, set())
        return [agent for aid, agent in self._agents.items() if aid in agent_ids]

    def list_capabilities(self) -> list[str]:
        """All capabilities across all agents, sorted."""
        return sorted(self._capabilities)

    def get_agent_config(self, agent_id: str) -> AgentConfig | None:
        """Configuration known for an agent id."""
        return self._agent_configs.get(agent_id)

    def get_health_status(self) -> dict[str, Any]:
        """Get health status of all agents."""
        agent_statuses = {}
        healthy_agents = 0

        for agent_id, agent in self._agents.items():
            status = agent.get_health_status()
            agent_statuses[agent_id] = status
            if status.get("healthy", False):
                healthy_agents += 1

        total_agents = len(self._agents)
        return {
            "registry_healthy": healthy_agents > 0,
            "total_agents": total_agents,
            "healthy_agents": healthy_agents,
            "unhealthy_agents": total_agents - healthy_agents,
            "total_capabilities": len(self._capabilities),
            "agents": agent_statuses,
        }

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def load_configurations(self, path: str | Path | None = None) -> list[AgentConfig]:
        """Load agent definitions from a YAML file.

        The file holds an ``agents`` list; each entry is merged over the
        defaults from ``AgentSettings``. Entries that fail validation are
        logged and skipped.

        Args:
            path: YAML file, defaults to ``settings.agents.config_path``

        Returns:
            The configurations loaded, in file order

        Raises:
            FileNotFoundError: If the file does not exist

        """
        path = Path(path or self.settings.agents.config_path)
        with path.open(encoding="utf-8") as f:
            document = yaml.safe_load(f) or {}

        entries = document.get("agents", []) if isinstance(document, dict) else []
        defaults = self.settings.get_agent_defaults()
        loaded: list[AgentConfig] = []

        for entry in entries:
            try:
                config = AgentConfig.model_validate({**defaults, **entry})
            except ValueError as e:
                logger.error(f"Invalid agent definition in {path}: {e}")
                continue
            self._agent_configs[config.id] = config
            loaded.append(config)

        logger.info(f"Loaded {len(loaded)} agent configurations from {path}")
        return loaded

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def score_agent(self, agent: AgentProtocol, task: TaskCore) -> AgentScore | None:
        """Score one agent against a task; None if no capability matches."""
        reasons: list[str] = []
        capabilities = agent.get_capabilities()
        description = task.description.lower()

        capability_score = 0
        category = TASK_TYPE_CAPABILITIES.get(task.type, frozenset())
        category_hits = [c for c in capabilities if c.lower() in category]
        if category_hits:
            capability_score += CATEGORY_MATCH_POINTS
            reasons.append(f"handles {task.type.value} tasks ({category_hits[0]})")

        keyword_hits = [
            c
            for c in capabilities
            if any(term in description for term in _capability_terms(c))
        ]
        if keyword_hits:
            capability_score += KEYWORD_MATCH_POINTS * len(keyword_hits)
            reasons.append(f"description mentions {', '.join(keyword_hits)}")

        if capability_score == 0:
            return None
        capability_score = min(capability_score, CAPABILITY_WEIGHT)

        performance = agent.performance
        success_score = SUCCESS_WEIGHT * performance.success_rate
        reasons.append(f"success rate {performance.success_rate:.0%}")

        status = agent.get_status()
        availability_score = AVAILABILITY_POINTS.get(status, 0)
        reasons.append(f"status {status.value}")

        if performance.total_executions == 0:
            speed_score = SPEED_NO_HISTORY
        else:
            ratio = performance.average_response_time / SPEED_REFERENCE_MS
            speed_score = max(0.0, SPEED_WEIGHT * (1 - ratio))
            reasons.append(f"avg response {performance.average_response_time:.0f}ms")

        total = capability_score + success_score + availability_score + speed_score
        return AgentScore(agent_id=agent.id, score=round(total, 2), reasons=reasons)

    def find_best_agent_for_task(self, task: TaskCore) -> list[AgentScore]:
        """Rank registered agents for a task, best first.

        Agents without any capability match are excluded. Ties keep
        registration order.

        Returns:
            Scores in descending order, empty if nothing matches

        """
        scores = [
            score
            for agent in self._agents.values()
            if (score := self.score_agent(agent, task)) is not None
        ]
        scores.sort(key=lambda s: s.score, reverse=True)

        logger.debug(
            f"Ranked {len(scores)} agents for task {task.id}: "
            f"{[(s.agent_id, s.score) for s in scores]}"
        )
        return scores

    async def cleanup_all(self) -> None:
        """Shut down all registered agents and clear the registry."""
        for agent in list(self._agents.values()):
            try:
                await agent.shutdown()
            except Exception as e:
                logger.error(f"Error shutting down agent {agent.id}: {e}")

        self._agents.clear()
        self._capabilities.clear()
        logger.info("All agents shut down and registry cleared")
