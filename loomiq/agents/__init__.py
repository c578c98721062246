"""Agent adapters implementing the AgentProtocol."""

import logging

from ..core.agent_protocol import AgentConfig, BaseAgent
from .chat_agent import ChatModelAgent
from .echo_agent import EchoAgent


logger = logging.getLogger(__name__)

# Providers without an entry use the OpenAI-compatible chat adapter
AGENT_CLASSES: dict[str, type[BaseAgent]] = {
    "echo": EchoAgent,
}


def build_agent(config: AgentConfig) -> BaseAgent:
    """Create the adapter for an agent configuration."""
    agent_class = AGENT_CLASSES.get(config.provider.lower(), ChatModelAgent)
    logger.debug(f"Building {agent_class.__name__} for agent {config.id}")
    return agent_class(config)


__all__ = ["AGENT_CLASSES", "ChatModelAgent", "EchoAgent", "build_agent"]
