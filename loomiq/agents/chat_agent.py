"""Chat model agent for OpenAI-compatible providers.

Wraps a langchain chat model. The default client is ChatOpenAI pointed at the
agent's endpoint, so any OpenAI-compatible API (Groq, OpenRouter, Mistral,
a local server) works without vendor-specific code.
"""

import json
import logging
import os
from typing import Any

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from ..core.agent_protocol import AgentConfig, AgentExecutionError, BaseAgent
from ..schemas.unified_models import AgentRequest


logger = logging.getLogger(__name__)

# Messages kept from earlier exchanges (user and assistant turns)
HISTORY_SIZE = 10


class ChatModelAgent(BaseAgent):
    """Agent that answers requests with a chat completion."""

    def __init__(self, config: AgentConfig, chat_model: BaseChatModel | None = None):
        """Initialize with configuration and an optional prebuilt chat model."""
        super().__init__(config)
        self.chat_model = chat_model
        self._history: list[BaseMessage] = []

    def _build_chat_model(self) -> BaseChatModel:
        key_env = self.config.api_key_env
        api_key = os.getenv(key_env) if key_env else None
        if key_env and not api_key:
            raise AgentExecutionError(
                self.name, "-", f"Environment variable {key_env} is not set"
            )

        return ChatOpenAI(
            model=self.config.model,
            api_key=api_key,
            base_url=self.config.endpoint,
            temperature=self.config.temperature,
            timeout=self.config.timeout,
        )

    async def _initialize(self) -> None:
        if self.chat_model is None:
            self.chat_model = self._build_chat_model()

    async def _shutdown(self) -> None:
        self._history.clear()

    def build_messages(self, request: AgentRequest) -> list[BaseMessage]:
        """System prompt, role instructions, history, then the prompt."""
        messages: list[BaseMessage] = [
            SystemMessage(
                content=self.config.system_prompt
                or "You are an AI assistant integrated into a multi-agent system."
            )
        ]

        context = request.context
        instructions = ""
        if context.get("role"):
            instructions += f"Your role in this task: {context['role']}\n"
        if context.get("previous_result") is not None:
            previous = json.dumps(context["previous_result"], indent=2, default=str)
            instructions += f"\nPrevious work to build upon:\n{previous}\n"
        if context.get("instruction"):
            instructions += f"\n{context['instruction']}"
        if instructions:
            messages.append(SystemMessage(content=instructions.strip()))

        messages.extend(self._history)
        messages.append(HumanMessage(content=request.prompt))
        return messages

    async def _execute(self, request: AgentRequest) -> dict[str, Any]:
        if self.chat_model is None:
            self.chat_model = self._build_chat_model()

        try:
            response = await self.chat_model.ainvoke(self.build_messages(request))
        except Exception as e:
            raise AgentExecutionError(self.name, request.task_id, str(e), e) from e

        content = response.content if isinstance(response.content, str) else str(
            response.content
        )
        self._remember(request.prompt, content)

        usage = getattr(response, "usage_metadata", None) or {}
        total_tokens = usage.get("total_tokens", 0)
        return {
            "content": content,
            "finish_reason": response.response_metadata.get("finish_reason"),
            "metadata": {
                "model": self.config.model,
                "tokens_used": total_tokens,
                "prompt_tokens": usage.get("input_tokens", 0),
                "completion_tokens": usage.get("output_tokens", 0),
                "cost": self.config.cost.estimate(total_tokens),
            },
        }

    def _remember(self, prompt: str, answer: str) -> None:
        self._history.extend([HumanMessage(content=prompt), AIMessage(content=answer)])
        del self._history[:-HISTORY_SIZE]

    def get_conversation_history(self) -> list[BaseMessage]:
        """Messages kept from earlier exchanges."""
        return list(self._history)

    def clear_conversation_history(self) -> None:
        """Forget earlier exchanges."""
        self._history.clear()
