"""Local deterministic agent for offline runs and tests."""

import asyncio
from typing import Any

from ..core.agent_protocol import AgentExecutionError, BaseAgent
from ..schemas.unified_models import AgentRequest


class EchoAgent(BaseAgent):
    """Echoes the prompt back without calling any provider.

    ``metadata.delay_seconds`` simulates latency and ``metadata.fail_on``
    (a list of substrings) makes matching prompts fail.
    """

    async def _execute(self, request: AgentRequest) -> dict[str, Any]:
        delay = float(self.config.metadata.get("delay_seconds", 0))
        if delay > 0:
            await asyncio.sleep(delay)

        for marker in self.config.metadata.get("fail_on", []):
            if marker in request.prompt:
                raise AgentExecutionError(
                    self.name,
                    request.task_id,
                    f"Prompt matched failure marker {marker!r}",
                )

        text = request.prompt.strip() or f"{request.task_id} output"
        return {
            "content": text,
            "agent": self.id,
            "role": request.context.get("role"),
        }
