"""Multi-agent collaboration sessions.

A session binds two or more ranked agents to one task and runs one of four
strategies over them:

- sequential: initiator then reviewers, each improving the previous output
- parallel: independent solutions produced concurrently
- consensus: parallel analyses merged by the first-ranked agent
- hierarchical: the lead plans, workers execute, the lead integrates
"""

import asyncio
import json
import logging
from collections import Counter
from datetime import datetime
from typing import Any

from ..config import CollaborationSettings, get_settings
from ..schemas.unified_models import (
    AgentRequest,
    CollaborationResult,
    CollaborationSession,
    CollaborationStrategyType,
    SessionStatus,
    TaskCore,
)
from .agent_registry import AgentRegistry
from .communication import CommunicationHub
from .errors import CollaborationFailure, NotFoundError, ValidationError
from .heuristics import parse_strategy


logger = logging.getLogger(__name__)

CONSENSUS_MARKER = " (Consensus)"
LEAD_MARKER = " (Lead)"

REVIEW_INSTRUCTION = (
    "Review the previous result. 1) Note its strengths. 2) Note its weaknesses. "
    "3) Produce an improved version."
)
INDEPENDENT_INSTRUCTION = (
    "Produce your own complete, independent solution to this task."
)
SYNTHESIS_INSTRUCTION = (
    "Merge the best ideas from these analyses, resolve any conflicts between "
    "them, and produce one unified solution."
)


def _render(output: Any) -> str:
    """Render an agent output for inclusion in a prompt."""
    if isinstance(output, str):
        return output
    return json.dumps(output, indent=2, default=str)


class CollaborationManager:
    """Creates and runs collaboration sessions.

    Sessions are owned here; the orchestrator only keeps the session id.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        hub: CommunicationHub,
        settings: CollaborationSettings | None = None,
    ):
        """Initialize the manager."""
        self.registry = registry
        self.hub = hub
        self.settings = settings or get_settings().collaboration
        self._sessions: dict[str, CollaborationSession] = {}
        self._session_tasks: dict[str, TaskCore] = {}

    def candidate_count(self, strategy: CollaborationStrategyType) -> int:
        """Number of ranked agents requested for a strategy."""
        if strategy == CollaborationStrategyType.CONSENSUS:
            return self.settings.consensus_agent_count
        if strategy == CollaborationStrategyType.HIERARCHICAL:
            return self.settings.hierarchical_agent_count
        return self.settings.default_agent_count

    async def create_collaboration_session(
        self, task: TaskCore, strategy: CollaborationStrategyType | str
    ) -> CollaborationSession:
        """Select agents for a task and create a session in planning state.

        Args:
            task: Task the session works on
            strategy: Strategy to run

        Returns:
            The new session

        Raises:
            ValidationError: If the strategy is unknown or fewer than two
                agents match the task

        """
        strategy = parse_strategy(strategy)
        wanted = self.candidate_count(strategy)
        ranked = self.registry.find_best_agent_for_task(task)[:wanted]

        if len(ranked) < 2:
            raise ValidationError(
                f"Collaboration needs at least 2 agents for task {task.id}, "
                f"found {len(ranked)}"
            )

        session = CollaborationSession(
            task_id=task.id,
            agents=[score.agent_id for score in ranked],
            strategy=strategy,
        )
        self._sessions[session.id] = session
        self._session_tasks[session.id] = task

        logger.info(
            f"Created {strategy.value} session {session.id} for task {task.id} "
            f"with agents {session.agents}"
        )
        return session

    async def execute_collaboration_session(
        self, session_id: str
    ) -> list[CollaborationResult]:
        """Run the session strategy and return its results.

        Raises:
            NotFoundError: If the session does not exist
            CollaborationFailure: If the strategy produced no usable result

        """
        session = self.get_session(session_id)
        task = self._session_tasks[session_id]
        session.status = SessionStatus.EXECUTING

        strategies = {
            CollaborationStrategyType.SEQUENTIAL: self._execute_sequential,
            CollaborationStrategyType.PARALLEL: self._execute_parallel,
            CollaborationStrategyType.CONSENSUS: self._execute_consensus,
            CollaborationStrategyType.HIERARCHICAL: self._execute_hierarchical,
        }

        try:
            await strategies[session.strategy](session, task)
            if not session.results:
                raise CollaborationFailure(
                    session.id, f"No agent in session {session.id} produced a result"
                )
        except Exception as e:
            session.status = SessionStatus.FAILED
            session.error = str(e)
            session.completed_at = datetime.now()
            logger.error(f"Collaboration session {session.id} failed: {e}")
            await self.hub.publish(
                "session:failed",
                {"session_id": session.id, "task_id": task.id, "error": str(e)},
            )
            if isinstance(e, CollaborationFailure):
                raise
            raise CollaborationFailure(session.id, str(e), cause=e) from e

        session.status = SessionStatus.COMPLETED
        session.completed_at = datetime.now()
        logger.info(
            f"Collaboration session {session.id} completed with "
            f"{len(session.results)} results"
        )
        await self.hub.publish(
            "session:completed",
            {
                "session_id": session.id,
                "task_id": task.id,
                "strategy": session.strategy.value,
                "results": len(session.results),
            },
        )
        return list(session.results)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _run_step(
        self,
        session: CollaborationSession,
        task: TaskCore,
        agent_id: str,
        prompt: str,
        context: dict[str, Any],
        name_suffix: str = "",
    ) -> CollaborationResult | None:
        """Run one agent call; None when the step failed."""
        role = context.get("role")
        step = {"session_id": session.id, "agent_id": agent_id, "role": role}
        await self.hub.publish("step:started", step)

        agent = self.registry.get_agent(agent_id)
        if agent is None:
            error = f"Agent {agent_id} is no longer registered"
        else:
            request = AgentRequest(
                task_id=task.id,
                prompt=prompt,
                context={"session_id": session.id, **context},
                priority=task.priority,
            )
            try:
                response = await agent.execute(request)
            except Exception as e:
                error = str(e)
            else:
                if response.success:
                    result = CollaborationResult(
                        agent_id=agent_id,
                        agent_name=f"{agent.name}{name_suffix}",
                        output=response.result,
                        duration=response.duration,
                        role=role,
                    )
                    await self.hub.publish(
                        "step:completed", {**step, "duration": result.duration}
                    )
                    return result
                error = response.error or "Agent returned no result"

        logger.warning(
            f"Step {role} by agent {agent_id} in session {session.id} failed: {error}"
        )
        await self.hub.publish("step:failed", {**step, "error": error})
        return None

    async def _run_concurrently(
        self,
        session: CollaborationSession,
        task: TaskCore,
        agent_ids: list[str],
        prompt: str,
        context: dict[str, Any],
    ) -> list[CollaborationResult]:
        """Run the same step on several agents; successes in completion order."""
        steps = [
            self._run_step(session, task, agent_id, prompt, dict(context))
            for agent_id in agent_ids
        ]
        results = []
        for finished in asyncio.as_completed(steps):
            result = await finished
            if result is not None:
                results.append(result)
        return results

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    async def _execute_sequential(
        self, session: CollaborationSession, task: TaskCore
    ) -> None:
        previous: Any = None
        has_previous = False

        for agent_id in session.agents:
            if not has_previous:
                result = await self._run_step(
                    session, task, agent_id, task.description, {"role": "initiator"}
                )
            else:
                prompt = (
                    f"Task: {task.description}\n\n"
                    f"Previous result:\n{_render(previous)}\n\n"
                    f"{REVIEW_INSTRUCTION}"
                )
                context = {
                    "role": "reviewer",
                    "previous_result": previous,
                    "instruction": REVIEW_INSTRUCTION,
                }
                result = await self._run_step(session, task, agent_id, prompt, context)

            if result is not None:
                session.results.append(result)
                previous = result.output
                has_previous = True

    async def _execute_parallel(
        self, session: CollaborationSession, task: TaskCore
    ) -> None:
        context = {"role": "solver", "instruction": INDEPENDENT_INSTRUCTION}
        prompt = f"{task.description}\n\n{INDEPENDENT_INSTRUCTION}"
        session.results.extend(
            await self._run_concurrently(session, task, session.agents, prompt, context)
        )

    async def _execute_consensus(
        self, session: CollaborationSession, task: TaskCore
    ) -> None:
        context = {"role": "analyst", "instruction": INDEPENDENT_INSTRUCTION}
        prompt = f"{task.description}\n\n{INDEPENDENT_INSTRUCTION}"
        analyses = await self._run_concurrently(
            session, task, session.agents, prompt, context
        )
        if not analyses:
            raise CollaborationFailure(
                session.id, "No analysis was produced for the consensus phase"
            )
        session.results.extend(analyses)

        payload = [
            {"agent": analysis.agent_name, "analysis": analysis.output}
            for analysis in analyses
        ]
        synthesis_prompt = (
            f"Task: {task.description}\n\n"
            f"Analyses:\n{json.dumps(payload, indent=2, default=str)}\n\n"
            f"{SYNTHESIS_INSTRUCTION}"
        )
        synthesis = await self._run_step(
            session,
            task,
            session.agents[0],
            synthesis_prompt,
            {"role": "synthesizer", "analyses": payload},
            name_suffix=CONSENSUS_MARKER,
        )
        if synthesis is None:
            raise CollaborationFailure(session.id, "Consensus synthesis failed")
        session.results.append(synthesis)

    async def _execute_hierarchical(
        self, session: CollaborationSession, task: TaskCore
    ) -> None:
        lead, workers = session.agents[0], session.agents[1:]

        plan_prompt = (
            f"Task: {task.description}\n\n"
            "You lead this task. Break it into a plan of concrete subtasks "
            "that other agents can carry out."
        )
        plan = await self._run_step(session, task, lead, plan_prompt, {"role": "lead"})
        if plan is None:
            raise CollaborationFailure(session.id, "Lead agent failed to produce a plan")
        session.results.append(plan)

        worker_prompt = (
            f"Task: {task.description}\n\n"
            f"Plan from the lead agent:\n{_render(plan.output)}\n\n"
            "Carry out your part of the plan."
        )
        worker_results = await self._run_concurrently(
            session, task, workers, worker_prompt, {"role": "worker", "plan": plan.output}
        )
        session.results.extend(worker_results)

        contributions = [
            {"agent": result.agent_name, "output": result.output}
            for result in worker_results
        ]
        integration_prompt = (
            f"Task: {task.description}\n\n"
            f"Your plan:\n{_render(plan.output)}\n\n"
            f"Worker results:\n{json.dumps(contributions, indent=2, default=str)}\n\n"
            "Integrate these results into one final solution."
        )
        integration = await self._run_step(
            session,
            task,
            lead,
            integration_prompt,
            {"role": "lead", "plan": plan.output, "worker_results": contributions},
            name_suffix=LEAD_MARKER,
        )
        if integration is not None:
            session.results.append(integration)

    # ------------------------------------------------------------------
    # Results and queries
    # ------------------------------------------------------------------

    def synthesize_results(self, results: list[CollaborationResult]) -> dict[str, Any]:
        """Combine session results into a single task output."""
        combined_output: dict[str, Any] = {}
        for result in results:
            if isinstance(result.output, dict):
                combined_output.update(result.output)

        agent_count = len({result.agent_id for result in results})
        return {
            "summary": f"Collaboration of {agent_count} agents produced "
            f"{len(results)} results",
            "results": [result.model_dump(mode="json") for result in results],
            "combined_output": combined_output,
            "metadata": {
                "agent_count": agent_count,
                "total_duration": sum(result.duration for result in results),
                "timestamp": datetime.now().isoformat(),
            },
        }

    def get_session(self, session_id: str) -> CollaborationSession:
        """Get a session by id.

        Raises:
            NotFoundError: If the session does not exist

        """
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError("Session", session_id)
        return session

    def get_all_sessions(self) -> list[CollaborationSession]:
        """All sessions in creation order."""
        return list(self._sessions.values())

    def get_stats(self) -> dict[str, Any]:
        """Session counts by strategy and status."""
        sessions = self._sessions.values()
        by_strategy = Counter(session.strategy.value for session in sessions)
        by_status = Counter(session.status.value for session in sessions)
        return {
            "total_sessions": len(self._sessions),
            "by_strategy": {
                s.value: by_strategy.get(s.value, 0) for s in CollaborationStrategyType
            },
            "by_status": {s.value: by_status.get(s.value, 0) for s in SessionStatus},
        }
