"""Task orchestrator.

Owns the task lifecycle: creation, dependency gating, bounded-concurrency
dispatch, single-agent execution with retry and backoff, and hand-off to the
collaboration manager for multi-agent work.
"""

import asyncio
import contextlib
import logging
import time
from datetime import datetime
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from ..config import LoomiqSettings, get_settings
from ..schemas.unified_models import (
    AgentRequest,
    CollaborationSession,
    CollaborationStrategyType,
    ExecutionResult,
    RunningTask,
    TaskCore,
    TaskPriority,
    TaskStatus,
    TaskType,
)
from .agent_registry import AgentRegistry
from .collaboration import CollaborationManager
from .communication import CommunicationHub
from .errors import NotFoundError, TerminalFailure, TransientFailure, ValidationError
from .heuristics import determine_collaboration_strategy, requires_collaboration
from .retry import RetryPolicy


if TYPE_CHECKING:
    from ..repositories.base import TaskStore


logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 100


def generate_title(description: str) -> str:
    """First line of the description, truncated with an ellipsis."""
    first_line = description.strip().splitlines()[0]
    if len(first_line) > TITLE_MAX_LENGTH:
        return first_line[:TITLE_MAX_LENGTH] + "..."
    return first_line


class TaskOrchestrator:
    """Schedules tasks onto agents and tracks them to a terminal status.

    The orchestrator is the only writer of task state. A task id is never
    executed twice at the same time: an execution claims the id in an
    in-flight set before it reads the task and releases it on every exit
    path, including across retry backoff while the task sits in pending.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        hub: CommunicationHub | None = None,
        store: "TaskStore | None" = None,
        settings: LoomiqSettings | None = None,
        collaboration_manager: CollaborationManager | None = None,
    ):
        """Initialize the orchestrator; the scheduler is not started."""
        if store is None:
            from ..repositories.memory import InMemoryTaskRepository

            store = InMemoryTaskRepository()

        self.registry = registry
        self.hub = hub or registry.hub or CommunicationHub()
        self.store = store
        self.settings = settings or get_settings()
        self.retry_policy = RetryPolicy(self.settings.retry)
        self.collaboration_manager = collaboration_manager or CollaborationManager(
            registry, self.hub, self.settings.collaboration
        )

        self._lock = asyncio.Lock()
        self._execution_lock: set[str] = set()
        self._running: dict[str, RunningTask] = {}
        self._dispatched: set[asyncio.Task] = set()
        self._scheduler_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> "TaskOrchestrator":
        self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    @property
    def is_running(self) -> bool:
        """Whether the background scheduler is active."""
        return self._scheduler_task is not None and not self._scheduler_task.done()

    def start(self) -> None:
        """Start the periodic scheduling pass."""
        if self.is_running:
            return
        self._scheduler_task = asyncio.create_task(self._scheduler_loop())
        logger.info(
            f"Scheduler started (interval "
            f"{self.settings.scheduler.poll_interval_seconds}s, max "
            f"{self.settings.scheduler.max_concurrent_tasks} concurrent tasks)"
        )

    async def stop(self) -> None:
        """Stop the periodic scheduling pass."""
        if self._scheduler_task is None:
            return
        self._scheduler_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._scheduler_task
        self._scheduler_task = None
        logger.info("Scheduler stopped")

    async def shutdown(self) -> None:
        """Stop the scheduler and wait for dispatched executions to finish."""
        await self.stop()
        await self.wait_for_dispatched()

    async def wait_for_dispatched(self) -> None:
        """Wait until every execution dispatched by the scheduler finished."""
        while self._dispatched:
            await asyncio.gather(*list(self._dispatched), return_exceptions=True)

    async def _scheduler_loop(self) -> None:
        interval = self.settings.scheduler.poll_interval_seconds
        while True:
            try:
                await self.process_pending_tasks()
            except Exception as e:
                logger.error(f"Scheduling pass failed: {e}")
            await asyncio.sleep(interval)

    # ------------------------------------------------------------------
    # Task creation
    # ------------------------------------------------------------------

    async def create_task(
        self,
        description: str,
        type: TaskType | str = TaskType.IMPLEMENTATION,
        priority: TaskPriority | str = TaskPriority.MEDIUM,
        dependencies: list[str] | None = None,
        context: dict[str, Any] | None = None,
        organization_id: str | None = None,
        project_id: str | None = None,
        use_collaboration: bool = False,
    ) -> TaskCore:
        """Create and store a pending task.

        Args:
            description: What the task asks for; the first line becomes the title
            type: Kind of work
            priority: Queue priority
            dependencies: Ids of tasks that must complete first
            context: Free-form metadata passed to agents
            organization_id: Owning organization, defaults from settings
            project_id: Owning project
            use_collaboration: Always run the task as a collaboration

        Returns:
            The stored task

        Raises:
            ValidationError: If the description is empty or a field is invalid

        """
        if not description or not description.strip():
            raise ValidationError("Task description must not be empty")

        try:
            task = TaskCore(
                type=type,
                priority=priority,
                title=generate_title(description),
                description=description,
                dependencies=dependencies or [],
                metadata=dict(context or {}),
                organization_id=organization_id
                or self.settings.default_organization_id,
                project_id=project_id,
                use_collaboration=use_collaboration,
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid task: {e}") from e

        task = await self.store.create(task)
        logger.info(f"Created task {task.id}: {task.title}")
        await self.hub.publish("task:created", {"task": task.model_dump(mode="json")})
        return task

    # ------------------------------------------------------------------
    # Heuristics
    # ------------------------------------------------------------------

    def requires_collaboration(self, task: TaskCore) -> bool:
        """Whether the task should run through a collaboration session."""
        return requires_collaboration(task)

    def determine_collaboration_strategy(
        self, task: TaskCore
    ) -> CollaborationStrategyType:
        """Strategy a collaboration session for the task should use."""
        return determine_collaboration_strategy(task)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_task(
        self, task_id: str, force_collaboration: bool = False
    ) -> ExecutionResult | None:
        """Execute a task now.

        Args:
            task_id: Task to execute
            force_collaboration: Run as a collaboration regardless of heuristics

        Returns:
            The execution result, or None if the task is already executing

        Raises:
            NotFoundError: If the task is unknown or no agent can handle it
            ValidationError: If the task is not runnable
            CollaborationFailure: If the collaboration session failed

        """
        if not await self._claim(task_id):
            logger.warning(f"Task {task_id} is already executing, skipping")
            return None
        return await self._execute_claimed(task_id, force_collaboration)

    async def _claim(self, task_id: str) -> bool:
        async with self._lock:
            if task_id in self._execution_lock or task_id in self._running:
                return False
            self._execution_lock.add(task_id)
            return True

    async def _release(self, task_id: str) -> None:
        async with self._lock:
            self._execution_lock.discard(task_id)
            self._running.pop(task_id, None)

    async def _track(self, running: RunningTask) -> None:
        async with self._lock:
            self._running[running.task_id] = running

    async def _execute_claimed(
        self, task_id: str, force_collaboration: bool = False
    ) -> ExecutionResult:
        try:
            task = await self.store.find_by_id(task_id)
            if task is None:
                raise NotFoundError("Task", task_id)
            if task.status != TaskStatus.PENDING:
                raise ValidationError(
                    f"Task {task_id} is {task.status.value}; only pending tasks run"
                )
            if not await self._dependencies_completed(task):
                raise ValidationError(f"Task {task_id} has unfinished dependencies")

            if (
                force_collaboration
                or task.use_collaboration
                or self.requires_collaboration(task)
            ):
                return await self._execute_with_collaboration(task)
            return await self._execute_with_retry(task)
        finally:
            await self._release(task_id)

    async def _dependencies_completed(self, task: TaskCore) -> bool:
        for dependency_id in task.dependencies:
            dependency = await self.store.find_by_id(dependency_id)
            if dependency is None or dependency.status != TaskStatus.COMPLETED:
                return False
        return True

    async def _execute_with_retry(self, task: TaskCore) -> ExecutionResult:
        scores = self.registry.find_best_agent_for_task(task)
        if not scores:
            raise NotFoundError(
                "Agent", task.id, f"No suitable agent found for task {task.id}"
            )
        agent = self.registry.get_agent(scores[0].agent_id)
        if agent is None:
            raise NotFoundError("Agent", scores[0].agent_id)

        running = RunningTask(task_id=task.id, agent_id=agent.id)
        await self._track(running)

        task = await self.store.update_status(
            task.id,
            TaskStatus.ASSIGNED,
            assigned_agent_id=agent.id,
            started_at=datetime.now(),
            metadata={
                **task.metadata,
                "assigned_agent_name": agent.name,
                "assigned_provider": agent.get_config().provider,
            },
        )
        logger.info(f"Task {task.id} assigned to agent {agent.name}")
        await self.hub.publish(
            "task:assigned",
            {"task_id": task.id, "agent_id": agent.id, "score": scores[0].score},
        )

        start = time.perf_counter()
        last_error = "Agent returned failure"
        max_attempts = self.retry_policy.max_attempts

        for attempt in range(max_attempts):
            await self.retry_policy.wait_before(attempt)
            running.attempts = attempt + 1
            await self.store.update_status(task.id, TaskStatus.IN_PROGRESS)

            request = AgentRequest(
                task_id=task.id,
                prompt=task.description,
                context=task.metadata,
                priority=task.priority,
            )
            try:
                response = await agent.execute(request)
                if not response.success:
                    raise TransientFailure(
                        task.id, attempt, response.error or "Agent returned failure"
                    )
            except Exception as e:
                last_error = str(e)
                logger.warning(
                    f"Task {task.id} attempt {attempt + 1}/{max_attempts} failed: "
                    f"{last_error}"
                )
                if self.retry_policy.has_attempts_left(attempt):
                    await self.store.update_status(task.id, TaskStatus.PENDING)
                continue

            duration = response.duration or int((time.perf_counter() - start) * 1000)
            await self.store.update_status(
                task.id,
                TaskStatus.COMPLETED,
                output=response.result,
                actual_duration=duration,
                completed_at=datetime.now(),
            )
            logger.info(f"Task {task.id} completed (attempt {attempt + 1})")
            await self.hub.publish(
                "task:completed",
                {"task_id": task.id, "agent_id": agent.id, "collaboration": False},
            )
            return ExecutionResult(
                task_id=task.id,
                success=True,
                status=TaskStatus.COMPLETED,
                agent_id=agent.id,
                output=response.result,
                attempts=attempt + 1,
                duration=duration,
            )

        failure = TerminalFailure(task.id, max_attempts, last_error)
        logger.error(str(failure))
        duration = int((time.perf_counter() - start) * 1000)
        await self.store.update_status(
            task.id, TaskStatus.FAILED, error=last_error, actual_duration=duration
        )
        await self.hub.publish(
            "task:failed",
            {
                "task_id": task.id,
                "agent_id": agent.id,
                "error": last_error,
                "attempts": max_attempts,
            },
        )
        return ExecutionResult(
            task_id=task.id,
            success=False,
            status=TaskStatus.FAILED,
            agent_id=agent.id,
            error=last_error,
            attempts=max_attempts,
            duration=duration,
        )

    async def _execute_with_collaboration(self, task: TaskCore) -> ExecutionResult:
        logger.info(f"Executing task {task.id} with collaboration")
        await self._track(RunningTask(task_id=task.id, collaboration=True))
        task = await self.store.update_status(
            task.id, TaskStatus.IN_PROGRESS, started_at=datetime.now()
        )
        start = time.perf_counter()
        session_id = None

        try:
            strategy = self.determine_collaboration_strategy(task)
            session = await self.collaboration_manager.create_collaboration_session(
                task, strategy
            )
            session_id = session.id

            task = await self.store.update(
                task.model_copy(
                    update={
                        "metadata": {
                            **task.metadata,
                            "collaboration_session_id": session.id,
                            "collaboration_strategy": strategy.value,
                        }
                    }
                )
            )
            await self.hub.publish(
                "collaboration:started",
                {
                    "task_id": task.id,
                    "session_id": session.id,
                    "strategy": strategy.value,
                    "agents": session.agents,
                },
            )

            results = await self.collaboration_manager.execute_collaboration_session(
                session.id
            )
            synthesized = self.collaboration_manager.synthesize_results(results)
            duration = int((time.perf_counter() - start) * 1000)

            await self.store.update_status(
                task.id,
                TaskStatus.COMPLETED,
                output=synthesized,
                actual_duration=duration,
                completed_at=datetime.now(),
            )
        except Exception as e:
            duration = int((time.perf_counter() - start) * 1000)
            logger.error(f"Task {task.id} collaboration failed: {e}")
            await self.store.update_status(
                task.id, TaskStatus.FAILED, error=str(e), actual_duration=duration
            )
            await self.hub.publish(
                "task:error",
                {"task_id": task.id, "session_id": session_id, "error": str(e)},
            )
            raise

        logger.info(f"Task {task.id} collaboration done in {duration}ms")
        await self.hub.publish(
            "task:completed",
            {"task_id": task.id, "session_id": session_id, "collaboration": True},
        )
        return ExecutionResult(
            task_id=task.id,
            success=True,
            status=TaskStatus.COMPLETED,
            output=synthesized,
            attempts=1,
            duration=duration,
            collaboration=True,
            session_id=session_id,
        )

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _in_flight(self) -> int:
        return len(self._execution_lock | set(self._running))

    async def process_pending_tasks(self) -> int:
        """Run one scheduling pass and return the number of tasks dispatched.

        Pending tasks are visited in priority then creation order. A task is
        dispatched when it is not already executing, all its dependencies are
        completed and the in-flight count is below the concurrency ceiling.
        """
        if not self.registry.get_available_agents():
            return 0

        ceiling = self.settings.scheduler.max_concurrent_tasks
        dispatched = 0

        for task in await self.store.find_pending_tasks():
            if self._in_flight() >= ceiling:
                break
            if task.id in self._execution_lock or task.id in self._running:
                continue
            if not await self._dependencies_completed(task):
                continue
            if not await self._claim(task.id):
                continue

            execution = asyncio.create_task(self._run_dispatched(task.id))
            self._dispatched.add(execution)
            execution.add_done_callback(self._dispatched.discard)
            dispatched += 1

        if dispatched:
            logger.debug(f"Scheduling pass dispatched {dispatched} tasks")
        return dispatched

    async def _run_dispatched(self, task_id: str) -> None:
        try:
            await self._execute_claimed(task_id)
        except Exception as e:
            logger.error(f"Scheduled execution of task {task_id} failed: {e}")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_task(self, task_id: str) -> TaskCore:
        """Get a task by id.

        Raises:
            NotFoundError: If the task does not exist

        """
        task = await self.store.find_by_id(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return task

    async def get_tasks(
        self,
        status: TaskStatus | None = None,
        type: TaskType | None = None,
        priority: TaskPriority | None = None,
        limit: int | None = None,
    ) -> list[TaskCore]:
        """Tasks matching the given filters, oldest first."""
        return await self.store.find_by_filter(
            status=status, type=type, priority=priority, limit=limit
        )

    async def get_stats(self) -> dict[str, Any]:
        """Aggregate task, execution and collaboration statistics."""
        stats = await self.store.get_statistics()
        tasks = await self.store.find_by_filter()

        durations = [
            task.actual_duration
            for task in tasks
            if task.status == TaskStatus.COMPLETED and task.actual_duration is not None
        ]
        return {
            **stats,
            "running": len(self._running),
            "collaborations": sum(
                1 for task in tasks if task.metadata.get("collaboration_session_id")
            ),
            "average_duration": round(sum(durations) / len(durations))
            if durations
            else 0,
            "sessions": self.collaboration_manager.get_stats(),
        }

    def get_running_tasks(self) -> dict[str, RunningTask]:
        """Snapshot of the tasks currently executing."""
        return {
            task_id: running.model_copy()
            for task_id, running in self._running.items()
        }

    def get_collaboration_sessions(self) -> list[CollaborationSession]:
        """All collaboration sessions."""
        return self.collaboration_manager.get_all_sessions()

    def get_collaboration_session(self, session_id: str) -> CollaborationSession:
        """A collaboration session by id."""
        return self.collaboration_manager.get_session(session_id)
