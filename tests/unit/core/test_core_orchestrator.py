"""Unit tests for the task orchestrator.

Covers task creation, single-agent execution with retry, the execution
lock, dependency gating, collaboration hand-off and the scheduling pass.
"""

import asyncio
from unittest.mock import AsyncMock, call, patch

import pytest

from loomiq.config import LoomiqSettings, SchedulerSettings
from loomiq.core.errors import NotFoundError, ValidationError
from loomiq.core.orchestrator import TaskOrchestrator, generate_title
from loomiq.repositories import InMemoryTaskRepository
from loomiq.schemas.unified_models import (
    CollaborationStrategyType,
    SessionStatus,
    TaskPriority,
    TaskStatus,
    TaskType,
)


class RecordingStore(InMemoryTaskRepository):
    """In-memory store that records every status written."""

    def __init__(self):
        super().__init__()
        self.statuses: list[TaskStatus] = []

    async def update_status(self, task_id, status, **fields):
        self.statuses.append(status)
        return await super().update_status(task_id, status, **fields)


@pytest.fixture
def orchestrator(registry, hub, store, settings):
    """Orchestrator over the shared registry, hub and in-memory store."""
    return TaskOrchestrator(registry, hub=hub, store=store, settings=settings)


@pytest.fixture
def no_sleep():
    """Replace the backoff sleep so retries run instantly."""
    with patch("loomiq.core.retry.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


class TestGenerateTitle:
    """Test title derivation from descriptions."""

    def test_first_line_used(self):
        assert generate_title("  Fix login\nDetails follow") == "Fix login"

    def test_long_line_truncated(self):
        title = generate_title("x" * 150)

        assert title == "x" * 100 + "..."


class TestCreateTask:
    """Test task creation."""

    @pytest.mark.asyncio
    async def test_create_task_stores_pending_task(self, orchestrator, store, events):
        task = await orchestrator.create_task(
            "Add a logout button\nPlace it in the header",
            type=TaskType.IMPLEMENTATION,
            priority=TaskPriority.HIGH,
            context={"repo": "web"},
        )

        stored = await store.find_by_id(task.id)
        assert stored.status == TaskStatus.PENDING
        assert stored.title == "Add a logout button"
        assert stored.priority == TaskPriority.HIGH
        assert stored.metadata == {"repo": "web"}
        assert events[-1].name == "task:created"
        assert events[-1].payload["task"]["id"] == task.id

    @pytest.mark.asyncio
    async def test_accepts_string_enums(self, orchestrator):
        task = await orchestrator.create_task("Draft tests", type="test", priority="low")

        assert task.type == TaskType.TEST
        assert task.priority == TaskPriority.LOW

    @pytest.mark.asyncio
    @pytest.mark.parametrize("description", ["", "   \n  "])
    async def test_empty_description_rejected(self, orchestrator, store, description):
        with pytest.raises(ValidationError, match="must not be empty"):
            await orchestrator.create_task(description)

        assert (await store.get_statistics())["total"] == 0

    @pytest.mark.asyncio
    async def test_invalid_priority_rejected(self, orchestrator):
        with pytest.raises(ValidationError, match="Invalid task"):
            await orchestrator.create_task("Add a logout button", priority="urgent")

    @pytest.mark.asyncio
    async def test_dependencies_deduplicated(self, orchestrator):
        task = await orchestrator.create_task(
            "Ship it", dependencies=["a", "b", "a"]
        )

        assert task.dependencies == ["a", "b"]

    @pytest.mark.asyncio
    async def test_default_organization(self, registry, hub, store):
        settings = LoomiqSettings(_env_file=None, default_organization_id="acme")
        orchestrator = TaskOrchestrator(registry, hub, store, settings)

        task = await orchestrator.create_task("Add a logout button")

        assert task.organization_id == "acme"


class TestSingleAgentExecution:
    """Test execution through the best ranked agent."""

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(
        self, orchestrator, registry, make_agent, events
    ):
        await registry.register_agent(make_agent("coder", results=[{"code": "ok"}]))
        task = await orchestrator.create_task("Add a logout button")

        result = await orchestrator.execute_task(task.id)

        assert result.success is True
        assert result.status == TaskStatus.COMPLETED
        assert result.agent_id == "coder"
        assert result.attempts == 1
        assert result.output == {"code": "ok"}

        stored = await orchestrator.get_task(task.id)
        assert stored.status == TaskStatus.COMPLETED
        assert stored.assigned_agent_id == "coder"
        assert stored.output == {"code": "ok"}
        assert stored.started_at is not None
        assert stored.completed_at is not None
        assert stored.actual_duration is not None
        assert stored.metadata["assigned_agent_name"] == "Coder"
        assert stored.metadata["assigned_provider"] == "stub"

        names = [e.name for e in events]
        assert names.index("task:assigned") < names.index("task:completed")
        assert orchestrator.get_running_tasks() == {}

    @pytest.mark.asyncio
    async def test_best_agent_selected(self, orchestrator, registry, make_agent):
        await registry.register_agent(make_agent("generic"))
        await registry.register_agent(make_agent("ui", ["implementation", "button"]))
        task = await orchestrator.create_task("Add a logout button")

        result = await orchestrator.execute_task(task.id)

        assert result.agent_id == "ui"

    @pytest.mark.asyncio
    async def test_retry_then_success(
        self, orchestrator, registry, make_agent, no_sleep
    ):
        agent = make_agent("coder", results=[RuntimeError("rate limited"), "done"])
        await registry.register_agent(agent)
        task = await orchestrator.create_task("Add a logout button")

        result = await orchestrator.execute_task(task.id)

        assert result.success is True
        assert result.attempts == 2
        assert result.output == "done"
        assert len(agent.requests) == 2
        no_sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_retry_exhaustion_fails_task(
        self, orchestrator, registry, make_agent, events, no_sleep
    ):
        agent = make_agent(
            "coder",
            results=[RuntimeError("a"), RuntimeError("b"), RuntimeError("c")],
        )
        await registry.register_agent(agent)
        task = await orchestrator.create_task("Add a logout button")

        result = await orchestrator.execute_task(task.id)

        assert result.success is False
        assert result.status == TaskStatus.FAILED
        assert result.attempts == 3
        assert result.error == "c"
        assert no_sleep.await_args_list == [call(1.0), call(2.0)]

        stored = await orchestrator.get_task(task.id)
        assert stored.status == TaskStatus.FAILED
        assert stored.error == "c"

        failed = [e for e in events if e.name == "task:failed"]
        assert len(failed) == 1
        assert failed[0].payload["attempts"] == 3
        assert "task:completed" not in [e.name for e in events]

    @pytest.mark.asyncio
    async def test_task_returns_to_pending_between_attempts(
        self, registry, hub, settings, make_agent, no_sleep
    ):
        store = RecordingStore()
        orchestrator = TaskOrchestrator(registry, hub, store, settings)
        await registry.register_agent(
            make_agent("coder", results=[RuntimeError("flaky"), "done"])
        )
        task = await orchestrator.create_task("Add a logout button")

        await orchestrator.execute_task(task.id)

        assert store.statuses == [
            TaskStatus.ASSIGNED,
            TaskStatus.IN_PROGRESS,
            TaskStatus.PENDING,
            TaskStatus.IN_PROGRESS,
            TaskStatus.COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failed_attempt(
        self, orchestrator, registry, make_agent, no_sleep
    ):
        await registry.register_agent(make_agent("slow", delay=0.2, timeout=0.01))
        task = await orchestrator.create_task("Add a logout button")

        result = await orchestrator.execute_task(task.id)

        assert result.success is False
        assert "timed out" in result.error

    @pytest.mark.asyncio
    async def test_no_suitable_agent(self, orchestrator, registry, make_agent):
        await registry.register_agent(make_agent("tester", ["testing"]))
        task = await orchestrator.create_task("Add a logout button")

        with pytest.raises(NotFoundError, match="No suitable agent"):
            await orchestrator.execute_task(task.id)

        assert (await orchestrator.get_task(task.id)).status == TaskStatus.PENDING
        assert orchestrator.get_running_tasks() == {}


class TestExecutionGuards:
    """Test the execution lock and runnability checks."""

    @pytest.mark.asyncio
    async def test_concurrent_execution_runs_once(
        self, orchestrator, registry, make_agent
    ):
        agent = make_agent("coder", delay=0.05)
        await registry.register_agent(agent)
        task = await orchestrator.create_task("Add a logout button")

        first, second = await asyncio.gather(
            orchestrator.execute_task(task.id), orchestrator.execute_task(task.id)
        )

        results = [r for r in (first, second) if r is not None]
        assert len(results) == 1
        assert results[0].success is True
        assert len(agent.requests) == 1

    @pytest.mark.asyncio
    async def test_unknown_task(self, orchestrator):
        with pytest.raises(NotFoundError):
            await orchestrator.execute_task("missing")

    @pytest.mark.asyncio
    async def test_completed_task_not_rerun(self, orchestrator, registry, make_agent):
        await registry.register_agent(make_agent("coder"))
        task = await orchestrator.create_task("Add a logout button")
        await orchestrator.execute_task(task.id)

        with pytest.raises(ValidationError, match="only pending tasks run"):
            await orchestrator.execute_task(task.id)

        # The lock was released on the error path
        assert orchestrator._in_flight() == 0

    @pytest.mark.asyncio
    async def test_unfinished_dependency_blocks_execution(
        self, orchestrator, registry, make_agent
    ):
        await registry.register_agent(make_agent("coder"))
        first = await orchestrator.create_task("Create the schema")
        second = await orchestrator.create_task(
            "Add the migration", dependencies=[first.id]
        )

        with pytest.raises(ValidationError, match="unfinished dependencies"):
            await orchestrator.execute_task(second.id)

        await orchestrator.execute_task(first.id)
        result = await orchestrator.execute_task(second.id)
        assert result.success is True

    @pytest.mark.asyncio
    async def test_missing_dependency_blocks_execution(
        self, orchestrator, registry, make_agent
    ):
        await registry.register_agent(make_agent("coder"))
        task = await orchestrator.create_task("Add a logout button", dependencies=["x"])

        with pytest.raises(ValidationError):
            await orchestrator.execute_task(task.id)


class TestCollaborationHandOff:
    """Test tasks routed to collaboration sessions."""

    @pytest.mark.asyncio
    async def test_keyword_task_runs_as_collaboration(
        self, orchestrator, registry, make_agent, events
    ):
        await registry.register_agent(make_agent("a", results=["draft"]))
        await registry.register_agent(make_agent("b", results=["final"]))
        task = await orchestrator.create_task("Review the login flow")

        result = await orchestrator.execute_task(task.id)

        assert result.success is True
        assert result.collaboration is True
        assert result.session_id is not None

        stored = await orchestrator.get_task(task.id)
        assert stored.status == TaskStatus.COMPLETED
        assert stored.metadata["collaboration_session_id"] == result.session_id
        assert stored.metadata["collaboration_strategy"] == "sequential"
        assert len(stored.output["results"]) == 2

        session = orchestrator.get_collaboration_session(result.session_id)
        assert session.status == SessionStatus.COMPLETED
        assert session.strategy == CollaborationStrategyType.SEQUENTIAL

        names = [e.name for e in events]
        assert "collaboration:started" in names
        completed = [e for e in events if e.name == "task:completed"]
        assert completed[0].payload["collaboration"] is True

    @pytest.mark.asyncio
    async def test_forced_collaboration(self, orchestrator, registry, make_agent):
        await registry.register_agent(make_agent("a"))
        await registry.register_agent(make_agent("b"))
        task = await orchestrator.create_task("Add a logout button")

        result = await orchestrator.execute_task(task.id, force_collaboration=True)

        assert result.collaboration is True
        assert len(orchestrator.get_collaboration_sessions()) == 1

    @pytest.mark.asyncio
    async def test_use_collaboration_flag(self, orchestrator, registry, make_agent):
        await registry.register_agent(make_agent("a"))
        await registry.register_agent(make_agent("b"))
        task = await orchestrator.create_task(
            "Add a logout button", use_collaboration=True
        )

        result = await orchestrator.execute_task(task.id)

        assert result.collaboration is True

    @pytest.mark.asyncio
    async def test_single_candidate_fails_task(
        self, orchestrator, registry, make_agent, events
    ):
        await registry.register_agent(make_agent("solo"))
        task = await orchestrator.create_task("Review the login flow")

        with pytest.raises(ValidationError, match="at least 2 agents"):
            await orchestrator.execute_task(task.id)

        stored = await orchestrator.get_task(task.id)
        assert stored.status == TaskStatus.FAILED
        assert "at least 2 agents" in stored.error
        assert events[-1].name == "task:error"
        assert orchestrator.get_running_tasks() == {}


class TestScheduling:
    """Test the scheduling pass."""

    @pytest.mark.asyncio
    async def test_no_available_agents(self, orchestrator):
        await orchestrator.create_task("Add a logout button")

        assert await orchestrator.process_pending_tasks() == 0

    @pytest.mark.asyncio
    async def test_dependency_chain_runs_in_order(
        self, orchestrator, registry, make_agent
    ):
        agent = make_agent("coder")
        await registry.register_agent(agent)
        first = await orchestrator.create_task("Create the schema")
        second = await orchestrator.create_task(
            "Add the migration", dependencies=[first.id]
        )

        assert await orchestrator.process_pending_tasks() == 1
        await orchestrator.wait_for_dispatched()
        assert (await orchestrator.get_task(second.id)).status == TaskStatus.PENDING

        assert await orchestrator.process_pending_tasks() == 1
        await orchestrator.wait_for_dispatched()

        assert (await orchestrator.get_task(first.id)).status == TaskStatus.COMPLETED
        assert (await orchestrator.get_task(second.id)).status == TaskStatus.COMPLETED
        assert [r.task_id for r in agent.requests] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_failed_dependency_keeps_dependent_pending(
        self, orchestrator, registry, make_agent, no_sleep
    ):
        agent = make_agent(
            "coder",
            results=[RuntimeError("a"), RuntimeError("b"), RuntimeError("c")],
        )
        await registry.register_agent(agent)
        first = await orchestrator.create_task("Create the schema")
        second = await orchestrator.create_task(
            "Add the migration", dependencies=[first.id]
        )

        assert await orchestrator.process_pending_tasks() == 1
        await orchestrator.wait_for_dispatched()
        assert (await orchestrator.get_task(first.id)).status == TaskStatus.FAILED

        for _ in range(5):
            assert await orchestrator.process_pending_tasks() == 0
            await orchestrator.wait_for_dispatched()

        assert (await orchestrator.get_task(second.id)).status == TaskStatus.PENDING
        assert [r.task_id for r in agent.requests] == [first.id] * 3

    @pytest.mark.asyncio
    async def test_task_in_backoff_is_not_redispatched(
        self, orchestrator, registry, make_agent
    ):
        agent = make_agent("coder", results=[RuntimeError("rate limited"), "done"])
        await registry.register_agent(agent)
        task = await orchestrator.create_task("Add a logout button")
        backing_off = asyncio.Event()
        release = asyncio.Event()

        async def held_sleep(seconds):
            backing_off.set()
            await release.wait()

        with patch("loomiq.core.retry.sleep", side_effect=held_sleep):
            execution = asyncio.create_task(orchestrator.execute_task(task.id))
            await backing_off.wait()

            assert (await orchestrator.get_task(task.id)).status == TaskStatus.PENDING
            assert await orchestrator.process_pending_tasks() == 0

            release.set()
            result = await execution

        assert result.success is True
        assert result.attempts == 2
        assert len(agent.requests) == 2
        assert (await orchestrator.get_task(task.id)).status == TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_concurrency_ceiling(self, registry, hub, store, make_agent):
        settings = LoomiqSettings(
            _env_file=None, scheduler=SchedulerSettings(max_concurrent_tasks=2)
        )
        orchestrator = TaskOrchestrator(registry, hub, store, settings)
        await registry.register_agent(make_agent("coder", delay=0.05))
        for i in range(3):
            await orchestrator.create_task(f"Add field {i}")

        assert await orchestrator.process_pending_tasks() == 2
        assert orchestrator._in_flight() == 2
        assert await orchestrator.process_pending_tasks() == 0

        await orchestrator.wait_for_dispatched()
        assert await orchestrator.process_pending_tasks() == 1
        await orchestrator.wait_for_dispatched()

        stats = await orchestrator.get_stats()
        assert stats["by_status"]["completed"] == 3

    @pytest.mark.asyncio
    async def test_priority_order(self, registry, hub, store, make_agent):
        settings = LoomiqSettings(
            _env_file=None, scheduler=SchedulerSettings(max_concurrent_tasks=1)
        )
        orchestrator = TaskOrchestrator(registry, hub, store, settings)
        await registry.register_agent(make_agent("coder"))
        low = await orchestrator.create_task("Add a tooltip", priority="low")
        high = await orchestrator.create_task("Restore the login page", priority="high")

        assert await orchestrator.process_pending_tasks() == 1
        await orchestrator.wait_for_dispatched()

        assert (await orchestrator.get_task(high.id)).status == TaskStatus.COMPLETED
        assert (await orchestrator.get_task(low.id)).status == TaskStatus.PENDING

    @pytest.mark.asyncio
    async def test_scheduled_failure_is_contained(
        self, orchestrator, registry, make_agent
    ):
        await registry.register_agent(make_agent("solo"))
        task = await orchestrator.create_task("Review the login flow")

        assert await orchestrator.process_pending_tasks() == 1
        await orchestrator.wait_for_dispatched()

        assert (await orchestrator.get_task(task.id)).status == TaskStatus.FAILED

    @pytest.mark.asyncio
    async def test_background_scheduler(self, registry, hub, store, make_agent):
        settings = LoomiqSettings(
            _env_file=None, scheduler=SchedulerSettings(poll_interval_seconds=0.01)
        )
        await registry.register_agent(make_agent("coder"))

        async with TaskOrchestrator(registry, hub, store, settings) as orchestrator:
            assert orchestrator.is_running is True
            task = await orchestrator.create_task("Add a logout button")
            for _ in range(200):
                if (await orchestrator.get_task(task.id)).is_terminal:
                    break
                await asyncio.sleep(0.01)

        assert orchestrator.is_running is False
        assert (await orchestrator.get_task(task.id)).status == TaskStatus.COMPLETED


class TestQueries:
    """Test statistics and task queries."""

    @pytest.mark.asyncio
    async def test_stats(self, orchestrator, registry, make_agent, no_sleep):
        await registry.register_agent(
            make_agent(
                "coder",
                results=[
                    "ok",
                    RuntimeError("x"),
                    RuntimeError("y"),
                    RuntimeError("z"),
                ],
            )
        )
        good = await orchestrator.create_task("Add a logout button")
        bad = await orchestrator.create_task("Add a login button", type="implementation")
        await orchestrator.execute_task(good.id)
        await orchestrator.execute_task(bad.id)

        stats = await orchestrator.get_stats()

        assert stats["total"] == 2
        assert stats["by_status"]["completed"] == 1
        assert stats["by_status"]["failed"] == 1
        assert stats["running"] == 0
        assert stats["collaborations"] == 0
        assert stats["average_duration"] >= 0
        assert stats["sessions"]["total_sessions"] == 0

    @pytest.mark.asyncio
    async def test_get_tasks_filters(self, orchestrator):
        await orchestrator.create_task("Add a logout button", priority="high")
        await orchestrator.create_task("Draft tests", type="test")

        assert len(await orchestrator.get_tasks()) == 2
        assert len(await orchestrator.get_tasks(type=TaskType.TEST)) == 1
        assert len(await orchestrator.get_tasks(priority=TaskPriority.HIGH)) == 1
        assert await orchestrator.get_tasks(status=TaskStatus.COMPLETED) == []
        assert len(await orchestrator.get_tasks(limit=1)) == 1

    @pytest.mark.asyncio
    async def test_get_unknown_task(self, orchestrator):
        with pytest.raises(NotFoundError):
            await orchestrator.get_task("missing")
