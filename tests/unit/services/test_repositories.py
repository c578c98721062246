"""Tests for the task stores.

Both implementations run the same contract tests: the in-memory store and
the SQLModel store over an in-memory SQLite database.
"""

from datetime import datetime, timedelta

import pytest

from loomiq.config import DatabaseSettings
from loomiq.core.errors import NotFoundError, ValidationError
from loomiq.database import create_db_and_tables, create_db_engine
from loomiq.repositories import InMemoryTaskRepository, SQLTaskRepository, TaskStore
from loomiq.schemas.database import TaskRecord
from loomiq.schemas.unified_models import TaskCore, TaskPriority, TaskStatus, TaskType


@pytest.fixture(params=["memory", "sql"])
def task_store(request):
    """Each task store implementation."""
    if request.param == "memory":
        return InMemoryTaskRepository()
    engine = create_db_engine(DatabaseSettings(url="sqlite://"))
    create_db_and_tables(engine)
    return SQLTaskRepository(engine)


def _task(title: str = "Add a logout button", minutes_ago: int = 0, **kwargs):
    return TaskCore(
        title=title,
        description=title,
        created_at=datetime.now() - timedelta(minutes=minutes_ago),
        **kwargs,
    )


class TestTaskStoreContract:
    """Behaviour shared by every TaskStore."""

    def test_implements_protocol(self, task_store):
        assert isinstance(task_store, TaskStore)

    @pytest.mark.asyncio
    async def test_create_and_find(self, task_store):
        task = _task(dependencies=["dep"], metadata={"repo": "web"})

        await task_store.create(task)
        found = await task_store.find_by_id(task.id)

        assert found.id == task.id
        assert found.title == task.title
        assert found.dependencies == ["dep"]
        assert found.metadata == {"repo": "web"}
        assert found.status == TaskStatus.PENDING

    @pytest.mark.asyncio
    async def test_find_unknown(self, task_store):
        assert await task_store.find_by_id("missing") is None

    @pytest.mark.asyncio
    async def test_duplicate_create_rejected(self, task_store):
        task = _task()
        await task_store.create(task)

        with pytest.raises(ValidationError, match="already exists"):
            await task_store.create(task)

    @pytest.mark.asyncio
    async def test_returned_copies_are_detached(self, task_store):
        task = _task(metadata={"a": 1})
        await task_store.create(task)

        found = await task_store.find_by_id(task.id)
        found.metadata["a"] = 2

        assert (await task_store.find_by_id(task.id)).metadata == {"a": 1}

    @pytest.mark.asyncio
    async def test_update_status_with_fields(self, task_store):
        task = _task()
        await task_store.create(task)

        await task_store.update_status(task.id, TaskStatus.IN_PROGRESS)
        updated = await task_store.update_status(
            task.id,
            TaskStatus.COMPLETED,
            output={"files": ["a.py"]},
            actual_duration=120,
        )

        assert updated.status == TaskStatus.COMPLETED
        assert updated.output == {"files": ["a.py"]}
        assert updated.actual_duration == 120
        assert updated.updated_at >= task.updated_at
        found = await task_store.find_by_id(task.id)
        assert found.output == {"files": ["a.py"]}

    @pytest.mark.asyncio
    async def test_illegal_transition_rejected(self, task_store):
        task = _task()
        await task_store.create(task)

        with pytest.raises(ValidationError, match="pending -> completed"):
            await task_store.update_status(task.id, TaskStatus.COMPLETED)

        assert (await task_store.find_by_id(task.id)).status == TaskStatus.PENDING

    @pytest.mark.asyncio
    async def test_update_status_unknown(self, task_store):
        with pytest.raises(NotFoundError):
            await task_store.update_status("missing", TaskStatus.IN_PROGRESS)

    @pytest.mark.asyncio
    async def test_update_replaces_metadata(self, task_store):
        task = _task()
        await task_store.create(task)

        updated = await task_store.update(
            task.model_copy(update={"metadata": {"collaboration_session_id": "s"}})
        )

        assert updated.metadata == {"collaboration_session_id": "s"}

    @pytest.mark.asyncio
    async def test_update_unknown(self, task_store):
        with pytest.raises(NotFoundError):
            await task_store.update(_task())

    @pytest.mark.asyncio
    async def test_pending_ordered_by_priority_then_age(self, task_store):
        newer_high = _task("newer high", minutes_ago=1, priority=TaskPriority.HIGH)
        older_high = _task("older high", minutes_ago=5, priority=TaskPriority.HIGH)
        low = _task("low", minutes_ago=10, priority=TaskPriority.LOW)
        critical = _task("critical", minutes_ago=0, priority=TaskPriority.CRITICAL)
        for task in (newer_high, older_high, low, critical):
            await task_store.create(task)
        await task_store.update_status(low.id, TaskStatus.IN_PROGRESS)

        pending = await task_store.find_pending_tasks()

        assert [t.title for t in pending] == ["critical", "older high", "newer high"]

    @pytest.mark.asyncio
    async def test_find_by_filter(self, task_store):
        await task_store.create(_task("a", minutes_ago=3, type=TaskType.TEST))
        await task_store.create(
            _task("b", minutes_ago=2, organization_id="acme", priority=TaskPriority.HIGH)
        )
        await task_store.create(_task("c", minutes_ago=1, organization_id="acme"))

        assert [t.title for t in await task_store.find_by_filter()] == ["a", "b", "c"]
        assert [
            t.title for t in await task_store.find_by_filter(type=TaskType.TEST)
        ] == ["a"]
        assert [
            t.title for t in await task_store.find_by_filter(organization_id="acme")
        ] == ["b", "c"]
        assert [
            t.title for t in await task_store.find_by_filter(priority=TaskPriority.HIGH)
        ] == ["b"]
        assert len(await task_store.find_by_filter(limit=2)) == 2
        assert await task_store.find_by_filter(status=TaskStatus.FAILED) == []

    @pytest.mark.asyncio
    async def test_statistics(self, task_store):
        await task_store.create(_task("a", type=TaskType.TEST))
        second = _task("b", priority=TaskPriority.CRITICAL)
        await task_store.create(second)
        await task_store.update_status(second.id, TaskStatus.FAILED)

        stats = await task_store.get_statistics()

        assert stats["total"] == 2
        assert stats["by_status"]["pending"] == 1
        assert stats["by_status"]["failed"] == 1
        assert stats["by_status"]["completed"] == 0
        assert stats["by_type"]["test"] == 1
        assert stats["by_type"]["implementation"] == 1
        assert stats["by_priority"]["critical"] == 1


class TestTaskRecord:
    """Test conversion between TaskCore and the SQL entity."""

    def test_round_trip_keeps_payloads(self):
        task = _task(
            priority=TaskPriority.LOW,
            metadata={"assigned_agent_name": "Coder"},
            output={"content": "done"},
        )

        record = TaskRecord.from_core_model(task)

        assert record.task_metadata == {"assigned_agent_name": "Coder"}
        assert record.priority_rank == 3
        assert record.to_core_model() == task

    def test_update_from_core_model(self):
        task = _task()
        record = TaskRecord.from_core_model(task)

        record.update_from_core_model(
            task.model_copy(update={"status": TaskStatus.FAILED, "error": "boom"})
        )

        assert record.status == TaskStatus.FAILED
        assert record.error == "boom"
