"""Integration tests for the database task store.

Runs the SQLAlchemy store against an async SQLite database file.
"""

from __future__ import annotations

import importlib.util
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import inspect, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import litestar_pilot.db
from litestar_pilot.core.models import StepResult, Task
from litestar_pilot.core.types import TaskStatus
from litestar_pilot.db.models import TaskModel
from litestar_pilot.db.repositories import TaskRepository
from litestar_pilot.db.store import SQLAlchemyTaskStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from types import ModuleType

    from sqlalchemy.engine import Connection
    from sqlalchemy.ext.asyncio import AsyncEngine

BASE_TIME = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
async def async_engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """Create an async SQLite engine on a temporary file."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pilot.db'}", echo=False)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_store(session_maker: async_sessionmaker[AsyncSession]) -> SQLAlchemyTaskStore:
    """Database store with its table created."""
    store = SQLAlchemyTaskStore(session_maker)
    await store.create_all()
    return store


# =============================================================================
# Store Tests
# =============================================================================


@pytest.mark.integration
class TestSQLAlchemyTaskStore:
    """Tests for SQLAlchemyTaskStore."""

    async def test_create_all_is_idempotent(self, db_store: SQLAlchemyTaskStore) -> None:
        """Test that creating the table twice is harmless."""
        await db_store.create_all()
        assert (await db_store.list_tasks()).tasks == []

    async def test_round_trip(self, db_store: SQLAlchemyTaskStore) -> None:
        """Test that a task document survives a save and load."""
        task = await db_store.create_task("fast-router", {"message": "hi"}, "whatsapp", chat_id="42", ttl=5000)

        loaded = await db_store.load_task(task.task_id)

        assert loaded == task

    async def test_columns_follow_document(
        self,
        db_store: SQLAlchemyTaskStore,
        session_maker: async_sessionmaker[AsyncSession],
    ) -> None:
        """Test that the filter columns track the document on update."""
        task = await db_store.create_task("fast-router", {}, "cli", chat_id="c1")
        await db_store.complete_task(task.task_id, {"response": "done"})

        async with session_maker() as session:
            row = await TaskRepository(session=session).get_by_task_id(task.task_id)

        assert row is not None
        assert row.status == TaskStatus.COMPLETED
        assert row.source == "cli"
        assert row.chat_id == "c1"
        assert row.document["result"] == {"response": "done"}

    async def test_step_updates(self, db_store: SQLAlchemyTaskStore) -> None:
        """Test step upserts and progress through the database."""
        task = await db_store.create_task("fast-router", {}, "cli")
        step = StepResult(step_id=f"{task.task_id}_plan", step_name="plan", started_at=BASE_TIME)
        await db_store.update_task_step(task.task_id, step)

        updated = await db_store.add_step_progress(task.task_id, "plan", "Thinking...")

        assert updated is not None
        assert updated.step_results[0].progress_messages[0].message == "Thinking..."
        stored = await db_store.load_task(task.task_id)
        assert stored.step_results[0].progress_messages[0].message == "Thinking..."

    async def test_list_newest_first(self, db_store: SQLAlchemyTaskStore) -> None:
        """Test listing by id order with a status filter."""
        ids = []
        for minutes, status in enumerate([TaskStatus.COMPLETED, TaskStatus.WORKING, TaskStatus.COMPLETED]):
            task = Task.create("fast-router", {}, "cli", now=BASE_TIME + timedelta(minutes=minutes))
            task.status = status
            await db_store.save_task(task)
            ids.append(task.task_id)

        page = await db_store.list_tasks(status=TaskStatus.COMPLETED)

        assert [task.task_id for task in page.tasks] == [ids[2], ids[0]]

    async def test_delete(
        self,
        db_store: SQLAlchemyTaskStore,
        session_maker: async_sessionmaker[AsyncSession],
    ) -> None:
        """Test deleting a row."""
        task = await db_store.create_task("fast-router", {}, "cli")

        assert await db_store.delete_task(task.task_id) is True
        assert await db_store.delete_task(task.task_id) is False
        async with session_maker() as session:
            rows = (await session.execute(select(TaskModel))).scalars().all()
        assert rows == []

    async def test_threads(self, db_store: SQLAlchemyTaskStore) -> None:
        """Test thread lookup and closing through the database."""
        task = Task.create("fast-router", {"message": "hi"}, "cli", chat_id="c1", now=BASE_TIME)
        task.status = TaskStatus.COMPLETED
        await db_store.save_task(task)

        found = await db_store.get_recent_thread("cli", "c1", now=BASE_TIME + timedelta(minutes=1))
        closed = await db_store.close_thread("cli", "c1")

        assert found.task_id == task.task_id
        assert closed.thread_closed is True
        assert await db_store.get_recent_thread("cli", "c1", now=BASE_TIME + timedelta(minutes=1)) is None


# =============================================================================
# Migration Tests
# =============================================================================


def _load_initial_migration() -> ModuleType:
    path = Path(litestar_pilot.db.__file__).parent / "migrations" / "versions" / "001_initial_task_tables.py"
    spec = importlib.util.spec_from_file_location("pilot_migration_001", path)
    assert spec is not None
    assert spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.mark.integration
class TestInitialMigration:
    """Tests for the initial Alembic revision."""

    async def test_upgrade_and_downgrade(self, async_engine: AsyncEngine) -> None:
        """Test that the revision creates and drops the task table."""
        migration = _load_initial_migration()

        def run(connection: Connection, step: str) -> set[str]:
            with Operations.context(MigrationContext.configure(connection)):
                getattr(migration, step)()
            return set(inspect(connection).get_table_names())

        async with async_engine.begin() as conn:
            tables = await conn.run_sync(run, "upgrade")
            columns = await conn.run_sync(
                lambda sync_conn: {column["name"] for column in inspect(sync_conn).get_columns("pilot_tasks")}
            )
            indexes = await conn.run_sync(
                lambda sync_conn: {index["name"] for index in inspect(sync_conn).get_indexes("pilot_tasks")}
            )
            after_downgrade = await conn.run_sync(run, "downgrade")

        assert migration.revision == "001_initial"
        assert "pilot_tasks" in tables
        assert {"task_id", "workflow_id", "status", "source", "chat_id", "document"} <= columns
        assert indexes == {"ix_pilot_tasks_task_id", "ix_pilot_tasks_status", "ix_pilot_tasks_source_chat"}
        assert "pilot_tasks" not in after_downgrade
