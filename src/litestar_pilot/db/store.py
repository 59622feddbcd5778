"""Task store with database persistence.

Each persistence primitive opens its own session from the configured session
maker and commits before returning, so the store can be shared between
request handlers and background workflow runs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from litestar_pilot.core.types import TaskStatus
from litestar_pilot.db.models import TaskModel
from litestar_pilot.db.repositories import TaskRepository
from litestar_pilot.storage.base import BaseTaskStore

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

__all__ = ["SQLAlchemyTaskStore"]


class SQLAlchemyTaskStore(BaseTaskStore):
    """Task store backed by the ``pilot_tasks`` table.

    Attributes:
        session_maker: Factory for the async sessions used by each operation.

    Example:
        >>> engine = create_async_engine("sqlite+aiosqlite:///tasks.db")
        >>> store = SQLAlchemyTaskStore(async_sessionmaker(engine, expire_on_commit=False))
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        super().__init__()
        self.session_maker = session_maker

    async def _read(self, task_id: str) -> dict[str, Any] | None:
        async with self.session_maker() as session:
            row = await TaskRepository(session=session).get_by_task_id(task_id)
            return dict(row.document) if row is not None else None

    async def _write(self, task_id: str, document: dict[str, Any]) -> None:
        async with self.session_maker() as session, session.begin():
            repo = TaskRepository(session=session)
            row = await repo.get_by_task_id(task_id)
            if row is None:
                await repo.add(
                    TaskModel(
                        task_id=task_id,
                        workflow_id=document["workflowId"],
                        status=TaskStatus(document["status"]),
                        source=document["source"],
                        chat_id=document.get("chatId"),
                        document=document,
                    )
                )
                return
            row.status = TaskStatus(document["status"])
            row.workflow_id = document["workflowId"]
            row.source = document["source"]
            row.chat_id = document.get("chatId")
            row.document = document
            await repo.update(row)

    async def _remove(self, task_id: str) -> bool:
        async with self.session_maker() as session, session.begin():
            return await TaskRepository(session=session).delete_by_task_id(task_id)

    async def _task_ids(self) -> list[str]:
        async with self.session_maker() as session:
            return list(await TaskRepository(session=session).list_task_ids())

    async def create_all(self) -> None:
        """Create the ``pilot_tasks`` table if it does not exist yet."""
        engine = self.session_maker.kw["bind"]
        async with engine.begin() as connection:
            await connection.run_sync(TaskModel.__table__.create, checkfirst=True)
