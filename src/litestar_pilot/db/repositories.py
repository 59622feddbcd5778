"""Repository for task persistence.

Async CRUD over :class:`TaskModel` using advanced-alchemy's repository
pattern.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from advanced_alchemy.repository import SQLAlchemyAsyncRepository
from sqlalchemy import delete, select

from litestar_pilot.db.models import TaskModel

if TYPE_CHECKING:
    from collections.abc import Sequence

__all__ = ["TaskRepository"]


class TaskRepository(SQLAlchemyAsyncRepository[TaskModel]):
    """Repository for task rows keyed by their task id."""

    model_type = TaskModel

    async def get_by_task_id(self, task_id: str) -> TaskModel | None:
        """Get a task row by its task id.

        Args:
            task_id: The task identifier.

        Returns:
            The row or None if not found.
        """
        stmt = select(TaskModel).where(TaskModel.task_id == task_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_task_ids(self) -> Sequence[str]:
        """List every stored task id, newest first."""
        stmt = select(TaskModel.task_id).order_by(TaskModel.task_id.desc())
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def delete_by_task_id(self, task_id: str) -> bool:
        """Delete a task row.

        Returns:
            True if a row was deleted.
        """
        stmt = delete(TaskModel).where(TaskModel.task_id == task_id)
        result = await self.session.execute(stmt)
        await self.session.flush()
        return bool(result.rowcount)
