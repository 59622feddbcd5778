"""SQLAlchemy models for task persistence.

Each task is stored as one row: the full task document lives in a JSON column
and the fields used for filtering are copied into their own indexed columns.
"""

from __future__ import annotations

from typing import Any

from advanced_alchemy.base import UUIDAuditBase
from sqlalchemy import JSON, Enum, Index, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from litestar_pilot.core.types import TaskStatus

__all__ = ["TaskModel"]


# Cross-database JSON type: uses JSONB for PostgreSQL, JSON for others (SQLite, MySQL, etc.)
JSONType = JSON().with_variant(JSONB, "postgresql")


class TaskModel(UUIDAuditBase):
    """Persisted task record.

    Attributes:
        task_id: The task identifier; ids sort chronologically.
        workflow_id: Workflow the task runs.
        status: Denormalised task status.
        source: Interface the task came from.
        chat_id: Optional chat identifier.
        document: The full camelCase task document.
    """

    __tablename__ = "pilot_tasks"
    __table_args__ = (
        Index("ix_pilot_tasks_task_id", "task_id", unique=True),
        Index("ix_pilot_tasks_status", "status"),
        Index("ix_pilot_tasks_source_chat", "source", "chat_id"),
    )

    task_id: Mapped[str] = mapped_column(String(64))
    workflow_id: Mapped[str] = mapped_column(String(255))
    status: Mapped[TaskStatus] = mapped_column(
        Enum(TaskStatus, native_enum=False, length=50, values_callable=lambda e: [m.value for m in e]),
        default=TaskStatus.WORKING,
    )
    source: Mapped[str] = mapped_column(String(255))
    chat_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    document: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
