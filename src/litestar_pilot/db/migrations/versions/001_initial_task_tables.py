"""Initial task tables.

Revision ID: 001_initial
Revises:
Create Date: 2025-06-02
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create the task table."""
    op.create_table(
        "pilot_tasks",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("task_id", sa.String(length=64), nullable=False),
        sa.Column("workflow_id", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("source", sa.String(length=255), nullable=False),
        sa.Column("chat_id", sa.String(length=255), nullable=True),
        sa.Column("document", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_pilot_tasks_task_id",
        "pilot_tasks",
        ["task_id"],
        unique=True,
    )
    op.create_index(
        "ix_pilot_tasks_status",
        "pilot_tasks",
        ["status"],
    )
    op.create_index(
        "ix_pilot_tasks_source_chat",
        "pilot_tasks",
        ["source", "chat_id"],
    )


def downgrade() -> None:
    """Drop the task table."""
    op.drop_table("pilot_tasks")
