"""Database persistence layer for litestar-pilot.

This module provides the SQLAlchemy model, repository and task store used to
persist tasks in a relational database.

Requires the [db] extra:
    pip install litestar-pilot[db]
"""

from __future__ import annotations

from litestar_pilot.db.models import TaskModel
from litestar_pilot.db.repositories import TaskRepository
from litestar_pilot.db.store import SQLAlchemyTaskStore

__all__ = ["SQLAlchemyTaskStore", "TaskModel", "TaskRepository"]
