"""In-memory task store."""

from __future__ import annotations

import copy
from typing import Any

from litestar_pilot.storage.base import BaseTaskStore

__all__ = ["MemoryTaskStore"]


class MemoryTaskStore(BaseTaskStore):
    """Task store keeping documents in a dict.

    Documents are deep-copied on the way in and out, so callers never share
    state with the store. Useful for tests and single-process deployments
    where task history does not need to survive a restart.
    """

    def __init__(self) -> None:
        super().__init__()
        self._documents: dict[str, dict[str, Any]] = {}

    async def _read(self, task_id: str) -> dict[str, Any] | None:
        document = self._documents.get(task_id)
        return copy.deepcopy(document) if document is not None else None

    async def _write(self, task_id: str, document: dict[str, Any]) -> None:
        self._documents[task_id] = copy.deepcopy(document)

    async def _remove(self, task_id: str) -> bool:
        return self._documents.pop(task_id, None) is not None

    async def _task_ids(self) -> list[str]:
        return list(self._documents)

    def clear(self) -> None:
        """Remove every task."""
        self._documents.clear()
        self._locks.clear()
