"""Task store backed by one JSON file per task.

Files live under a single directory and are named ``<task_id>.json``. Each
file is written to a temporary sibling first and then renamed over the
original, so readers never observe a half-written document.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from litestar_pilot.storage.base import BaseTaskStore

__all__ = ["FileTaskStore"]

logger = logging.getLogger(__name__)

TASK_FILE_SUFFIX = ".json"


class FileTaskStore(BaseTaskStore):
    """Task store writing ``<tasks_dir>/<task_id>.json`` documents.

    Args:
        tasks_dir: Directory holding the task files; created on first write.

    Example:
        >>> store = FileTaskStore("~/Projects/tasks")
        >>> task = await store.create_task("fast-router", {"message": "hi"}, "cli")
    """

    def __init__(self, tasks_dir: str | os.PathLike[str]) -> None:
        super().__init__()
        self.tasks_dir = Path(tasks_dir).expanduser()

    def _path(self, task_id: str) -> Path:
        if not task_id or Path(task_id).name != task_id or task_id.startswith("."):
            msg = f"Invalid task id: {task_id!r}"
            raise ValueError(msg)
        return self.tasks_dir / f"{task_id}{TASK_FILE_SUFFIX}"

    async def _read(self, task_id: str) -> dict[str, Any] | None:
        path = self._path(task_id)
        if not await aiofiles.os.path.exists(path):
            return None
        async with aiofiles.open(path, encoding="utf-8") as f:
            content = await f.read()
        return json.loads(content)

    async def _write(self, task_id: str, document: dict[str, Any]) -> None:
        path = self._path(task_id)
        await aiofiles.os.makedirs(self.tasks_dir, exist_ok=True)
        temp_path = path.with_name(f".{path.name}.tmp")
        try:
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(document, indent=2, ensure_ascii=False, default=str))
            await aiofiles.os.replace(temp_path, path)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                await aiofiles.os.remove(temp_path)
            raise

    async def _remove(self, task_id: str) -> bool:
        path = self._path(task_id)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            return False
        return True

    async def _task_ids(self) -> list[str]:
        if not await aiofiles.os.path.isdir(self.tasks_dir):
            return []
        names = await aiofiles.os.listdir(self.tasks_dir)
        return [
            name[: -len(TASK_FILE_SUFFIX)]
            for name in names
            if name.endswith(TASK_FILE_SUFFIX) and not name.startswith(".")
        ]
