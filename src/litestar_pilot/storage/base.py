"""Task store base class.

Backends implement four persistence primitives over whole task documents;
every task operation (status transitions, step upserts, progress, thread
bookkeeping, sweeps) is built on top of them here. Each read-modify-write runs
under a per-task ``asyncio.Lock``, so concurrent steps of one level never lose
each other's updates within a process.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from litestar_pilot.core.models import ProgressMessage, Task, TaskPage, utc_now
from litestar_pilot.core.types import TaskStatus

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from litestar_pilot.core.models import StepResult

__all__ = ["DEFAULT_LIST_LIMIT", "DEFAULT_THREAD_TTL_MS", "BaseTaskStore"]

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 50
DEFAULT_THREAD_TTL_MS = 5 * 60 * 1000
THREAD_SCAN_LIMIT = 10
STATS_SCAN_LIMIT = 1000


def _age_ms(now: datetime, then: datetime) -> float:
    return (now - then).total_seconds() * 1000


class BaseTaskStore(ABC):
    """Durable store of task records.

    Subclasses implement ``_read``, ``_write``, ``_remove`` and ``_task_ids``.
    Persistence failures are logged; the public methods then return ``None``
    or ``False`` instead of raising.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @abstractmethod
    async def _read(self, task_id: str) -> dict[str, Any] | None:
        """Return the stored document for ``task_id`` or ``None``."""

    @abstractmethod
    async def _write(self, task_id: str, document: dict[str, Any]) -> None:
        """Persist ``document`` under ``task_id``, replacing any previous one."""

    @abstractmethod
    async def _remove(self, task_id: str) -> bool:
        """Remove the document; return whether it existed."""

    @abstractmethod
    async def _task_ids(self) -> list[str]:
        """Return every stored task id in any order."""

    def _lock(self, task_id: str) -> asyncio.Lock:
        # Held weakly: a lock lives only while some caller holds or awaits it.
        lock = self._locks.get(task_id)
        if lock is None:
            lock = self._locks[task_id] = asyncio.Lock()
        return lock

    async def _load(self, task_id: str) -> Task | None:
        try:
            document = await self._read(task_id)
        except Exception:
            logger.exception("Failed to read task %s", task_id)
            return None
        if document is None:
            return None
        try:
            return Task.from_dict(document)
        except (KeyError, TypeError, ValueError):
            logger.exception("Malformed task document %s", task_id)
            return None

    async def _save(self, task: Task) -> bool:
        try:
            await self._write(task.task_id, task.to_dict())
        except Exception:
            logger.exception("Failed to write task %s", task.task_id)
            return False
        return True

    async def _mutate(
        self,
        task_id: str,
        change: Callable[[Task], bool],
        *,
        allow_terminal: bool = False,
    ) -> Task | None:
        """Apply ``change`` to the stored task under its lock.

        Args:
            task_id: Task to change.
            change: Mutates the task in place; returns False to abort without saving.
            allow_terminal: Whether terminal tasks may be changed.

        Returns:
            The saved task, or ``None`` if it is missing, terminal, unchanged or
            could not be written.
        """
        async with self._lock(task_id):
            task = await self._load(task_id)
            if task is None:
                logger.debug("Task not found: %s", task_id)
                return None
            if task.is_terminal and not allow_terminal:
                logger.warning("Refusing to modify %s task %s", task.status, task_id)
                return None
            if not change(task):
                return None
            return task if await self._save(task) else None

    async def save_task(self, task: Task) -> bool:
        async with self._lock(task.task_id):
            return await self._save(task)

    async def load_task(self, task_id: str) -> Task | None:
        return await self._load(task_id)

    async def delete_task(self, task_id: str) -> bool:
        async with self._lock(task_id):
            try:
                removed = await self._remove(task_id)
            except Exception:
                logger.exception("Failed to delete task %s", task_id)
                return False
        return removed

    async def list_tasks(
        self,
        limit: int = DEFAULT_LIST_LIMIT,
        status: TaskStatus | str | None = None,
        source: str | None = None,
        cursor: str | None = None,
    ) -> TaskPage:
        """List tasks newest first.

        Args:
            limit: Maximum tasks on the page.
            status: Only tasks in this status.
            source: Only tasks from this source.
            cursor: ``next_cursor`` of the previous page; only older tasks are listed.

        Returns:
            The page and the cursor of the next one.
        """
        try:
            ids = sorted(await self._task_ids(), reverse=True)
        except Exception:
            logger.exception("Failed to list tasks")
            return TaskPage(tasks=[])
        if cursor:
            ids = [task_id for task_id in ids if task_id < cursor]

        wanted_status = TaskStatus(status) if status else None
        tasks: list[Task] = []
        has_more = False
        for task_id in ids:
            task = await self._load(task_id)
            if task is None:
                continue
            if wanted_status is not None and task.status != wanted_status:
                continue
            if source is not None and task.source != source:
                continue
            if len(tasks) == limit:
                has_more = True
                break
            tasks.append(task)
        return TaskPage(tasks=tasks, next_cursor=tasks[-1].task_id if has_more and tasks else None)

    async def create_task(
        self,
        workflow_id: str,
        workflow_input: dict[str, Any],
        source: str = "api",
        *,
        chat_id: str | None = None,
        ttl: int | None = None,
    ) -> Task:
        """Create and persist a new ``working`` task."""
        task = Task.create(workflow_id, workflow_input, source, chat_id=chat_id, ttl=ttl)
        await self.save_task(task)
        return task

    async def update_task_status(
        self,
        task_id: str,
        status: TaskStatus,
        *,
        result: Any = None,
        error: str | None = None,
        message: str | None = None,
    ) -> Task | None:
        """Move a live task to ``status``.

        Args:
            task_id: Task to update.
            status: New status.
            result: Final result to record.
            error: Error message to record.
            message: Optional status note.

        Returns:
            The updated task, or ``None`` if it is missing or already terminal.
        """

        def change(task: Task) -> bool:
            task.status = TaskStatus(status)
            if result is not None:
                task.result = result
            if error is not None:
                task.error = error
            task.status_message = message
            task.touch()
            return True

        return await self._mutate(task_id, change)

    async def update_task_step(self, task_id: str, result: StepResult) -> Task | None:
        """Upsert a step result by ``step_id``.

        Progress messages already recorded for the step are kept; new ones are
        appended unless an entry with the same timestamp and text exists.
        ``current_step_index`` is pointed at the upserted entry.

        Args:
            task_id: Task to update.
            result: The step result.

        Returns:
            The updated task, or ``None`` if it is missing or terminal.
        """

        def change(task: Task) -> bool:
            for index, existing in enumerate(task.step_results):
                if existing.step_id == result.step_id:
                    seen = {message.key for message in existing.progress_messages}
                    merged = list(existing.progress_messages)
                    merged.extend(message for message in result.progress_messages if message.key not in seen)
                    result.progress_messages = merged
                    task.step_results[index] = result
                    task.current_step_index = index
                    break
            else:
                task.step_results.append(result)
                task.current_step_index = len(task.step_results) - 1
            task.touch()
            return True

        return await self._mutate(task_id, change)

    async def add_step_progress(self, task_id: str, step_name: str, message: str) -> Task | None:
        """Append a progress message to a step's log.

        The step is looked up by name; unknown names fall back to the current
        step, or the first one.

        Returns:
            The updated task, or ``None`` if it has no step to log to.
        """

        def change(task: Task) -> bool:
            target = task.find_step(step_name)
            if target is None and task.step_results:
                target = task.current_step or task.step_results[0]
                logger.debug('Step "%s" not found, logging to "%s"', step_name, target.step_name)
            if target is None:
                logger.debug("No step to log progress for task %s: %s: %s", task_id, step_name, message)
                return False
            now = utc_now()
            target.progress_messages.append(ProgressMessage(timestamp=now.isoformat(), message=message))
            task.touch(now)
            return True

        return await self._mutate(task_id, change)

    async def complete_task(self, task_id: str, result: Any) -> Task | None:
        return await self.update_task_status(task_id, TaskStatus.COMPLETED, result=result)

    async def fail_task(self, task_id: str, error: str) -> Task | None:
        return await self.update_task_status(task_id, TaskStatus.FAILED, error=error)

    async def cancel_task(self, task_id: str) -> Task | None:
        """Cancel a live task; terminal tasks yield ``None``."""
        return await self.update_task_status(task_id, TaskStatus.CANCELLED)

    async def cleanup_expired_tasks(self, now: datetime | None = None) -> int:
        """Delete every task whose ``ttl`` elapsed since ``created_at``.

        Args:
            now: Reference time, defaults to the current time.

        Returns:
            Number of deleted tasks.
        """
        now = now or utc_now()
        try:
            ids = await self._task_ids()
        except Exception:
            logger.exception("Failed to list tasks for cleanup")
            return 0
        removed = 0
        for task_id in ids:
            task = await self._load(task_id)
            if task is None or not task.ttl:
                continue
            if _age_ms(now, task.created_at) > task.ttl and await self.delete_task(task_id):
                removed += 1
        if removed:
            logger.info("Removed %d expired tasks", removed)
        return removed

    async def get_task_stats(self) -> dict[str, Any]:
        """Count recent tasks by status and by source."""
        page = await self.list_tasks(limit=STATS_SCAN_LIMIT)
        by_status = {status.value: 0 for status in TaskStatus}
        by_source: dict[str, int] = {}
        for task in page.tasks:
            by_status[task.status.value] += 1
            by_source[task.source] = by_source.get(task.source, 0) + 1
        return {"total": len(page.tasks), "byStatus": by_status, "bySource": by_source}

    async def get_task_index(self, limit: int = 20) -> list[dict[str, Any]]:
        """Lightweight summaries of the most recent tasks."""
        page = await self.list_tasks(limit=limit)
        index = []
        for task in page.tasks:
            current = task.current_step
            total = len(task.step_results)
            index.append(
                {
                    "id": task.task_id,
                    "workflow": task.workflow_id,
                    "status": task.status.value,
                    "createdAt": task.created_at.isoformat(),
                    "currentStep": current.step_name if current else None,
                    "stepProgress": f"{task.current_step_index + 1}/{total}" if total else None,
                }
            )
        return index

    async def get_running_tasks(self) -> list[dict[str, Any]]:
        """Details of tasks still in the ``working`` status."""
        page = await self.list_tasks(limit=DEFAULT_LIST_LIMIT, status=TaskStatus.WORKING)
        running = []
        for task in page.tasks:
            current = task.current_step
            running.append(
                {
                    "id": task.task_id,
                    "workflow": task.workflow_id,
                    "currentStep": current.step_name if current else "starting",
                    "stepIndex": task.current_step_index,
                    "totalSteps": len(task.step_results),
                    "lastProgress": (
                        current.progress_messages[-1].message if current and current.progress_messages else None
                    ),
                    "startedAt": task.created_at.isoformat(),
                }
            )
        return running

    async def _thread_candidates(self, source: str, chat_id: str | None) -> list[Task]:
        page = await self.list_tasks(limit=THREAD_SCAN_LIMIT, source=source)
        return [
            task
            for task in page.tasks
            if task.chat_id == chat_id and task.status == TaskStatus.COMPLETED and not task.thread_closed
        ]

    async def get_recent_thread(
        self,
        source: str,
        chat_id: str | None = None,
        timeout_ms: int = DEFAULT_THREAD_TTL_MS,
        now: datetime | None = None,
    ) -> Task | None:
        """Find the most recent task that can be continued as a thread.

        A task qualifies when it is ``completed``, belongs to the same source
        and chat, is not ``thread_closed`` and was updated within ``timeout_ms``.

        Returns:
            The continuable task or ``None``.
        """
        now = now or utc_now()
        for task in await self._thread_candidates(source, chat_id):
            age = _age_ms(now, task.last_updated_at)
            if age <= timeout_ms:
                logger.debug("Found continuable thread %s (age %.0fs)", task.task_id, age / 1000)
                return task
        return None

    async def close_thread(self, source: str, chat_id: str | None = None) -> Task | None:
        """Mark the active thread of a source and chat as closed.

        Returns:
            The closed task, or ``None`` if there was no active thread.
        """
        for candidate in await self._thread_candidates(source, chat_id):
            closed = await self.mark_thread_closed(candidate.task_id)
            if closed is not None:
                return closed
        return None

    async def mark_thread_closed(self, task_id: str) -> Task | None:
        """Close the thread of one completed task.

        Returns:
            The closed task, or ``None`` if it is missing, not completed or
            already closed.
        """

        def change(task: Task) -> bool:
            if task.thread_closed or task.status != TaskStatus.COMPLETED:
                return False
            task.thread_closed = True
            task.touch()
            return True

        return await self._mutate(task_id, change, allow_terminal=True)
