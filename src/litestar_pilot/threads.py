"""Conversation threads.

A thread is implicit: a completed task stays continuable for a short time, and
the next message from the same source and chat is run with that task's
conversation history. Threads end when they go stale, when the user asks for
a new one or when the assistant ends the reply with ``[END_CONVERSATION]``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from litestar_pilot.engine.orchestrator import extract_response
from litestar_pilot.storage.base import DEFAULT_THREAD_TTL_MS

if TYPE_CHECKING:
    from datetime import datetime

    from litestar_pilot.core.models import Task
    from litestar_pilot.storage.base import BaseTaskStore

__all__ = [
    "END_CONVERSATION_MARKER",
    "ThreadContext",
    "ThreadManager",
    "clean_response",
    "is_end_of_conversation",
]

logger = logging.getLogger(__name__)

END_CONVERSATION_MARKER = "[END_CONVERSATION]"


def is_end_of_conversation(response: str) -> bool:
    return END_CONVERSATION_MARKER in response


def clean_response(response: str) -> str:
    """Strip end-of-conversation markers from a reply."""
    return response.replace(END_CONVERSATION_MARKER, "").strip()


@dataclass
class ThreadContext:
    """A continuable thread.

    Attributes:
        task: The task the thread continues from.
        history: Conversation so far, oldest first.
    """

    task: Task
    history: list[dict[str, Any]] = field(default_factory=list)


class ThreadManager:
    """Finds, extends and closes conversation threads.

    Attributes:
        store: Task store the threads live in.
        ttl_ms: How long after its last update a task stays continuable.
        max_history: Maximum history entries carried into the next run.
    """

    def __init__(
        self,
        store: BaseTaskStore,
        ttl_ms: int = DEFAULT_THREAD_TTL_MS,
        max_history: int = 20,
    ) -> None:
        self.store = store
        self.ttl_ms = ttl_ms
        self.max_history = max_history

    async def find_continuable_thread(
        self,
        source: str,
        chat_id: str | None = None,
        ttl_ms: int | None = None,
        now: datetime | None = None,
    ) -> ThreadContext | None:
        """Find the thread the next message of a conversation should continue.

        Args:
            source: Interface the message came from.
            chat_id: Optional chat identifier.
            ttl_ms: Override of the manager's thread TTL.
            now: Reference time, defaults to the current time.

        Returns:
            The most recent continuable thread or ``None``.
        """
        ttl = self.ttl_ms if ttl_ms is None else ttl_ms
        task = await self.store.get_recent_thread(source, chat_id, timeout_ms=ttl, now=now)
        if task is None:
            return None
        return ThreadContext(task=task, history=self.build_history(task))

    def build_history(self, task: Task) -> list[dict[str, Any]]:
        """Conversation history of a task including its own exchange.

        Example:
            >>> manager.build_history(task)
            [{'role': 'user', 'content': 'hi'}, {'role': 'assistant', 'content': 'Hello!'}]
        """
        stored = task.workflow_input.get("history")
        history = [entry for entry in stored if isinstance(entry, dict)] if isinstance(stored, list) else []
        message = task.workflow_input.get("message")
        if isinstance(message, str) and message:
            history.append({"role": "user", "content": message})
        response = clean_response(extract_response(task.result))
        if response:
            history.append({"role": "assistant", "content": response})
        return history[-self.max_history :] if self.max_history > 0 else []

    async def close_thread(self, source: str, chat_id: str | None = None) -> Task | None:
        closed = await self.store.close_thread(source, chat_id)
        if closed is not None:
            logger.info("Closed thread %s for %s:%s", closed.task_id, source, chat_id or "default")
        return closed

    async def close_task_thread(self, task_id: str) -> Task | None:
        """Close the thread of one specific task, e.g. after an end marker."""
        return await self.store.mark_thread_closed(task_id)
