"""Command surface of the engine.

:class:`PilotService` is what interfaces talk to: it starts workflows, turns
free-form messages into runs of the default workflow (continuing recent
threads), exposes task and workflow management and routes inbound events.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from litestar_pilot.core.definition import Workflow
from litestar_pilot.core.events import AgentResponse
from litestar_pilot.core.types import TaskStatus
from litestar_pilot.exceptions import TaskAlreadyCompletedError, TaskNotFoundError
from litestar_pilot.threads import clean_response, is_end_of_conversation

if TYPE_CHECKING:
    from collections.abc import Iterable

    from litestar_pilot.config import PilotConfig
    from litestar_pilot.core.models import Task, TaskPage
    from litestar_pilot.engine.orchestrator import ExecutionResult, WorkflowOrchestrator
    from litestar_pilot.engine.registry import WorkflowRegistry
    from litestar_pilot.storage.base import BaseTaskStore
    from litestar_pilot.threads import ThreadManager

__all__ = ["NEW_THREAD_COMMAND", "MessageResult", "PilotService"]

logger = logging.getLogger(__name__)

NEW_THREAD_COMMAND = "/new"
USER_MESSAGE_EVENT = "user.message"
WORKFLOW_START_EVENT = "workflow.start"


@dataclass
class MessageResult:
    """Outcome of handling one message.

    Attributes:
        task_id: Task the message was run as.
        response: Reply text with end markers removed.
        continued: Whether the message continued an existing thread.
        previous_task_id: Task the thread continued from.
        status: Final status of the task.
        thread_closed: Whether the reply ended the conversation.
    """

    task_id: str
    response: str
    continued: bool = False
    previous_task_id: str | None = None
    status: str = TaskStatus.COMPLETED.value
    thread_closed: bool = False


class PilotService:
    """Facade over the orchestrator, thread manager and registry.

    Attributes:
        orchestrator: Runs workflows.
        threads: Thread manager.
        registry: Workflow registry.
        config: Engine configuration.
    """

    def __init__(
        self,
        orchestrator: WorkflowOrchestrator,
        threads: ThreadManager,
        registry: WorkflowRegistry | None = None,
        config: PilotConfig | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.threads = threads
        self.registry = registry or orchestrator.registry
        self.config = config or orchestrator.config

    @property
    def store(self) -> BaseTaskStore:
        return self.orchestrator.store

    async def start_workflow(
        self,
        workflow_id: str,
        input: dict[str, Any] | None = None,
        source: str = "api",
        chat_id: str | None = None,
    ) -> Task:
        """Start a workflow in the background and return its task."""
        return await self.orchestrator.start_task(workflow_id, input or {}, source=source, chat_id=chat_id)

    async def send_message(
        self,
        text: str,
        source: str,
        chat_id: str | None = None,
        force_new_thread: bool = False,
        workflow_id: str | None = None,
    ) -> MessageResult:
        """Handle a free-form message.

        The message continues the most recent thread of the conversation
        unless ``force_new_thread`` is set, runs through the default workflow
        and the reply is published as ``agent.response.<source>``.

        Args:
            text: The message text.
            source: Interface the message came from.
            chat_id: Optional chat identifier.
            force_new_thread: Ignore any continuable thread.
            workflow_id: Workflow to run instead of the default one.

        Returns:
            The message result.

        Example:
            >>> result = await service.send_message("hi", source="whatsapp", chat_id="42")
            >>> result.response
            'Hello!'
        """
        thread = None if force_new_thread else await self.threads.find_continuable_thread(source, chat_id)
        workflow_input: dict[str, Any] = {"message": text, "history": thread.history if thread else []}
        if thread is not None:
            logger.info("Continuing thread %s for %s:%s", thread.task.task_id, source, chat_id or "default")

        outcome = await self.orchestrator.execute_workflow(
            workflow_id or self.config.default_workflow,
            workflow_input,
            source=source,
            chat_id=chat_id,
        )
        raw_response = outcome.response or ""
        if outcome.task.status == TaskStatus.CANCELLED and not raw_response:
            raw_response = f"Task {outcome.task.task_id} was cancelled."
        ended = is_end_of_conversation(raw_response)
        response = clean_response(raw_response)
        if ended and outcome.task.status == TaskStatus.COMPLETED:
            await self.threads.close_task_thread(outcome.task.task_id)

        await self.orchestrator.publish(
            AgentResponse(task_id=outcome.task.task_id, source=source, text=response, chat_id=chat_id)
        )
        return MessageResult(
            task_id=outcome.task.task_id,
            response=response,
            continued=thread is not None,
            previous_task_id=thread.task.task_id if thread else None,
            status=str(outcome.task.status),
            thread_closed=ended,
        )

    async def new_thread(self, source: str, chat_id: str | None = None) -> Task | None:
        """Close the active thread so the next message starts fresh."""
        return await self.threads.close_thread(source, chat_id)

    async def get_task(self, task_id: str) -> Task:
        """Load a task.

        Raises:
            TaskNotFoundError: If the task does not exist.
        """
        task = await self.store.load_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    async def list_tasks(
        self,
        limit: int = 50,
        status: str | None = None,
        source: str | None = None,
        cursor: str | None = None,
    ) -> TaskPage:
        return await self.store.list_tasks(limit=limit, status=status, source=source, cursor=cursor)

    async def task_stats(self) -> dict[str, Any]:
        """Task counts, running and recent tasks and ids of runs live in this process."""
        stats = await self.store.get_task_stats()
        stats["running"] = await self.store.get_running_tasks()
        stats["recent"] = await self.store.get_task_index()
        stats["active"] = list(self.orchestrator.running_task_ids())
        return stats

    async def cancel_task(self, task_id: str) -> Task:
        """Cancel a live task.

        Raises:
            TaskNotFoundError: If the task does not exist.
            TaskAlreadyCompletedError: If the task is already terminal.
        """
        task = await self.get_task(task_id)
        if task.is_terminal:
            raise TaskAlreadyCompletedError(task_id, str(task.status))
        cancelled = await self.orchestrator.cancel_task(task_id)
        if cancelled is None:
            current = await self.get_task(task_id)
            raise TaskAlreadyCompletedError(task_id, str(current.status))
        return cancelled

    async def resume_task(self, task_id: str) -> ExecutionResult:
        """Resume a task from its completed steps.

        Raises:
            TaskNotFoundError: If the task does not exist.
        """
        outcome = await self.orchestrator.resume_task(task_id)
        if outcome is None:
            raise TaskNotFoundError(task_id)
        return outcome

    def list_workflows(self) -> list[Workflow]:
        return self.registry.list()

    def get_workflow(self, workflow_id: str) -> Workflow:
        return self.registry.get(workflow_id)

    def create_workflow(self, document: dict[str, Any]) -> Workflow:
        """Parse, validate and save a workflow document.

        Raises:
            WorkflowValidationError: If the document is invalid.
        """
        return self.registry.save(Workflow.from_dict(document))

    async def handle_events(self, events: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
        """Route a batch of inbound events.

        Each event is handled independently; a failure is reported in that
        event's result and the rest of the batch still runs.

        Args:
            events: Events shaped ``{"id", "type", "source", "data"}``.

        Returns:
            One result per event, in order.
        """
        results = []
        for event in events:
            event_type = event.get("type")
            try:
                result = await self._handle_event(event)
            except Exception as e:
                logger.exception("Failed to handle %s event %s", event_type, event.get("id"))
                result = {"handled": False, "error": str(e)}
            results.append({"id": event.get("id"), "type": event_type, **result})
        return results

    async def _handle_event(self, event: dict[str, Any]) -> dict[str, Any]:
        data = event.get("data") or {}
        source = data.get("source") or event.get("source") or "api"
        chat_id = data.get("chatId")

        if event.get("type") == USER_MESSAGE_EVENT:
            text = str(data.get("text") or "").strip()
            if not text:
                return {"handled": False, "error": "Message text is required"}
            if text == NEW_THREAD_COMMAND:
                closed = await self.new_thread(source, chat_id)
                return {"handled": True, "threadClosed": closed is not None}
            message = await self.send_message(text, source, chat_id=chat_id)
            return {"handled": True, "taskId": message.task_id, "response": message.response}

        if event.get("type") == WORKFLOW_START_EVENT:
            task = await self.start_workflow(
                data["workflowId"],
                data.get("input") or {},
                source=source,
                chat_id=chat_id,
            )
            return {"handled": True, "taskId": task.task_id}

        return {"handled": False}

    async def cleanup(self) -> int:
        """Delete tasks whose TTL has elapsed."""
        return await self.store.cleanup_expired_tasks()
